import pytest
from fastapi import HTTPException

from backend.otp import InMemoryOtpStore, OtpService, generate_code


class Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def service(clock, **kwargs):
    return OtpService(InMemoryOtpStore(clock=clock), clock=clock, **kwargs)


def status_of(call):
    with pytest.raises(HTTPException) as exc:
        call()
    return exc.value.status_code, exc.value.detail


def test_generate_code_is_six_digits():
    for _ in range(50):
        code = generate_code()
        assert len(code) == 6 and code.isdigit()
        assert not code.startswith("0")


def test_store_entries_expire():
    clock = Clock()
    store = InMemoryOtpStore(clock=clock)
    store.set("k", {"v": 1}, ttl_seconds=10)

    assert store.get("k") == {"v": 1}
    clock.now += 10
    assert store.get("k") is None


def test_issue_and_verify_returns_payload():
    otp = service(Clock())
    code = otp.issue("Asha@Example.com ", "signup", {"full_name": "Asha"})

    assert otp.verify("asha@example.com", code, "signup") == {"full_name": "Asha"}
    assert status_of(lambda: otp.verify("asha@example.com", code, "signup")) == (400, "OTP not requested")


def test_codes_are_scoped_by_purpose():
    otp = service(Clock())
    code = otp.issue("asha@example.com", "login")

    assert status_of(lambda: otp.verify("asha@example.com", code, "signup")) == (400, "OTP not requested")


def test_reissue_replaces_previous_code(monkeypatch):
    otp = service(Clock())
    monkeypatch.setattr("backend.otp.generate_code", lambda: "111111")
    otp.issue("asha@example.com", "login")
    monkeypatch.setattr("backend.otp.generate_code", lambda: "222222")
    otp.issue("asha@example.com", "login")

    assert status_of(lambda: otp.verify("asha@example.com", "111111", "login")) == (400, "Invalid OTP")
    assert otp.verify("asha@example.com", "222222", "login") == {}


def test_expired_code():
    clock = Clock()
    otp = OtpService(InMemoryOtpStore(clock=lambda: 0.0), ttl_seconds=60, clock=clock)
    code = otp.issue("asha@example.com", "login")
    clock.now += 61

    assert status_of(lambda: otp.verify("asha@example.com", code, "login")) == (400, "OTP expired")
    assert status_of(lambda: otp.verify("asha@example.com", code, "login")) == (400, "OTP not requested")


def test_attempts_are_limited():
    otp = service(Clock(), max_attempts=3)
    code = otp.issue("asha@example.com", "login")
    wrong = "000000" if code != "000000" else "111111"

    for _ in range(3):
        assert status_of(lambda: otp.verify("asha@example.com", wrong, "login")) == (400, "Invalid OTP")

    # even the right code is refused once the attempts are used up
    assert status_of(lambda: otp.verify("asha@example.com", code, "login")) == (429, "Too many attempts")
    assert status_of(lambda: otp.verify("asha@example.com", code, "login")) == (400, "OTP not requested")


def test_numeric_code_is_accepted(monkeypatch):
    monkeypatch.setattr("backend.otp.generate_code", lambda: "482913")
    otp = service(Clock())
    otp.issue("asha@example.com", "login", {"user_id": "u1"})

    assert otp.verify("asha@example.com", 482913, "login") == {"user_id": "u1"}


def test_numeric_code_keeps_leading_zero(monkeypatch):
    monkeypatch.setattr("backend.otp.generate_code", lambda: "012345")
    otp = service(Clock())
    otp.issue("asha@example.com", "login", {"user_id": "u1"})

    assert otp.verify("asha@example.com", 12345, "login") == {"user_id": "u1"}


def test_login_verify_accepts_numeric_otp(client, user, monkeypatch):
    monkeypatch.setattr("backend.otp.generate_code", lambda: "012345")
    client.post("/api/users/login/init", json={"email": "asha@example.com", "password": "secret123"})

    res = client.post("/api/users/login/verify", json={"email": "asha@example.com", "otp": 12345})

    assert res.status_code == 200
    assert res.json()["data"]["email"] == "asha@example.com"
