from datetime import datetime, timezone

from bson import ObjectId

from backend import rates
from tests.helpers import add_gold_rate, add_product

JAN = datetime(2026, 1, 1, tzinfo=timezone.utc)
FEB = datetime(2026, 2, 1, tzinfo=timezone.utc)


def test_latest_rate_per_carat(db):
    add_gold_rate(db, 22, 58000, date=JAN)
    add_gold_rate(db, 22, 60000, date=FEB)
    add_gold_rate(db, 18, 47000, date=JAN)
    add_gold_rate(db, 24, 65000, date=FEB)

    assert rates.latest_gold_rates(db, [22, 18]) == {22.0: 60000.0, 18.0: 47000.0}


def test_same_date_prefers_most_recently_created(db):
    add_gold_rate(db, 22, 59000, date=FEB)
    add_gold_rate(db, 22, 59500, date=FEB)

    assert rates.latest_gold_rates(db, [22]) == {22.0: 59500.0}
    assert rates.current_rate(db, "gold", 22)["rate_per_10_gram"] == 59500


def test_non_positive_rates_are_ignored(db):
    add_gold_rate(db, 22, 60000, date=JAN)
    db["goldrate"].insert_one({"carat": 22, "purity": 91.6, "rate_per_10_gram": 0, "date": FEB})

    assert rates.latest_gold_rates(db, [22]) == {22.0: 60000.0}


def test_empty_key_list_skips_lookup(db):
    add_gold_rate(db, 22, 60000, date=JAN)
    assert rates.latest_gold_rates(db, []) == {}


def test_load_snapshot_covers_every_material(db):
    add_gold_rate(db, 22, 60000, date=JAN)
    db["silverrate"].insert_one({"purity_mark": 925, "purity_percent": 92.5, "rate_per_kg": 90000, "date": JAN})
    type_id = str(ObjectId())
    db["diamondprice"].insert_one({"diamond_type": type_id, "price_per_carat": 120000, "date": JAN})

    products = [
        {"material": "gold", "material_type": 22},
        {"material": "silver", "material_type": 925},
        {"material": "diamond", "material_type": type_id},
    ]
    snapshot = rates.load_snapshot(db, products)

    assert snapshot.gold_per_10_gram == {22.0: 60000.0}
    assert snapshot.silver_per_kg == {925.0: 90000.0}
    assert snapshot.diamond_per_carat == {type_id: 120000.0}


def test_parse_numeric():
    assert rates.parse_numeric("62,500") == 62500
    assert rates.parse_numeric("62.5k") == 62500
    assert rates.parse_numeric("1.2L") == 120000
    assert rates.parse_numeric("1cr") == 10_000_000
    assert rates.parse_numeric("") is None
    assert rates.parse_numeric("abc") is None


def test_rate_endpoints(client, db, admin_headers):
    res = client.post(
        "/api/gold-rates",
        json={"carat": 22, "purity": "91.6", "ratePer10Gram": "60,000", "date": "2026-02-01T00:00:00Z"},
        headers=admin_headers,
    )
    assert res.status_code == 201
    rate = res.json()["data"]
    assert rate["rate_per_10_gram"] == 60000

    bad = client.post("/api/gold-rates", json={"carat": 21, "purity": 90, "ratePer10Gram": 1}, headers=admin_headers)
    assert bad.status_code == 400
    assert bad.json()["message"] == "Invalid carat"

    listed = client.get("/api/gold-rates", params={"carat": 22}, headers=admin_headers).json()
    assert listed["total"] == 1

    assert client.delete(f"/api/gold-rates/{rate['_id']}", headers=admin_headers).status_code == 200
    assert client.delete(f"/api/gold-rates/{rate['_id']}", headers=admin_headers).status_code == 404


def test_diamond_price_requires_known_type(client, admin_headers):
    missing = client.post(
        "/api/diamond-prices", json={"diamondTypeId": str(ObjectId()), "pricePerCarat": 100000}, headers=admin_headers
    )
    assert missing.status_code == 404

    dtype = client.post(
        "/api/diamond-types",
        json={"origin": "Natural", "shape": "Round", "cut": "Excellent", "color": "f", "clarity": "vs1"},
        headers=admin_headers,
    ).json()["data"]
    assert dtype["color"] == "F"

    res = client.post(
        "/api/diamond-prices", json={"diamondTypeId": dtype["_id"], "pricePerCarat": "1.5l"}, headers=admin_headers
    )
    assert res.status_code == 201
    assert res.json()["data"]["price_per_carat"] == 150000


def test_material_types_listing(client, db):
    add_gold_rate(db, 22, 60000, purity=91.6, date=JAN)
    add_gold_rate(db, 18, 47000, purity=75, date=JAN)
    add_product(db)

    data = client.get("/api/products/meta/material-types").json()["data"]

    assert [g["value"] for g in data["gold"]] == [22, 18]
    assert data["gold"][0]["label"] == "22k (91.6)(60000)"
    assert data["silver"] == []
    assert data["diamond"] == []
