"""Live product pricing from commodity rates.

A product's sale price is its asking price (making cost + other charges) plus
the value of its material at the current rate:

- gold: ``(rate per 10 g / 10) * weightGrams`` for the product's carat
- silver: ``(rate per kg / 1000) * weightGrams`` for the product's purity mark
- diamond: ``price per carat * carat`` for the product's diamond type

Everything here is pure. Rates come in as a ``RateSnapshot`` (see
``backend.rates.load_snapshot``), and missing or malformed inputs degrade to a
zero contribution instead of raising, so a listing never breaks because a
rate has not been entered yet.
"""
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union

DIAMOND_CARAT_KEYS = ("diamondCarat", "carat", "carats", "weightCarat", "weightCarats")

# Attribute keys written by price_product; never persisted
PRICED_KEYS = (
    "askingPriceInr",
    "materialValueInr",
    "priceInr",
    "materialRatePer10Gram",
    "materialRatePerKg",
    "materialPricePerCarat",
)


@dataclass(frozen=True)
class NoMaterial:
    pass


@dataclass(frozen=True)
class Gold:
    carat: float


@dataclass(frozen=True)
class Silver:
    purity_mark: float


@dataclass(frozen=True)
class Diamond:
    type_ref: str


Material = Union[NoMaterial, Gold, Silver, Diamond]


@dataclass
class RateSnapshot:
    """Current rate per discriminator, as of the moment it was loaded."""

    gold_per_10_gram: Dict[float, float] = field(default_factory=dict)
    silver_per_kg: Dict[float, float] = field(default_factory=dict)
    diamond_per_carat: Dict[str, float] = field(default_factory=dict)


def round_inr(value: float) -> int:
    """Round half-up to whole rupees."""
    return int(math.floor(value + 0.5))


def to_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        n = float(value)
    except (TypeError, ValueError):
        return None
    return n if math.isfinite(n) else None


def _positive(value: Any) -> float:
    n = to_number(value)
    return n if n is not None and n > 0 else 0.0


def _charge(value: Any) -> float:
    raw = value.get("amount") if isinstance(value, dict) else value
    n = to_number(raw)
    return n if n is not None and n >= 0 else 0.0


def parse_material(material: Any, material_type: Any) -> Material:
    kind = str(material or "").strip().lower()
    if kind in ("gold", "silver"):
        n = to_number(material_type)
        if n is None:
            return NoMaterial()
        return Gold(carat=n) if kind == "gold" else Silver(purity_mark=n)
    if kind == "diamond":
        ref = str(material_type).strip() if material_type is not None else ""
        return Diamond(type_ref=ref) if ref else NoMaterial()
    return NoMaterial()


def material_of(product: dict) -> Material:
    return parse_material(product.get("material"), product.get("material_type"))


def asking_price(product: dict) -> float:
    return _charge(product.get("making_cost")) + _charge(product.get("other_charges"))


def diamond_carat(attributes: dict) -> float:
    for key in DIAMOND_CARAT_KEYS:
        carat = _positive(attributes.get(key))
        if carat:
            return carat
    return 0.0


def material_value(material: Material, attributes: dict, rates: RateSnapshot) -> Tuple[float, Optional[str], float]:
    """Return (value, attribute key for the rate used, rate)."""
    if isinstance(material, Gold):
        rate = _positive(rates.gold_per_10_gram.get(material.carat))
        weight = _positive(attributes.get("weightGrams"))
        if not rate or not weight:
            return 0.0, None, 0.0
        return (rate / 10) * weight, "materialRatePer10Gram", rate
    if isinstance(material, Silver):
        rate = _positive(rates.silver_per_kg.get(material.purity_mark))
        weight = _positive(attributes.get("weightGrams"))
        if not rate or not weight:
            return 0.0, None, 0.0
        return (rate / 1000) * weight, "materialRatePerKg", rate
    if isinstance(material, Diamond):
        rate = _positive(rates.diamond_per_carat.get(material.type_ref))
        carat = diamond_carat(attributes)
        if not rate or not carat:
            return 0.0, None, 0.0
        return rate * carat, "materialPricePerCarat", rate
    return 0.0, None, 0.0


def strip_priced(attributes: Any) -> Dict[str, Any]:
    if not isinstance(attributes, dict):
        return {}
    return {k: v for k, v in attributes.items() if k not in PRICED_KEYS}


def price_product(product: dict, rates: RateSnapshot) -> dict:
    """Return a copy of ``product`` with live pricing in its attributes and ``price_inr``."""
    attrs = strip_priced(product.get("attributes"))
    asking = asking_price(product)
    value, rate_key, rate = material_value(material_of(product), attrs, rates)

    attrs["askingPriceInr"] = round_inr(asking)
    attrs["materialValueInr"] = round_inr(value)
    if rate_key:
        attrs[rate_key] = round_inr(rate)
    attrs["priceInr"] = round_inr(asking + value)

    priced = dict(product)
    priced["attributes"] = attrs
    priced["price_inr"] = attrs["priceInr"]
    return priced


def price_products(products: Iterable[dict], rates: RateSnapshot) -> List[dict]:
    return [price_product(p, rates) for p in products]


def discriminators(products: Iterable[dict]) -> Tuple[Set[float], Set[float], Set[str]]:
    """Distinct carats, purity marks and diamond type refs used by ``products``."""
    carats: Set[float] = set()
    marks: Set[float] = set()
    diamond_types: Set[str] = set()
    for p in products:
        material = material_of(p)
        if isinstance(material, Gold):
            carats.add(material.carat)
        elif isinstance(material, Silver):
            marks.add(material.purity_mark)
        elif isinstance(material, Diamond):
            diamond_types.add(material.type_ref)
    return carats, marks, diamond_types
