"""Commodity rate repository (gold, silver, diamond).

Rates are append-only snapshots. The current rate for a discriminator is the
most recent row by ``date``; rows sharing a date are ordered by creation.
"""
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from bson import ObjectId
from fastapi import HTTPException
from pymongo import DESCENDING
from pymongo.database import Database

from database import create_document, get_documents, to_object_id
from schemas import (
    GOLD_CARATS,
    SILVER_PURITY_MARKS,
    DiamondPrice as DiamondPriceSchema,
    DiamondPricePayload,
    DiamondType as DiamondTypeSchema,
    DiamondTypePayload,
    GoldRate as GoldRateSchema,
    GoldRatePayload,
    SilverRate as SilverRateSchema,
    SilverRatePayload,
)
from .pricing import RateSnapshot, discriminators, to_number

LATEST_FIRST = [("date", DESCENDING), ("created_at", DESCENDING), ("_id", DESCENDING)]

RATE_COLLECTIONS = {
    "gold": ("goldrate", "carat", "rate_per_10_gram"),
    "silver": ("silverrate", "purity_mark", "rate_per_kg"),
    "diamond": ("diamondprice", "diamond_type", "price_per_carat"),
}

_SUFFIXES = (("cr", 10_000_000), ("l", 100_000), ("k", 1_000))


def parse_numeric(value) -> Optional[float]:
    """Parse admin-entered amounts such as ``"62,500"``, ``"62.5k"`` or ``"1.2l"``."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return to_number(value)
    raw = str(value or "").strip().lower().replace(",", "")
    if not raw:
        return None
    multiplier = 1
    for suffix, mult in _SUFFIXES:
        if raw.endswith(suffix):
            raw = raw[: -len(suffix)].strip()
            multiplier = mult
            break
    n = to_number(raw)
    return n * multiplier if n is not None else None


def _latest_pipeline(key: str, value_field: str, keys: Optional[list], extra: Optional[dict] = None) -> List[dict]:
    match = {value_field: {"$gt": 0}}
    if keys is not None:
        match[key] = {"$in": keys}
    group = {"_id": f"${key}", "rate": {"$first": f"${value_field}"}}
    group.update(extra or {})
    return [
        {"$match": match},
        {"$sort": {"date": -1, "created_at": -1, "_id": -1}},
        {"$group": group},
    ]


def _latest(db: Database, material: str, keys: Optional[Iterable]) -> List[dict]:
    collection, key, value_field = RATE_COLLECTIONS[material]
    key_list = None if keys is None else list(keys)
    if key_list is not None and not key_list:
        return []
    return list(db[collection].aggregate(_latest_pipeline(key, value_field, key_list)))


def latest_gold_rates(db: Database, carats: Optional[Iterable[float]] = None) -> Dict[float, float]:
    return {float(row["_id"]): float(row["rate"]) for row in _latest(db, "gold", carats)}


def latest_silver_rates(db: Database, purity_marks: Optional[Iterable[float]] = None) -> Dict[float, float]:
    return {float(row["_id"]): float(row["rate"]) for row in _latest(db, "silver", purity_marks)}


def latest_diamond_prices(db: Database, type_refs: Optional[Iterable[str]] = None) -> Dict[str, float]:
    return {str(row["_id"]): float(row["rate"]) for row in _latest(db, "diamond", type_refs)}


def load_snapshot(db: Database, products: Iterable[dict]) -> RateSnapshot:
    """One grouped lookup per material for every discriminator used by ``products``."""
    carats, marks, diamond_types = discriminators(products)
    return RateSnapshot(
        gold_per_10_gram=latest_gold_rates(db, carats),
        silver_per_kg=latest_silver_rates(db, marks),
        diamond_per_carat=latest_diamond_prices(db, diamond_types),
    )


def current_rate(db: Database, material: str, discriminator) -> Optional[dict]:
    collection, key, value_field = RATE_COLLECTIONS[material]
    return db[collection].find_one({key: discriminator, value_field: {"$gt": 0}}, sort=LATEST_FIRST)


def known_discriminators(db: Database, material: str) -> list:
    collection, key, _ = RATE_COLLECTIONS[material]
    return db[collection].distinct(key)


def _required_positive(value, label: str) -> float:
    n = parse_numeric(value)
    if n is None or n <= 0:
        raise HTTPException(status_code=400, detail=f"Invalid {label}")
    return n


def _rate_date(value: Optional[datetime]) -> datetime:
    return value or datetime.now(timezone.utc)


def create_gold_rate(db: Database, payload: GoldRatePayload) -> dict:
    carat = parse_numeric(payload.carat)
    if carat is None or carat not in GOLD_CARATS:
        raise HTTPException(status_code=400, detail="Invalid carat")
    doc = GoldRateSchema(
        carat=int(carat),
        purity=_required_positive(payload.purity, "purity"),
        rate_per_10_gram=_required_positive(payload.rate_per_10_gram, "ratePer10Gram"),
        date=_rate_date(payload.date),
    )
    new_id = create_document("goldrate", doc, database=db)
    return db["goldrate"].find_one({"_id": ObjectId(new_id)})


def create_silver_rate(db: Database, payload: SilverRatePayload) -> dict:
    mark = parse_numeric(payload.purity_mark)
    if mark is None or mark not in SILVER_PURITY_MARKS:
        raise HTTPException(status_code=400, detail="Invalid purityMark")
    doc = SilverRateSchema(
        purity_mark=int(mark),
        purity_percent=_required_positive(payload.purity_percent, "purityPercent"),
        rate_per_kg=_required_positive(payload.rate_per_kg, "ratePerKg"),
        date=_rate_date(payload.date),
    )
    new_id = create_document("silverrate", doc, database=db)
    return db["silverrate"].find_one({"_id": ObjectId(new_id)})


def create_diamond_type(db: Database, payload: DiamondTypePayload) -> dict:
    doc = DiamondTypeSchema(
        origin=payload.origin,
        shape=payload.shape.strip(),
        cut=payload.cut,
        color=payload.color.strip().upper(),
        clarity=payload.clarity.strip().upper(),
    )
    new_id = create_document("diamondtype", doc, database=db)
    return db["diamondtype"].find_one({"_id": ObjectId(new_id)})


def create_diamond_price(db: Database, payload: DiamondPricePayload) -> dict:
    type_oid = to_object_id(payload.diamond_type_id, "diamondTypeId")
    if not db["diamondtype"].find_one({"_id": type_oid}):
        raise HTTPException(status_code=404, detail="Diamond type not found")
    doc = DiamondPriceSchema(
        diamond_type=str(type_oid),
        price_per_carat=_required_positive(payload.price_per_carat, "pricePerCarat"),
        date=_rate_date(payload.date),
    )
    new_id = create_document("diamondprice", doc, database=db)
    return db["diamondprice"].find_one({"_id": ObjectId(new_id)})


def list_rates(db: Database, collection: str, filter_dict: dict, page: int, limit: int) -> Tuple[List[dict], int]:
    docs = get_documents(collection, filter_dict, limit, (page - 1) * limit, LATEST_FIRST, database=db)
    return docs, db[collection].count_documents(filter_dict)


def delete_rate(db: Database, collection: str, rate_id: str, label: str) -> None:
    res = db[collection].delete_one({"_id": to_object_id(rate_id)})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail=f"{label} not found")


def _compact(value) -> str:
    n = to_number(value)
    if n is None:
        return str(value if value is not None else "")
    if n.is_integer():
        return str(int(n))
    return f"{n:.6f}".rstrip("0").rstrip(".")


def diamond_type_label(t: dict) -> str:
    parts = [t.get(k) for k in ("origin", "shape", "cut", "color", "clarity")]
    return " / ".join(str(p) for p in parts if p)


def material_types(db: Database) -> dict:
    """Selectable material types with their current rates, for the admin product form."""
    gold = db["goldrate"].aggregate(
        _latest_pipeline("carat", "rate_per_10_gram", None, {"purity": {"$first": "$purity"}})
    )
    silver = db["silverrate"].aggregate(
        _latest_pipeline("purity_mark", "rate_per_kg", None, {"purity": {"$first": "$purity_percent"}})
    )
    diamond = list(db["diamondprice"].aggregate(_latest_pipeline("diamond_type", "price_per_carat", None)))

    type_ids = [ObjectId(d["_id"]) for d in diamond if ObjectId.is_valid(str(d["_id"]))]
    types = {str(t["_id"]): t for t in db["diamondtype"].find({"_id": {"$in": type_ids}})} if type_ids else {}

    gold_out = [
        {
            "value": row["_id"],
            "label": f"{_compact(row['_id'])}k ({_compact(row.get('purity'))})({_compact(row['rate'])})",
            "purity": row.get("purity"),
            "price": row["rate"],
        }
        for row in sorted(gold, key=lambda r: r["_id"], reverse=True)
    ]
    silver_out = [
        {
            "value": row["_id"],
            "label": f"{_compact(row['_id'])} ({_compact(row.get('purity'))})({_compact(row['rate'])})",
            "purity": row.get("purity"),
            "price": row["rate"],
        }
        for row in sorted(silver, key=lambda r: r["_id"], reverse=True)
    ]
    diamond_out = []
    for row in diamond:
        type_id = str(row["_id"])
        base = diamond_type_label(types[type_id]) if type_id in types else type_id
        diamond_out.append({"value": type_id, "label": f"{base} ({_compact(row['rate'])})", "price": row["rate"]})
    return {"gold": gold_out, "silver": silver_out, "diamond": diamond_out}
