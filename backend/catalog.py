"""Products and the customer cart."""
import math
import re
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

from bson import ObjectId
from fastapi import HTTPException
from pymongo.database import Database

from database import NEWEST_FIRST, create_document, get_documents, to_object_id
from schemas import (
    MATERIALS,
    CartItem as CartItemSchema,
    Price,
    Product as ProductSchema,
    ProductPayload,
    Review as ReviewSchema,
    ReviewPayload,
)
from . import rates
from .pricing import price_product, price_products, strip_priced, to_number

PRODUCT_LIST_MAX = 30
REVIEW_FIELDS = {"reviews": 0}
REVIEW_STAT_KEYS = ("rating", "reviewsCount")

_TYPE_LABELS = {"gold": "gold type", "silver": "silver type", "diamond": "diamond type"}


def slugify(name: str) -> str:
    slug = re.sub(r"\s+", "-", str(name or "").strip().lower())
    return re.sub(r"[^a-z0-9-]", "", slug)


def _charge(value: Any, label: str) -> dict:
    raw = value.get("amount") if isinstance(value, dict) else value
    n = to_number(raw)
    if n is None or n < 0:
        raise HTTPException(status_code=400, detail=f"Invalid {label}")
    return Price(amount=n).model_dump()


def _stock(value: Any) -> int:
    n = to_number(value)
    if n is None or n < 0:
        raise HTTPException(status_code=400, detail="Invalid stock")
    return int(n)


def _images(value: Optional[List[str]]) -> Optional[List[str]]:
    images = [str(s) for s in value or [] if s]
    return images or None


def normalize_material(value: Any) -> Optional[str]:
    """``None`` clears the material; anything outside gold/silver/diamond is rejected."""
    material = str(value or "").strip().lower()
    if not material:
        return None
    if material not in MATERIALS:
        raise HTTPException(status_code=400, detail="Invalid material")
    return material


def resolve_material_type(db: Database, material: str, raw: Any) -> Tuple[Any, Optional[float]]:
    """Validate ``raw`` for ``material``; returns (material_type, purity of the current rate)."""
    if material == "diamond":
        type_ref = str(raw or "").strip()
        if not ObjectId.is_valid(type_ref):
            raise HTTPException(status_code=400, detail="Invalid materialType")
        allowed = [str(a) for a in rates.known_discriminators(db, material)]
        if allowed and type_ref not in allowed:
            raise HTTPException(status_code=400, detail="Invalid diamond type")
        return type_ref, None

    n = to_number(raw)
    if n is None:
        raise HTTPException(status_code=400, detail="Invalid materialType")
    allowed = [float(a) for a in rates.known_discriminators(db, material) if to_number(a) is not None]
    if allowed and n not in allowed:
        raise HTTPException(status_code=400, detail=f"Invalid {_TYPE_LABELS[material]}")
    material_type = int(n) if n.is_integer() else n
    rate = rates.current_rate(db, material, material_type)
    purity_field = "purity" if material == "gold" else "purity_percent"
    return material_type, (rate or {}).get(purity_field)


def _with_purity(attributes: Any, material: Optional[str], purity: Optional[float]) -> dict:
    attrs = strip_priced(attributes)
    if material in ("gold", "silver"):
        if purity is not None:
            attrs["purity"] = str(purity)
    else:
        attrs.pop("purity", None)
    return attrs


def _load_product(db: Database, product_id: str) -> dict:
    doc = db["product"].find_one({"_id": to_object_id(product_id)}, REVIEW_FIELDS)
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    return doc


def create_product(db: Database, payload: ProductPayload) -> dict:
    name = (payload.name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="Missing name")
    slug = slugify(name)
    if not slug:
        raise HTTPException(status_code=400, detail="Invalid name")

    material = normalize_material(payload.material)
    material_type, purity = None, None
    if material:
        material_type, purity = resolve_material_type(db, material, payload.material_type)

    product = ProductSchema(
        name=name,
        slug=slug,
        description=payload.description or "",
        sku=payload.sku,
        images=_images(payload.images),
        image=payload.image,
        making_cost=_charge(payload.making_cost, "makingCost") if payload.making_cost is not None else None,
        other_charges=_charge(payload.other_charges, "otherCharges") if payload.other_charges is not None else None,
        stock=_stock(payload.stock) if payload.stock is not None else 0,
        material=material,
        material_type=material_type,
        is_active=True if payload.is_active is None else payload.is_active,
        attributes=_with_purity(payload.attributes, material, purity),
    )
    new_id = create_document("product", product, database=db)
    return get_product(db, new_id)


def update_product(db: Database, product_id: str, payload: ProductPayload) -> dict:
    doc = _load_product(db, product_id)
    data = payload.model_dump(exclude_unset=True)
    changes = {}

    if "name" in data:
        name = (data["name"] or "").strip()
        if not name:
            raise HTTPException(status_code=400, detail="Missing name")
        changes["name"] = name
    for key in ("description", "sku", "image"):
        if key in data:
            changes[key] = data[key]
    if "images" in data:
        changes["images"] = _images(data["images"])
    if "is_active" in data and data["is_active"] is not None:
        changes["is_active"] = bool(data["is_active"])
    if "making_cost" in data:
        changes["making_cost"] = _charge(data["making_cost"], "makingCost")
    if "other_charges" in data:
        changes["other_charges"] = _charge(data["other_charges"], "otherCharges")
    if "stock" in data:
        changes["stock"] = _stock(data["stock"])

    material = doc.get("material")
    material_type = doc.get("material_type")
    if "material" in data:
        new_material = normalize_material(data["material"])
        if new_material is None:
            material_type = None
        elif "material_type" not in data and new_material != material:
            raise HTTPException(status_code=400, detail="Missing materialType")
        material = new_material
    elif "material_type" in data and not material:
        raise HTTPException(status_code=400, detail="Material required for materialType")

    purity = None
    if material:
        raw_type = data["material_type"] if "material_type" in data else material_type
        material_type, purity = resolve_material_type(db, material, raw_type)
    changes["material"] = material
    changes["material_type"] = material_type
    attributes = data["attributes"] if "attributes" in data else doc.get("attributes")
    changes["attributes"] = _with_purity(attributes, material, purity)
    for key in REVIEW_STAT_KEYS:
        if key in (doc.get("attributes") or {}):
            changes["attributes"][key] = doc["attributes"][key]
    changes["updated_at"] = datetime.now(timezone.utc)

    db["product"].update_one({"_id": doc["_id"]}, {"$set": changes})
    return get_product(db, str(doc["_id"]))


def get_product(db: Database, product_id: str) -> dict:
    doc = _load_product(db, product_id)
    return price_product(doc, rates.load_snapshot(db, [doc]))


def list_products(
    db: Database, q: Optional[str], is_active: Optional[bool], page: int, limit: int
) -> Tuple[List[dict], int]:
    filter_q = {}
    if q:
        pattern = re.escape(q.strip())
        filter_q["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"slug": {"$regex": pattern, "$options": "i"}},
        ]
    if is_active is not None:
        filter_q["is_active"] = is_active
    limit = min(limit, PRODUCT_LIST_MAX)
    skip = (page - 1) * limit
    docs = get_documents("product", filter_q, limit, skip, NEWEST_FIRST, database=db, projection=REVIEW_FIELDS)
    return price_products(docs, rates.load_snapshot(db, docs)), db["product"].count_documents(filter_q)


def delete_product(db: Database, product_id: str) -> None:
    oid = to_object_id(product_id)
    res = db["product"].delete_one({"_id": oid})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    db["cartitem"].delete_many({"product_id": str(oid)})


# Reviews
def _one_decimal(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10


def review_stats(reviews: Any) -> Tuple[float, int]:
    """Average rating to one decimal and the review count."""
    ratings = [to_number(r.get("rating")) or 0.0 for r in reviews or [] if isinstance(r, dict)]
    if not ratings:
        return 0.0, 0
    return _one_decimal(sum(ratings) / len(ratings)), len(ratings)


def list_reviews(db: Database, product_id: str) -> List[dict]:
    doc = db["product"].find_one({"_id": to_object_id(product_id)}, {"reviews": 1})
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    reviews = [r for r in doc.get("reviews") or [] if isinstance(r, dict)]
    epoch = datetime.min
    reviews.sort(key=lambda r: r.get("created_at") or epoch, reverse=True)
    return [
        {
            "_id": r.get("_id"),
            "name": r.get("name") or "User",
            "rating": to_number(r.get("rating")) or 0,
            "comment": r.get("comment") or "",
            "created_at": r.get("created_at"),
            "updated_at": r.get("updated_at"),
        }
        for r in reviews
    ]


def upsert_review(db: Database, user: dict, product_id: str, payload: ReviewPayload) -> Tuple[dict, bool]:
    """Add the user's review or replace their earlier one; returns (stats, created)."""
    oid = to_object_id(product_id)
    rating = to_number(payload.rating)
    if rating is None or rating < 1 or rating > 5:
        raise HTTPException(status_code=400, detail="Invalid rating")
    if not db["product"].find_one({"_id": oid}, {"_id": 1}):
        raise HTTPException(status_code=404, detail="Product not found")

    user_id = str(user["_id"])
    review = ReviewSchema(
        user_id=user_id,
        name=str(user.get("full_name") or "").strip() or "User",
        rating=_one_decimal(rating),
        comment=str(payload.comment).strip() if payload.comment is not None else "",
    ).model_dump()
    now = datetime.now(timezone.utc)

    replaced = db["product"].update_one(
        {"_id": oid, "reviews.user_id": user_id},
        {"$set": {
            "reviews.$.name": review["name"],
            "reviews.$.rating": review["rating"],
            "reviews.$.comment": review["comment"],
            "reviews.$.updated_at": now,
        }},
    )
    created = replaced.matched_count == 0
    if created:
        review.update({"_id": ObjectId(), "created_at": now, "updated_at": now})
        db["product"].update_one({"_id": oid}, {"$push": {"reviews": review}})

    doc = db["product"].find_one({"_id": oid}, {"reviews": 1})
    rating_avg, count = review_stats(doc.get("reviews"))
    db["product"].update_one(
        {"_id": oid},
        {"$set": {"attributes.rating": rating_avg, "attributes.reviewsCount": count, "updated_at": now}},
    )
    return {"rating": rating_avg, "reviewsCount": count}, created


# Cart
def cart_list(db: Database, user_id: str) -> List[dict]:
    items = list(db["cartitem"].find({"user_id": user_id}).sort("created_at", -1))
    ids = [ObjectId(it["product_id"]) for it in items if ObjectId.is_valid(it.get("product_id"))]
    products = list(db["product"].find({"_id": {"$in": ids}}, REVIEW_FIELDS)) if ids else []
    priced = {str(p["_id"]): p for p in price_products(products, rates.load_snapshot(db, products))}
    return [dict(it, product=priced.get(it["product_id"])) for it in items]


def cart_add(db: Database, user_id: str, product_id: str) -> Tuple[dict, bool]:
    """Add a product to the cart; adding it twice returns the existing line."""
    product = _load_product(db, product_id)
    key = CartItemSchema(user_id=user_id, product_id=str(product["_id"])).model_dump()
    now = datetime.now(timezone.utc)
    res = db["cartitem"].update_one(
        key, {"$setOnInsert": {"created_at": now, "updated_at": now}}, upsert=True
    )
    item = db["cartitem"].find_one(key)
    item["product"] = price_product(product, rates.load_snapshot(db, [product]))
    return item, res.upserted_id is not None


def cart_remove(db: Database, user_id: str, product_id: str) -> None:
    oid = to_object_id(product_id, "productId")
    db["cartitem"].delete_one({"user_id": user_id, "product_id": str(oid)})
