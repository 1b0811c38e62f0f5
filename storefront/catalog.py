import re
from datetime import datetime
from typing import Dict, List, Optional

from .errors import ValidationError
from .helpers import (
    first_present,
    normalize_text,
    parse_bool,
    parse_json_list,
    parse_json_object,
    safe_float,
    safe_positive_int,
    serialize_document,
)

PRODUCT_STATUSES = ("enabled", "disabled")
MODERATION_STATUSES = ("approved", "suspended")

PRODUCT_TEXT_FIELDS = {
    "name": ("name",),
    "category": ("category",),
    "description": ("description",),
    "material": ("material",),
    "gender": ("gender",),
    "brand": ("brand",),
    "fit": ("fit",),
    "care_instructions": ("care_instructions", "careInstructions"),
}
DIMENSION_FIELDS = ("chest", "length", "sleeve")


def _parse_amount(value, field: str, label: str) -> float:
    numeric = safe_float(value, None)
    if numeric is None:
        raise ValidationError(f"{label} must be a valid number.", field)
    if numeric < 0:
        raise ValidationError(f"{label} cannot be negative.", field)
    return round(numeric, 2)


def normalize_dimensions(value) -> Dict[str, float]:
    payload = parse_json_object(value)
    dimensions: Dict[str, float] = {}
    for field in DIMENSION_FIELDS:
        if payload.get(field) in (None, ""):
            continue
        dimensions[field] = _parse_amount(payload.get(field), f"dimensions.{field}", field.capitalize())
    return dimensions


def apply_product_fields(product_document: Dict, payload: Dict) -> Dict:
    for field, aliases in PRODUCT_TEXT_FIELDS.items():
        value = first_present(payload, *aliases)
        if value is not None:
            product_document[field] = normalize_text(value)

    if first_present(payload, "price") is not None:
        product_document["price"] = _parse_amount(payload.get("price"), "price", "Price")
    if first_present(payload, "quantity", "stock") is not None:
        raw_quantity = first_present(payload, "quantity", "stock")
        if safe_float(raw_quantity, -1) < 0:
            raise ValidationError("Quantity must be zero or more.", "quantity")
        product_document["quantity"] = safe_positive_int(raw_quantity, 0)
    if first_present(payload, "weight") not in (None, ""):
        product_document["weight"] = _parse_amount(payload.get("weight"), "weight", "Weight")

    for field in ("sizes", "colors"):
        if first_present(payload, field) is not None:
            product_document[field] = parse_json_list(payload.get(field))

    if first_present(payload, "dimensions") is not None:
        product_document["dimensions"] = normalize_dimensions(payload.get("dimensions"))

    is_returnable = first_present(payload, "is_returnable", "isReturnable")
    if is_returnable is not None:
        product_document["is_returnable"] = parse_bool(is_returnable)
    return_period = first_present(payload, "return_period", "returnPeriod")
    if return_period not in (None, ""):
        product_document["return_period"] = safe_positive_int(return_period, 0)

    cod_available = first_present(payload, "is_cash_on_delivery_available", "isCashOnDeliveryAvailable")
    if cod_available is not None:
        product_document["is_cash_on_delivery_available"] = parse_bool(cod_available)
    online_percentage = first_present(payload, "online_payment_percentage", "onlinePaymentPercentage")
    if online_percentage not in (None, ""):
        product_document["online_payment_percentage"] = safe_float(online_percentage, -1)

    validate_product(product_document)
    return product_document


def validate_product(product_document: Dict) -> None:
    if not normalize_text(product_document.get("name")):
        raise ValidationError("A product name is required.", "name")
    if not normalize_text(product_document.get("category")):
        raise ValidationError("A product category is required.", "category")
    if safe_float(product_document.get("price"), 0) <= 0:
        raise ValidationError("Price must be greater than zero.", "price")
    if not product_document.get("sizes") or not product_document.get("colors"):
        raise ValidationError("Please list at least one size and one color.", "sizes")
    percentage = safe_float(product_document.get("online_payment_percentage"), 100)
    if percentage < 0 or percentage > 100:
        raise ValidationError("Online payment percentage must be between 0 and 100.", "online_payment_percentage")
    if product_document.get("status") not in PRODUCT_STATUSES:
        raise ValidationError("Status must be 'enabled' or 'disabled'.", "status")
    if product_document.get("moderation_status") not in MODERATION_STATUSES:
        raise ValidationError("Moderation status must be 'approved' or 'suspended'.", "moderation_status")


def build_product_document(payload: Dict, seller_id, images: List[str]) -> Dict:
    now = datetime.utcnow()
    product_document = {
        "seller_id": seller_id,
        "quantity": 0,
        "sizes": [],
        "colors": [],
        "dimensions": {},
        "is_returnable": False,
        "return_period": 0,
        "is_cash_on_delivery_available": True,
        "online_payment_percentage": 100,
        "images": list(images or []),
        "status": "enabled",
        "moderation_status": "approved",
        "created_at": now,
        "updated_at": now,
    }
    return apply_product_fields(product_document, payload)


def toggle_product_status(product_document: Dict) -> str:
    current = product_document.get("status")
    product_document["status"] = "disabled" if current == "enabled" else "enabled"
    product_document["updated_at"] = datetime.utcnow()
    return product_document["status"]


def is_product_available(product_document: Optional[Dict]) -> bool:
    if not product_document:
        return False
    return (
        product_document.get("status") == "enabled"
        and product_document.get("moderation_status", "approved") == "approved"
    )


def public_product_filter(extra: Optional[Dict] = None) -> Dict:
    query = {"status": "enabled", "moderation_status": "approved"}
    query.update(extra or {})
    return query


def serialize_product(product_document: Optional[Dict], seller_names: Optional[Dict] = None) -> Dict:
    serialized = serialize_document(product_document)
    if serialized and seller_names is not None:
        serialized["seller_name"] = seller_names.get(str(product_document.get("seller_id")), "")
    return serialized


def normalize_category_name(value: Optional[str]) -> str:
    if value is None:
        return ""
    return " ".join(str(value).split())


def build_category_document(payload: Dict, icon: Optional[str]) -> Dict:
    name = normalize_category_name(first_present(payload, "name"))
    if not name:
        raise ValidationError("Category name is required.", "name")
    now = datetime.utcnow()
    return {
        "name": name,
        "description": normalize_text(first_present(payload, "description")),
        "icon": icon or "",
        "created_at": now,
        "updated_at": now,
    }


def category_search_filter(term: str) -> Dict:
    return {"name": {"$regex": re.escape(normalize_category_name(term)), "$options": "i"}}


def reserve_stock(db, product_id, quantity: int) -> bool:
    result = db.products.update_one(
        {"_id": product_id, "quantity": {"$gte": quantity}},
        {"$inc": {"quantity": -quantity}},
    )
    return result.modified_count == 1


def release_stock(db, items: List[Dict]) -> None:
    for item in items or []:
        quantity = safe_positive_int(item.get("quantity"), 0)
        if quantity and item.get("product_id") is not None:
            db.products.update_one({"_id": item["product_id"]}, {"$inc": {"quantity": quantity}})
