"""Order documents: status lifecycle, payment-split accounting and persistence."""
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

from .errors import ValidationError
from .helpers import (
    is_valid_email,
    normalize_email,
    normalize_text,
    parse_object_id,
    safe_float,
    safe_positive_int,
    serialize_document,
)

logger = logging.getLogger(__name__)

ORDER_STATUSES = (
    "order confirmed",
    "processing",
    "shipped",
    "out for delivery",
    "delivered",
    "cancelled",
    "returned",
)
TERMINAL_STATUSES = frozenset({"cancelled", "returned"})
FORWARD_STATUSES = tuple(status for status in ORDER_STATUSES if status not in TERMINAL_STATUSES)
CANCELLABLE_STATUSES = frozenset({"order confirmed", "processing"})
DEFAULT_STATUS = "order confirmed"

PAYMENT_METHOD_ONLINE = "Razorpay"
PAYMENT_METHOD_COD = "Cash on Delivery"
PAYMENT_METHOD_SPLIT = "Split Payment"
PAYMENT_METHODS = (PAYMENT_METHOD_ONLINE, PAYMENT_METHOD_COD, PAYMENT_METHOD_SPLIT)
PAYMENT_STATUSES = ("pending", "completed", "failed")

ITEM_ATTRIBUTE_FIELDS = (
    "material",
    "gender",
    "brand",
    "fit",
    "care_instructions",
    "dimensions",
    "weight",
)


def round_amount(value) -> float:
    return round(safe_float(value, 0.0), 2)


def normalize_status(value) -> str:
    return normalize_text(value).lower()


def next_order_status(current_status: Optional[str]) -> Optional[str]:
    """Return the status one step after ``current_status``.

    Terminal (cancelled, returned) and unknown statuses come back unchanged,
    as does ``delivered``, the last forward step.
    """
    if current_status not in ORDER_STATUSES or current_status in TERMINAL_STATUSES:
        return current_status
    index = FORWARD_STATUSES.index(current_status)
    return FORWARD_STATUSES[min(index + 1, len(FORWARD_STATUSES) - 1)]


def calculate_order_amounts(items: List[Dict], shipping=0) -> Dict[str, float]:
    online_amount = 0.0
    cod_amount = 0.0
    for item in items or []:
        if not isinstance(item, dict):
            continue
        online_amount += safe_float(item.get("online_amount"), 0.0)
        cod_amount += safe_float(item.get("cod_amount"), 0.0)

    return {
        "online_amount": round(online_amount, 2),
        "cod_amount": round(cod_amount, 2),
        "total": round(online_amount + cod_amount + safe_float(shipping, 0.0), 2),
    }


def calculated_total(order_document: Dict) -> float:
    subtotal = sum(
        safe_float(item.get("price"), 0.0) * safe_positive_int(item.get("quantity"), 0)
        for item in order_document.get("items") or []
    )
    return round(subtotal + safe_float(order_document.get("shipping"), 0.0), 2)


def split_line_amount(line_amount, payment_method: str, online_percentage=100) -> Tuple[float, float]:
    line_amount = round_amount(line_amount)
    if payment_method == PAYMENT_METHOD_ONLINE:
        return line_amount, 0.0
    if payment_method == PAYMENT_METHOD_COD:
        return 0.0, line_amount

    percentage = min(max(safe_float(online_percentage, 100.0), 0.0), 100.0)
    online_amount = round(line_amount * percentage / 100, 2)
    return online_amount, round(line_amount - online_amount, 2)


def append_status_history(order_document: Dict, details: Optional[str] = None, timestamp=None) -> bool:
    history = order_document.get("status_history")
    if not isinstance(history, list):
        history = []
        order_document["status_history"] = history

    status = order_document.get("status")
    if history and history[-1].get("status") == status:
        return False

    entry = {"status": status, "timestamp": timestamp or datetime.utcnow()}
    if details:
        entry["details"] = normalize_text(details)
    history.append(entry)
    return True


def apply_save_rules(order_document: Dict, details: Optional[str] = None, now=None) -> Optional[float]:
    """Bring derived fields in line before the order is written.

    Returns the previously stored total when it had to be corrected.
    """
    now = now or datetime.utcnow()
    order_document["updated_at"] = now
    order_document.setdefault("created_at", now)
    order_document["status"] = normalize_status(order_document.get("status")) or DEFAULT_STATUS
    order_document["shipping"] = round_amount(order_document.get("shipping"))

    append_status_history(order_document, details=details, timestamp=now)

    amounts = calculate_order_amounts(
        order_document.get("items") or [], order_document["shipping"]
    )
    stored_total = order_document.get("total")
    corrected_from = None
    if stored_total is None or safe_float(stored_total, None) != amounts["total"]:
        corrected_from = stored_total
        order_document["total"] = amounts["total"]

    order_document["online_amount"] = amounts["online_amount"]
    order_document["cod_amount"] = amounts["cod_amount"]
    return corrected_from


def _require(condition, message: str, field: str = ""):
    if not condition:
        raise ValidationError(message, field)


def validate_order_item(item: Dict, position: int) -> None:
    label = f"Item {position + 1}"
    _require(isinstance(item, dict), f"{label} is malformed.", "items")
    _require(parse_object_id(item.get("product_id")) is not None, f"{label} needs a product.", "items")
    _require(normalize_text(item.get("name")), f"{label} needs a name.", "items")
    _require(safe_float(item.get("price"), -1) >= 0, f"{label} price cannot be negative.", "items")
    _require(safe_positive_int(item.get("quantity"), 0) >= 1, f"{label} quantity must be at least 1.", "items")
    _require(normalize_text(item.get("size")), f"{label} needs a size.", "items")
    _require(normalize_text(item.get("color")), f"{label} needs a color.", "items")
    for field in ("online_amount", "cod_amount", "weight", "return_period"):
        if item.get(field) is not None:
            _require(safe_float(item.get(field), -1) >= 0, f"{label} {field} cannot be negative.", "items")


def validate_order(order_document: Dict) -> None:
    _require(normalize_text(order_document.get("order_id")), "Order id is required.", "order_id")
    _require(parse_object_id(order_document.get("user_id")) is not None, "Order user is required.", "user_id")
    _require(parse_object_id(order_document.get("seller_id")) is not None, "Order seller is required.", "seller_id")

    customer = order_document.get("customer") or {}
    _require(normalize_text(customer.get("name")), "Customer name is required.", "customer.name")
    _require(normalize_text(customer.get("phone_number")), "Customer phone number is required.", "customer.phone_number")
    _require(normalize_text(customer.get("address")), "Customer address is required.", "customer.address")
    if customer.get("email"):
        _require(is_valid_email(customer.get("email")), "Please enter a valid email address", "customer.email")

    for position, item in enumerate(order_document.get("items") or []):
        validate_order_item(item, position)

    for field in ("total", "online_amount", "cod_amount", "shipping"):
        _require(safe_float(order_document.get(field), -1) >= 0, f"{field} cannot be negative.", field)

    _require(order_document.get("payment_method") in PAYMENT_METHODS, "Unsupported payment method.", "payment_method")
    _require(order_document.get("payment_status") in PAYMENT_STATUSES, "Unsupported payment status.", "payment_status")
    _require(order_document.get("status") in ORDER_STATUSES, "Unsupported order status.", "status")


def generate_order_id() -> str:
    return f"ORD-{uuid4().hex[:12].upper()}"


def build_order_item(product_document: Dict, cart_entry: Dict, payment_method: str) -> Dict:
    quantity = safe_positive_int(cart_entry.get("quantity"), 1) or 1
    price = round_amount(product_document.get("price"))
    online_amount, cod_amount = split_line_amount(
        price * quantity,
        payment_method,
        product_document.get("online_payment_percentage", 100),
    )
    images = product_document.get("images") or []
    item = {
        "product_id": product_document["_id"],
        "name": product_document.get("name", ""),
        "price": price,
        "quantity": quantity,
        "size": normalize_text(cart_entry.get("size")),
        "color": normalize_text(cart_entry.get("color")),
        "image": images[0] if images else "",
        "is_returnable": bool(product_document.get("is_returnable")),
        "return_period": safe_positive_int(product_document.get("return_period"), 0),
        "online_amount": online_amount,
        "cod_amount": cod_amount,
    }
    for field in ITEM_ATTRIBUTE_FIELDS:
        if product_document.get(field) not in (None, "", {}):
            item[field] = product_document[field]
    return item


def build_order(user_document: Dict, seller_id, items: List[Dict], payment_method: str, customer: Dict, shipping=0) -> Dict:
    return {
        "order_id": generate_order_id(),
        "user_id": user_document["_id"],
        "seller_id": parse_object_id(seller_id),
        "customer": {
            "name": normalize_text(customer.get("name")),
            "email": normalize_email(customer.get("email")) or None,
            "phone_number": normalize_text(customer.get("phone_number")),
            "address": normalize_text(customer.get("address")),
        },
        "items": items,
        "shipping": round_amount(shipping),
        "payment_method": payment_method,
        "payment_status": "pending",
        "status": DEFAULT_STATUS,
        "status_history": [],
    }


def save_order(db, order_document: Dict, details: Optional[str] = None) -> Dict:
    """Apply the save rules, validate and write the whole order document."""
    corrected_from = apply_save_rules(order_document, details=details)
    if corrected_from is not None:
        logger.warning(
            "Order %s total corrected from %s to %s",
            order_document.get("order_id"),
            corrected_from,
            order_document["total"],
        )
    validate_order(order_document)

    if order_document.get("_id") is None:
        result = db.orders.insert_one(order_document)
        order_document["_id"] = result.inserted_id
    else:
        db.orders.replace_one({"_id": order_document["_id"]}, order_document)
    return order_document


def find_order(db, identifier: str, extra_filter: Optional[Dict] = None) -> Optional[Dict]:
    base_filter = dict(extra_filter or {})
    order_document = db.orders.find_one({**base_filter, "order_id": identifier})
    if order_document:
        return order_document
    object_id = parse_object_id(identifier)
    if object_id is None:
        return None
    return db.orders.find_one({**base_filter, "_id": object_id})


def status_reached_at(order_document: Dict, status: str) -> Optional[datetime]:
    for entry in reversed(order_document.get("status_history") or []):
        if entry.get("status") == status and isinstance(entry.get("timestamp"), datetime):
            return entry["timestamp"]
    return None


def can_cancel(order_document: Dict) -> bool:
    return order_document.get("status") in CANCELLABLE_STATUSES


def return_deadline(order_document: Dict) -> Optional[datetime]:
    if order_document.get("status") != "delivered":
        return None
    items = order_document.get("items") or []
    if not items or not all(item.get("is_returnable") for item in items):
        return None
    delivered_at = status_reached_at(order_document, "delivered")
    if delivered_at is None:
        return None
    shortest_period = min(safe_positive_int(item.get("return_period"), 0) for item in items)
    return delivered_at + timedelta(days=shortest_period)


def can_return(order_document: Dict, now=None) -> bool:
    deadline = return_deadline(order_document)
    if deadline is None:
        return False
    return (now or datetime.utcnow()) <= deadline


def serialize_order(order_document: Dict) -> Dict:
    if not order_document:
        return {}
    serialized = serialize_document(order_document)
    serialized["calculated_total"] = calculated_total(order_document)
    serialized["next_status"] = next_order_status(order_document.get("status"))
    return serialized
