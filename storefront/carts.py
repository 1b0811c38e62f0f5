"""Wishlist, cart and saved-for-later reconciliation on a user document.

Every function here mutates the user document in place and leaves persistence
to ``accounts.save_user`` so a request performs a single write.
"""
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .errors import ValidationError
from .helpers import first_present, normalize_text, parse_object_id, safe_positive_int, same_object_id

CART_FIELD = "cart"
SAVED_FOR_LATER_FIELD = "saved_for_later"
WISHLIST_FIELD = "wishlist"


def normalize_list_item(payload: Optional[Dict], label: str = "cart") -> Dict:
    payload = payload or {}
    raw_product_id = first_present(payload, "product_id", "productId")
    quantity = safe_positive_int(first_present(payload, "quantity"), 0)
    size = normalize_text(first_present(payload, "size"))
    color = normalize_text(first_present(payload, "color"))

    if not raw_product_id or not quantity or not size or not color:
        raise ValidationError(
            f"Missing required {label} fields: productId, quantity, size, or color"
        )

    product_id = parse_object_id(raw_product_id)
    if product_id is None:
        raise ValidationError("Invalid product identifier.", "product_id")

    return {"product_id": product_id, "quantity": quantity, "size": size, "color": color}


def entry_key(entry: Dict) -> Tuple[str, str, str]:
    return (
        str(entry.get("product_id")),
        normalize_text(entry.get("size")),
        normalize_text(entry.get("color")),
    )


def entry_matches(entry: Dict, product_id, size: Optional[str], color: Optional[str]) -> bool:
    if not same_object_id(entry.get("product_id"), product_id):
        return False
    if size is not None and normalize_text(entry.get("size")) != normalize_text(size):
        return False
    if color is not None and normalize_text(entry.get("color")) != normalize_text(color):
        return False
    return True


def _upsert_entry(entries: List[Dict], item: Dict) -> Dict:
    for entry in entries:
        if entry_key(entry) == entry_key(item):
            # Overwrite, never accumulate.
            entry["quantity"] = item["quantity"]
            return entry

    entry = {**item, "added_at": datetime.utcnow()}
    entries.append(entry)
    return entry


def _remove_entries(entries: List[Dict], product_id, size, color) -> Tuple[List[Dict], List[Dict]]:
    kept: List[Dict] = []
    removed: List[Dict] = []
    for entry in entries:
        if entry_matches(entry, product_id, size, color):
            removed.append(entry)
        else:
            kept.append(entry)
    return kept, removed


def toggle_wishlist(user_document: Dict, product_id) -> bool:
    """Add the product to the wishlist, or remove it when already present.

    Returns ``True`` when the product is in the wishlist afterwards.
    """
    object_id = parse_object_id(product_id)
    if object_id is None:
        raise ValidationError("Invalid product identifier.", "product_id")

    wishlist = user_document.setdefault(WISHLIST_FIELD, [])
    for index, entry in enumerate(wishlist):
        if same_object_id(entry.get("product_id"), object_id):
            del wishlist[index]
            return False

    wishlist.append({"product_id": object_id, "added_at": datetime.utcnow()})
    return True


def update_cart(user_document: Dict, payload: Dict) -> Dict:
    item = normalize_list_item(payload, "cart")
    return _upsert_entry(user_document.setdefault(CART_FIELD, []), item)


def update_saved_for_later(user_document: Dict, payload: Dict) -> Dict:
    item = normalize_list_item(payload, "saved for later")
    return _upsert_entry(user_document.setdefault(SAVED_FOR_LATER_FIELD, []), item)


def remove_from_cart(user_document: Dict, product_id, size=None, color=None) -> List[Dict]:
    kept, removed = _remove_entries(
        user_document.get(CART_FIELD) or [], product_id, size, color
    )
    user_document[CART_FIELD] = kept
    return removed


def remove_from_saved_for_later(user_document: Dict, product_id, size=None, color=None) -> List[Dict]:
    kept, removed = _remove_entries(
        user_document.get(SAVED_FOR_LATER_FIELD) or [], product_id, size, color
    )
    user_document[SAVED_FOR_LATER_FIELD] = kept
    return removed


def clear_cart(user_document: Dict) -> None:
    user_document[CART_FIELD] = []


def _move_entries(user_document: Dict, source: str, target: str, product_id, size, color) -> List[Dict]:
    kept, moved = _remove_entries(
        user_document.get(source) or [], product_id, size, color
    )
    user_document[source] = kept
    target_entries = user_document.setdefault(target, [])
    for entry in moved:
        _upsert_entry(
            target_entries,
            {
                "product_id": entry.get("product_id"),
                "quantity": safe_positive_int(entry.get("quantity"), 1) or 1,
                "size": normalize_text(entry.get("size")),
                "color": normalize_text(entry.get("color")),
            },
        )
    return moved


def move_to_cart(user_document: Dict, product_id, size=None, color=None) -> List[Dict]:
    return _move_entries(
        user_document, SAVED_FOR_LATER_FIELD, CART_FIELD, product_id, size, color
    )


def move_to_saved_for_later(user_document: Dict, product_id, size=None, color=None) -> List[Dict]:
    return _move_entries(
        user_document, CART_FIELD, SAVED_FOR_LATER_FIELD, product_id, size, color
    )


def is_wishlisted(user_document: Dict, product_id) -> bool:
    return any(
        same_object_id(entry.get("product_id"), product_id)
        for entry in user_document.get(WISHLIST_FIELD) or []
    )
