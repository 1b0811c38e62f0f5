import logging
from datetime import datetime
from typing import Dict, List, Optional

import bcrypt

from .errors import ValidationError
from .helpers import (
    first_present,
    is_valid_email,
    is_valid_phone,
    normalize_email,
    normalize_phone,
    normalize_text,
    parse_bool,
    parse_json_list,
    parse_json_object,
    safe_positive_int,
    serialize_document,
)

logger = logging.getLogger(__name__)

ROLE_USER = "user"
ROLE_SELLER = "seller"
ROLE_ADMIN = "admin"
USER_ROLES = (ROLE_USER, ROLE_SELLER, ROLE_ADMIN)
USER_STATUSES = ("approved", "suspended")
SELLER_STATUSES = ("pending", "enabled", "disabled")
BIO_MAX_LENGTH = 500
DEFAULT_COUNTRY = "India"

ADDRESS_REQUIRED_FIELDS = ("street", "city", "state", "postal_code")
ADDRESS_FIELD_ALIASES = {
    "street": ("street", "line1"),
    "city": ("city",),
    "state": ("state",),
    "postal_code": ("postal_code", "postalCode", "postcode"),
    "country": ("country",),
}
BANK_ACCOUNT_FIELD_ALIASES = {
    "account_number": ("account_number", "accountNumber"),
    "ifsc_code": ("ifsc_code", "ifscCode"),
    "account_holder_name": ("account_holder_name", "accountHolderName"),
}


def hash_password(password: str) -> bytes:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())


def check_password(password: str, stored_hash) -> bool:
    if not password or not stored_hash:
        return False
    if isinstance(stored_hash, str):
        stored_hash = stored_hash.encode("utf-8")
    try:
        return bcrypt.checkpw(password.encode("utf-8"), stored_hash)
    except ValueError:
        return False


def normalize_address(payload: Optional[Dict]) -> Dict[str, str]:
    normalized: Dict[str, str] = {}
    for field, aliases in ADDRESS_FIELD_ALIASES.items():
        value = normalize_text(first_present(payload, *aliases))
        if value:
            normalized[field] = value
    normalized.setdefault("country", DEFAULT_COUNTRY)
    return normalized


def normalize_bank_account(payload) -> Dict[str, str]:
    payload = parse_json_object(payload)
    normalized: Dict[str, str] = {}
    for field, aliases in BANK_ACCOUNT_FIELD_ALIASES.items():
        value = normalize_text(first_present(payload, *aliases))
        if value:
            normalized[field] = value
    return normalized


def normalize_payment_details(payload) -> Dict:
    payload = parse_json_object(payload)
    details: Dict = {}
    bank_account = normalize_bank_account(first_present(payload, "bank_account", "bankAccount"))
    if bank_account:
        details["bank_account"] = bank_account
    upi_id = normalize_text(first_present(payload, "upi_id", "upiId"))
    if upi_id:
        details["upi_id"] = upi_id
    razorpay_account_id = normalize_text(
        first_present(payload, "razorpay_account_id", "razorpayAccountId")
    )
    if razorpay_account_id:
        details["razorpay_account_id"] = razorpay_account_id
    return details


def _validate_contact(document: Dict) -> None:
    if not is_valid_phone(document.get("phone_number")):
        raise ValidationError("Please provide a valid phone number", "phone_number")
    if document.get("email") and not is_valid_email(document.get("email")):
        raise ValidationError("Please provide a valid email", "email")


def _validate_list_entries(entries: List[Dict], label: str) -> None:
    for entry in entries or []:
        if not entry.get("product_id"):
            raise ValidationError(f"Every {label} entry needs a product.", label)
        if safe_positive_int(entry.get("quantity"), 0) < 1:
            raise ValidationError(f"{label.capitalize()} quantity must be at least 1.", label)
        if not normalize_text(entry.get("size")) or not normalize_text(entry.get("color")):
            raise ValidationError(f"Every {label} entry needs a size and color.", label)


def validate_user(user_document: Dict) -> None:
    _validate_contact(user_document)
    if user_document.get("role") not in USER_ROLES:
        raise ValidationError("Role must be 'user', 'seller', or 'admin'.", "role")
    if user_document.get("status", "approved") not in USER_STATUSES:
        raise ValidationError("Status must be 'approved' or 'suspended'.", "status")
    if len(user_document.get("bio") or "") > BIO_MAX_LENGTH:
        raise ValidationError("Bio cannot exceed 500 characters", "bio")
    for address in user_document.get("addresses") or []:
        missing = [field for field in ADDRESS_REQUIRED_FIELDS if not address.get(field)]
        if missing:
            raise ValidationError(
                f"Address is missing: {', '.join(missing)}.", "addresses"
            )
    _validate_list_entries(user_document.get("cart"), "cart")
    _validate_list_entries(user_document.get("saved_for_later"), "saved for later")


def validate_seller(seller_document: Dict) -> None:
    _validate_contact(seller_document)
    if not normalize_text(seller_document.get("name")):
        raise ValidationError("Seller name is required.", "name")
    if seller_document.get("status") not in SELLER_STATUSES:
        raise ValidationError("Status must be 'pending', 'enabled', or 'disabled'.", "status")


def build_user_document(payload: Dict) -> Dict:
    password = str(first_present(payload, "password") or "")
    if not password:
        raise ValidationError("Phone number and password are required", "password")

    now = datetime.utcnow()
    user_document = {
        "phone_number": normalize_phone(first_present(payload, "phone_number", "phoneNumber")),
        "first_name": normalize_text(first_present(payload, "first_name", "firstName")),
        "last_name": normalize_text(first_present(payload, "last_name", "lastName")),
        "role": ROLE_USER,
        "status": "approved",
        "password": hash_password(password),
        "recent_searches": [],
        "addresses": [],
        "wishlist": [],
        "cart": [],
        "saved_for_later": [],
        "preferences": {"notifications": True, "preferred_categories": []},
        "payment_details": {},
        "last_login_at": None,
        "created_at": now,
        "updated_at": now,
    }
    email = normalize_email(first_present(payload, "email"))
    if email:
        user_document["email"] = email
    validate_user(user_document)
    return user_document


def apply_user_profile_update(user_document: Dict, payload: Dict) -> Dict:
    for field, aliases in (
        ("first_name", ("first_name", "firstName")),
        ("last_name", ("last_name", "lastName")),
        ("bio", ("bio",)),
    ):
        value = first_present(payload, *aliases)
        if value is not None:
            user_document[field] = normalize_text(value)

    if "email" in payload:
        email = normalize_email(payload.get("email"))
        if email:
            user_document["email"] = email
        else:
            user_document.pop("email", None)

    date_of_birth = first_present(payload, "date_of_birth", "dateOfBirth")
    if date_of_birth is not None:
        user_document["date_of_birth"] = _parse_date(date_of_birth)

    addresses = first_present(payload, "addresses")
    if isinstance(addresses, list):
        user_document["addresses"] = [normalize_address(address) for address in addresses]

    preferences = first_present(payload, "preferences")
    if isinstance(preferences, dict):
        current = user_document.setdefault("preferences", {})
        if "notifications" in preferences:
            current["notifications"] = parse_bool(preferences.get("notifications"), True)
        categories = first_present(preferences, "preferred_categories", "preferredCategories")
        if categories is not None:
            current["preferred_categories"] = parse_json_list(categories)

    payment_details = first_present(payload, "payment_details", "paymentDetails")
    if payment_details is not None:
        user_document["payment_details"] = normalize_payment_details(payment_details)

    validate_user(user_document)
    return user_document


def record_search(user_document: Dict, term: str, limit: int = 10) -> None:
    normalized = normalize_text(term)
    if not normalized:
        return
    searches = [entry for entry in user_document.get("recent_searches") or [] if entry != normalized]
    user_document["recent_searches"] = ([normalized] + searches)[:limit]


def _parse_date(value) -> Optional[datetime]:
    if isinstance(value, datetime) or value in (None, ""):
        return value or None
    candidate = str(value).strip().replace("Z", "+00:00")
    try:
        return datetime.fromisoformat(candidate)
    except ValueError:
        raise ValidationError("Date of birth must be an ISO date.", "date_of_birth")


def save_user(db, user_document: Dict) -> Dict:
    """Validate and write the whole user document in a single replace."""
    user_document["updated_at"] = datetime.utcnow()
    validate_user(user_document)
    logger.debug(
        "Saving user %s: %d cart, %d saved for later",
        user_document.get("_id"),
        len(user_document.get("cart") or []),
        len(user_document.get("saved_for_later") or []),
    )
    db.users.replace_one({"_id": user_document["_id"]}, user_document)
    return user_document


SELLER_TEXT_FIELDS = {
    "name": ("name",),
    "shop_name": ("shop_name", "shopName"),
    "address": ("address",),
    "payment_id": ("payment_id", "paymentId"),
    "aadhar_id": ("aadhar_id", "aadharId"),
    "upi_id": ("upi_id", "upiId"),
    "razorpay_account_id": ("razorpay_account_id", "razorpayAccountId"),
}


def build_seller_document(payload: Dict) -> Dict:
    password = str(first_present(payload, "password") or "")
    if not password:
        raise ValidationError("Phone number and password are required", "password")

    now = datetime.utcnow()
    seller_document = {
        "phone_number": normalize_phone(first_present(payload, "phone_number", "phoneNumber")),
        "password": hash_password(password),
        "status": "pending",
        "bank_account": normalize_bank_account(first_present(payload, "bank_account", "bankAccount")),
        "created_at": now,
        "updated_at": now,
    }
    for field, aliases in SELLER_TEXT_FIELDS.items():
        seller_document[field] = normalize_text(first_present(payload, *aliases))
    email = normalize_email(first_present(payload, "email"))
    if email:
        seller_document["email"] = email
    validate_seller(seller_document)
    return seller_document


def apply_seller_profile_update(seller_document: Dict, payload: Dict) -> Dict:
    for field, aliases in SELLER_TEXT_FIELDS.items():
        value = first_present(payload, *aliases)
        if value is not None:
            seller_document[field] = normalize_text(value)

    phone_number = first_present(payload, "phone_number", "phoneNumber")
    if phone_number is not None:
        seller_document["phone_number"] = normalize_phone(phone_number)

    if "email" in payload:
        email = normalize_email(payload.get("email"))
        if email:
            seller_document["email"] = email
        else:
            seller_document.pop("email", None)

    bank_account = first_present(payload, "bank_account", "bankAccount")
    if bank_account is not None:
        seller_document["bank_account"] = normalize_bank_account(bank_account)

    seller_document["updated_at"] = datetime.utcnow()
    validate_seller(seller_document)
    return seller_document


def build_admin_document(payload: Dict) -> Dict:
    phone_number = normalize_phone(first_present(payload, "phone_number", "phoneNumber"))
    password = str(first_present(payload, "password") or "")
    if not phone_number or not password:
        raise ValidationError("Phone number and password are required")

    admin_document = {
        "phone_number": phone_number,
        "name": normalize_text(first_present(payload, "name")),
        "password": hash_password(password),
        "created_at": datetime.utcnow(),
    }
    email = normalize_email(first_present(payload, "email"))
    if email:
        admin_document["email"] = email
    _validate_contact(admin_document)
    return admin_document


def serialize_account(document: Optional[Dict]) -> Dict:
    return serialize_document(document, exclude=("password",))


def serialize_principal(document: Dict, role: str) -> Dict:
    return {
        "id": str(document.get("_id")),
        "phone_number": document.get("phone_number", ""),
        "role": role,
    }
