import json
import math
import re
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId

email_regex = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
phone_regex = re.compile(r"^\+?[1-9]\d{1,14}$")


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def is_valid_email(value: Optional[str]) -> bool:
    normalized = normalize_email(value)
    return bool(normalized and email_regex.match(normalized))


def normalize_phone(value: Optional[str]) -> str:
    return re.sub(r"[\s\-()]", "", str(value or "").strip())


def is_valid_phone(value: Optional[str]) -> bool:
    normalized = normalize_phone(value)
    return bool(normalized and phone_regex.match(normalized))


def normalize_text(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def safe_float(value, default=0.0):
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return default
    if math.isfinite(numeric):
        return numeric
    return default


def safe_positive_int(value, default=0):
    try:
        numeric = int(float(value))
    except (TypeError, ValueError):
        return default
    return max(default, numeric)


def parse_bool(value, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    normalized = str(value).strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def first_present(payload: Optional[Dict], *aliases: str):
    if not isinstance(payload, dict):
        return None
    for alias in aliases:
        if alias in payload and payload.get(alias) is not None:
            return payload.get(alias)
    return None


def parse_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value).strip())
    except (InvalidId, TypeError):
        return None


def same_object_id(left, right) -> bool:
    if left is None or right is None:
        return False
    return str(left) == str(right)


def parse_json_list(value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return [str(item).strip() for item in value if str(item).strip()]

    candidate = str(value).strip()
    if not candidate:
        return []
    if candidate.startswith("["):
        try:
            parsed = json.loads(candidate)
        except (json.JSONDecodeError, ValueError):
            parsed = None
        if isinstance(parsed, list):
            return [str(item).strip() for item in parsed if str(item).strip()]
    return [part.strip() for part in candidate.split(",") if part.strip()]


def parse_json_object(value) -> Dict:
    if isinstance(value, dict):
        return value
    if not value:
        return {}
    try:
        parsed = json.loads(str(value))
    except (json.JSONDecodeError, ValueError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


def isoformat(value) -> Optional[str]:
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is not None:
        return value.isoformat()
    return f"{value.isoformat()}Z"


def serialize_value(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return isoformat(value)
    if isinstance(value, dict):
        return {key: serialize_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_value(item) for item in value]
    return value


def serialize_document(document, exclude: Iterable[str] = ("password",)) -> Dict:
    if not document:
        return {}
    excluded = set(exclude)
    serialized = {
        key: serialize_value(value)
        for key, value in document.items()
        if key not in excluded and key != "_id"
    }
    if document.get("_id") is not None:
        serialized["id"] = str(document["_id"])
    return serialized
