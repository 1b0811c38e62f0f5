from typing import Dict, Optional

from flask import jsonify
from flask_jwt_extended import create_access_token, get_jwt, get_jwt_identity

from .accounts import ROLE_ADMIN, ROLE_SELLER, ROLE_USER, check_password
from .helpers import normalize_phone, parse_object_id

ROLE_COLLECTIONS = {
    ROLE_ADMIN: "admins",
    ROLE_SELLER: "sellers",
    ROLE_USER: "users",
}
BLOCKED_STATUSES = {
    ROLE_SELLER: ("disabled",),
    ROLE_USER: ("suspended",),
}


def issue_token(role: str, document: Dict) -> str:
    return create_access_token(
        identity=str(document["_id"]),
        additional_claims={
            "role": role,
            "phone_number": document.get("phone_number", ""),
        },
    )


def is_blocked(role: str, document: Optional[Dict]) -> bool:
    if not document:
        return False
    return document.get("status") in BLOCKED_STATUSES.get(role, ())


def authenticate(db, role: str, payload: Dict):
    phone_number = normalize_phone(payload.get("phone_number") or payload.get("phoneNumber"))
    password = str(payload.get("password") or "")
    if not phone_number or not password:
        return None, (jsonify({"message": "Phone number and password are required"}), 400)

    collection = db[ROLE_COLLECTIONS[role]]
    document = collection.find_one({"phone_number": phone_number})
    if not document or not check_password(password, document.get("password")):
        return None, (jsonify({"message": "Invalid credentials"}), 401)

    if is_blocked(role, document):
        return None, (
            jsonify({"message": f"This {role} account is {document.get('status')}."}),
            403,
        )

    return document, None


def require_role(db, role: str):
    """Load the account behind the current token, checking its role claim."""
    claims = get_jwt()
    if claims.get("role") != role:
        return None, (
            jsonify({"message": "You need additional permissions to perform this action."}),
            403,
        )

    object_id = parse_object_id(get_jwt_identity())
    document = (
        db[ROLE_COLLECTIONS[role]].find_one({"_id": object_id}) if object_id else None
    )
    if not document:
        return None, (jsonify({"message": f"{role.capitalize()} not found"}), 401)

    if is_blocked(role, document):
        return None, (
            jsonify({"message": f"This {role} account is {document.get('status')}."}),
            403,
        )

    return document, None
