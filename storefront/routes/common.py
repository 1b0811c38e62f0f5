from typing import Dict

from flask import jsonify, request

from ..helpers import parse_object_id


def request_payload() -> Dict:
    payload = request.form.to_dict() if request.form else {}
    if not payload:
        payload = request.get_json(silent=True) or {}
    return payload if isinstance(payload, dict) else {}


def load_document(collection, identifier: str, label: str, extra_filter=None):
    object_id = parse_object_id(identifier)
    if object_id is None:
        return None, (jsonify({"message": f"Invalid {label.lower()} identifier."}), 400)

    document = collection.find_one({**(extra_filter or {}), "_id": object_id})
    if not document:
        return None, (jsonify({"message": f"{label} not found"}), 404)

    return document, None


def uploaded_files(*field_names: str):
    files = []
    if not request.files:
        return files
    for field_name in field_names:
        files.extend(request.files.getlist(field_name))
    return files
