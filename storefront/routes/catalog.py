from datetime import datetime

from flask import jsonify, request
from flask_jwt_extended import jwt_required

from ..accounts import ROLE_ADMIN
from ..auth import require_role
from ..catalog import build_category_document, category_search_filter, normalize_category_name
from ..helpers import first_present, normalize_text, parse_json_list, parse_object_id, serialize_document
from ..uploads import CATEGORY_ICON_MAX_BYTES, remove_image, save_image, upload_url
from .common import load_document, request_payload, uploaded_files


def register_catalog_routes(app, db):
    def save_icon():
        icon_files = uploaded_files("icon")
        if not icon_files:
            return None, None
        filename, image_error = save_image(icon_files[0], CATEGORY_ICON_MAX_BYTES)
        if image_error:
            return None, (jsonify({"message": image_error}), 400)
        return upload_url(filename), None

    @app.route("/api/categories", methods=["GET"])
    def list_categories():
        categories = [serialize_document(category) for category in db.categories.find().sort("name", 1)]
        return jsonify({"categories": categories})

    @app.route("/api/categories/search", methods=["GET"])
    def search_categories():
        term = normalize_text(request.args.get("name"))
        if not term:
            return jsonify({"categories": []})
        cursor = db.categories.find(category_search_filter(term)).sort("name", 1)
        return jsonify({"categories": [serialize_document(category) for category in cursor]})

    @app.route("/api/categories", methods=["POST"])
    @jwt_required()
    def create_category():
        _, admin_error = require_role(db, ROLE_ADMIN)
        if admin_error:
            return admin_error

        payload = request_payload()
        icon, icon_error = save_icon()
        if icon_error:
            return icon_error
        if not icon:
            return jsonify({"message": "Category icon is required"}), 400

        try:
            category_document = build_category_document(payload, icon)
        except ValueError:
            remove_image(icon)
            raise
        if db.categories.find_one({"name": category_document["name"]}):
            remove_image(icon)
            return jsonify({"message": "That category already exists."}), 400

        result = db.categories.insert_one(category_document)
        category_document["_id"] = result.inserted_id
        app.logger.info("Created category %s", category_document["name"])

        return jsonify({"message": "Category created successfully.", "category": serialize_document(category_document)}), 201

    @app.route("/api/categories/<category_id>", methods=["PUT"])
    @jwt_required()
    def update_category(category_id: str):
        _, admin_error = require_role(db, ROLE_ADMIN)
        if admin_error:
            return admin_error

        category_document, load_error = load_document(db.categories, category_id, "Category")
        if load_error:
            return load_error

        payload = request_payload()
        name = first_present(payload, "name")
        if name is not None:
            normalized_name = normalize_category_name(name)
            if not normalized_name:
                return jsonify({"message": "Category name is required."}), 400
            duplicate = db.categories.find_one(
                {"name": normalized_name, "_id": {"$ne": category_document["_id"]}}
            )
            if duplicate:
                return jsonify({"message": "That category already exists."}), 400
            category_document["name"] = normalized_name
        if first_present(payload, "description") is not None:
            category_document["description"] = normalize_text(payload.get("description"))

        icon, icon_error = save_icon()
        if icon_error:
            return icon_error
        previous_icon = category_document.get("icon")
        if icon:
            category_document["icon"] = icon

        category_document["updated_at"] = datetime.utcnow()
        db.categories.replace_one({"_id": category_document["_id"]}, category_document)
        if icon:
            remove_image(previous_icon)

        return jsonify({"message": "Category updated successfully.", "category": serialize_document(category_document)})

    @app.route("/api/categories/bulk", methods=["DELETE"])
    @jwt_required()
    def bulk_delete_categories():
        _, admin_error = require_role(db, ROLE_ADMIN)
        if admin_error:
            return admin_error

        payload = request.get_json(silent=True) or {}
        raw_ids = parse_json_list(first_present(payload, "category_ids", "categoryIds"))
        object_ids = [parse_object_id(value) for value in raw_ids]
        if not object_ids or any(object_id is None for object_id in object_ids):
            return jsonify({"message": "Please select valid categories to delete."}), 400

        documents = list(db.categories.find({"_id": {"$in": object_ids}}))
        result = db.categories.delete_many({"_id": {"$in": object_ids}})
        remove_image([document.get("icon") for document in documents])

        return jsonify(
            {
                "message": f"Removed {result.deleted_count} categories.",
                "deleted": result.deleted_count,
            }
        )

    @app.route("/api/categories/<category_id>", methods=["DELETE"])
    @jwt_required()
    def delete_category(category_id: str):
        _, admin_error = require_role(db, ROLE_ADMIN)
        if admin_error:
            return admin_error

        category_document, load_error = load_document(db.categories, category_id, "Category")
        if load_error:
            return load_error

        db.categories.delete_one({"_id": category_document["_id"]})
        remove_image(category_document.get("icon"))

        return jsonify(
            {
                "message": f'"{category_document.get("name", "Category")}" has been removed from the catalog.',
                "category": {"id": category_id},
            }
        )
