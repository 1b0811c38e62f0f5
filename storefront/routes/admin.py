from typing import Dict

from flask import jsonify, request
from flask_jwt_extended import get_jwt, jwt_required, verify_jwt_in_request

from ..accounts import (
    ROLE_ADMIN,
    SELLER_STATUSES,
    USER_ROLES,
    USER_STATUSES,
    apply_seller_profile_update,
    apply_user_profile_update,
    build_admin_document,
    save_user,
    serialize_account,
    serialize_principal,
)
from ..auth import authenticate, issue_token, require_role
from ..catalog import MODERATION_STATUSES, apply_product_fields, serialize_product
from ..errors import ValidationError
from ..orders import serialize_order
from ..uploads import remove_image
from .common import load_document

PREFIX = "/api/admin/auth"


def seller_name_map(db, seller_ids) -> Dict[str, str]:
    names: Dict[str, str] = {}
    unique_ids = list({seller_id for seller_id in seller_ids if seller_id})
    if not unique_ids:
        return names
    for seller in db.sellers.find({"_id": {"$in": unique_ids}}, {"name": 1, "shop_name": 1}):
        names[str(seller["_id"])] = seller.get("shop_name") or seller.get("name") or ""
    return names


def register_admin_routes(app, db):
    @app.route(f"{PREFIX}/admin/create", methods=["POST"])
    def create_admin():
        # The first admin bootstraps the console; later ones need an admin token.
        if db.admins.count_documents({}) > 0:
            verify_jwt_in_request(optional=True)
            if get_jwt().get("role") != ROLE_ADMIN:
                return (
                    jsonify({"message": "You need additional permissions to perform this action."}),
                    403,
                )

        payload = request.get_json(silent=True) or {}
        admin_document = build_admin_document(payload)
        if db.admins.find_one({"phone_number": admin_document["phone_number"]}):
            return jsonify({"message": "Admin already exists"}), 400

        result = db.admins.insert_one(admin_document)
        admin_document["_id"] = result.inserted_id
        app.logger.info("Created admin %s", result.inserted_id)

        return (
            jsonify(
                {
                    "message": "Admin created successfully",
                    "admin": serialize_account(admin_document),
                }
            ),
            201,
        )

    @app.route(f"{PREFIX}/login", methods=["POST"])
    def admin_login():
        payload = request.get_json(silent=True) or {}
        admin_document, login_error = authenticate(db, ROLE_ADMIN, payload)
        if login_error:
            return login_error

        return jsonify(
            {
                "message": "Logged in successfully",
                "admin": serialize_principal(admin_document, ROLE_ADMIN),
                "token": issue_token(ROLE_ADMIN, admin_document),
            }
        )

    @app.route(f"{PREFIX}/verify-token", methods=["GET"])
    @jwt_required()
    def admin_verify_token():
        admin_document, admin_error = require_role(db, ROLE_ADMIN)
        if admin_error:
            return admin_error

        return jsonify(
            {
                "message": "Token is valid",
                "admin": serialize_principal(admin_document, ROLE_ADMIN),
            }
        )

    # Sellers

    @app.route(f"{PREFIX}/sellers", methods=["GET"])
    @jwt_required()
    def admin_list_sellers():
        _, admin_error = require_role(db, ROLE_ADMIN)
        if admin_error:
            return admin_error

        sellers = [serialize_account(seller) for seller in db.sellers.find().sort("created_at", -1)]
        return jsonify({"sellers": sellers})

    @app.route(f"{PREFIX}/sellers/<seller_id>", methods=["PUT"])
    @jwt_required()
    def admin_update_seller(seller_id: str):
        _, admin_error = require_role(db, ROLE_ADMIN)
        if admin_error:
            return admin_error

        seller_document, load_error = load_document(db.sellers, seller_id, "Seller")
        if load_error:
            return load_error

        payload = request.get_json(silent=True) or {}
        if "status" in payload:
            status = str(payload.get("status") or "").strip().lower()
            if status not in SELLER_STATUSES:
                raise ValidationError("Status must be 'pending', 'enabled', or 'disabled'.", "status")
            seller_document["status"] = status

        apply_seller_profile_update(seller_document, payload)
        db.sellers.replace_one({"_id": seller_document["_id"]}, seller_document)
        app.logger.info("Admin updated seller %s (status=%s)", seller_id, seller_document["status"])

        return jsonify({"seller": serialize_account(seller_document)})

    @app.route(f"{PREFIX}/sellers/<seller_id>", methods=["DELETE"])
    @jwt_required()
    def admin_delete_seller(seller_id: str):
        _, admin_error = require_role(db, ROLE_ADMIN)
        if admin_error:
            return admin_error

        seller_document, load_error = load_document(db.sellers, seller_id, "Seller")
        if load_error:
            return load_error

        db.sellers.delete_one({"_id": seller_document["_id"]})
        remove_image(seller_document.get("profile_picture"))
        return jsonify({"message": "Seller deleted successfully"})

    # Products

    @app.route(f"{PREFIX}/products", methods=["GET"])
    @jwt_required()
    def admin_list_products():
        _, admin_error = require_role(db, ROLE_ADMIN)
        if admin_error:
            return admin_error

        product_documents = list(db.products.find().sort("created_at", -1))
        names = seller_name_map(db, [product.get("seller_id") for product in product_documents])
        products = [serialize_product(product, seller_names=names) for product in product_documents]
        return jsonify({"products": products})

    @app.route(f"{PREFIX}/products/<product_id>", methods=["PUT"])
    @jwt_required()
    def admin_update_product(product_id: str):
        _, admin_error = require_role(db, ROLE_ADMIN)
        if admin_error:
            return admin_error

        product_document, load_error = load_document(db.products, product_id, "Product")
        if load_error:
            return load_error

        payload = dict(request.get_json(silent=True) or {})
        # Moderation arrives on the shared "status" key from the console.
        status = str(payload.get("status") or "").strip().lower()
        if status in MODERATION_STATUSES:
            payload.pop("status")
            product_document["moderation_status"] = status
        moderation_status = payload.pop("moderation_status", None) or payload.pop("moderationStatus", None)
        if moderation_status is not None:
            product_document["moderation_status"] = str(moderation_status).strip().lower()

        apply_product_fields(product_document, payload)
        db.products.replace_one({"_id": product_document["_id"]}, product_document)
        app.logger.info(
            "Admin updated product %s (moderation=%s)",
            product_id,
            product_document.get("moderation_status"),
        )

        return jsonify({"product": serialize_product(product_document)})

    @app.route(f"{PREFIX}/products/<product_id>", methods=["DELETE"])
    @jwt_required()
    def admin_delete_product(product_id: str):
        _, admin_error = require_role(db, ROLE_ADMIN)
        if admin_error:
            return admin_error

        product_document, load_error = load_document(db.products, product_id, "Product")
        if load_error:
            return load_error

        db.products.delete_one({"_id": product_document["_id"]})
        remove_image(product_document.get("images") or [])
        return jsonify({"message": "Product deleted successfully"})

    # Users

    @app.route(f"{PREFIX}/users", methods=["GET"])
    @jwt_required()
    def admin_list_users():
        _, admin_error = require_role(db, ROLE_ADMIN)
        if admin_error:
            return admin_error

        users = [serialize_account(user) for user in db.users.find().sort("created_at", -1)]
        return jsonify({"users": users})

    @app.route(f"{PREFIX}/users/<user_id>", methods=["PUT"])
    @jwt_required()
    def admin_update_user(user_id: str):
        _, admin_error = require_role(db, ROLE_ADMIN)
        if admin_error:
            return admin_error

        user_document, load_error = load_document(db.users, user_id, "User")
        if load_error:
            return load_error

        payload = request.get_json(silent=True) or {}
        if "status" in payload:
            status = str(payload.get("status") or "").strip().lower()
            if status not in USER_STATUSES:
                raise ValidationError("Status must be 'approved' or 'suspended'.", "status")
            user_document["status"] = status
        if "role" in payload:
            role = str(payload.get("role") or "").strip().lower()
            if role not in USER_ROLES:
                raise ValidationError("Role must be 'user', 'seller', or 'admin'.", "role")
            user_document["role"] = role

        apply_user_profile_update(user_document, payload)
        save_user(db, user_document)
        app.logger.info("Admin updated user %s (status=%s)", user_id, user_document.get("status"))

        return jsonify({"user": serialize_account(user_document)})

    @app.route(f"{PREFIX}/users/<user_id>", methods=["DELETE"])
    @jwt_required()
    def admin_delete_user(user_id: str):
        _, admin_error = require_role(db, ROLE_ADMIN)
        if admin_error:
            return admin_error

        user_document, load_error = load_document(db.users, user_id, "User")
        if load_error:
            return load_error

        db.users.delete_one({"_id": user_document["_id"]})
        remove_image(user_document.get("profile_picture"))
        return jsonify({"message": "User deleted successfully"})

    @app.route(f"{PREFIX}/orders", methods=["GET"])
    @jwt_required()
    def admin_list_orders():
        _, admin_error = require_role(db, ROLE_ADMIN)
        if admin_error:
            return admin_error

        query = {}
        status = request.args.get("status", "").strip().lower()
        if status:
            query["status"] = status
        cursor = db.orders.find(query).sort([("created_at", -1), ("_id", -1)])
        return jsonify({"orders": [serialize_order(order) for order in cursor]})
