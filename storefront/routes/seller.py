from datetime import datetime

from flask import jsonify, request
from flask_jwt_extended import jwt_required

from ..accounts import (
    ROLE_SELLER,
    apply_seller_profile_update,
    build_seller_document,
    serialize_account,
    serialize_principal,
)
from ..auth import authenticate, issue_token, require_role
from ..catalog import (
    apply_product_fields,
    build_product_document,
    release_stock,
    serialize_product,
    toggle_product_status,
)
from ..helpers import normalize_text, parse_json_list
from ..orders import (
    TERMINAL_STATUSES,
    can_cancel,
    find_order,
    next_order_status,
    normalize_status,
    save_order,
    serialize_order,
)
from ..uploads import (
    PRODUCT_IMAGE_MAX_BYTES,
    PROFILE_PICTURE_MAX_BYTES,
    remove_image,
    save_image,
    save_images,
    upload_url,
)
from .common import load_document, request_payload, uploaded_files

PREFIX = "/api/seller/auth"


def mark_cash_collected(order_document) -> None:
    if order_document.get("cod_amount", 0) <= 0:
        return
    if order_document.get("online_amount", 0) > 0 and order_document.get("payment_status") != "completed":
        return
    order_document["payment_status"] = "completed"


def register_seller_routes(app, db):
    def load_own_product(product_id: str, seller_document):
        return load_document(
            db.products,
            product_id,
            "Product",
            extra_filter={"seller_id": seller_document["_id"]},
        )

    @app.route(f"{PREFIX}/register", methods=["POST"])
    def seller_register():
        payload = request.get_json(silent=True) or {}
        seller_document = build_seller_document(payload)
        if db.sellers.find_one({"phone_number": seller_document["phone_number"]}):
            return jsonify({"message": "Seller already exists"}), 400

        result = db.sellers.insert_one(seller_document)
        seller_document["_id"] = result.inserted_id
        app.logger.info("Registered seller %s", result.inserted_id)

        return (
            jsonify(
                {
                    "message": "Seller registered. An administrator will review your account.",
                    "seller": serialize_account(seller_document),
                }
            ),
            201,
        )

    @app.route(f"{PREFIX}/login", methods=["POST"])
    def seller_login():
        payload = request.get_json(silent=True) or {}
        seller_document, login_error = authenticate(db, ROLE_SELLER, payload)
        if login_error:
            return login_error

        return jsonify(
            {
                "message": "Logged in successfully",
                "seller": serialize_principal(seller_document, ROLE_SELLER),
                "token": issue_token(ROLE_SELLER, seller_document),
            }
        )

    @app.route(f"{PREFIX}/profile", methods=["GET"])
    @jwt_required()
    def seller_profile():
        seller_document, seller_error = require_role(db, ROLE_SELLER)
        if seller_error:
            return seller_error
        return jsonify({"seller": serialize_account(seller_document)})

    @app.route(f"{PREFIX}/profile", methods=["PUT"])
    @jwt_required()
    def seller_update_profile():
        seller_document, seller_error = require_role(db, ROLE_SELLER)
        if seller_error:
            return seller_error

        payload = request_payload()
        picture_files = uploaded_files("profilePicture", "profile_picture")
        previous_picture = seller_document.get("profile_picture")
        new_filename = None
        if picture_files:
            new_filename, image_error = save_image(picture_files[0], PROFILE_PICTURE_MAX_BYTES)
            if image_error:
                return jsonify({"message": image_error}), 400
            seller_document["profile_picture"] = upload_url(new_filename)

        try:
            apply_seller_profile_update(seller_document, payload)
        except ValueError:
            remove_image(new_filename)
            raise
        db.sellers.replace_one({"_id": seller_document["_id"]}, seller_document)
        if new_filename:
            remove_image(previous_picture)

        return jsonify({"message": "Profile updated successfully", "seller": serialize_account(seller_document)})

    # Products

    @app.route(f"{PREFIX}/products", methods=["GET"])
    @jwt_required()
    def seller_list_products():
        seller_document, seller_error = require_role(db, ROLE_SELLER)
        if seller_error:
            return seller_error

        cursor = db.products.find({"seller_id": seller_document["_id"]}).sort("created_at", -1)
        return jsonify({"products": [serialize_product(product) for product in cursor]})

    @app.route(f"{PREFIX}/products", methods=["POST"])
    @jwt_required()
    def seller_create_product():
        seller_document, seller_error = require_role(db, ROLE_SELLER)
        if seller_error:
            return seller_error
        if seller_document.get("status") != "enabled":
            return jsonify({"message": "Your seller account is awaiting approval."}), 403

        payload = request_payload()
        saved_filenames, image_error = save_images(uploaded_files("images", "image"), PRODUCT_IMAGE_MAX_BYTES)
        if image_error:
            return jsonify({"message": image_error}), 400
        if not saved_filenames:
            return jsonify({"message": "Please upload at least one image for this product."}), 400

        try:
            product_document = build_product_document(
                payload,
                seller_document["_id"],
                [upload_url(filename) for filename in saved_filenames],
            )
        except ValueError:
            remove_image(saved_filenames)
            raise

        result = db.products.insert_one(product_document)
        product_document["_id"] = result.inserted_id
        app.logger.info("Seller %s created product %s", seller_document["_id"], result.inserted_id)

        return (
            jsonify({"message": "Product added successfully.", "product": serialize_product(product_document)}),
            201,
        )

    @app.route(f"{PREFIX}/products/<product_id>", methods=["PUT"])
    @jwt_required()
    def seller_update_product(product_id: str):
        seller_document, seller_error = require_role(db, ROLE_SELLER)
        if seller_error:
            return seller_error

        product_document, load_error = load_own_product(product_id, seller_document)
        if load_error:
            return load_error

        payload = request_payload()
        saved_filenames, image_error = save_images(uploaded_files("images", "image"), PRODUCT_IMAGE_MAX_BYTES)
        if image_error:
            return jsonify({"message": image_error}), 400

        current_images = list(product_document.get("images") or [])
        retained_images = current_images
        if payload.get("existing_images") is not None or payload.get("existingImages") is not None:
            requested = parse_json_list(payload.get("existing_images", payload.get("existingImages")))
            retained_images = [image for image in current_images if image in requested]

        new_images = retained_images + [upload_url(filename) for filename in saved_filenames]
        if not new_images:
            remove_image(saved_filenames)
            return jsonify({"message": "A product needs at least one image."}), 400

        product_document["images"] = new_images
        try:
            apply_product_fields(product_document, payload)
        except ValueError:
            remove_image(saved_filenames)
            raise
        product_document["updated_at"] = datetime.utcnow()
        db.products.replace_one({"_id": product_document["_id"]}, product_document)
        remove_image([image for image in current_images if image not in retained_images])

        return jsonify({"message": "Product updated successfully.", "product": serialize_product(product_document)})

    @app.route(f"{PREFIX}/products/<product_id>", methods=["DELETE"])
    @jwt_required()
    def seller_delete_product(product_id: str):
        seller_document, seller_error = require_role(db, ROLE_SELLER)
        if seller_error:
            return seller_error

        product_document, load_error = load_own_product(product_id, seller_document)
        if load_error:
            return load_error

        db.products.delete_one({"_id": product_document["_id"]})
        remove_image(product_document.get("images") or [])
        return jsonify({"message": "Product removed successfully."})

    @app.route(f"{PREFIX}/products/<product_id>/toggle-status", methods=["PUT"])
    @jwt_required()
    def seller_toggle_product(product_id: str):
        seller_document, seller_error = require_role(db, ROLE_SELLER)
        if seller_error:
            return seller_error

        product_document, load_error = load_own_product(product_id, seller_document)
        if load_error:
            return load_error

        new_status = toggle_product_status(product_document)
        db.products.update_one(
            {"_id": product_document["_id"]},
            {"$set": {"status": new_status, "updated_at": product_document["updated_at"]}},
        )
        return jsonify({"message": f"Product {new_status} successfully", "product": serialize_product(product_document)})

    # Orders

    @app.route(f"{PREFIX}/orders", methods=["GET"])
    @jwt_required()
    def seller_list_orders():
        seller_document, seller_error = require_role(db, ROLE_SELLER)
        if seller_error:
            return seller_error

        query = {"seller_id": seller_document["_id"]}
        status = normalize_status(request.args.get("status"))
        if status:
            query["status"] = status
        cursor = db.orders.find(query).sort([("created_at", -1), ("_id", -1)])
        return jsonify({"orders": [serialize_order(order) for order in cursor]})

    @app.route(f"{PREFIX}/orders/<order_id>", methods=["PUT"])
    @jwt_required()
    def seller_update_order_status(order_id: str):
        seller_document, seller_error = require_role(db, ROLE_SELLER)
        if seller_error:
            return seller_error

        order_document = find_order(db, order_id, {"seller_id": seller_document["_id"]})
        if not order_document:
            return jsonify({"message": "Order not found"}), 404

        payload = request.get_json(silent=True) or {}
        requested_status = normalize_status(payload.get("status"))
        current_status = order_document.get("status")
        details = normalize_text(payload.get("details")) or None

        if requested_status == "cancelled":
            if not can_cancel(order_document):
                return jsonify({"message": f'Orders that are "{current_status}" cannot be cancelled.'}), 400
            order_document["status"] = "cancelled"
            save_order(db, order_document, details=details or "Cancelled by seller")
            release_stock(db, order_document.get("items"))
        else:
            next_status = next_order_status(current_status)
            if next_status == current_status:
                return jsonify({"message": "No further status updates available"}), 400
            if requested_status and requested_status != next_status:
                return jsonify({"message": f'Orders can only advance to "{next_status}".'}), 400

            order_document["status"] = next_status
            if next_status == "delivered":
                mark_cash_collected(order_document)
            save_order(db, order_document, details=details)

        app.logger.info(
            "Seller %s moved order %s from %s to %s",
            seller_document["_id"],
            order_document.get("order_id"),
            current_status,
            order_document["status"],
        )
        return jsonify(
            {
                "message": f'Order updated to "{order_document["status"]}"',
                "order": serialize_order(order_document),
            }
        )

    @app.route(f"{PREFIX}/revenue", methods=["GET"])
    @jwt_required()
    def seller_revenue():
        seller_document, seller_error = require_role(db, ROLE_SELLER)
        if seller_error:
            return seller_error

        revenue = 0.0
        order_count = 0
        for order in db.orders.find(
            {"seller_id": seller_document["_id"], "status": {"$nin": list(TERMINAL_STATUSES)}},
            {"total": 1},
        ):
            revenue += float(order.get("total") or 0)
            order_count += 1

        return jsonify({"revenue": round(revenue, 2), "orders": order_count})

    @app.route(f"{PREFIX}/categories", methods=["GET"])
    @jwt_required()
    def seller_categories():
        _, seller_error = require_role(db, ROLE_SELLER)
        if seller_error:
            return seller_error

        categories = [
            {"id": str(category["_id"]), "name": category.get("name", ""), "icon": category.get("icon", "")}
            for category in db.categories.find().sort("name", 1)
        ]
        return jsonify({"categories": categories})
