import re
from collections import OrderedDict
from datetime import datetime
from typing import Dict, List

from flask import current_app, jsonify, request
from flask_jwt_extended import jwt_required

from .. import carts
from ..accounts import (
    ROLE_USER,
    apply_user_profile_update,
    build_user_document,
    record_search,
    save_user,
    serialize_account,
    serialize_principal,
)
from ..auth import authenticate, issue_token, require_role
from ..catalog import (
    is_product_available,
    public_product_filter,
    release_stock,
    reserve_stock,
    serialize_product,
)
from ..errors import ValidationError
from ..helpers import (
    first_present,
    normalize_email,
    normalize_text,
    parse_object_id,
    safe_positive_int,
    serialize_value,
)
from ..notifications import send_order_confirmation_email
from ..orders import (
    PAYMENT_METHOD_COD,
    PAYMENT_METHODS,
    build_order,
    build_order_item,
    can_cancel,
    can_return,
    find_order,
    save_order,
    serialize_order,
)
from ..payments import fetch_razorpay_payment, resolve_payment_status
from ..uploads import PROFILE_PICTURE_MAX_BYTES, remove_image, save_image, upload_url
from .common import load_document, request_payload, uploaded_files

PREFIX = "/api/user/auth"
ADDRESS_PARTS = ("street", "city", "state", "postal_code", "country")


def format_address(value) -> str:
    if isinstance(value, dict):
        parts = [normalize_text(value.get(part)) for part in ADDRESS_PARTS]
        return ", ".join(part for part in parts if part)
    return normalize_text(value)


def register_user_routes(app, db):
    def product_map(entries: List[Dict]) -> Dict[str, Dict]:
        product_ids = list({entry.get("product_id") for entry in entries if entry.get("product_id")})
        if not product_ids:
            return {}
        return {str(product["_id"]): product for product in db.products.find({"_id": {"$in": product_ids}})}

    def serialize_entries(entries: List[Dict]) -> List[Dict]:
        products = product_map(entries)
        serialized = []
        for entry in entries or []:
            item = serialize_value(entry)
            product = products.get(str(entry.get("product_id")))
            item["product"] = serialize_product(product) if product else None
            serialized.append(item)
        return serialized

    def load_available_product(product_id):
        product_document = db.products.find_one({"_id": parse_object_id(product_id)})
        if not is_product_available(product_document):
            return None, (jsonify({"message": "Product not found"}), 404)
        return product_document, None

    def check_variant(product_document: Dict, item: Dict) -> None:
        if item["size"] not in (product_document.get("sizes") or []):
            raise ValidationError(f'Size "{item["size"]}" is not available for this product.', "size")
        if item["color"] not in (product_document.get("colors") or []):
            raise ValidationError(f'Color "{item["color"]}" is not available for this product.', "color")

    def load_own_order(order_id: str, user_document):
        order_document = find_order(db, order_id, {"user_id": user_document["_id"]})
        if not order_document:
            return None, (jsonify({"message": "Order not found"}), 404)
        return order_document, None

    def variant_args():
        payload = request.get_json(silent=True) or {}
        size = request.args.get("size", payload.get("size"))
        color = request.args.get("color", payload.get("color"))
        return size, color

    # Accounts

    @app.route(f"{PREFIX}/register", methods=["POST"])
    def user_register():
        payload = request.get_json(silent=True) or {}
        user_document = build_user_document(payload)
        if db.users.find_one({"phone_number": user_document["phone_number"]}):
            return jsonify({"message": "An account with this phone number already exists."}), 400
        if user_document.get("email") and db.users.find_one({"email": user_document["email"]}):
            return jsonify({"message": "An account with this email already exists."}), 400

        result = db.users.insert_one(user_document)
        user_document["_id"] = result.inserted_id
        app.logger.info("Registered user %s", result.inserted_id)

        return (
            jsonify(
                {
                    "message": "Account created successfully",
                    "user": serialize_principal(user_document, ROLE_USER),
                    "token": issue_token(ROLE_USER, user_document),
                }
            ),
            201,
        )

    @app.route(f"{PREFIX}/login", methods=["POST"])
    def user_login():
        payload = request.get_json(silent=True) or {}
        user_document, login_error = authenticate(db, ROLE_USER, payload)
        if login_error:
            return login_error

        db.users.update_one(
            {"_id": user_document["_id"]},
            {"$set": {"last_login_at": datetime.utcnow()}},
        )

        return jsonify(
            {
                "message": "Logged in successfully",
                "user": serialize_principal(user_document, ROLE_USER),
                "token": issue_token(ROLE_USER, user_document),
            }
        )

    @app.route(f"{PREFIX}/profile", methods=["GET"])
    @jwt_required()
    def user_profile():
        user_document, user_error = require_role(db, ROLE_USER)
        if user_error:
            return user_error
        return jsonify({"user": serialize_account(user_document)})

    @app.route(f"{PREFIX}/profile", methods=["PUT"])
    @jwt_required()
    def user_update_profile():
        user_document, user_error = require_role(db, ROLE_USER)
        if user_error:
            return user_error

        payload = request_payload()
        picture_files = uploaded_files("profilePicture", "profile_picture")
        previous_picture = user_document.get("profile_picture")
        new_filename = None
        if picture_files:
            new_filename, image_error = save_image(picture_files[0], PROFILE_PICTURE_MAX_BYTES)
            if image_error:
                return jsonify({"message": image_error}), 400
            user_document["profile_picture"] = upload_url(new_filename)

        try:
            apply_user_profile_update(user_document, payload)
            save_user(db, user_document)
        except ValueError:
            remove_image(new_filename)
            raise
        if new_filename:
            remove_image(previous_picture)

        return jsonify({"message": "Profile updated successfully", "user": serialize_account(user_document)})

    # Catalog

    @app.route(f"{PREFIX}/products", methods=["GET"])
    @jwt_required()
    def user_list_products():
        user_document, user_error = require_role(db, ROLE_USER)
        if user_error:
            return user_error

        extra: Dict = {}
        search_term = normalize_text(request.args.get("q"))
        if search_term:
            extra["name"] = {"$regex": re.escape(search_term), "$options": "i"}
            record_search(user_document, search_term)
            save_user(db, user_document)
        category = normalize_text(request.args.get("category"))
        if category:
            extra["category"] = category

        limit = min(safe_positive_int(request.args.get("limit"), 0) or 50, 200)
        cursor = db.products.find(public_product_filter(extra)).sort("created_at", -1).limit(limit)
        return jsonify({"products": [serialize_product(product) for product in cursor]})

    @app.route(f"{PREFIX}/products/<product_id>", methods=["GET"])
    @jwt_required()
    def user_get_product(product_id: str):
        _, user_error = require_role(db, ROLE_USER)
        if user_error:
            return user_error

        product_document, load_error = load_document(
            db.products, product_id, "Product", extra_filter=public_product_filter()
        )
        if load_error:
            return load_error
        return jsonify({"product": serialize_product(product_document)})

    # Wishlist

    @app.route(f"{PREFIX}/wishlist", methods=["GET"])
    @jwt_required()
    def user_wishlist():
        user_document, user_error = require_role(db, ROLE_USER)
        if user_error:
            return user_error
        return jsonify({"wishlist": serialize_entries(user_document.get("wishlist") or [])})

    @app.route(f"{PREFIX}/wishlist/<product_id>", methods=["PUT"])
    @jwt_required()
    def user_toggle_wishlist(product_id: str):
        user_document, user_error = require_role(db, ROLE_USER)
        if user_error:
            return user_error

        if not carts.is_wishlisted(user_document, product_id):
            _, load_error = load_available_product(product_id)
            if load_error:
                return load_error

        wishlisted = carts.toggle_wishlist(user_document, product_id)
        save_user(db, user_document)

        return jsonify(
            {
                "message": "Added to wishlist" if wishlisted else "Removed from wishlist",
                "wishlisted": wishlisted,
                "wishlist": serialize_entries(user_document.get("wishlist") or []),
            }
        )

    # Cart

    @app.route(f"{PREFIX}/cart", methods=["GET"])
    @jwt_required()
    def user_cart():
        user_document, user_error = require_role(db, ROLE_USER)
        if user_error:
            return user_error
        return jsonify({"cart": serialize_entries(user_document.get("cart") or [])})

    @app.route(f"{PREFIX}/cart", methods=["POST"])
    @jwt_required()
    def user_update_cart():
        user_document, user_error = require_role(db, ROLE_USER)
        if user_error:
            return user_error

        payload = request.get_json(silent=True) or {}
        item = carts.normalize_list_item(payload, "cart")
        product_document, load_error = load_available_product(item["product_id"])
        if load_error:
            return load_error
        check_variant(product_document, item)
        if item["quantity"] > safe_positive_int(product_document.get("quantity"), 0):
            return jsonify({"message": "Not enough stock for the requested quantity."}), 400

        carts.update_cart(user_document, payload)
        save_user(db, user_document)

        return jsonify({"message": "Cart updated", "cart": serialize_entries(user_document["cart"])})

    @app.route(f"{PREFIX}/cart", methods=["DELETE"])
    @jwt_required()
    def user_clear_cart():
        user_document, user_error = require_role(db, ROLE_USER)
        if user_error:
            return user_error

        carts.clear_cart(user_document)
        save_user(db, user_document)
        return jsonify({"message": "Cart cleared", "cart": []})

    @app.route(f"{PREFIX}/cart/<product_id>", methods=["DELETE"])
    @jwt_required()
    def user_remove_cart_item(product_id: str):
        user_document, user_error = require_role(db, ROLE_USER)
        if user_error:
            return user_error

        size, color = variant_args()
        removed = carts.remove_from_cart(user_document, product_id, size, color)
        if not removed:
            return jsonify({"message": "Item not found in cart"}), 404
        save_user(db, user_document)
        return jsonify({"message": "Removed from cart", "cart": serialize_entries(user_document["cart"])})

    @app.route(f"{PREFIX}/cart/<product_id>/save-for-later", methods=["POST"])
    @jwt_required()
    def user_save_cart_item_for_later(product_id: str):
        user_document, user_error = require_role(db, ROLE_USER)
        if user_error:
            return user_error

        size, color = variant_args()
        moved = carts.move_to_saved_for_later(user_document, product_id, size, color)
        if not moved:
            return jsonify({"message": "Item not found in cart"}), 404
        save_user(db, user_document)
        return jsonify(
            {
                "message": "Saved for later",
                "cart": serialize_entries(user_document["cart"]),
                "saved_for_later": serialize_entries(user_document["saved_for_later"]),
            }
        )

    # Saved for later

    @app.route(f"{PREFIX}/saved-for-later", methods=["GET"])
    @jwt_required()
    def user_saved_for_later():
        user_document, user_error = require_role(db, ROLE_USER)
        if user_error:
            return user_error
        return jsonify({"saved_for_later": serialize_entries(user_document.get("saved_for_later") or [])})

    @app.route(f"{PREFIX}/saved-for-later", methods=["POST"])
    @jwt_required()
    def user_update_saved_for_later():
        user_document, user_error = require_role(db, ROLE_USER)
        if user_error:
            return user_error

        payload = request.get_json(silent=True) or {}
        item = carts.normalize_list_item(payload, "saved for later")
        product_document, load_error = load_available_product(item["product_id"])
        if load_error:
            return load_error
        check_variant(product_document, item)

        carts.update_saved_for_later(user_document, payload)
        save_user(db, user_document)
        return jsonify(
            {
                "message": "Saved for later",
                "saved_for_later": serialize_entries(user_document["saved_for_later"]),
            }
        )

    @app.route(f"{PREFIX}/saved-for-later/<product_id>", methods=["DELETE"])
    @jwt_required()
    def user_remove_saved_item(product_id: str):
        user_document, user_error = require_role(db, ROLE_USER)
        if user_error:
            return user_error

        size, color = variant_args()
        removed = carts.remove_from_saved_for_later(user_document, product_id, size, color)
        if not removed:
            return jsonify({"message": "Item not found in saved for later"}), 404
        save_user(db, user_document)
        return jsonify(
            {
                "message": "Removed from saved for later",
                "saved_for_later": serialize_entries(user_document["saved_for_later"]),
            }
        )

    @app.route(f"{PREFIX}/saved-for-later/<product_id>/move-to-cart", methods=["POST"])
    @jwt_required()
    def user_move_saved_item_to_cart(product_id: str):
        user_document, user_error = require_role(db, ROLE_USER)
        if user_error:
            return user_error

        size, color = variant_args()
        moved = carts.move_to_cart(user_document, product_id, size, color)
        if not moved:
            return jsonify({"message": "Item not found in saved for later"}), 404
        save_user(db, user_document)
        return jsonify(
            {
                "message": "Moved to cart",
                "cart": serialize_entries(user_document["cart"]),
                "saved_for_later": serialize_entries(user_document["saved_for_later"]),
            }
        )

    # Orders

    @app.route(f"{PREFIX}/orders", methods=["GET"])
    @jwt_required()
    def user_list_orders():
        user_document, user_error = require_role(db, ROLE_USER)
        if user_error:
            return user_error

        cursor = db.orders.find({"user_id": user_document["_id"]}).sort([("created_at", -1), ("_id", -1)])
        return jsonify({"orders": [serialize_order(order) for order in cursor]})

    @app.route(f"{PREFIX}/orders/<order_id>", methods=["GET"])
    @jwt_required()
    def user_get_order(order_id: str):
        user_document, user_error = require_role(db, ROLE_USER)
        if user_error:
            return user_error

        order_document, load_error = load_own_order(order_id, user_document)
        if load_error:
            return load_error
        return jsonify({"order": serialize_order(order_document)})

    @app.route(f"{PREFIX}/orders", methods=["POST"])
    @jwt_required()
    def user_checkout():
        user_document, user_error = require_role(db, ROLE_USER)
        if user_error:
            return user_error

        cart_entries = list(user_document.get("cart") or [])
        if not cart_entries:
            return jsonify({"message": "Your cart is empty."}), 400

        payload = request.get_json(silent=True) or {}
        payment_method = normalize_text(first_present(payload, "payment_method", "paymentMethod"))
        if payment_method not in PAYMENT_METHODS:
            return jsonify({"message": f"Payment method must be one of: {', '.join(PAYMENT_METHODS)}."}), 400

        address = format_address(first_present(payload, "address"))
        if not address and user_document.get("addresses"):
            address = format_address(user_document["addresses"][0])
        if not address:
            return jsonify({"message": "Please provide a delivery address."}), 400

        full_name = " ".join(
            part for part in (user_document.get("first_name"), user_document.get("last_name")) if part
        )
        customer = {
            "name": normalize_text(first_present(payload, "name")) or full_name,
            "email": normalize_email(first_present(payload, "email")) or user_document.get("email"),
            "phone_number": normalize_text(first_present(payload, "phone_number", "phoneNumber"))
            or user_document.get("phone_number"),
            "address": address,
        }
        if not customer["name"]:
            return jsonify({"message": "Please provide a name for the order."}), 400

        products = product_map(cart_entries)
        items_by_seller: "OrderedDict[str, List[Dict]]" = OrderedDict()
        for entry in cart_entries:
            product_document = products.get(str(entry.get("product_id")))
            if not is_product_available(product_document):
                return jsonify({"message": "Some items in your cart are no longer available."}), 400
            if payment_method == PAYMENT_METHOD_COD and not product_document.get("is_cash_on_delivery_available", True):
                return (
                    jsonify({"message": f'"{product_document.get("name")}" cannot be paid on delivery.'}),
                    400,
                )
            check_variant(product_document, entry)
            item = build_order_item(product_document, entry, payment_method)
            items_by_seller.setdefault(str(product_document.get("seller_id")), []).append(item)

        reserved: List[Dict] = []
        for items in items_by_seller.values():
            for item in items:
                if not reserve_stock(db, item["product_id"], item["quantity"]):
                    release_stock(db, reserved)
                    return jsonify({"message": f'Not enough stock for "{item["name"]}".'}), 400
                reserved.append(item)

        shipping_fee = current_app.config.get("ORDER_SHIPPING_FEE", 0)
        created_orders = []
        try:
            for seller_id, items in items_by_seller.items():
                order_document = build_order(
                    user_document, seller_id, items, payment_method, customer, shipping_fee
                )
                created_orders.append(save_order(db, order_document, details="Order placed"))
            carts.clear_cart(user_document)
            save_user(db, user_document)
        except Exception:
            release_stock(db, reserved)
            for order_document in created_orders:
                db.orders.delete_one({"_id": order_document["_id"]})
            raise

        app.logger.info(
            "User %s placed %d order(s): %s",
            user_document["_id"],
            len(created_orders),
            ", ".join(order["order_id"] for order in created_orders),
        )

        if current_app.config.get("RESEND_API_KEY"):
            for order_document in created_orders:
                send_order_confirmation_email(order_document)

        return (
            jsonify(
                {
                    "message": "Order placed successfully",
                    "orders": [serialize_order(order) for order in created_orders],
                }
            ),
            201,
        )

    @app.route(f"{PREFIX}/orders/<order_id>/cancel", methods=["POST"])
    @jwt_required()
    def user_cancel_order(order_id: str):
        user_document, user_error = require_role(db, ROLE_USER)
        if user_error:
            return user_error

        order_document, load_error = load_own_order(order_id, user_document)
        if load_error:
            return load_error
        if not can_cancel(order_document):
            return jsonify({"message": f'Orders that are "{order_document.get("status")}" cannot be cancelled.'}), 400

        payload = request.get_json(silent=True) or {}
        order_document["status"] = "cancelled"
        save_order(db, order_document, details=normalize_text(payload.get("reason")) or "Cancelled by customer")
        release_stock(db, order_document.get("items"))

        return jsonify({"message": "Order cancelled", "order": serialize_order(order_document)})

    @app.route(f"{PREFIX}/orders/<order_id>/return", methods=["POST"])
    @jwt_required()
    def user_return_order(order_id: str):
        user_document, user_error = require_role(db, ROLE_USER)
        if user_error:
            return user_error

        order_document, load_error = load_own_order(order_id, user_document)
        if load_error:
            return load_error
        if not can_return(order_document):
            return jsonify({"message": "This order is not eligible for return."}), 400

        payload = request.get_json(silent=True) or {}
        order_document["status"] = "returned"
        save_order(db, order_document, details=normalize_text(payload.get("reason")) or "Returned by customer")
        release_stock(db, order_document.get("items"))

        return jsonify({"message": "Return recorded", "order": serialize_order(order_document)})

    @app.route(f"{PREFIX}/orders/<order_id>/verify-payment", methods=["POST"])
    @jwt_required()
    def user_verify_payment(order_id: str):
        user_document, user_error = require_role(db, ROLE_USER)
        if user_error:
            return user_error

        order_document, load_error = load_own_order(order_id, user_document)
        if load_error:
            return load_error
        if order_document.get("payment_method") == PAYMENT_METHOD_COD:
            return jsonify({"message": "Cash on delivery orders have no online payment."}), 400
        if order_document.get("payment_status") == "completed":
            return jsonify({"message": "Payment already verified", "order": serialize_order(order_document)})

        payload = request.get_json(silent=True) or {}
        payment_id = normalize_text(first_present(payload, "payment_id", "paymentId", "razorpay_payment_id"))
        if not payment_id:
            return jsonify({"message": "A payment id is required."}), 400

        if db.orders.find_one({"payment_id": payment_id, "_id": {"$ne": order_document["_id"]}}):
            app.logger.warning(
                "Payment %s reused for order %s", payment_id, order_document.get("order_id")
            )
            return jsonify({"message": "This payment has already been used for another order."}), 400

        gateway_payment = fetch_razorpay_payment(payment_id)
        payment_status = resolve_payment_status(gateway_payment, order_document.get("online_amount") or 0)
        if payment_status is None:
            return jsonify({"message": "Payment has not been completed yet."}), 400

        order_document["payment_id"] = payment_id
        order_document["payment_status"] = payment_status
        save_order(db, order_document)
        app.logger.info(
            "Payment %s for order %s resolved as %s",
            payment_id,
            order_document.get("order_id"),
            payment_status,
        )

        status_code = 200 if payment_status == "completed" else 402
        message = "Payment verified" if payment_status == "completed" else "Payment failed"
        return jsonify({"message": message, "order": serialize_order(order_document)}), status_code
