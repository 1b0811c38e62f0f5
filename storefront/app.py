import logging
import os
from datetime import timedelta
from typing import Dict, Optional

from dotenv import load_dotenv
from flask import Flask, jsonify, send_from_directory
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_pymongo import PyMongo
from pymongo.errors import DuplicateKeyError
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from .errors import ValidationError
from .payments import PaymentGatewayError
from .routes.admin import register_admin_routes
from .routes.catalog import register_catalog_routes
from .routes.seller import register_seller_routes
from .routes.user import register_user_routes


def ensure_indexes(db, logger) -> None:
    try:
        db.users.create_index("phone_number", unique=True)
        db.users.create_index("email", unique=True, sparse=True)
        db.sellers.create_index("phone_number", unique=True)
        db.admins.create_index("phone_number", unique=True)
        db.orders.create_index("order_id", unique=True)
        db.orders.create_index("payment_id", unique=True, sparse=True)
        db.orders.create_index([("seller_id", 1), ("created_at", -1)])
        db.orders.create_index([("user_id", 1), ("created_at", -1)])
        db.categories.create_index("name", unique=True)
    except Exception as exc:
        logger.warning("Unable to ensure indexes: %s", exc)


def create_app(test_config: Optional[Dict] = None, database=None) -> Flask:
    """Create and configure the Flask application."""
    load_dotenv()
    app = Flask(__name__)

    trusted_proxy_hops_raw = os.getenv("TRUSTED_PROXY_HOPS", "1")
    try:
        trusted_proxy_hops = max(0, int(trusted_proxy_hops_raw))
    except (TypeError, ValueError):
        trusted_proxy_hops = 1
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )

    # --- Configuration ---
    app.config["JWT_SECRET_KEY"] = os.getenv("JWT_SECRET_KEY", "change-me-in-production")
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = timedelta(
        hours=float(os.getenv("JWT_ACCESS_TOKEN_EXPIRES_HOURS", "1"))
    )
    app.config["MONGO_URI"] = os.getenv("MONGO_URI", "mongodb://localhost:27017/storefront")
    max_upload_mb = int(os.getenv("MAX_UPLOAD_SIZE_MB", "16"))
    app.config["MAX_CONTENT_LENGTH"] = max_upload_mb * 1024 * 1024
    app.config["UPLOAD_FOLDER"] = os.getenv(
        "UPLOAD_FOLDER", os.path.join(app.instance_path, "uploads")
    )
    app.config["ORDER_SHIPPING_FEE"] = float(os.getenv("ORDER_SHIPPING_FEE", "0"))
    app.config["RAZORPAY_KEY_ID"] = os.getenv("RAZORPAY_KEY_ID", "")
    app.config["RAZORPAY_KEY_SECRET"] = os.getenv("RAZORPAY_KEY_SECRET", "")
    app.config["PAYMENT_GATEWAY_TIMEOUT"] = float(os.getenv("PAYMENT_GATEWAY_TIMEOUT", "10"))
    app.config["RESEND_API_KEY"] = (os.getenv("RESEND_API_KEY") or "").strip()
    app.config["ORDER_EMAIL_SENDER"] = os.getenv(
        "ORDER_EMAIL_SENDER", "Storefront <orders@storefront.local>"
    )
    app.config["LOG_LEVEL"] = os.getenv("LOG_LEVEL", "INFO").upper()

    if test_config:
        app.config.update(test_config)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app.logger.setLevel(app.config["LOG_LEVEL"])
    logging.getLogger("storefront").setLevel(app.config["LOG_LEVEL"])

    os.makedirs(app.config["UPLOAD_FOLDER"], exist_ok=True)

    # --- Initialize extensions ---
    allowed_origins = [
        "http://localhost:5173",
        "http://localhost:3000",
        os.getenv("FRONTEND_URL", "").strip(),
    ]
    cors_extra = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if cors_extra:
        for origin in cors_extra.split(","):
            trimmed = origin.strip()
            if trimmed:
                allowed_origins.append(trimmed)
    allowed_origins = [origin for origin in allowed_origins if origin]

    CORS(app, supports_credentials=True, origins=allowed_origins or "*")

    jwt = JWTManager(app)

    @jwt.unauthorized_loader
    def missing_token(reason: str):
        return jsonify({"message": "Authentication token is missing."}), 401

    @jwt.invalid_token_loader
    def invalid_token(reason: str):
        return jsonify({"message": "Invalid or expired token"}), 401

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return jsonify({"message": "Invalid or expired token"}), 401

    if database is None:
        database = PyMongo(app).db
    db = database
    ensure_indexes(db, app.logger)

    # --- Error handling ---

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        return jsonify({"message": error.message}), 400

    @app.errorhandler(DuplicateKeyError)
    def handle_duplicate_key(error: DuplicateKeyError):
        app.logger.info("Duplicate key rejected: %s", error)
        return jsonify({"message": "A record with these details already exists."}), 400

    @app.errorhandler(PaymentGatewayError)
    def handle_payment_gateway_error(error: PaymentGatewayError):
        return jsonify({"message": error.message}), error.status_code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        if isinstance(error, HTTPException):
            return jsonify({"message": error.description}), error.code
        app.logger.exception("Unhandled error: %s", error)
        return jsonify({"message": "Server error"}), 500

    # --- ROUTES ---

    @app.route("/uploads/<path:filename>")
    def serve_uploaded_file(filename: str):
        return send_from_directory(app.config["UPLOAD_FOLDER"], filename)

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    register_admin_routes(app, db)
    register_seller_routes(app, db)
    register_user_routes(app, db)
    register_catalog_routes(app, db)

    return app


def main():
    app = create_app()
    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
