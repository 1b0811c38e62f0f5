import mongomock
import pytest

from storefront import create_app


@pytest.fixture
def db():
    return mongomock.MongoClient()["storefront_test"]


@pytest.fixture
def app(db, tmp_path):
    app = create_app(
        {
            "TESTING": True,
            "JWT_SECRET_KEY": "test-secret-key-that-is-long-enough-for-hs256",
            "UPLOAD_FOLDER": str(tmp_path / "uploads"),
            "ORDER_SHIPPING_FEE": 50.0,
            "RESEND_API_KEY": "",
            "RAZORPAY_KEY_ID": "",
            "RAZORPAY_KEY_SECRET": "",
        },
        database=db,
    )
    return app


@pytest.fixture
def client(app):
    return app.test_client()
