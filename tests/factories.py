import io

from storefront.accounts import build_admin_document, build_seller_document, build_user_document
from storefront.catalog import build_product_document

PASSWORD = "secret-pass-123"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def png_upload(filename="photo.png", size=None):
    content = PNG_BYTES if size is None else PNG_BYTES + b"\x00" * size
    return (io.BytesIO(content), filename, "image/png")


def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


def create_user(db, phone_number="+919876543210", **extra):
    payload = {
        "phone_number": phone_number,
        "password": PASSWORD,
        "first_name": "Asha",
        "last_name": "Rao",
        "email": f"user{phone_number[-4:]}@example.com",
    }
    payload.update(extra)
    document = build_user_document(payload)
    document["_id"] = db.users.insert_one(document).inserted_id
    return document


def create_seller(db, phone_number="+919800000001", status="enabled", **extra):
    payload = {
        "phone_number": phone_number,
        "password": PASSWORD,
        "name": "Meera",
        "shop_name": f"Shop {phone_number[-2:]}",
    }
    payload.update(extra)
    document = build_seller_document(payload)
    document["status"] = status
    document["_id"] = db.sellers.insert_one(document).inserted_id
    return document


def create_admin(db, phone_number="+919811111111"):
    document = build_admin_document({"phone_number": phone_number, "password": PASSWORD, "name": "Root"})
    document["_id"] = db.admins.insert_one(document).inserted_id
    return document


def create_product(db, seller, **fields):
    payload = {
        "name": "Linen Shirt",
        "category": "Shirts",
        "price": 500,
        "quantity": 10,
        "sizes": ["M", "L"],
        "colors": ["Red", "Blue"],
    }
    payload.update(fields)
    document = build_product_document(payload, seller["_id"], ["/uploads/shirt.png"])
    document["_id"] = db.products.insert_one(document).inserted_id
    return document


def login(client, role, phone_number):
    response = client.post(
        f"/api/{role}/auth/login",
        json={"phoneNumber": phone_number, "password": PASSWORD},
    )
    assert response.status_code == 200, response.get_json()
    return response.get_json()["token"]
