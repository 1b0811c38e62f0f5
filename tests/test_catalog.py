import mongomock
import pytest
from bson import ObjectId

from storefront.catalog import (
    apply_product_fields,
    build_category_document,
    build_product_document,
    category_search_filter,
    is_product_available,
    release_stock,
    reserve_stock,
    toggle_product_status,
)
from storefront.errors import ValidationError


def product_payload(**overrides):
    payload = {
        "name": "Linen Shirt",
        "category": "Shirts",
        "price": "799.50",
        "quantity": "12",
        "sizes": '["M", "L"]',
        "colors": "White,Blue",
        "isReturnable": "true",
        "returnPeriod": "7",
        "onlinePaymentPercentage": "40",
        "dimensions": '{"chest": "40", "length": 28}',
    }
    payload.update(overrides)
    return payload


class TestProductDocuments:
    def test_form_values_are_coerced(self):
        product = build_product_document(product_payload(), ObjectId(), ["/uploads/a.png"])
        assert product["price"] == 799.5
        assert product["quantity"] == 12
        assert product["sizes"] == ["M", "L"]
        assert product["colors"] == ["White", "Blue"]
        assert product["is_returnable"] is True
        assert product["return_period"] == 7
        assert product["online_payment_percentage"] == 40.0
        assert product["dimensions"] == {"chest": 40.0, "length": 28.0}
        assert product["status"] == "enabled"
        assert product["moderation_status"] == "approved"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"name": ""},
            {"price": "0"},
            {"price": "abc"},
            {"quantity": "-1"},
            {"sizes": ""},
            {"onlinePaymentPercentage": "120"},
        ],
    )
    def test_invalid_fields_rejected(self, overrides):
        with pytest.raises(ValidationError):
            build_product_document(product_payload(**overrides), ObjectId(), [])

    def test_partial_update_keeps_other_fields(self):
        product = build_product_document(product_payload(), ObjectId(), [])
        apply_product_fields(product, {"price": "650"})
        assert product["price"] == 650.0
        assert product["name"] == "Linen Shirt"

    def test_toggle_and_availability(self):
        product = build_product_document(product_payload(), ObjectId(), [])
        assert is_product_available(product)
        assert toggle_product_status(product) == "disabled"
        assert not is_product_available(product)
        assert toggle_product_status(product) == "enabled"
        product["moderation_status"] = "suspended"
        assert not is_product_available(product)


class TestCategories:
    def test_name_whitespace_collapsed(self):
        category = build_category_document({"name": "  Ethnic   Wear "}, "/uploads/icon.png")
        assert category["name"] == "Ethnic Wear"

    def test_name_required(self):
        with pytest.raises(ValidationError):
            build_category_document({"name": "  "}, None)

    def test_search_filter_escapes_input(self):
        assert category_search_filter("a.b") == {"name": {"$regex": r"a\.b", "$options": "i"}}


class TestStock:
    def setup_method(self):
        self.db = mongomock.MongoClient()["catalog_test"]
        self.product_id = self.db.products.insert_one({"name": "Tee", "quantity": 3}).inserted_id

    def test_reserve_decrements(self):
        assert reserve_stock(self.db, self.product_id, 2)
        assert self.db.products.find_one({"_id": self.product_id})["quantity"] == 1

    def test_reserve_refuses_oversell(self):
        assert not reserve_stock(self.db, self.product_id, 4)
        assert self.db.products.find_one({"_id": self.product_id})["quantity"] == 3

    def test_release_restores(self):
        reserve_stock(self.db, self.product_id, 3)
        release_stock(self.db, [{"product_id": self.product_id, "quantity": 3}])
        assert self.db.products.find_one({"_id": self.product_id})["quantity"] == 3
