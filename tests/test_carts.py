import pytest
from bson import ObjectId

from storefront import carts
from storefront.errors import ValidationError


def cart_payload(product_id, quantity=1, size="M", color="Red"):
    return {"productId": str(product_id), "quantity": quantity, "size": size, "color": color}


class TestCartUpsert:
    def setup_method(self):
        self.user = {"cart": [], "saved_for_later": [], "wishlist": []}
        self.product_id = ObjectId()

    def test_same_variant_overwrites_quantity(self):
        carts.update_cart(self.user, cart_payload(self.product_id, 2))
        carts.update_cart(self.user, cart_payload(self.product_id, 5))
        assert len(self.user["cart"]) == 1
        assert self.user["cart"][0]["quantity"] == 5

    def test_lower_quantity_also_overwrites(self):
        carts.update_cart(self.user, cart_payload(self.product_id, 5))
        carts.update_cart(self.user, cart_payload(self.product_id, 1))
        assert self.user["cart"][0]["quantity"] == 1

    def test_different_variant_gets_own_entry(self):
        carts.update_cart(self.user, cart_payload(self.product_id, 1, size="M"))
        carts.update_cart(self.user, cart_payload(self.product_id, 1, size="L"))
        carts.update_cart(self.user, cart_payload(self.product_id, 1, size="L", color="Blue"))
        assert [(entry["size"], entry["color"]) for entry in self.user["cart"]] == [
            ("M", "Red"),
            ("L", "Red"),
            ("L", "Blue"),
        ]

    def test_entries_store_object_ids(self):
        entry = carts.update_cart(self.user, cart_payload(self.product_id))
        assert entry["product_id"] == self.product_id
        assert "added_at" in entry

    @pytest.mark.parametrize(
        "payload",
        [
            {"quantity": 1, "size": "M", "color": "Red"},
            {"productId": "x", "size": "M", "color": "Red"},
            {"productId": "x", "quantity": 0, "size": "M", "color": "Red"},
            {"productId": "x", "quantity": 1, "color": "Red"},
            {"productId": "x", "quantity": 1, "size": "M"},
        ],
    )
    def test_missing_fields_rejected(self, payload):
        with pytest.raises(ValidationError) as exc_info:
            carts.update_cart(self.user, payload)
        assert exc_info.value.message == "Missing required cart fields: productId, quantity, size, or color"
        assert self.user["cart"] == []

    def test_bad_product_id_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            carts.update_cart(self.user, cart_payload("not-an-id"))
        assert exc_info.value.message == "Invalid product identifier."

    def test_saved_for_later_uses_same_rules(self):
        carts.update_saved_for_later(self.user, cart_payload(self.product_id, 3))
        carts.update_saved_for_later(self.user, cart_payload(self.product_id, 1))
        assert len(self.user["saved_for_later"]) == 1
        assert self.user["saved_for_later"][0]["quantity"] == 1
        assert self.user["cart"] == []


class TestCartRemoval:
    def setup_method(self):
        self.product_id = ObjectId()
        self.user = {"cart": [], "saved_for_later": []}
        carts.update_cart(self.user, cart_payload(self.product_id, 1, size="M"))
        carts.update_cart(self.user, cart_payload(self.product_id, 2, size="L"))

    def test_remove_specific_variant(self):
        removed = carts.remove_from_cart(self.user, str(self.product_id), size="M", color="Red")
        assert len(removed) == 1
        assert [entry["size"] for entry in self.user["cart"]] == ["L"]

    def test_remove_without_variant_removes_all(self):
        removed = carts.remove_from_cart(self.user, self.product_id)
        assert len(removed) == 2
        assert self.user["cart"] == []

    def test_remove_unknown_product(self):
        assert carts.remove_from_cart(self.user, ObjectId()) == []
        assert len(self.user["cart"]) == 2

    def test_clear_cart(self):
        carts.clear_cart(self.user)
        assert self.user["cart"] == []

    def test_move_round_trip(self):
        moved = carts.move_to_saved_for_later(self.user, self.product_id, size="L")
        assert len(moved) == 1
        assert [entry["size"] for entry in self.user["cart"]] == ["M"]
        assert self.user["saved_for_later"][0]["quantity"] == 2

        carts.move_to_cart(self.user, self.product_id, size="L")
        assert self.user["saved_for_later"] == []
        assert sorted(entry["size"] for entry in self.user["cart"]) == ["L", "M"]

    def test_move_overwrites_existing_target_entry(self):
        carts.update_saved_for_later(self.user, cart_payload(self.product_id, 9, size="M"))
        carts.move_to_saved_for_later(self.user, self.product_id, size="M")
        assert len(self.user["saved_for_later"]) == 1
        assert self.user["saved_for_later"][0]["quantity"] == 1


class TestWishlist:
    def setup_method(self):
        self.user = {}
        self.product_id = ObjectId()

    def test_toggle_adds_then_removes(self):
        assert carts.toggle_wishlist(self.user, str(self.product_id)) is True
        assert carts.is_wishlisted(self.user, self.product_id)
        assert carts.toggle_wishlist(self.user, self.product_id) is False
        assert self.user["wishlist"] == []

    def test_toggle_twice_restores_other_entries(self):
        other = ObjectId()
        carts.toggle_wishlist(self.user, other)
        before = [entry["product_id"] for entry in self.user["wishlist"]]
        carts.toggle_wishlist(self.user, self.product_id)
        carts.toggle_wishlist(self.user, self.product_id)
        assert [entry["product_id"] for entry in self.user["wishlist"]] == before

    def test_invalid_id_rejected(self):
        with pytest.raises(ValidationError):
            carts.toggle_wishlist(self.user, "bad")
