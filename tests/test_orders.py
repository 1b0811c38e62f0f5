import logging
from datetime import datetime, timedelta

import mongomock
import pytest
from bson import ObjectId

from storefront.errors import ValidationError
from storefront.orders import (
    PAYMENT_METHOD_COD,
    PAYMENT_METHOD_ONLINE,
    PAYMENT_METHOD_SPLIT,
    append_status_history,
    apply_save_rules,
    build_order,
    build_order_item,
    calculate_order_amounts,
    calculated_total,
    can_cancel,
    can_return,
    find_order,
    next_order_status,
    save_order,
    serialize_order,
    split_line_amount,
    validate_order,
)


def make_item(price=100.0, quantity=1, online=None, cod=0.0, **extra):
    item = {
        "product_id": ObjectId(),
        "name": "Cotton Tee",
        "price": price,
        "quantity": quantity,
        "size": "M",
        "color": "Black",
        "online_amount": price * quantity if online is None else online,
        "cod_amount": cod,
    }
    item.update(extra)
    return item


def make_order(items=None, shipping=0, **extra):
    order = {
        "order_id": "ORD-TEST00000001",
        "user_id": ObjectId(),
        "seller_id": ObjectId(),
        "customer": {"name": "Asha Rao", "phone_number": "+919876543210", "address": "1 MG Road, Pune"},
        "items": items if items is not None else [make_item()],
        "shipping": shipping,
        "payment_method": PAYMENT_METHOD_ONLINE,
        "payment_status": "pending",
        "status": "order confirmed",
        "status_history": [],
    }
    order.update(extra)
    return order


class TestNextOrderStatus:
    @pytest.mark.parametrize(
        "current, expected",
        [
            ("order confirmed", "processing"),
            ("processing", "shipped"),
            ("shipped", "out for delivery"),
            ("out for delivery", "delivered"),
            ("delivered", "delivered"),
            ("cancelled", "cancelled"),
            ("returned", "returned"),
            ("lost in transit", "lost in transit"),
            (None, None),
        ],
    )
    def test_progression(self, current, expected):
        assert next_order_status(current) == expected

    def test_terminal_statuses_never_move(self):
        for terminal in ("cancelled", "returned"):
            status = terminal
            for _ in range(10):
                status = next_order_status(status)
            assert status == terminal

    def test_forward_walk_ends_at_delivered(self):
        status = "order confirmed"
        seen = [status]
        for _ in range(10):
            status = next_order_status(status)
            seen.append(status)
        assert seen[:5] == ["order confirmed", "processing", "shipped", "out for delivery", "delivered"]
        assert set(seen[5:]) == {"delivered"}


class TestAmounts:
    def test_total_sums_online_cod_and_shipping(self):
        items = [make_item(online=400, cod=600), make_item(online=200, cod=0)]
        assert calculate_order_amounts(items, 50) == {
            "online_amount": 600.0,
            "cod_amount": 600.0,
            "total": 1250.0,
        }

    def test_empty_items_total_is_shipping(self):
        assert calculate_order_amounts([], 40)["total"] == 40.0

    def test_rounding_to_two_places(self):
        items = [make_item(online=0.1, cod=0.2)]
        assert calculate_order_amounts(items)["total"] == 0.3

    def test_split_line_amount(self):
        assert split_line_amount(1000, PAYMENT_METHOD_ONLINE, 40) == (1000.0, 0.0)
        assert split_line_amount(1000, PAYMENT_METHOD_COD, 40) == (0.0, 1000.0)
        assert split_line_amount(1000, PAYMENT_METHOD_SPLIT, 40) == (400.0, 600.0)

    def test_split_percentage_is_clamped(self):
        assert split_line_amount(100, PAYMENT_METHOD_SPLIT, 150) == (100.0, 0.0)
        assert split_line_amount(100, PAYMENT_METHOD_SPLIT, -5) == (0.0, 100.0)

    def test_calculated_total_uses_price_and_quantity(self):
        order = make_order(items=[make_item(price=250, quantity=2)], shipping=30)
        assert calculated_total(order) == 530.0


class TestSaveRules:
    def test_stored_total_is_overwritten(self):
        order = make_order(items=[make_item(online=300, cod=200)], shipping=50, total=9999)
        corrected_from = apply_save_rules(order)
        assert corrected_from == 9999
        assert order["total"] == 550.0
        assert order["online_amount"] == 300.0
        assert order["cod_amount"] == 200.0

    def test_matching_total_is_not_reported(self):
        order = make_order(items=[make_item(online=100)], total=100.0)
        assert apply_save_rules(order) is None
        assert order["total"] == 100.0

    def test_history_gets_initial_entry(self):
        order = make_order()
        now = datetime(2024, 5, 1, 10, 0)
        apply_save_rules(order, details="Order placed", now=now)
        assert order["status_history"] == [
            {"status": "order confirmed", "timestamp": now, "details": "Order placed"}
        ]
        assert order["created_at"] == now
        assert order["updated_at"] == now

    def test_history_not_duplicated_for_same_status(self):
        order = make_order()
        apply_save_rules(order)
        apply_save_rules(order)
        apply_save_rules(order)
        assert len(order["status_history"]) == 1

    def test_history_appends_on_change(self):
        order = make_order()
        apply_save_rules(order)
        order["status"] = "processing"
        apply_save_rules(order, details="Packed")
        assert [entry["status"] for entry in order["status_history"]] == ["order confirmed", "processing"]
        assert order["status_history"][-1]["details"] == "Packed"

    def test_append_status_history_reports_change(self):
        order = make_order()
        assert append_status_history(order) is True
        assert append_status_history(order) is False

    def test_status_is_normalized(self):
        order = make_order(status="  Shipped ")
        apply_save_rules(order)
        assert order["status"] == "shipped"

    def test_missing_status_defaults_to_confirmed(self):
        order = make_order(status=None)
        apply_save_rules(order)
        assert order["status"] == "order confirmed"


class TestValidation:
    def test_valid_order_passes(self):
        order = make_order()
        apply_save_rules(order)
        validate_order(order)

    def test_unknown_payment_method_rejected(self):
        order = make_order(payment_method="Barter")
        apply_save_rules(order)
        with pytest.raises(ValidationError):
            validate_order(order)

    def test_unknown_status_rejected(self):
        order = make_order(status="lost")
        apply_save_rules(order)
        with pytest.raises(ValidationError):
            validate_order(order)

    def test_item_needs_size(self):
        order = make_order(items=[make_item(size="")])
        apply_save_rules(order)
        with pytest.raises(ValidationError) as exc_info:
            validate_order(order)
        assert exc_info.value.message == "Item 1 needs a size."

    def test_customer_address_required(self):
        order = make_order(customer={"name": "Asha", "phone_number": "+919876543210", "address": ""})
        apply_save_rules(order)
        with pytest.raises(ValidationError):
            validate_order(order)


class TestBuildOrder:
    def test_build_order_item_splits_by_product_percentage(self):
        product = {
            "_id": ObjectId(),
            "name": "Kurta",
            "price": 500,
            "online_payment_percentage": 40,
            "images": ["/uploads/kurta.png"],
            "is_returnable": True,
            "return_period": 7,
            "brand": "Loom",
        }
        item = build_order_item(product, {"quantity": 2, "size": "M", "color": "Red"}, PAYMENT_METHOD_SPLIT)
        assert item["online_amount"] == 400.0
        assert item["cod_amount"] == 600.0
        assert item["image"] == "/uploads/kurta.png"
        assert item["brand"] == "Loom"
        assert item["return_period"] == 7

    def test_build_order_defaults(self):
        user = {"_id": ObjectId()}
        order = build_order(
            user,
            str(ObjectId()),
            [make_item()],
            PAYMENT_METHOD_ONLINE,
            {"name": "Asha", "phone_number": "+919876543210", "address": "Pune"},
            shipping=50,
        )
        assert order["order_id"].startswith("ORD-")
        assert order["status"] == "order confirmed"
        assert order["payment_status"] == "pending"
        assert isinstance(order["seller_id"], ObjectId)
        assert order["customer"]["email"] is None


class TestPersistence:
    def setup_method(self):
        self.db = mongomock.MongoClient()["orders_test"]

    def test_save_inserts_then_replaces(self):
        order = save_order(self.db, make_order(), details="Order placed")
        assert order["_id"] is not None
        assert self.db.orders.count_documents({}) == 1

        order["status"] = next_order_status(order["status"])
        save_order(self.db, order)
        stored = self.db.orders.find_one({"_id": order["_id"]})
        assert stored["status"] == "processing"
        assert [entry["status"] for entry in stored["status_history"]] == ["order confirmed", "processing"]
        assert self.db.orders.count_documents({}) == 1

    def test_correction_is_logged(self, caplog):
        with caplog.at_level(logging.WARNING, logger="storefront.orders"):
            save_order(self.db, make_order(total=1.0))
        assert "total corrected" in caplog.text

    def test_invalid_order_is_not_written(self):
        with pytest.raises(ValidationError):
            save_order(self.db, make_order(payment_method="Barter"))
        assert self.db.orders.count_documents({}) == 0

    def test_find_order_by_order_id_or_object_id(self):
        order = save_order(self.db, make_order())
        assert find_order(self.db, "ORD-TEST00000001")["_id"] == order["_id"]
        assert find_order(self.db, str(order["_id"]))["_id"] == order["_id"]
        assert find_order(self.db, "nope") is None
        assert find_order(self.db, str(order["_id"]), {"user_id": ObjectId()}) is None

    def test_serialize_order_includes_derived_fields(self):
        order = save_order(self.db, make_order(shipping=20))
        serialized = serialize_order(order)
        assert serialized["id"] == str(order["_id"])
        assert serialized["calculated_total"] == 120.0
        assert serialized["next_status"] == "processing"
        assert serialized["status_history"][0]["timestamp"].endswith("Z")


class TestCancelAndReturn:
    def test_can_cancel_only_before_shipping(self):
        assert can_cancel(make_order(status="order confirmed"))
        assert can_cancel(make_order(status="processing"))
        assert not can_cancel(make_order(status="shipped"))
        assert not can_cancel(make_order(status="cancelled"))

    def delivered_order(self, delivered_at, items):
        return make_order(
            items=items,
            status="delivered",
            status_history=[
                {"status": "order confirmed", "timestamp": delivered_at - timedelta(days=3)},
                {"status": "delivered", "timestamp": delivered_at},
            ],
        )

    def test_return_window_uses_shortest_period(self):
        delivered_at = datetime(2024, 5, 1)
        order = self.delivered_order(
            delivered_at,
            [
                make_item(is_returnable=True, return_period=10),
                make_item(is_returnable=True, return_period=3),
            ],
        )
        assert can_return(order, now=delivered_at + timedelta(days=3))
        assert not can_return(order, now=delivered_at + timedelta(days=4))

    def test_non_returnable_item_blocks_return(self):
        delivered_at = datetime(2024, 5, 1)
        order = self.delivered_order(
            delivered_at,
            [make_item(is_returnable=True, return_period=10), make_item(is_returnable=False)],
        )
        assert not can_return(order, now=delivered_at)

    def test_undelivered_order_cannot_be_returned(self):
        assert not can_return(make_order(status="shipped"))
