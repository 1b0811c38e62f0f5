import pytest

from storefront.accounts import (
    apply_seller_profile_update,
    apply_user_profile_update,
    build_admin_document,
    build_seller_document,
    build_user_document,
    check_password,
    record_search,
    serialize_account,
)
from storefront.errors import ValidationError
from storefront.helpers import normalize_phone, parse_json_list, safe_positive_int


class TestHelpers:
    def test_normalize_phone_strips_formatting(self):
        assert normalize_phone(" +91 98765-43210 ") == "+919876543210"
        assert normalize_phone("(022) 555 0100") == "0225550100"

    def test_parse_json_list_accepts_json_and_csv(self):
        assert parse_json_list('["S", "M"]') == ["S", "M"]
        assert parse_json_list("S, M ,") == ["S", "M"]
        assert parse_json_list(None) == []

    def test_safe_positive_int(self):
        assert safe_positive_int("3") == 3
        assert safe_positive_int("-2") == 0
        assert safe_positive_int("abc", 1) == 1


class TestUserDocuments:
    def test_build_user_hashes_password(self):
        user = build_user_document(
            {"phoneNumber": "+91 98765 43210", "password": "hunter22", "email": "Asha@Example.com"}
        )
        assert user["phone_number"] == "+919876543210"
        assert user["email"] == "asha@example.com"
        assert user["password"] != b"hunter22"
        assert check_password("hunter22", user["password"])
        assert not check_password("wrong", user["password"])
        assert user["role"] == "user"
        assert user["status"] == "approved"
        assert user["cart"] == [] and user["wishlist"] == []

    def test_email_is_omitted_when_blank(self):
        user = build_user_document({"phone_number": "+919876543210", "password": "x"})
        assert "email" not in user

    def test_invalid_phone_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            build_user_document({"phone_number": "not-a-phone", "password": "x"})
        assert exc_info.value.field == "phone_number"

    def test_invalid_email_rejected(self):
        with pytest.raises(ValidationError):
            build_user_document({"phone_number": "+919876543210", "password": "x", "email": "nope"})

    def test_password_required(self):
        with pytest.raises(ValidationError):
            build_user_document({"phone_number": "+919876543210"})

    def test_profile_update_normalizes_addresses(self):
        user = build_user_document({"phone_number": "+919876543210", "password": "x"})
        apply_user_profile_update(
            user,
            {
                "firstName": "Asha",
                "addresses": [{"street": "1 MG Road", "city": "Pune", "state": "MH", "postalCode": "411001"}],
                "preferences": {"notifications": "false", "preferredCategories": "Shirts,Kurtas"},
            },
        )
        assert user["first_name"] == "Asha"
        assert user["addresses"] == [
            {"street": "1 MG Road", "city": "Pune", "state": "MH", "postal_code": "411001", "country": "India"}
        ]
        assert user["preferences"] == {"notifications": False, "preferred_categories": ["Shirts", "Kurtas"]}

    def test_incomplete_address_rejected(self):
        user = build_user_document({"phone_number": "+919876543210", "password": "x"})
        with pytest.raises(ValidationError):
            apply_user_profile_update(user, {"addresses": [{"street": "1 MG Road"}]})

    def test_bio_limit(self):
        user = build_user_document({"phone_number": "+919876543210", "password": "x"})
        with pytest.raises(ValidationError):
            apply_user_profile_update(user, {"bio": "x" * 501})

    def test_recent_searches_are_deduplicated_and_capped(self):
        user = {"recent_searches": []}
        for term in ["shirt", "kurta", "shirt"] + [f"term {index}" for index in range(12)]:
            record_search(user, term)
        assert len(user["recent_searches"]) == 10
        assert user["recent_searches"][0] == "term 11"
        record_search(user, "kurta")
        assert user["recent_searches"].count("kurta") == 1
        assert user["recent_searches"][0] == "kurta"

    def test_serialize_account_hides_password(self):
        user = build_user_document({"phone_number": "+919876543210", "password": "x"})
        assert "password" not in serialize_account(user)


class TestSellerAndAdminDocuments:
    def test_seller_starts_pending(self):
        seller = build_seller_document(
            {
                "phoneNumber": "+919800000001",
                "password": "x",
                "name": "Meera",
                "shopName": "Meera Textiles",
                "bankAccount": {"accountNumber": "0001", "ifscCode": "HDFC0001"},
            }
        )
        assert seller["status"] == "pending"
        assert seller["shop_name"] == "Meera Textiles"
        assert seller["bank_account"] == {"account_number": "0001", "ifsc_code": "HDFC0001"}

    def test_seller_name_required(self):
        with pytest.raises(ValidationError):
            build_seller_document({"phone_number": "+919800000001", "password": "x"})

    def test_seller_profile_update_accepts_json_bank_account(self):
        seller = build_seller_document({"phone_number": "+919800000001", "password": "x", "name": "Meera"})
        apply_seller_profile_update(seller, {"bankAccount": '{"accountHolderName": "Meera"}', "upiId": "meera@upi"})
        assert seller["bank_account"] == {"account_holder_name": "Meera"}
        assert seller["upi_id"] == "meera@upi"

    def test_admin_requires_phone_and_password(self):
        with pytest.raises(ValidationError):
            build_admin_document({"password": "x"})
        admin = build_admin_document({"phone_number": "+919811111111", "password": "x", "name": "Root"})
        assert check_password("x", admin["password"])
