"""Tests for customer profiles, delivery addresses and the admin user list."""

import pytest

from accounts import add_address, remove_address, update_profile, validate_address
from results import ErrorKind
from schemas import Address


@pytest.fixture
def user_id(mongo_db):
    return str(mongo_db["user"].insert_one({"name": "Asha", "email": "asha@example.com"}).inserted_id)


@pytest.fixture
def home():
    return Address(full_name="Asha Patel", phone="555 010 2030", street="12 Dairy Lane",
                   city="Springfield", postal_code="12345")


class TestProfile:
    def test_update_name_and_phone(self, data_service, user_id):
        result = update_profile(data_service, user_id, "  Asha P.  ", "555-010-2030")

        assert result.value["name"] == "Asha P."
        assert data_service.get_user(user_id).value["phone"] == "555-010-2030"

    def test_email_and_admin_flag_are_not_writable(self, data_service, user_id):
        data_service.update_user(user_id, {"email": "other@example.com", "is_admin": True})

        user = data_service.get_user(user_id).value
        assert user["email"] == "asha@example.com"
        assert user["is_admin"] is False

    @pytest.mark.parametrize("name,phone,fields", [
        ("", "5550102030", {"name"}),
        ("Asha", "", {"phone"}),
        ("Asha", "555-0102", {"phone"}),
    ])
    def test_validation(self, data_service, user_id, name, phone, fields):
        result = update_profile(data_service, user_id, name, phone)

        assert result.kind == ErrorKind.VALIDATION
        assert set(result.errors) == fields

    def test_unknown_user(self, data_service):
        assert update_profile(data_service, "64b7f0c2a1b2c3d4e5f60718", "Asha", "5550102030").kind == ErrorKind.NOT_FOUND


class TestAddresses:
    def test_add_then_remove(self, data_service, user_id, home):
        added = add_address(data_service, user_id, home)

        addresses = data_service.get_user(user_id).value["addresses"]
        assert [a["id"] for a in addresses] == [added.value]
        assert addresses[0]["street"] == "12 Dairy Lane"

        assert remove_address(data_service, user_id, added.value).success
        assert data_service.get_user(user_id).value["addresses"] == []

    def test_each_address_gets_its_own_id(self, data_service, user_id, home):
        first = add_address(data_service, user_id, home).value
        second = add_address(data_service, user_id, home).value

        assert first != second
        assert len(data_service.get_user(user_id).value["addresses"]) == 2

    def test_remove_unknown_address(self, data_service, user_id):
        assert remove_address(data_service, user_id, "nope").kind == ErrorKind.NOT_FOUND

    def test_blank_address_reports_every_field(self):
        blank = Address(full_name="", phone="", street="", city="", postal_code="")

        assert set(validate_address(blank)) == {"full_name", "phone", "street", "city", "postal_code"}

    def test_invalid_address_is_not_stored(self, data_service, user_id, home):
        result = add_address(data_service, user_id, home.model_copy(update={"city": " "}))

        assert result.errors == {"city": "City is required"}
        assert data_service.get_user(user_id).value["addresses"] == []


def test_all_users_skips_malformed_records(data_service, mongo_db, user_id):
    mongo_db["user"].insert_one({"name": "Broken", "email": "not-an-email"})

    users = data_service.get_all_users().value

    assert [u["email"] for u in users] == ["asha@example.com"]
