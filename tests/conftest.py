"""Shared pytest fixtures for DairyDrop tests."""

import threading

import mongomock
import pytest
from bson import ObjectId

from cart import CartStore, LocalStorage
from data_service import MongoDataService
from schemas import Product


class SerialSession:
    """Stands in for a pymongo ClientSession.

    mongomock has no sessions, so transactions run session-less while a
    shared lock keeps them from interleaving, as the server would.
    """

    def __init__(self, lock):
        self._lock = lock

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def with_transaction(self, callback):
        with self._lock:
            return callback(None)


class SerialClient:
    def __init__(self):
        self._lock = threading.Lock()

    def start_session(self):
        return SerialSession(self._lock)


@pytest.fixture
def mongo_db():
    """Return an empty in-process MongoDB database."""
    return mongomock.MongoClient()["dairydrop_test"]


@pytest.fixture
def data_service(mongo_db):
    """Return a data service over the mongomock database."""
    return MongoDataService(mongo_db, SerialClient())


@pytest.fixture
def make_product(data_service):
    """Insert a product and return it as a Product model."""

    def _make(name="Whole Milk 1L", price=2.00, quantity=5, category="Milk", **extra):
        data = {"name": name, "price": price, "quantity": quantity, "category": category}
        data.update(extra)
        product_id = data_service.create_product(data).value
        if "rating_avg" in extra or "rating_count" in extra:
            data_service.db["product"].update_one(
                {"_id": ObjectId(product_id)},
                {"$set": {k: extra[k] for k in ("rating_avg", "rating_count") if k in extra}},
            )
        return data_service.get_product_by_id(product_id).value

    return _make


@pytest.fixture
def storage(tmp_path):
    """Return local storage backed by a temporary file."""
    return LocalStorage(str(tmp_path / "storage.json"))


@pytest.fixture
def cart(storage):
    """Return an empty cart persisted to the temporary storage."""
    return CartStore(storage=storage)


@pytest.fixture
def product_a():
    return Product(id="prod-a", name="Greek Yogurt", price=2.00, quantity=5, category="Yogurt")


@pytest.fixture
def product_b():
    return Product(id="prod-b", name="Salted Butter", price=4.25, quantity=10, category="Butter")


@pytest.fixture
def customer_info():
    from schemas import CustomerInfo

    return CustomerInfo(
        full_name="Asha Patel",
        email="asha@example.com",
        phone="+1 (555) 010-2030",
        address="12 Dairy Lane",
        city="Springfield",
        postal_code="12345",
    )
