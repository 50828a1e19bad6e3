import re
import threading

import mongomock
import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

from schemas import ApprovedEmailCreate, Order, OrderItemCreate, ProductCreate, UserCreate, UserUpdate
from storage import DuplicateKeyError, MemoryStorage, MongoStorage, SAMPLE_PRODUCTS


@pytest.fixture(params=["memory", "mongodb"])
def store(request):
    if request.param == "memory":
        return MemoryStorage()
    return MongoStorage(mongomock.MongoClient()["ecommerce"])


def _user(n=1, role="customer"):
    return UserCreate(name=f"User {n}", email=f"user{n}@example.com", role=role, google_id=f"gid-{n}")


def _order(user_id, total=14999):
    return Order(user_id=user_id, status="paid", total=total, shipping_address="1 Main St")


def _item(product_id="p1", price=14999):
    return OrderItemCreate(product_id=product_id, quantity=1, price=price, color="White", size="Standard")


def test_seeds_sample_data(store):
    assert len(store.get_products()) == len(SAMPLE_PRODUCTS)
    assert store.get_approved_email("admin@example.com")["role"] == "admin"
    assert store.get_approved_email("rider@example.com")["role"] == "rider"
    assert store.get_approved_email("customer@example.com")["role"] == "customer"
    assert store.get_approved_email("stranger@example.com") is None


def test_products_by_category(store):
    fans = store.get_products_by_category("fan")
    assert len(fans) == 3
    assert {p["category"] for p in fans} == {"fan"}
    assert store.get_products_by_category("heater") == []


def test_get_product(store):
    product = store.get_products()[0]
    assert store.get_product(product["id"])["name"] == product["name"]
    assert store.get_product("not-an-id") is None
    assert store.get_product(str(ObjectId())) is None


def test_create_product(store):
    created = store.create_product(ProductCreate(
        name="Window AC", description="Fits most windows.", category="ac", base_price=29999,
        image="https://example.com/ac.jpg", colors=["White"], sizes=["8,000"],
    ))
    assert created["basePrice"] == 29999
    assert store.get_product(created["id"])["name"] == "Window AC"


def test_create_and_find_user(store):
    user = store.create_user(_user())
    assert user["id"]
    assert user["role"] == "customer"
    assert user["createdAt"] is not None
    assert store.get_user(user["id"])["email"] == "user1@example.com"
    assert store.get_user_by_email("user1@example.com")["id"] == user["id"]
    assert store.get_user_by_google_id("gid-1")["id"] == user["id"]
    assert store.get_user("missing") is None


def test_user_email_and_google_id_are_unique(store):
    store.create_user(_user(1))
    with pytest.raises(DuplicateKeyError):
        store.create_user(UserCreate(name="Copy", email="user1@example.com", google_id="gid-other"))
    with pytest.raises(DuplicateKeyError):
        store.create_user(UserCreate(name="Copy", email="other@example.com", google_id="gid-1"))


def test_update_user(store):
    user = store.create_user(_user())
    updated = store.update_user(user["id"], UserUpdate(phone_number="555-0100", address="1 Main St"))
    assert updated["phoneNumber"] == "555-0100"
    assert updated["name"] == "User 1"
    assert store.get_user(user["id"])["address"] == "1 Main St"
    assert store.update_user(str(ObjectId()), UserUpdate(name="Ghost")) is None


def test_approved_email_is_unique(store):
    with pytest.raises(DuplicateKeyError):
        store.add_approved_email(ApprovedEmailCreate(email="admin@example.com", role="customer"))


def test_ensure_approved_email_is_idempotent(store):
    first = store.ensure_approved_email("dev@example.com", "admin")
    second = store.ensure_approved_email("dev@example.com", "admin")
    assert first["id"] == second["id"]
    assert store.get_approved_email("dev@example.com")["role"] == "admin"


def test_order_is_created_with_its_items(store):
    order = store.create_order(_order("u1"), [_item("p1"), _item("p2", price=3999)])
    assert order["status"] == "paid"
    assert order["userId"] == "u1"

    result = store.get_order_with_items(order["id"])
    assert result["order"]["id"] == order["id"]
    assert len(result["items"]) == 2
    assert {i["orderId"] for i in result["items"]} == {order["id"]}
    assert all(i["id"] for i in result["items"])
    assert store.get_order_items(order["id"]) == result["items"]


def test_missing_order(store):
    assert store.get_order("missing") is None
    assert store.get_order_with_items("missing") is None
    assert store.get_order_with_items(str(ObjectId())) is None
    assert store.get_order_items("missing") == []
    assert store.update_order_status("missing", "shipped") is None


def test_order_listings_are_scoped(store):
    mine = store.create_order(_order("u1"), [_item()])
    store.create_order(_order("u2"), [_item()])

    assert [o["id"] for o in store.get_user_orders("u1")] == [mine["id"]]
    assert len(store.get_all_orders()) == 2
    assert store.get_rider_orders("r1") == []


def test_update_order_status_assigns_and_keeps_rider(store):
    order = store.create_order(_order("u1"), [_item()])

    shipped = store.update_order_status(order["id"], "shipped", "r1")
    assert shipped["status"] == "shipped"
    assert shipped["riderId"] == "r1"
    assert [o["id"] for o in store.get_rider_orders("r1")] == [order["id"]]

    delivered = store.update_order_status(order["id"], "delivered")
    assert delivered["status"] == "delivered"
    assert delivered["riderId"] == "r1"
    assert store.get_order(order["id"])["status"] == "delivered"


def test_memory_ids_look_like_mock_ids():
    store = MemoryStorage()
    user = store.create_user(_user())
    assert re.fullmatch(r"mock_\d+_\d+", user["id"])


def test_memory_returns_copies():
    store = MemoryStorage()
    product = store.get_products()[0]
    product["colors"].append("Gold")
    assert "Gold" not in store.get_product(product["id"])["colors"]


def test_memory_without_seed_is_empty():
    store = MemoryStorage(seed=False)
    assert store.get_products() == []
    assert store.get_approved_email("admin@example.com") is None


def test_mongo_seeds_only_an_empty_catalog():
    db = mongomock.MongoClient()["ecommerce"]
    db["product"].insert_one({"name": "Existing fan", "category": "fan"})
    store = MongoStorage(db)
    assert len(store.get_products()) == 1
    assert store.get_approved_email("admin@example.com") is None


def test_mongo_stores_string_references():
    db = mongomock.MongoClient()["ecommerce"]
    store = MongoStorage(db)
    order = store.create_order(_order("u1"), [_item()])
    raw = db["order_item"].find_one({})
    assert raw["orderId"] == order["id"]
    assert "_id" not in store.get_order(order["id"])


def test_memory_reads_while_orders_are_written():
    store = MemoryStorage()
    errors = []
    done = threading.Event()

    def writer():
        try:
            for n in range(300):
                store.create_order(_order(f"u{n % 3}"), [_item()])
        except Exception as e:
            errors.append(e)
        finally:
            done.set()

    def reader():
        try:
            while not done.is_set():
                store.get_user_orders("u1")
                store.get_all_orders()
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=writer), threading.Thread(target=reader)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(store.get_all_orders()) == 300


def test_mongo_order_survives_failed_item_insert(monkeypatch):
    db = mongomock.MongoClient()["ecommerce"]
    store = MongoStorage(db)

    def fail(self, *args, **kwargs):
        raise PyMongoError("insert_many failed")

    monkeypatch.setattr(mongomock.Collection, "insert_many", fail)
    with pytest.raises(PyMongoError):
        store.create_order(_order("u1"), [_item()])

    orders = store.get_user_orders("u1")
    assert len(orders) == 1
    assert store.get_order(orders[0]["id"])["total"] == 14999
    assert store.get_order_items(orders[0]["id"]) == []


def test_mongo_read_errors_are_not_found(monkeypatch):
    store = MongoStorage(mongomock.MongoClient()["ecommerce"])
    user = store.create_user(_user())

    def fail(self, *args, **kwargs):
        raise PyMongoError("connection reset")

    monkeypatch.setattr(mongomock.Collection, "find", fail)
    monkeypatch.setattr(mongomock.Collection, "find_one", fail)
    assert store.get_user(user["id"]) is None
    assert store.get_user_by_email("user1@example.com") is None
    assert store.get_user_orders(user["id"]) == []
    assert store.get_all_orders() == []
    assert store.get_order_with_items(str(ObjectId())) is None
