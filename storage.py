"""
Storage backends for users, approved emails, products and orders.

Two implementations share the ``Storage`` contract: ``MongoStorage`` maps
every call onto a MongoDB collection, ``MemoryStorage`` keeps everything in
dicts for the lifetime of the process. Both return plain dicts with camelCase
keys and a string ``id``.

Lookups never raise: a missing document, a malformed id or a driver error all
come back as ``None`` (or an empty list). Writes raise.
"""
import copy
import functools
import itertools
import logging
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo import errors as pymongo_errors
from pymongo.database import Database

from schemas import ApprovedEmailCreate, ProductCreate, to_document

logger = logging.getLogger(__name__)


class StorageError(Exception):
    pass


class DuplicateKeyError(StorageError):
    pass


SAMPLE_APPROVED_EMAILS = [
    {"email": "admin@example.com", "role": "admin"},
    {"email": "rider@example.com", "role": "rider"},
    {"email": "customer@example.com", "role": "customer"},
]

SAMPLE_PRODUCTS = [
    {
        "name": "Premium Tower Fan",
        "description": "High-performance tower fan with oscillation and remote control.",
        "category": "fan",
        "basePrice": 14999,
        "image": "https://images.unsplash.com/photo-1551498641-f5c6fe9d4afa?ixlib=rb-1.2.1&auto=format&fit=crop&w=500&q=60",
        "averageRating": 4,
        "reviewCount": 42,
        "colors": ["White", "Black", "Silver"],
        "sizes": ["Standard", "Compact", "Large"],
    },
    {
        "name": "Eco Smart AC",
        "description": "Energy-efficient air conditioner with smart temperature control.",
        "category": "ac",
        "basePrice": 54999,
        "image": "https://images.unsplash.com/photo-1588854337115-1c67d9247e4d?ixlib=rb-1.2.1&auto=format&fit=crop&w=500&q=60",
        "averageRating": 5,
        "reviewCount": 118,
        "colors": ["White", "Silver"],
        "sizes": ["8,000", "10,000", "12,000"],
    },
    {
        "name": "Ceiling Fan with Light",
        "description": "Modern ceiling fan with integrated LED light and wireless remote.",
        "category": "fan",
        "basePrice": 19999,
        "image": "https://images.unsplash.com/photo-1631083734151-b3112976d253?ixlib=rb-1.2.1&auto=format&fit=crop&w=500&q=60",
        "averageRating": 4,
        "reviewCount": 87,
        "colors": ["Brushed Nickel", "Oil-Rubbed Bronze", "Matte White"],
        "sizes": ["42 inch", "52 inch", "60 inch"],
    },
    {
        "name": "Portable AC Unit",
        "description": "Move from room to room with this powerful portable air conditioner.",
        "category": "ac",
        "basePrice": 32999,
        "image": "https://images.unsplash.com/photo-1580810734586-763f9a2cfcb4?ixlib=rb-1.2.1&auto=format&fit=crop&w=500&q=60",
        "averageRating": 3,
        "reviewCount": 56,
        "colors": ["White", "Black"],
        "sizes": ["8,000", "10,000", "14,000"],
    },
    {
        "name": "Ultra Quiet Desk Fan",
        "description": "Whisper-quiet operation with adjustable speeds and tilt.",
        "category": "fan",
        "basePrice": 3999,
        "image": "https://images.unsplash.com/photo-1513506003901-1e6a229e2d15?ixlib=rb-1.2.1&auto=format&fit=crop&w=500&q=60",
        "averageRating": 4,
        "reviewCount": 204,
        "colors": ["White", "Black", "Pink", "Blue"],
        "sizes": ["6 inch", "9 inch", "12 inch"],
    },
]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Storage(ABC):
    """CRUD contract the route layer depends on."""

    name = "abstract"

    # Users
    @abstractmethod
    def get_user(self, user_id: str) -> Optional[dict]: ...

    @abstractmethod
    def get_user_by_email(self, email: str) -> Optional[dict]: ...

    @abstractmethod
    def get_user_by_google_id(self, google_id: str) -> Optional[dict]: ...

    @abstractmethod
    def create_user(self, user) -> dict: ...

    @abstractmethod
    def update_user(self, user_id: str, user_data) -> Optional[dict]: ...

    # Approved emails
    @abstractmethod
    def get_approved_email(self, email: str) -> Optional[dict]: ...

    @abstractmethod
    def add_approved_email(self, approved_email) -> dict: ...

    # Products
    @abstractmethod
    def get_products(self) -> List[dict]: ...

    @abstractmethod
    def get_products_by_category(self, category: str) -> List[dict]: ...

    @abstractmethod
    def get_product(self, product_id: str) -> Optional[dict]: ...

    @abstractmethod
    def create_product(self, product) -> dict: ...

    # Orders
    @abstractmethod
    def create_order(self, order, items) -> dict: ...

    @abstractmethod
    def get_order(self, order_id: str) -> Optional[dict]: ...

    @abstractmethod
    def get_order_with_items(self, order_id: str) -> Optional[dict]: ...

    @abstractmethod
    def get_user_orders(self, user_id: str) -> List[dict]: ...

    @abstractmethod
    def get_rider_orders(self, rider_id: str) -> List[dict]: ...

    @abstractmethod
    def get_all_orders(self) -> List[dict]: ...

    @abstractmethod
    def update_order_status(self, order_id: str, status: str, rider_id: Optional[str] = None) -> Optional[dict]: ...

    @abstractmethod
    def get_order_items(self, order_id: str) -> List[dict]: ...

    def ensure_approved_email(self, email: str, role: str) -> dict:
        existing = self.get_approved_email(email)
        if existing:
            return existing
        logger.info("Adding %s (%s) to approved emails", email, role)
        return self.add_approved_email(ApprovedEmailCreate(email=email, role=role))


# ----------------------- In-memory -----------------------

def _locked(func):
    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return func(self, *args, **kwargs)
    return wrapper


class MemoryStorage(Storage):
    """Dict-backed storage used when MongoDB is unreachable.

    Ids look like ``mock_<epoch millis>_<counter>``. Lookups by anything
    other than id are linear scans. Sync routes run in a threadpool, so
    every public method holds one re-entrant lock.
    """

    name = "memory"

    def __init__(self, seed: bool = True):
        self._lock = threading.RLock()
        self.users = {}
        self.approved_emails = {}
        self.products = {}
        self.orders = {}
        self.order_items = {}
        self._counter = itertools.count(1)
        if seed:
            self._seed()

    def _generate_id(self) -> str:
        return f"mock_{int(time.time() * 1000)}_{next(self._counter)}"

    def _seed(self):
        logger.info("Seeding in-memory storage with sample data")
        for entry in SAMPLE_APPROVED_EMAILS:
            self.add_approved_email(ApprovedEmailCreate.model_validate(entry))
        for product in SAMPLE_PRODUCTS:
            self.create_product(ProductCreate.model_validate(product))

    # Users
    @_locked
    def get_user(self, user_id):
        return copy.deepcopy(self.users.get(user_id))

    @_locked
    def get_user_by_email(self, email):
        for user in self.users.values():
            if user["email"] == email:
                return copy.deepcopy(user)
        return None

    @_locked
    def get_user_by_google_id(self, google_id):
        for user in self.users.values():
            if user["googleId"] == google_id:
                return copy.deepcopy(user)
        return None

    @_locked
    def create_user(self, user):
        doc = to_document(user)
        if self.get_user_by_email(doc["email"]):
            raise DuplicateKeyError(f"User with email {doc['email']} already exists")
        if self.get_user_by_google_id(doc["googleId"]):
            raise DuplicateKeyError(f"User with googleId {doc['googleId']} already exists")
        now = _now()
        doc.update({"id": self._generate_id(), "createdAt": now, "updatedAt": now})
        self.users[doc["id"]] = doc
        return copy.deepcopy(doc)

    @_locked
    def update_user(self, user_id, user_data):
        user = self.users.get(user_id)
        if not user:
            return None
        updated = {**user, **to_document(user_data), "id": user_id, "updatedAt": _now()}
        self.users[user_id] = updated
        return copy.deepcopy(updated)

    # Approved emails
    @_locked
    def get_approved_email(self, email):
        return copy.deepcopy(self.approved_emails.get(email))

    @_locked
    def add_approved_email(self, approved_email):
        doc = to_document(approved_email)
        if doc["email"] in self.approved_emails:
            raise DuplicateKeyError(f"Email {doc['email']} is already approved")
        doc["id"] = self._generate_id()
        self.approved_emails[doc["email"]] = doc
        return copy.deepcopy(doc)

    # Products
    @_locked
    def get_products(self):
        return [copy.deepcopy(p) for p in self.products.values()]

    @_locked
    def get_products_by_category(self, category):
        return [copy.deepcopy(p) for p in self.products.values() if p["category"] == category]

    @_locked
    def get_product(self, product_id):
        return copy.deepcopy(self.products.get(product_id))

    @_locked
    def create_product(self, product):
        doc = to_document(product)
        doc["id"] = self._generate_id()
        self.products[doc["id"]] = doc
        return copy.deepcopy(doc)

    # Orders
    @_locked
    def create_order(self, order, items):
        now = _now()
        doc = to_document(order)
        doc.update({"id": self._generate_id(), "createdAt": now, "updatedAt": now})
        self.orders[doc["id"]] = doc

        order_items = []
        for item in items:
            item_doc = to_document(item)
            item_doc.update({"id": self._generate_id(), "orderId": doc["id"]})
            order_items.append(item_doc)
        self.order_items[doc["id"]] = order_items
        return copy.deepcopy(doc)

    @_locked
    def get_order(self, order_id):
        return copy.deepcopy(self.orders.get(order_id))

    @_locked
    def get_order_with_items(self, order_id):
        order = self.get_order(order_id)
        if not order:
            return None
        return {"order": order, "items": self.get_order_items(order_id)}

    @_locked
    def get_user_orders(self, user_id):
        return [copy.deepcopy(o) for o in self.orders.values() if o["userId"] == user_id]

    @_locked
    def get_rider_orders(self, rider_id):
        return [copy.deepcopy(o) for o in self.orders.values() if o.get("riderId") == rider_id]

    @_locked
    def get_all_orders(self):
        return [copy.deepcopy(o) for o in self.orders.values()]

    @_locked
    def update_order_status(self, order_id, status, rider_id=None):
        order = self.orders.get(order_id)
        if not order:
            return None
        updated = {**order, "status": status, "updatedAt": _now()}
        if rider_id:
            updated["riderId"] = rider_id
        self.orders[order_id] = updated
        return copy.deepcopy(updated)

    @_locked
    def get_order_items(self, order_id):
        return copy.deepcopy(self.order_items.get(order_id, []))

    @_locked
    def ensure_approved_email(self, email, role):
        return super().ensure_approved_email(email, role)


# ----------------------- MongoDB -----------------------

def serialize_doc(doc):
    if not doc:
        return None
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    return doc


def _object_id(value) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def _lookup(many: bool = False):
    """Turn driver errors during a read into "not found"."""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            try:
                return func(self, *args, **kwargs)
            except pymongo_errors.PyMongoError as e:
                logger.error("%s%r failed: %s", func.__name__, args, e)
                return [] if many else None
        return wrapper
    return decorator


class MongoStorage(Storage):
    name = "mongodb"

    def __init__(self, db: Database, seed: bool = True):
        self.db = db
        self._ensure_indexes()
        if seed:
            self._seed()

    def _ensure_indexes(self):
        self.db["user"].create_index([("email", ASCENDING)], unique=True)
        self.db["user"].create_index([("googleId", ASCENDING)], unique=True)
        self.db["approved_email"].create_index([("email", ASCENDING)], unique=True)

    def _seed(self):
        if self.db["product"].count_documents({}) > 0:
            return
        logger.info("Initializing MongoDB with sample data...")
        for entry in SAMPLE_APPROVED_EMAILS:
            doc = to_document(ApprovedEmailCreate.model_validate(entry))
            self.db["approved_email"].update_one({"email": doc["email"]}, {"$setOnInsert": doc}, upsert=True)
        self.db["product"].insert_many(
            [to_document(ProductCreate.model_validate(p)) for p in SAMPLE_PRODUCTS]
        )

    def _insert(self, collection: str, doc: dict) -> dict:
        try:
            self.db[collection].insert_one(doc)
        except pymongo_errors.DuplicateKeyError as e:
            raise DuplicateKeyError(str(e)) from e
        return serialize_doc(doc)

    def _find_by_id(self, collection: str, doc_id: str) -> Optional[dict]:
        oid = _object_id(doc_id)
        if oid is None:
            return None
        return serialize_doc(self.db[collection].find_one({"_id": oid}))

    def _find_many(self, collection: str, query: dict, sort=None) -> List[dict]:
        cursor = self.db[collection].find(query)
        if sort:
            cursor = cursor.sort(sort)
        return [serialize_doc(d) for d in cursor]

    # Users
    @_lookup()
    def get_user(self, user_id):
        return self._find_by_id("user", user_id)

    @_lookup()
    def get_user_by_email(self, email):
        return serialize_doc(self.db["user"].find_one({"email": email}))

    @_lookup()
    def get_user_by_google_id(self, google_id):
        return serialize_doc(self.db["user"].find_one({"googleId": google_id}))

    def create_user(self, user):
        now = _now()
        doc = {**to_document(user), "createdAt": now, "updatedAt": now}
        return self._insert("user", doc)

    def update_user(self, user_id, user_data):
        oid = _object_id(user_id)
        if oid is None:
            return None
        update = {**to_document(user_data), "updatedAt": _now()}
        user = self.db["user"].find_one_and_update(
            {"_id": oid}, {"$set": update}, return_document=ReturnDocument.AFTER
        )
        return serialize_doc(user)

    # Approved emails
    @_lookup()
    def get_approved_email(self, email):
        return serialize_doc(self.db["approved_email"].find_one({"email": email}))

    def add_approved_email(self, approved_email):
        return self._insert("approved_email", to_document(approved_email))

    # Products
    @_lookup(many=True)
    def get_products(self):
        return self._find_many("product", {})

    @_lookup(many=True)
    def get_products_by_category(self, category):
        return self._find_many("product", {"category": category})

    @_lookup()
    def get_product(self, product_id):
        return self._find_by_id("product", product_id)

    def create_product(self, product):
        return self._insert("product", to_document(product))

    # Orders
    def create_order(self, order, items):
        now = _now()
        created = self._insert("order", {**to_document(order), "createdAt": now, "updatedAt": now})
        # No transaction: if this fails the order above stays without items
        item_docs = [{**to_document(item), "orderId": created["id"]} for item in items]
        if item_docs:
            self.db["order_item"].insert_many(item_docs)
        return created

    @_lookup()
    def get_order(self, order_id):
        return self._find_by_id("order", order_id)

    @_lookup()
    def get_order_with_items(self, order_id):
        order = self._find_by_id("order", order_id)
        if not order:
            return None
        return {"order": order, "items": self._find_many("order_item", {"orderId": order["id"]})}

    @_lookup(many=True)
    def get_user_orders(self, user_id):
        return self._find_many("order", {"userId": user_id})

    @_lookup(many=True)
    def get_rider_orders(self, rider_id):
        return self._find_many("order", {"riderId": rider_id})

    @_lookup(many=True)
    def get_all_orders(self):
        return self._find_many("order", {}, sort=[("createdAt", DESCENDING)])

    def update_order_status(self, order_id, status, rider_id=None):
        oid = _object_id(order_id)
        if oid is None:
            return None
        update = {"status": status, "updatedAt": _now()}
        if rider_id:
            update["riderId"] = rider_id
        order = self.db["order"].find_one_and_update(
            {"_id": oid}, {"$set": update}, return_document=ReturnDocument.AFTER
        )
        return serialize_doc(order)

    @_lookup(many=True)
    def get_order_items(self, order_id):
        return self._find_many("order_item", {"orderId": order_id})
