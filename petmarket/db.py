"""
Document store abstraction for MongoDB and an in-memory test implementation.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Protocol

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import DESCENDING, MongoClient
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)

OWNER_FIELD = "created_by"
DEFAULT_LATEST_LIMIT = 6


class StoreError(Exception):
    """Raised for any failure of an underlying data operation."""


@dataclass
class UpdateOutcome:
    matched_count: int
    modified_count: int


@dataclass
class OrderPlacement:
    order_id: str
    download_counted: UpdateOutcome


class ListingStore(Protocol):
    """Operations on the listing collection."""

    def list_all(self) -> list[dict]:
        ...

    def list_by_category(self, category: str) -> list[dict]:
        ...

    def get_by_id(self, listing_id: str) -> Optional[dict]:
        ...

    def create(self, doc: dict) -> str:
        ...

    def update(self, listing_id: str, patch: dict) -> UpdateOutcome:
        ...

    def remove(self, listing_id: str) -> bool:
        ...

    def latest(self, limit: int = DEFAULT_LATEST_LIMIT) -> list[dict]:
        ...

    def by_owner(self, email: str) -> list[dict]:
        ...

    def search(self, term: str | None) -> list[dict]:
        ...

    def increment_downloads(self, listing_id: str) -> UpdateOutcome:
        ...


class OrderStore(Protocol):
    """Operations on the orders collection."""

    def create(self, doc: dict) -> str:
        ...

    def by_downloader(self, email: str) -> list[dict]:
        ...

    def remove(self, order_id: str) -> bool:
        ...


class DbClient(Protocol):
    """Both collections plus the operations that span them."""

    listings: ListingStore
    orders: OrderStore

    def place_order(self, listing_id: str, doc: dict) -> OrderPlacement:
        ...

    def ping(self) -> None:
        ...

    def close(self) -> None:
        ...


def to_object_id(value: str) -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError) as exc:
        raise StoreError(f"'{value}' is not a valid identifier") from exc


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _stamp_created_at(doc: dict) -> dict:
    stamped = dict(doc)
    if stamped.get("created_at") is None:
        stamped["created_at"] = _utcnow()
    return stamped


def _writable(doc: dict) -> dict:
    """Drop the immutable id and a null counter, which $inc cannot add to."""
    return {
        key: value
        for key, value in doc.items()
        if key != "_id" and not (key == "downloads" and value is None)
    }


def _as_utc(value: Any) -> datetime:
    if not isinstance(value, datetime):
        return datetime.min.replace(tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def place_order_with_compensation(
    listings: ListingStore, orders: OrderStore, listing_id: str, doc: dict
) -> OrderPlacement:
    """
    Insert the order, then count the download. If counting fails the order
    is deleted again and the failure is re-raised.
    """
    order_id = orders.create(doc)
    try:
        counted = listings.increment_downloads(listing_id)
    except Exception:
        logger.warning(
            "Download count failed for listing %s; removing order %s",
            listing_id,
            order_id,
        )
        orders.remove(order_id)
        raise
    return OrderPlacement(order_id=order_id, download_counted=counted)


class InMemoryListingStore:
    """Simple in-memory listing collection for development and tests."""

    def __init__(self):
        self.docs: Dict[ObjectId, dict] = {}

    def _copies(self, docs: Iterable[dict]) -> list[dict]:
        return [copy.deepcopy(doc) for doc in docs]

    def list_all(self) -> list[dict]:
        return self._copies(self.docs.values())

    def list_by_category(self, category: str) -> list[dict]:
        return self._copies(
            d for d in self.docs.values() if d.get("category") == category
        )

    def get_by_id(self, listing_id: str) -> Optional[dict]:
        doc = self.docs.get(to_object_id(listing_id))
        return copy.deepcopy(doc) if doc else None

    def create(self, doc: dict) -> str:
        stored = _stamp_created_at(_writable(copy.deepcopy(doc)))
        stored["_id"] = ObjectId()
        self.docs[stored["_id"]] = stored
        return str(stored["_id"])

    def update(self, listing_id: str, patch: dict) -> UpdateOutcome:
        doc = self.docs.get(to_object_id(listing_id))
        if doc is None:
            return UpdateOutcome(matched_count=0, modified_count=0)
        patch = _writable(patch)
        changed = any(doc.get(k, object()) != v for k, v in patch.items())
        doc.update(copy.deepcopy(patch))
        return UpdateOutcome(matched_count=1, modified_count=int(changed))

    def remove(self, listing_id: str) -> bool:
        return self.docs.pop(to_object_id(listing_id), None) is not None

    def latest(self, limit: int = DEFAULT_LATEST_LIMIT) -> list[dict]:
        ordered = sorted(
            self.docs.values(),
            key=lambda d: _as_utc(d.get("created_at")),
            reverse=True,
        )
        return self._copies(ordered[:limit])

    def by_owner(self, email: str) -> list[dict]:
        return self._copies(
            d for d in self.docs.values() if d.get(OWNER_FIELD) == email
        )

    def search(self, term: str | None) -> list[dict]:
        if not term:
            return self.list_all()
        needle = term.lower()
        return self._copies(
            d
            for d in self.docs.values()
            if isinstance(d.get("name"), str) and needle in d["name"].lower()
        )

    def increment_downloads(self, listing_id: str) -> UpdateOutcome:
        doc = self.docs.get(to_object_id(listing_id))
        if doc is None:
            return UpdateOutcome(matched_count=0, modified_count=0)
        doc["downloads"] = (doc.get("downloads") or 0) + 1
        return UpdateOutcome(matched_count=1, modified_count=1)


class InMemoryOrderStore:
    """Simple in-memory orders collection for development and tests."""

    def __init__(self):
        self.docs: Dict[ObjectId, dict] = {}

    def create(self, doc: dict) -> str:
        stored = _stamp_created_at(_writable(copy.deepcopy(doc)))
        stored["_id"] = ObjectId()
        self.docs[stored["_id"]] = stored
        return str(stored["_id"])

    def by_downloader(self, email: str) -> list[dict]:
        target = email.lower()
        return [
            copy.deepcopy(d)
            for d in self.docs.values()
            if isinstance(d.get("downloaded_by"), str)
            and d["downloaded_by"].lower() == target
        ]

    def remove(self, order_id: str) -> bool:
        return self.docs.pop(to_object_id(order_id), None) is not None


class InMemoryDbClient:
    """In-memory stand-in for the whole database."""

    def __init__(self):
        self.listings = InMemoryListingStore()
        self.orders = InMemoryOrderStore()

    def place_order(self, listing_id: str, doc: dict) -> OrderPlacement:
        return place_order_with_compensation(
            self.listings, self.orders, listing_id, doc
        )

    def ping(self) -> None:
        pass

    def close(self) -> None:
        pass

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.listings.docs.clear()
        self.orders.docs.clear()


class MongoListingStore:
    """Listing collection accessor. Driver errors surface as StoreError."""

    def __init__(self, collection):
        self.collection = collection

    def _find(self, query: dict) -> list[dict]:
        try:
            return list(self.collection.find(query))
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc

    def list_all(self) -> list[dict]:
        return self._find({})

    def list_by_category(self, category: str) -> list[dict]:
        return self._find({"category": category})

    def get_by_id(self, listing_id: str) -> Optional[dict]:
        try:
            return self.collection.find_one({"_id": to_object_id(listing_id)})
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc

    def create(self, doc: dict, session=None) -> str:
        try:
            result = self.collection.insert_one(
                _stamp_created_at(_writable(doc)), session=session
            )
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc
        return str(result.inserted_id)

    def update(self, listing_id: str, patch: dict) -> UpdateOutcome:
        query = {"_id": to_object_id(listing_id)}
        patch = _writable(patch)
        try:
            if not patch:
                # $set rejects an empty document.
                matched = self.collection.count_documents(query, limit=1)
                return UpdateOutcome(matched_count=matched, modified_count=0)
            result = self.collection.update_one(query, {"$set": patch})
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc
        return UpdateOutcome(
            matched_count=result.matched_count,
            modified_count=result.modified_count,
        )

    def remove(self, listing_id: str) -> bool:
        try:
            result = self.collection.delete_one({"_id": to_object_id(listing_id)})
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc
        return result.deleted_count > 0

    def latest(self, limit: int = DEFAULT_LATEST_LIMIT) -> list[dict]:
        try:
            cursor = (
                self.collection.find({})
                .sort("created_at", DESCENDING)
                .limit(limit)
            )
            return list(cursor)
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc

    def by_owner(self, email: str) -> list[dict]:
        return self._find({OWNER_FIELD: email})

    def search(self, term: str | None) -> list[dict]:
        if not term:
            return self._find({})
        return self._find({"name": {"$regex": re.escape(term), "$options": "i"}})

    def increment_downloads(self, listing_id: str, session=None) -> UpdateOutcome:
        try:
            result = self.collection.update_one(
                {"_id": to_object_id(listing_id)},
                {"$inc": {"downloads": 1}},
                session=session,
            )
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc
        return UpdateOutcome(
            matched_count=result.matched_count,
            modified_count=result.modified_count,
        )


class MongoOrderStore:
    """Orders collection accessor."""

    def __init__(self, collection):
        self.collection = collection

    def create(self, doc: dict, session=None) -> str:
        try:
            result = self.collection.insert_one(
                _stamp_created_at(_writable(doc)), session=session
            )
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc
        return str(result.inserted_id)

    def by_downloader(self, email: str) -> list[dict]:
        query = {
            "downloaded_by": {"$regex": f"^{re.escape(email)}$", "$options": "i"}
        }
        try:
            return list(self.collection.find(query))
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc

    def remove(self, order_id: str) -> bool:
        try:
            result = self.collection.delete_one({"_id": to_object_id(order_id)})
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc
        return result.deleted_count > 0


class MongoDbClient:
    """
    pymongo-backed implementation. Pass ``client`` to reuse an existing
    MongoClient-compatible object (tests use mongomock).
    """

    def __init__(
        self,
        mongo_uri: str | None,
        database_name: str,
        *,
        listing_collection: str = "listing",
        order_collection: str = "orders",
        timeout_ms: int = 5000,
        use_transactions: bool = False,
        client=None,
    ):
        if client is None:
            if not mongo_uri:
                raise ValueError("MONGO_URI is required for MongoDbClient")
            client = MongoClient(
                mongo_uri,
                tz_aware=True,
                serverSelectionTimeoutMS=timeout_ms,
                connectTimeoutMS=timeout_ms,
                socketTimeoutMS=timeout_ms,
            )
        self.client = client
        self.db = client[database_name]
        self.listings = MongoListingStore(self.db[listing_collection])
        self.orders = MongoOrderStore(self.db[order_collection])
        self.use_transactions = use_transactions

    def place_order(self, listing_id: str, doc: dict) -> OrderPlacement:
        if not self.use_transactions:
            return place_order_with_compensation(
                self.listings, self.orders, listing_id, doc
            )
        # Validate before opening a session so a bad id never starts a transaction.
        to_object_id(listing_id)
        try:
            with self.client.start_session() as session:
                with session.start_transaction():
                    order_id = self.orders.create(doc, session=session)
                    counted = self.listings.increment_downloads(
                        listing_id, session=session
                    )
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc
        return OrderPlacement(order_id=order_id, download_counted=counted)

    def ping(self) -> None:
        try:
            self.client.admin.command("ping")
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc

    def close(self) -> None:
        self.client.close()
