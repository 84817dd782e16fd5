import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import mongomock
from bson import ObjectId
from pymongo.errors import PyMongoError

from petmarket.db import InMemoryDbClient, MongoDbClient, StoreError


class StoreContract:
    """
    Behaviour shared by every DbClient implementation. Subclasses provide
    ``make_client``.
    """

    def make_client(self):
        raise NotImplementedError

    def setUp(self):
        self.db = self.make_client()

    def test_create_and_get(self):
        listing_id = self.db.listings.create({"name": "Bella", "category": "dog"})
        doc = self.db.listings.get_by_id(listing_id)
        self.assertEqual(str(doc["_id"]), listing_id)
        self.assertEqual(doc["name"], "Bella")
        self.assertEqual(doc["category"], "dog")
        self.assertIsInstance(doc["created_at"], datetime)

    def test_create_ignores_client_id(self):
        forced = ObjectId()
        listing_id = self.db.listings.create({"_id": forced, "name": "Bella"})
        self.assertNotEqual(listing_id, str(forced))

    def test_get_missing_returns_none(self):
        self.assertIsNone(self.db.listings.get_by_id(str(ObjectId())))

    def test_malformed_id_raises_store_error(self):
        with self.assertRaises(StoreError):
            self.db.listings.get_by_id("not-an-id")
        with self.assertRaises(StoreError):
            self.db.orders.remove("not-an-id")

    def test_list_all_and_by_category(self):
        self.db.listings.create({"name": "Bella", "category": "dog"})
        self.db.listings.create({"name": "Tom", "category": "cat"})
        self.assertEqual(len(self.db.listings.list_all()), 2)
        cats = self.db.listings.list_by_category("cat")
        self.assertEqual([doc["name"] for doc in cats], ["Tom"])
        self.assertEqual(self.db.listings.list_by_category("Cat"), [])

    def test_update_merges(self):
        listing_id = self.db.listings.create({"name": "Bella", "category": "dog"})
        outcome = self.db.listings.update(listing_id, {"price": 10, "_id": ObjectId()})
        self.assertEqual(outcome.matched_count, 1)
        self.assertEqual(outcome.modified_count, 1)
        doc = self.db.listings.get_by_id(listing_id)
        self.assertEqual(str(doc["_id"]), listing_id)
        self.assertEqual(doc["name"], "Bella")
        self.assertEqual(doc["price"], 10)

    def test_update_missing(self):
        outcome = self.db.listings.update(str(ObjectId()), {"name": "x"})
        self.assertEqual(outcome.matched_count, 0)
        self.assertEqual(outcome.modified_count, 0)

    def test_remove(self):
        listing_id = self.db.listings.create({"name": "Bella"})
        self.assertTrue(self.db.listings.remove(listing_id))
        self.assertFalse(self.db.listings.remove(listing_id))
        self.assertIsNone(self.db.listings.get_by_id(listing_id))

    def test_latest_orders_by_created_at(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        for day in range(8):
            self.db.listings.create(
                {"name": f"pet{day}", "created_at": start + timedelta(days=day)}
            )
        names = [doc["name"] for doc in self.db.listings.latest()]
        self.assertEqual(names, ["pet7", "pet6", "pet5", "pet4", "pet3", "pet2"])
        self.assertEqual(len(self.db.listings.latest(3)), 3)

    def test_latest_with_fewer_documents(self):
        self.db.listings.create({"name": "only"})
        self.assertEqual(len(self.db.listings.latest(6)), 1)

    def test_by_owner(self):
        self.db.listings.create({"name": "Bella", "created_by": "a@x.com"})
        self.db.listings.create({"name": "Tom", "created_by": "b@x.com"})
        docs = self.db.listings.by_owner("a@x.com")
        self.assertEqual([doc["name"] for doc in docs], ["Bella"])

    def test_search(self):
        for name in ("Bella", "Isabella", "Max", "a.b", "axb"):
            self.db.listings.create({"name": name})
        found = sorted(doc["name"] for doc in self.db.listings.search("BELLA"))
        self.assertEqual(found, ["Bella", "Isabella"])
        found = [doc["name"] for doc in self.db.listings.search("a.b")]
        self.assertEqual(found, ["a.b"])
        self.assertEqual(len(self.db.listings.search("")), 5)
        self.assertEqual(len(self.db.listings.search(None)), 5)

    def test_increment_downloads_counts_every_call(self):
        listing_id = self.db.listings.create({"name": "Bella"})
        self.db.listings.increment_downloads(listing_id)
        self.db.listings.increment_downloads(listing_id)
        self.assertEqual(self.db.listings.get_by_id(listing_id)["downloads"], 2)

    def test_orders_by_downloader_ignores_case(self):
        self.db.orders.create({"downloaded_by": "A@x.com"})
        self.db.orders.create({"downloaded_by": "aa@x.com"})
        docs = self.db.orders.by_downloader("a@X.COM")
        self.assertEqual([doc["downloaded_by"] for doc in docs], ["A@x.com"])

    def test_order_remove(self):
        order_id = self.db.orders.create({"downloaded_by": "a@x.com"})
        self.assertTrue(self.db.orders.remove(order_id))
        self.assertFalse(self.db.orders.remove(order_id))

    def test_place_order(self):
        listing_id = self.db.listings.create({"name": "Bella"})
        placement = self.db.place_order(
            listing_id, {"downloaded_by": "a@x.com", "listing_id": listing_id}
        )
        self.assertEqual(placement.download_counted.matched_count, 1)
        self.assertEqual(self.db.listings.get_by_id(listing_id)["downloads"], 1)
        orders = self.db.orders.by_downloader("a@x.com")
        self.assertEqual(len(orders), 1)
        self.assertEqual(str(orders[0]["_id"]), placement.order_id)

    def test_place_order_for_missing_listing_still_records_order(self):
        placement = self.db.place_order(str(ObjectId()), {"downloaded_by": "a@x.com"})
        self.assertEqual(placement.download_counted.matched_count, 0)
        self.assertEqual(len(self.db.orders.by_downloader("a@x.com")), 1)

    def test_place_order_rolls_back_when_count_fails(self):
        listing_id = self.db.listings.create({"name": "Bella"})
        with patch.object(
            self.db.listings, "increment_downloads", side_effect=StoreError("down")
        ):
            with self.assertRaises(StoreError):
                self.db.place_order(listing_id, {"downloaded_by": "a@x.com"})
        self.assertEqual(self.db.orders.by_downloader("a@x.com"), [])

    def test_place_order_rolls_back_on_unexpected_error(self):
        listing_id = self.db.listings.create({"name": "Bella"})
        with patch.object(
            self.db.listings, "increment_downloads", side_effect=RuntimeError("bug")
        ):
            with self.assertRaises(RuntimeError):
                self.db.place_order(listing_id, {"downloaded_by": "a@x.com"})
        self.assertEqual(self.db.orders.by_downloader("a@x.com"), [])

    def test_null_downloads_does_not_block_orders(self):
        listing_id = self.db.listings.create({"name": "Bella", "downloads": None})
        self.assertNotIn("downloads", self.db.listings.get_by_id(listing_id))
        self.db.place_order(listing_id, {"downloaded_by": "a@x.com"})
        self.assertEqual(self.db.listings.get_by_id(listing_id)["downloads"], 1)

        self.db.listings.update(listing_id, {"downloads": None, "name": "Bea"})
        self.db.place_order(listing_id, {"downloaded_by": "a@x.com"})
        doc = self.db.listings.get_by_id(listing_id)
        self.assertEqual((doc["name"], doc["downloads"]), ("Bea", 2))


class InMemoryDbClientTests(StoreContract, unittest.TestCase):
    def make_client(self):
        return InMemoryDbClient()

    def test_update_with_same_values_is_not_a_modification(self):
        listing_id = self.db.listings.create({"name": "Bella"})
        outcome = self.db.listings.update(listing_id, {"name": "Bella"})
        self.assertEqual(outcome.matched_count, 1)
        self.assertEqual(outcome.modified_count, 0)

    def test_empty_update_matches_without_modifying(self):
        listing_id = self.db.listings.create({"name": "Bella"})
        outcome = self.db.listings.update(listing_id, {})
        self.assertEqual((outcome.matched_count, outcome.modified_count), (1, 0))

    def test_returned_documents_are_copies(self):
        listing_id = self.db.listings.create({"name": "Bella"})
        self.db.listings.get_by_id(listing_id)["name"] = "changed"
        self.assertEqual(self.db.listings.get_by_id(listing_id)["name"], "Bella")

    def test_reset(self):
        self.db.listings.create({"name": "Bella"})
        self.db.orders.create({"downloaded_by": "a@x.com"})
        self.db.reset()
        self.assertEqual(self.db.listings.list_all(), [])
        self.assertEqual(self.db.orders.by_downloader("a@x.com"), [])


class MongoDbClientTests(StoreContract, unittest.TestCase):
    """
    Uses mongomock in place of a MongoDB server to exercise the query shapes.
    """

    def make_client(self):
        return MongoDbClient(
            None, "pet-adoption-test", client=mongomock.MongoClient()
        )

    def test_uses_configured_collections(self):
        client = mongomock.MongoClient()
        db = MongoDbClient(
            None,
            "pets",
            listing_collection="items",
            order_collection="downloads",
            client=client,
        )
        db.listings.create({"name": "Bella"})
        db.orders.create({"downloaded_by": "a@x.com"})
        self.assertEqual(client["pets"]["items"].count_documents({}), 1)
        self.assertEqual(client["pets"]["downloads"].count_documents({}), 1)

    def test_requires_uri_without_client(self):
        with self.assertRaises(ValueError):
            MongoDbClient(None, "pets")


class MongoTransactionTests(unittest.TestCase):
    def setUp(self):
        self.client = MagicMock()
        self.db = MongoDbClient(
            None, "pets", use_transactions=True, client=self.client
        )
        self.listings = MagicMock()
        self.orders = MagicMock()
        self.db.listings.collection = self.listings
        self.db.orders.collection = self.orders
        self.session = self.client.start_session.return_value.__enter__.return_value

    def test_both_writes_share_one_transaction(self):
        self.orders.insert_one.return_value.inserted_id = "order-1"
        self.listings.update_one.return_value.matched_count = 1
        self.listings.update_one.return_value.modified_count = 1
        listing_id = str(ObjectId())

        placement = self.db.place_order(listing_id, {"downloaded_by": "a@x.com"})

        self.client.start_session.assert_called_once_with()
        self.session.start_transaction.assert_called_once_with()
        _, insert_kwargs = self.orders.insert_one.call_args
        self.assertIs(insert_kwargs["session"], self.session)
        update_args, update_kwargs = self.listings.update_one.call_args
        self.assertIs(update_kwargs["session"], self.session)
        self.assertEqual(update_args[0], {"_id": ObjectId(listing_id)})
        self.assertEqual(update_args[1], {"$inc": {"downloads": 1}})
        self.assertEqual(placement.order_id, "order-1")
        self.assertEqual(placement.download_counted.matched_count, 1)

    def test_commit_failure_is_a_store_error(self):
        transaction = self.session.start_transaction.return_value
        transaction.__exit__.side_effect = PyMongoError("commit failed")
        with self.assertRaises(StoreError):
            self.db.place_order(str(ObjectId()), {"downloaded_by": "a@x.com"})

    def test_bad_id_fails_before_a_session_opens(self):
        with self.assertRaises(StoreError):
            self.db.place_order("not-an-id", {"downloaded_by": "a@x.com"})
        self.client.start_session.assert_not_called()
        self.orders.insert_one.assert_not_called()


if __name__ == "__main__":
    unittest.main()
