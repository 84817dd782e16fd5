"""
Dependency wiring for the FastAPI app.

The store and verifier are process-wide singletons. ``init_clients`` and
``close_clients`` are called from the app lifespan; the getters also create
clients lazily so handlers work without a running lifespan (e.g. tests).
"""

from __future__ import annotations

import logging

from petmarket.config import get_settings
from petmarket.db import DbClient, InMemoryDbClient, MongoDbClient
from petmarket.identity import (
    FirebaseIdentityVerifier,
    IdentityVerifier,
    StaticTokenVerifier,
)

logger = logging.getLogger(__name__)

_db_client: DbClient | None = None
_identity_verifier: IdentityVerifier | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client shared by every request.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.mongo_uri:
        logger.info("Using in-memory document store")
        _db_client = InMemoryDbClient()
    else:
        _db_client = MongoDbClient(
            settings.mongo_uri,
            settings.database_name,
            listing_collection=settings.listing_collection,
            order_collection=settings.order_collection,
            timeout_ms=settings.store_timeout_ms,
            use_transactions=settings.use_transactions,
        )
    return _db_client


def get_identity_verifier() -> IdentityVerifier:
    global _identity_verifier
    if _identity_verifier:
        return _identity_verifier

    settings = get_settings()
    configured = settings.firebase_credentials_path or settings.firebase_project_id
    if settings.use_in_memory_backends or not configured:
        # Without Firebase every bearer token is rejected.
        logger.warning("Firebase is not configured; protected routes will reject all tokens")
        _identity_verifier = StaticTokenVerifier()
    else:
        _identity_verifier = FirebaseIdentityVerifier(
            settings.firebase_credentials_path,
            project_id=settings.firebase_project_id,
            timeout_seconds=settings.identity_timeout_seconds,
            check_revoked=settings.check_revoked_tokens,
        )
    return _identity_verifier


def init_clients() -> None:
    """Create both clients and make sure the store is reachable."""
    db = get_db_client()
    db.ping()
    logger.info("Connected to document store (%s)", db.__class__.__name__)
    get_identity_verifier()


def close_clients() -> None:
    global _db_client, _identity_verifier
    if _db_client:
        _db_client.close()
        _db_client = None
    if _identity_verifier:
        _identity_verifier.close()
        _identity_verifier = None
