"""
HTTP routes for the marketplace API.

Each handler is a single store call. Access control is attached through
``authorize(<route name>)``; see ``petmarket.policy`` for the table.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse

from petmarket.auth import authorize
from petmarket.config import Settings, get_settings
from petmarket.db import DbClient, StoreError, UpdateOutcome
from petmarket.dependencies import get_db_client
from petmarket.identity import Identity
from petmarket.schemas import (
    DeleteResponse,
    DeleteResult,
    HealthResponse,
    InsertResponse,
    InsertResult,
    ListingPayload,
    ListingResponse,
    ListingsResponse,
    OrderPayload,
    OrderPlacementResponse,
    OrderPlacementResult,
    OrdersResponse,
    UpdateResponse,
    UpdateResult,
)

logger = logging.getLogger(__name__)

router = APIRouter()

LIVENESS_TEXT = "Server is running fine!"


def serialize(doc: dict | None) -> dict | None:
    if not doc:
        return doc
    doc["_id"] = str(doc["_id"])
    return doc


def _serialize_all(docs: list[dict]) -> list[dict]:
    return [serialize(doc) for doc in docs]


def _update_result(outcome: UpdateOutcome) -> UpdateResult:
    return UpdateResult(
        matched_count=outcome.matched_count,
        modified_count=outcome.modified_count,
    )


def _resolve_email(email: str | None, identity: Optional[Identity]) -> str:
    if email:
        return email
    if identity and identity.email:
        return identity.email
    raise HTTPException(status_code=400, detail="email query parameter is required")


@router.get("/", response_class=PlainTextResponse)
def liveness():
    return LIVENESS_TEXT


@router.get("/health", response_model=HealthResponse)
def health(db: DbClient = Depends(get_db_client)):
    try:
        db.ping()
    except StoreError as exc:
        logger.warning("Health check failed: %s", exc)
        return HealthResponse(
            success=False, result={"backend": "running", "store": "unreachable"}
        )
    return HealthResponse(
        success=True, result={"backend": "running", "store": "connected"}
    )


@router.get("/listing", response_model=ListingsResponse)
def list_listings(
    _: Optional[Identity] = Depends(authorize("list_listings")),
    db: DbClient = Depends(get_db_client),
):
    return ListingsResponse(result=_serialize_all(db.listings.list_all()))


@router.get("/category/{category_name}", response_model=ListingsResponse)
def list_by_category(
    category_name: str,
    _: Optional[Identity] = Depends(authorize("list_by_category")),
    db: DbClient = Depends(get_db_client),
):
    docs = db.listings.list_by_category(category_name)
    return ListingsResponse(result=_serialize_all(docs))


@router.get("/listing/{listing_id}", response_model=ListingResponse)
def get_listing(
    listing_id: str,
    _: Optional[Identity] = Depends(authorize("get_listing")),
    db: DbClient = Depends(get_db_client),
):
    """
    A missing listing is not an error: the result is simply null.
    """
    return ListingResponse(result=serialize(db.listings.get_by_id(listing_id)))


@router.post("/listing", response_model=InsertResponse)
def create_listing(
    payload: ListingPayload,
    _: Optional[Identity] = Depends(authorize("create_listing")),
    db: DbClient = Depends(get_db_client),
):
    listing_id = db.listings.create(payload.to_document())
    logger.info("Created listing %s", listing_id)
    return InsertResponse(result=InsertResult(inserted_id=listing_id))


@router.put("/listing/{listing_id}", response_model=UpdateResponse)
def update_listing(
    listing_id: str,
    payload: ListingPayload,
    _: Optional[Identity] = Depends(authorize("update_listing")),
    db: DbClient = Depends(get_db_client),
):
    outcome = db.listings.update(listing_id, payload.to_document())
    return UpdateResponse(
        success=outcome.matched_count > 0, result=_update_result(outcome)
    )


@router.delete("/listing/{listing_id}", response_model=DeleteResponse)
def delete_listing(
    listing_id: str,
    _: Optional[Identity] = Depends(authorize("delete_listing")),
    db: DbClient = Depends(get_db_client),
):
    deleted = db.listings.remove(listing_id)
    return DeleteResponse(
        success=deleted, result=DeleteResult(deleted_count=int(deleted))
    )


@router.get("/latest-list", response_model=ListingsResponse)
def latest_listings(
    _: Optional[Identity] = Depends(authorize("latest_listings")),
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    docs = db.listings.latest(settings.latest_limit)
    return ListingsResponse(result=_serialize_all(docs))


@router.get("/my-models", response_model=ListingsResponse)
@router.get("/listings", response_model=ListingsResponse)
def my_listings(
    email: str | None = Query(None),
    identity: Optional[Identity] = Depends(authorize("my_listings")),
    db: DbClient = Depends(get_db_client),
):
    docs = db.listings.by_owner(_resolve_email(email, identity))
    return ListingsResponse(result=_serialize_all(docs))


@router.post("/orders/{listing_id}", response_model=OrderPlacementResponse)
def place_order(
    listing_id: str,
    payload: OrderPayload,
    _: Optional[Identity] = Depends(authorize("place_order")),
    db: DbClient = Depends(get_db_client),
):
    doc = payload.to_document()
    doc.setdefault("listing_id", listing_id)
    placement = db.place_order(listing_id, doc)
    logger.info("Order %s placed for listing %s", placement.order_id, listing_id)
    return OrderPlacementResponse(
        result=OrderPlacementResult(
            order=InsertResult(inserted_id=placement.order_id),
            download_counted=_update_result(placement.download_counted),
        )
    )


@router.delete("/orders/{order_id}", response_model=DeleteResponse)
def delete_order(
    order_id: str,
    _: Optional[Identity] = Depends(authorize("delete_order")),
    db: DbClient = Depends(get_db_client),
):
    deleted = db.orders.remove(order_id)
    return DeleteResponse(
        success=deleted, result=DeleteResult(deleted_count=int(deleted))
    )


@router.get("/my-downloads", response_model=OrdersResponse)
def my_downloads(
    email: str | None = Query(None),
    identity: Optional[Identity] = Depends(authorize("my_downloads")),
    db: DbClient = Depends(get_db_client),
):
    docs = db.orders.by_downloader(_resolve_email(email, identity))
    return OrdersResponse(result=_serialize_all(docs))


@router.get("/search", response_model=ListingsResponse)
def search_listings(
    search: str | None = Query(None),
    _: Optional[Identity] = Depends(authorize("search_listings")),
    db: DbClient = Depends(get_db_client),
):
    return ListingsResponse(result=_serialize_all(db.listings.search(search)))
