"""
Pydantic schemas for the marketplace API.

Listing and order bodies are open documents: the named fields are typed,
anything else the client sends is stored as-is.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _sent_fields(model: BaseModel) -> dict:
    doc = {
        name: getattr(model, name)
        for name in model.model_fields_set
        if name in type(model).model_fields
    }
    doc.update(model.model_extra or {})
    return doc


class ListingPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    category: Optional[str] = None
    created_by: Optional[str] = None
    downloads: Optional[int] = Field(default=None, ge=0)
    created_at: Optional[datetime] = None

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def to_document(self) -> dict:
        """Only what the client actually sent; a null counter is ignored."""
        doc = _sent_fields(self)
        if doc.get("downloads", 0) is None:
            del doc["downloads"]
        return doc


class OrderPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    downloaded_by: Optional[str] = None

    def to_document(self) -> dict:
        return _sent_fields(self)


class InsertResult(BaseModel):
    inserted_id: str


class UpdateResult(BaseModel):
    matched_count: int
    modified_count: int


class DeleteResult(BaseModel):
    deleted_count: int


class OrderPlacementResult(BaseModel):
    order: InsertResult
    download_counted: UpdateResult


class ListingsResponse(BaseModel):
    success: bool = True
    result: list[dict[str, Any]]


class ListingResponse(BaseModel):
    success: bool = True
    result: Optional[dict[str, Any]] = None


class OrdersResponse(BaseModel):
    success: bool = True
    result: list[dict[str, Any]]


class InsertResponse(BaseModel):
    success: bool = True
    result: InsertResult


class UpdateResponse(BaseModel):
    success: bool
    result: UpdateResult


class DeleteResponse(BaseModel):
    success: bool
    result: DeleteResult


class OrderPlacementResponse(BaseModel):
    success: bool = True
    result: OrderPlacementResult


class HealthResponse(BaseModel):
    success: bool
    result: dict[str, str]


class ErrorResponse(BaseModel):
    success: Literal[False] = False
    message: str
