from typing import Literal, Optional
import uuid

from pydantic import BaseModel, Field, field_validator

from storefront.models.order import OrderItemStatus
from storefront.utils.sanitize import strip_html


RETURN_REASONS = (
    "Defective",
    "Not as described",
    "Wrong size/fit",
    "Changed my mind",
    "Other",
)


class PlaceOrderRequest(BaseModel):
    address_id: int = Field(..., gt=0)
    payment_method: Literal["cod", "wallet"] = "cod"
    coupon_code: Optional[str] = None
    idempotency_key: Optional[str] = Field(None, min_length=36, max_length=64)

    @field_validator("coupon_code")
    @classmethod
    def normalize_coupon(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value.strip().upper()

    @field_validator("idempotency_key")
    @classmethod
    def validate_idempotency_key(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        parsed = uuid.UUID(value)
        return str(parsed)


# Reason/details emptiness is a business rule (400), so these stay optional here.
class CancelItemRequest(BaseModel):
    reason: Optional[str] = None

    @field_validator("reason")
    @classmethod
    def sanitize_reason(cls, value: Optional[str]) -> Optional[str]:
        return strip_html(value)


class ReturnItemRequest(BaseModel):
    reason: Optional[str] = None
    details: Optional[str] = Field(None, max_length=1000)

    @field_validator("reason", "details")
    @classmethod
    def sanitize_text(cls, value: Optional[str]) -> Optional[str]:
        return strip_html(value)


class ItemStatusUpdate(BaseModel):
    status: OrderItemStatus
    notes: Optional[str] = Field(None, max_length=500)
    reason: Optional[str] = None

    @field_validator("notes", "reason")
    @classmethod
    def sanitize_text(cls, value: Optional[str]) -> Optional[str]:
        return strip_html(value)


class ReturnResolution(BaseModel):
    approve: bool
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("notes")
    @classmethod
    def sanitize_notes(cls, value: Optional[str]) -> Optional[str]:
        return strip_html(value)
