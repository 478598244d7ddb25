from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime


class CouponCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    discount_percentage: float = Field(..., gt=0, le=100)
    max_discount: Optional[float] = Field(None, gt=0)
    min_purchase: float = Field(default=0.0, ge=0)
    usage_limit: Optional[int] = Field(None, gt=0)
    expiry_date: Optional[datetime] = None

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        return value.strip().upper()


class CouponResponse(BaseModel):
    id: int
    code: str
    discount_percentage: float
    max_discount: Optional[float]
    min_purchase: float
    usage_limit: Optional[int]
    used_count: int
    is_active: bool
    expiry_date: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True
