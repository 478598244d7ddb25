from pydantic import BaseModel, Field, model_validator
from typing import Optional
from datetime import datetime


class OfferCreate(BaseModel):
    offer_name: str = Field(..., min_length=1, max_length=100)
    discount_percentage: float = Field(..., gt=0, lt=100)
    product_id: Optional[int] = Field(None, gt=0)
    category_id: Optional[int] = Field(None, gt=0)
    start_date: datetime
    end_date: datetime

    @model_validator(mode="after")
    def check_target_and_window(self):
        if (self.product_id is None) == (self.category_id is None):
            raise ValueError("Provide exactly one of product_id or category_id")
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class OfferResponse(BaseModel):
    id: int
    offer_name: str
    discount_percentage: float
    product_id: Optional[int]
    category_id: Optional[int]
    start_date: datetime
    end_date: datetime
    is_active: bool

    class Config:
        from_attributes = True
