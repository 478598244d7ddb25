from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List

from storefront.utils.sanitize import strip_html


class BrandCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        return strip_html(value)


class CategoryCreate(BrandCreate):
    pass


class SizeVariantCreate(BaseModel):
    size: str = Field(..., min_length=1, max_length=10)
    price: float = Field(..., gt=0)
    discount_price: Optional[float] = Field(None, gt=0)
    stock_count: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def check_discount_below_price(self):
        if self.discount_price is not None and self.discount_price >= self.price:
            raise ValueError("discount_price must be lower than price")
        return self


class VariantCreate(BaseModel):
    color: str = Field(..., min_length=1, max_length=50)
    images: List[str] = Field(default_factory=list)
    sizes: List[SizeVariantCreate] = Field(..., min_length=1)


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    brand_id: int = Field(..., gt=0)
    category_id: int = Field(..., gt=0)
    material: Optional[str] = None
    pattern: Optional[str] = None
    gender: Optional[str] = None
    variants: List[VariantCreate] = Field(..., min_length=1)

    @field_validator("description")
    @classmethod
    def sanitize_description(cls, value: Optional[str]) -> Optional[str]:
        return strip_html(value)

    @field_validator("gender")
    @classmethod
    def normalize_gender(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return value.strip().capitalize()
