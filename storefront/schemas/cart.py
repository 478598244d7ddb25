from pydantic import BaseModel, Field


class CartItemCreate(BaseModel):
    size_variant_id: int = Field(..., gt=0)
    quantity: int = Field(default=1, ge=1)


class CartItemUpdate(BaseModel):
    quantity: int = Field(..., ge=1)
