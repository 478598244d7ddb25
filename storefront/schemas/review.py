from typing import Optional

from pydantic import BaseModel, Field, field_validator

from storefront.utils.sanitize import strip_html


class ReviewCreate(BaseModel):
    """A buyer's rating of one colour variant they received."""

    variant_id: int = Field(..., gt=0)
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)

    @field_validator("comment")
    @classmethod
    def clean_comment(cls, value: Optional[str]) -> Optional[str]:
        return strip_html(value)
