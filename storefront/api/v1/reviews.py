from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_user
from storefront.core.rate_limiter import limiter
from storefront.db.session import get_db
from storefront.models.user import User
from storefront.schemas.review import ReviewCreate
from storefront.services.review_service import ReviewService
from storefront.utils.response import success

router = APIRouter()


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/hour")
def create_review(
    request: Request,
    review_data: ReviewCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Review a variant. Requires a delivered purchase of it."""
    review = ReviewService.create_review(db, current_user, review_data)
    return success(data=review, message="Review added successfully")


@router.get("/variant/{variant_id}", response_model=dict)
@limiter.limit("100/minute")
def get_variant_reviews(
    request: Request,
    variant_id: int,
    db: Session = Depends(get_db)
):
    reviews = ReviewService.list_variant_reviews(db, variant_id)
    return success(data=reviews, message="Reviews retrieved successfully")
