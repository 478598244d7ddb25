from sqlalchemy.orm import Session
from fastapi import HTTPException, status
from typing import List
import structlog

from storefront.models.catalog import Variant
from storefront.models.order import Order, OrderItem
from storefront.models.review import Review
from storefront.models.user import User
from storefront.schemas.review import ReviewCreate

logger = structlog.get_logger()


class ReviewService:

    @staticmethod
    def _has_delivered_purchase(db: Session, user_id: int, variant_id: int) -> bool:
        """True once any order item of this variant has reached the user."""
        return db.query(OrderItem.id).join(Order).filter(
            Order.user_id == user_id,
            OrderItem.variant_id == variant_id,
            OrderItem.delivered_at.isnot(None),
        ).first() is not None

    @staticmethod
    def _serialize(review: Review, user: User) -> dict:
        full_name = " ".join(part for part in (user.firstname, user.lastname) if part)
        return {
            "id": review.id,
            "user_id": review.user_id,
            "variant_id": review.variant_id,
            "user_name": full_name or user.username,
            "rating": review.rating,
            "comment": review.comment,
            "created_at": review.created_at,
        }

    @staticmethod
    def create_review(db: Session, user: User, review_data: ReviewCreate) -> dict:
        """Create a review. Requires a delivered purchase; one review per user per variant."""
        variant = db.query(Variant).filter(Variant.id == review_data.variant_id).first()
        if not variant:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Product variant not found"
            )

        existing = db.query(Review).filter(
            Review.user_id == user.id,
            Review.variant_id == review_data.variant_id,
        ).first()
        if existing:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="You have already reviewed this product"
            )

        if not ReviewService._has_delivered_purchase(db, user.id, review_data.variant_id):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="You can only review products that have been delivered to you"
            )

        review = Review(
            user_id=user.id,
            variant_id=review_data.variant_id,
            rating=review_data.rating,
            comment=review_data.comment,
        )
        db.add(review)
        db.commit()
        db.refresh(review)

        logger.info("review_created", review_id=review.id, variant_id=review.variant_id, user_id=user.id)
        return ReviewService._serialize(review, user)

    @staticmethod
    def list_variant_reviews(db: Session, variant_id: int) -> List[dict]:
        if not db.query(Variant.id).filter(Variant.id == variant_id).first():
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Product variant not found"
            )

        rows = (
            db.query(Review, User)
            .join(User, User.id == Review.user_id)
            .filter(Review.variant_id == variant_id)
            .order_by(Review.created_at.desc(), Review.id.desc())
            .all()
        )
        return [ReviewService._serialize(review, user) for review, user in rows]
