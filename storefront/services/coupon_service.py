from datetime import datetime
from typing import Tuple

import structlog
from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from storefront.models.coupon import Coupon
from storefront.schemas.coupon import CouponCreate

logger = structlog.get_logger()


class CouponService:

    @staticmethod
    def create_coupon(db: Session, coupon_data: CouponCreate) -> Coupon:
        """Create a new coupon (admin only)."""
        existing = db.query(Coupon).filter(Coupon.code == coupon_data.code).first()
        if existing:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Coupon code already exists"
            )

        coupon = Coupon(
            code=coupon_data.code,
            discount_percentage=coupon_data.discount_percentage,
            max_discount=coupon_data.max_discount,
            min_purchase=coupon_data.min_purchase,
            usage_limit=coupon_data.usage_limit,
            expiry_date=coupon_data.expiry_date,
        )
        db.add(coupon)
        db.commit()
        db.refresh(coupon)
        logger.info("coupon_created", code=coupon.code)
        return coupon

    @staticmethod
    def list_coupons(db: Session) -> list[Coupon]:
        return db.query(Coupon).order_by(Coupon.created_at.desc(), Coupon.id.desc()).all()

    @staticmethod
    def compute_discount(coupon: Coupon, subtotal: float) -> float:
        discount = subtotal * coupon.discount_percentage / 100
        if coupon.max_discount is not None:
            discount = min(discount, coupon.max_discount)
        return round(min(discount, subtotal), 2)

    @staticmethod
    def validate_coupon(
        db: Session,
        code: str,
        subtotal: float,
        lock: bool = False,
    ) -> Tuple[Coupon, float]:
        """
        Return the coupon and the discount it gives on ``subtotal``.

        With ``lock`` the coupon row is held until the caller commits so the
        usage counter cannot be raced past its limit.
        """
        query = db.query(Coupon).filter(Coupon.code == code.strip().upper())
        if lock:
            query = query.with_for_update()
        coupon = query.first()

        if not coupon or not coupon.is_active:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid coupon code"
            )

        if coupon.expiry_date and coupon.expiry_date < datetime.utcnow():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Coupon has expired"
            )

        if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Coupon usage limit reached"
            )

        if subtotal < coupon.min_purchase:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Minimum purchase of {coupon.min_purchase:.2f} required for this coupon"
            )

        return coupon, CouponService.compute_discount(coupon, subtotal)
