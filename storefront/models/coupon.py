from sqlalchemy import Column, Integer, String, Float, DateTime, Boolean
from datetime import datetime
from storefront.db.base_class import Base


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, nullable=False, index=True)

    discount_percentage = Column(Float, nullable=False)
    max_discount = Column(Float, nullable=True)  # Cap on the computed discount
    min_purchase = Column(Float, default=0.0, nullable=False)

    usage_limit = Column(Integer, nullable=True)  # Global usage limit
    used_count = Column(Integer, default=0, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    expiry_date = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
