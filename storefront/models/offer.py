from sqlalchemy import Column, Integer, String, Float, ForeignKey, DateTime, Boolean, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
from storefront.db.base_class import Base


class Offer(Base):
    """Percentage discount on one product or on a whole category."""
    __tablename__ = "offers"

    id = Column(Integer, primary_key=True, index=True)
    offer_name = Column(String(100), nullable=False)
    discount_percentage = Column(Float, nullable=False)

    product_id = Column(Integer, ForeignKey("products.id"), nullable=True, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True, index=True)

    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    product = relationship("Product")
    category = relationship("Category")

    __table_args__ = (
        CheckConstraint(
            "(product_id IS NOT NULL) OR (category_id IS NOT NULL)",
            name="offer_has_target",
        ),
    )
