from sqlalchemy import Column, Integer, String, Float, ForeignKey, DateTime, Enum, Text, Boolean
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from storefront.db.base_class import Base


class OrderItemStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    RETURNED = "Returned"


class ReturnStatus(str, enum.Enum):
    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"


class PaymentMethod(str, enum.Enum):
    COD = "cod"
    WALLET = "wallet"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(50), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    shipping_address_id = Column(Integer, ForeignKey("addresses.id"), nullable=False)

    # Pricing
    subtotal = Column(Float, nullable=False)
    discount_amount = Column(Float, default=0.0, nullable=False)
    coupon_code = Column(String(50), nullable=True)
    delivery_charge = Column(Float, default=0.0, nullable=False)
    total_amount = Column(Float, nullable=False)

    # Payment
    payment_method = Column(Enum(PaymentMethod), nullable=False)
    payment_status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)

    idempotency_key = Column(String(100), unique=True, nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="orders")
    shipping_address = relationship("Address")
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    variant_id = Column(Integer, ForeignKey("variants.id"), nullable=False)
    size_variant_id = Column(Integer, ForeignKey("size_variants.id"), nullable=False)

    # Snapshot at order time
    product_name = Column(String(200), nullable=False)
    color = Column(String(50), nullable=False)
    size = Column(String(10), nullable=False)
    image = Column(String(500), nullable=True)

    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)
    final_price = Column(Float, nullable=False)  # Line total after coupon share

    status = Column(Enum(OrderItemStatus), default=OrderItemStatus.PENDING, nullable=False, index=True)
    cancel_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)

    # Returns
    return_requested = Column(Boolean, default=False, nullable=False)
    return_reason = Column(String(50), nullable=True)
    return_details = Column(Text, nullable=True)
    return_status = Column(Enum(ReturnStatus), nullable=True, index=True)
    return_requested_at = Column(DateTime, nullable=True)

    refunded_amount = Column(Float, default=0.0, nullable=False)

    # Relationships
    order = relationship("Order", back_populates="items")
    product = relationship("Product")
    variant = relationship("Variant")
    size_variant = relationship("SizeVariant")
    status_history = relationship(
        "OrderItemStatusHistory",
        back_populates="order_item",
        cascade="all, delete-orphan",
        order_by="OrderItemStatusHistory.id",
    )


class OrderItemStatusHistory(Base):
    __tablename__ = "order_item_status_history"

    id = Column(Integer, primary_key=True, index=True)
    order_item_id = Column(Integer, ForeignKey("order_items.id"), nullable=False, index=True)

    old_status = Column(String(50), nullable=True)  # Previous status
    new_status = Column(String(50), nullable=False)  # New status

    changed_by = Column(Integer, ForeignKey("users.id"), nullable=True)  # null for system
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    order_item = relationship("OrderItem", back_populates="status_history")
    changer = relationship("User")
