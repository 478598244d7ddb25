import random
import string
from datetime import datetime
from typing import List, Optional, Tuple

import structlog
from fastapi import HTTPException, status
from sqlalchemy.orm import Session, selectinload

from storefront.core.config import settings
from storefront.core.exceptions import InsufficientStock, OrderItemNotFound, OrderNotFound
from storefront.models.address import Address
from storefront.models.cart import CartItem
from storefront.models.catalog import SizeVariant, Variant
from storefront.models.order import (
    Order,
    OrderItem,
    OrderItemStatus,
    OrderItemStatusHistory,
    PaymentMethod,
    PaymentStatus,
)
from storefront.models.user import User
from storefront.schemas.order import PlaceOrderRequest
from storefront.services import offer_service
from storefront.services.coupon_service import CouponService
from storefront.services.order_lifecycle import derive_order_status
from storefront.services.wallet_service import WalletService
from storefront.utils import email as email_utils

logger = structlog.get_logger()


def generate_order_number(db: Session) -> str:
    """Generate a unique order number with bounded retries."""
    max_attempts = 10

    for _ in range(max_attempts):
        timestamp = datetime.utcnow().strftime("%Y%m%d")
        random_part = "".join(
            random.choices(string.ascii_uppercase + string.digits, k=8)
        )
        order_number = f"ORD{timestamp}{random_part}"

        existing = db.query(Order).filter(Order.order_number == order_number).first()
        if not existing:
            return order_number

    raise ValueError("Failed to generate unique order number")


def delivery_charge_for(amount: float) -> float:
    return 0.0 if amount >= settings.FREE_DELIVERY_THRESHOLD else settings.DELIVERY_CHARGE


def _cart_items(db: Session, user_id: int) -> List[CartItem]:
    return (
        db.query(CartItem)
        .options(
            selectinload(CartItem.size_variant)
            .selectinload(SizeVariant.variant)
            .selectinload(Variant.product),
            selectinload(CartItem.size_variant)
            .selectinload(SizeVariant.variant)
            .selectinload(Variant.images),
        )
        .filter(CartItem.user_id == user_id)
        .order_by(CartItem.id)
        .all()
    )


def _unit_prices(db: Session, size_variants: List[SizeVariant]) -> dict:
    """size variant id -> price the customer pays for one unit right now"""
    products = {sv.variant.product.id: sv.variant.product for sv in size_variants}
    offers = offer_service.active_offers_for(db, products.values())
    return {
        sv.id: offer_service.apply_offer(
            sv.price, sv.selling_price, offers.get(sv.variant.product_id)
        )
        for sv in size_variants
    }


def get_cart_summary(db: Session, user: User) -> dict:
    items = _cart_items(db, user.id)
    prices = _unit_prices(db, [item.size_variant for item in items])

    lines = []
    subtotal = 0.0
    for item in items:
        size_variant = item.size_variant
        variant = size_variant.variant
        product = variant.product
        line_total = round(prices[size_variant.id] * item.quantity, 2)
        subtotal += line_total
        lines.append(
            {
                "id": item.id,
                "size_variant_id": size_variant.id,
                "product_id": product.id,
                "product_name": product.name,
                "color": variant.color,
                "size": size_variant.size,
                "image": variant.images[0].image_url if variant.images else None,
                "quantity": item.quantity,
                "unit_price": prices[size_variant.id],
                "line_total": line_total,
                "in_stock": size_variant.stock_count >= item.quantity and not product.is_deleted,
                "stock_count": size_variant.stock_count,
            }
        )

    subtotal = round(subtotal, 2)
    delivery = delivery_charge_for(subtotal) if lines else 0.0
    return {
        "items": lines,
        "subtotal": subtotal,
        "delivery_charge": delivery,
        "total": round(subtotal + delivery, 2),
    }


def allocate_discount(line_totals: List[float], discount: float) -> List[float]:
    """
    Split ``discount`` over lines in proportion to their totals.

    Shares are rounded to cents; the last line absorbs the rounding remainder
    so the shares always add up to ``discount`` exactly.
    """
    if discount <= 0 or not line_totals:
        return [0.0] * len(line_totals)

    total = sum(line_totals)
    shares = []
    for line_total in line_totals[:-1]:
        shares.append(round(discount * line_total / total, 2))
    shares.append(round(discount - sum(shares), 2))
    return shares


def _existing_order(db: Session, user: User, key: Optional[str]) -> Optional[Order]:
    if not key:
        return None
    return (
        db.query(Order)
        .filter(Order.user_id == user.id, Order.idempotency_key == key)
        .first()
    )


def place_order(db: Session, user: User, payload: PlaceOrderRequest) -> Tuple[Order, bool]:
    """
    Turn the user's cart into an order.

    Returns ``(order, created)``; ``created`` is False when the idempotency
    key matches an order placed earlier, which is returned unchanged.
    """
    existing = _existing_order(db, user, payload.idempotency_key)
    if existing:
        return existing, False

    try:
        cart_items = _cart_items(db, user.id)
        if not cart_items:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cart is empty"
            )

        address = (
            db.query(Address)
            .filter(
                Address.id == payload.address_id,
                Address.user_id == user.id,
                Address.is_active == True,  # noqa: E712
            )
            .first()
        )
        if not address:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Address not found"
            )

        # Lock size variants in deterministic order to prevent overselling
        requested = {}
        for cart_item in cart_items:
            requested[cart_item.size_variant_id] = (
                requested.get(cart_item.size_variant_id, 0) + cart_item.quantity
            )

        locked = {}
        for size_variant_id in sorted(requested):
            size_variant = (
                db.query(SizeVariant)
                .filter(SizeVariant.id == size_variant_id)
                .with_for_update()
                .first()
            )
            if not size_variant:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail=f"Product variant {size_variant_id} not found",
                )
            locked[size_variant_id] = size_variant

        for size_variant_id, quantity in requested.items():
            size_variant = locked[size_variant_id]
            product = size_variant.variant.product
            if product.is_deleted:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"{product.name} is no longer available",
                )
            if size_variant.stock_count < quantity:
                raise InsufficientStock(size_variant.stock_count)

        prices = _unit_prices(db, list(locked.values()))
        line_totals = [
            round(prices[item.size_variant_id] * item.quantity, 2) for item in cart_items
        ]
        subtotal = round(sum(line_totals), 2)

        coupon = None
        discount = 0.0
        if payload.coupon_code:
            coupon, discount = CouponService.validate_coupon(
                db, payload.coupon_code, subtotal, lock=True
            )

        delivery = delivery_charge_for(subtotal - discount)
        total = round(subtotal - discount + delivery, 2)
        shares = allocate_discount(line_totals, discount)

        try:
            order_number = generate_order_number(db)
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to generate order number",
            ) from exc

        payment_method = PaymentMethod(payload.payment_method)
        order = Order(
            order_number=order_number,
            user_id=user.id,
            shipping_address_id=address.id,
            subtotal=subtotal,
            discount_amount=discount,
            coupon_code=coupon.code if coupon else None,
            delivery_charge=delivery,
            total_amount=total,
            payment_method=payment_method,
            payment_status=PaymentStatus.PENDING,
            idempotency_key=payload.idempotency_key,
        )
        db.add(order)
        db.flush()

        for cart_item, line_total, share in zip(cart_items, line_totals, shares):
            size_variant = locked[cart_item.size_variant_id]
            variant = size_variant.variant
            order_item = OrderItem(
                order_id=order.id,
                product_id=variant.product_id,
                variant_id=variant.id,
                size_variant_id=size_variant.id,
                product_name=variant.product.name,
                color=variant.color,
                size=size_variant.size,
                image=variant.images[0].image_url if variant.images else None,
                quantity=cart_item.quantity,
                unit_price=prices[size_variant.id],
                final_price=round(line_total - share, 2),
                status=OrderItemStatus.PENDING,
            )
            db.add(order_item)
            db.flush()
            db.add(
                OrderItemStatusHistory(
                    order_item_id=order_item.id,
                    old_status=None,
                    new_status=OrderItemStatus.PENDING.value,
                    changed_by=user.id,
                    notes="Order placed",
                )
            )

        for size_variant_id, quantity in requested.items():
            locked[size_variant_id].stock_count -= quantity

        if coupon:
            coupon.used_count += 1

        address.is_used_in_order = True

        if payment_method == PaymentMethod.WALLET:
            WalletService.debit(
                db,
                user.id,
                total,
                f"Payment for order {order_number}",
                order_id=order.id,
            )
            order.payment_status = PaymentStatus.PAID

        db.query(CartItem).filter(CartItem.user_id == user.id).delete()
        db.commit()
        db.refresh(order)
    except HTTPException:
        db.rollback()
        raise
    except Exception:
        db.rollback()
        raise

    logger.info(
        "order_placed",
        order_id=order.id,
        order_number=order.order_number,
        user_id=user.id,
        total_amount=order.total_amount,
        payment_method=order.payment_method.value,
        coupon_code=order.coupon_code,
    )
    email_utils.send_order_confirmation_email(order.id)
    return order, True


# ---------------------------------------------------------------
# Read models
# ---------------------------------------------------------------
def serialize_order_item(item: OrderItem) -> dict:
    return {
        "id": item.id,
        "product_id": item.product_id,
        "variant_id": item.variant_id,
        "size_variant_id": item.size_variant_id,
        "product_name": item.product_name,
        "color": item.color,
        "size": item.size,
        "image": item.image,
        "quantity": item.quantity,
        "unit_price": item.unit_price,
        "final_price": item.final_price,
        "status": item.status.value,
        "cancel_reason": item.cancel_reason,
        "cancelled_at": item.cancelled_at,
        "delivered_at": item.delivered_at,
        "return_requested": item.return_requested,
        "return_reason": item.return_reason,
        "return_details": item.return_details,
        "return_status": item.return_status.value if item.return_status else None,
        "refunded_amount": item.refunded_amount,
    }


def serialize_order(order: Order, include_address: bool = False) -> dict:
    data = {
        "id": order.id,
        "order_number": order.order_number,
        "status": derive_order_status(order),
        "subtotal": order.subtotal,
        "discount_amount": order.discount_amount,
        "coupon_code": order.coupon_code,
        "delivery_charge": order.delivery_charge,
        "total_amount": order.total_amount,
        "payment_method": order.payment_method.value,
        "payment_status": order.payment_status.value,
        "created_at": order.created_at,
        "items": [serialize_order_item(item) for item in order.items],
    }
    if include_address:
        address = order.shipping_address
        data["shipping_address"] = {
            "id": address.id,
            "full_name": address.full_name,
            "mobile_number": address.mobile_number,
            "address": address.address,
            "locality": address.locality,
            "landmark": address.landmark,
            "city": address.city,
            "state": address.state,
            "pincode": address.pincode,
            "address_type": address.address_type,
        }
    return data


def list_user_orders(db: Session, user: User) -> List[Order]:
    return (
        db.query(Order)
        .options(selectinload(Order.items))
        .filter(Order.user_id == user.id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def get_user_order(db: Session, user: User, order_id: int) -> Order:
    order = (
        db.query(Order)
        .options(selectinload(Order.items), selectinload(Order.shipping_address))
        .filter(Order.id == order_id, Order.user_id == user.id)
        .first()
    )
    if not order:
        raise OrderNotFound()
    return order


def item_history(db: Session, user: User, order_id: int, item_id: int) -> List[dict]:
    order = get_user_order(db, user, order_id)
    item = next((i for i in order.items if i.id == item_id), None)
    if item is None:
        raise OrderItemNotFound()

    rows = (
        db.query(OrderItemStatusHistory, User.username)
        .outerjoin(User, OrderItemStatusHistory.changed_by == User.id)
        .filter(OrderItemStatusHistory.order_item_id == item.id)
        .order_by(OrderItemStatusHistory.id)
        .all()
    )
    return [
        {
            "id": entry.id,
            "old_status": entry.old_status,
            "new_status": entry.new_status,
            "changed_by": entry.changed_by,
            "changer_name": changer_name,
            "notes": entry.notes,
            "created_at": entry.created_at,
        }
        for entry, changer_name in rows
    ]
