"""
Per-item order status machine.

Every order item moves independently through

    pending -> Processing -> Shipped -> Delivered

and may leave that path as ``Cancelled`` (before shipping) or ``Returned``
(after an approved return request). All side effects of a transition
(stock, wallet refunds, payment status, history rows, notification emails)
are applied here so routers never mutate ``OrderItem.status`` directly.
"""
from datetime import datetime, timedelta
from typing import Optional, Tuple

import structlog
from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.exceptions import OrderItemNotFound, OrderNotFound
from storefront.models.catalog import SizeVariant
from storefront.models.order import (
    Order,
    OrderItem,
    OrderItemStatus,
    OrderItemStatusHistory,
    PaymentMethod,
    PaymentStatus,
    ReturnStatus,
)
from storefront.models.user import User
from storefront.schemas.order import RETURN_REASONS
from storefront.services.wallet_service import WalletService
from storefront.utils import email as email_utils

logger = structlog.get_logger()

ALLOWED_TRANSITIONS = {
    OrderItemStatus.PENDING: {OrderItemStatus.PROCESSING, OrderItemStatus.CANCELLED},
    OrderItemStatus.PROCESSING: {OrderItemStatus.SHIPPED, OrderItemStatus.CANCELLED},
    OrderItemStatus.SHIPPED: {OrderItemStatus.DELIVERED},
    OrderItemStatus.DELIVERED: {OrderItemStatus.RETURNED},
    OrderItemStatus.CANCELLED: set(),
    OrderItemStatus.RETURNED: set(),
}

CANCELLABLE_STATUSES = {OrderItemStatus.PENDING, OrderItemStatus.PROCESSING}
IN_TRANSIT_STATUSES = CANCELLABLE_STATUSES | {OrderItemStatus.SHIPPED}

# Progress order used to derive the order-level status
STATUS_RANK = {
    OrderItemStatus.PENDING: 0,
    OrderItemStatus.PROCESSING: 1,
    OrderItemStatus.SHIPPED: 2,
    OrderItemStatus.DELIVERED: 3,
}

REFUND_TOLERANCE = 0.01


def can_transition(current: OrderItemStatus, new: OrderItemStatus) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, set())


def derive_order_status(order: Order) -> str:
    statuses = [item.status for item in order.items]
    if not statuses:
        return OrderItemStatus.PENDING.value
    if all(s == OrderItemStatus.CANCELLED for s in statuses):
        return OrderItemStatus.CANCELLED.value

    active = [s for s in statuses if s not in (OrderItemStatus.CANCELLED, OrderItemStatus.RETURNED)]
    if not active:
        return OrderItemStatus.RETURNED.value
    return min(active, key=lambda s: STATUS_RANK[s]).value


def _bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


def load_order_item(
    db: Session,
    order_id: int,
    item_id: int,
    user_id: Optional[int] = None,
) -> Tuple[Order, OrderItem]:
    """Fetch an order (scoped to ``user_id`` when given) and lock one of its items."""
    query = db.query(Order).filter(Order.id == order_id)
    if user_id is not None:
        query = query.filter(Order.user_id == user_id)
    order = query.first()
    if not order:
        raise OrderNotFound()

    item = (
        db.query(OrderItem)
        .filter(OrderItem.id == item_id, OrderItem.order_id == order.id)
        .with_for_update()
        .first()
    )
    if not item:
        raise OrderItemNotFound()
    return order, item


def _record_history(
    db: Session,
    item: OrderItem,
    old_status: Optional[OrderItemStatus],
    new_status: OrderItemStatus,
    actor: Optional[User],
    notes: Optional[str] = None,
) -> None:
    db.add(
        OrderItemStatusHistory(
            order_item_id=item.id,
            old_status=old_status.value if old_status else None,
            new_status=new_status.value,
            changed_by=actor.id if actor else None,
            notes=notes,
        )
    )


def _restock(db: Session, item: OrderItem) -> None:
    size_variant = (
        db.query(SizeVariant)
        .filter(SizeVariant.id == item.size_variant_id)
        .with_for_update()
        .first()
    )
    if size_variant:
        size_variant.stock_count += item.quantity


def _collected_items(order: Order):
    if order.payment_method == PaymentMethod.WALLET:
        return list(order.items)
    # COD money is only collected for delivered items
    return [item for item in order.items if item.delivered_at is not None]


def refresh_payment_status(order: Order) -> PaymentStatus:
    """Recompute the order's payment status from all of its items.

    Wallet orders are prepaid. A COD order is collected item by item on
    delivery, so it stays ``pending`` while any item is still on its way.
    """
    if order.payment_method == PaymentMethod.WALLET:
        awaiting_collection = False
    else:
        awaiting_collection = any(item.status in IN_TRANSIT_STATUSES for item in order.items)

    collected = _collected_items(order)
    refunded_any = any(item.refunded_amount > 0 for item in collected)
    refunded_all = bool(collected) and all(
        item.refunded_amount >= item.final_price - REFUND_TOLERANCE for item in collected
    )

    if refunded_all and not awaiting_collection:
        order.payment_status = PaymentStatus.REFUNDED
    elif refunded_any:
        order.payment_status = PaymentStatus.PARTIALLY_REFUNDED
    elif collected and not awaiting_collection:
        order.payment_status = PaymentStatus.PAID
    else:
        order.payment_status = PaymentStatus.PENDING
    return order.payment_status


def _refund_item(db: Session, order: Order, item: OrderItem, description: str) -> float:
    amount = round(item.final_price - item.refunded_amount, 2)
    if amount <= 0:
        return 0.0
    WalletService.credit(db, order.user_id, amount, description, order_id=order.id)
    item.refunded_amount = round(item.refunded_amount + amount, 2)
    return amount


def _apply_cancellation(
    db: Session,
    order: Order,
    item: OrderItem,
    reason: Optional[str],
    actor: Optional[User],
) -> OrderItem:
    reason = (reason or "").strip()
    if not reason:
        raise _bad_request("Cancellation reason is required")

    if item.status not in CANCELLABLE_STATUSES:
        raise _bad_request(f"Item cannot be cancelled once it is {item.status.value}")

    old_status = item.status
    item.status = OrderItemStatus.CANCELLED
    item.cancel_reason = reason
    item.cancelled_at = datetime.utcnow()
    _restock(db, item)

    refunded = 0.0
    if order.payment_method == PaymentMethod.WALLET:
        refunded = _refund_item(
            db,
            order,
            item,
            f"Refund for cancelled item {item.product_name} (order {order.order_number})",
        )
        # Whole order cancelled before dispatch: delivery charge goes back too
        if order.delivery_charge > 0 and all(
            i.status == OrderItemStatus.CANCELLED for i in order.items
        ):
            WalletService.credit(
                db,
                order.user_id,
                order.delivery_charge,
                f"Delivery charge refund for order {order.order_number}",
                order_id=order.id,
            )

    refresh_payment_status(order)
    _record_history(db, item, old_status, OrderItemStatus.CANCELLED, actor, notes=reason)
    logger.info(
        "order_item_cancelled",
        order_id=order.id,
        item_id=item.id,
        previous_status=old_status.value,
        refunded=refunded,
        actor_id=actor.id if actor else None,
    )
    return item


def cancel_item(
    db: Session,
    order_id: int,
    item_id: int,
    reason: Optional[str],
    user: User,
) -> Tuple[Order, OrderItem]:
    """Customer cancellation of one item of their own order."""
    order, item = load_order_item(db, order_id, item_id, user_id=user.id)
    try:
        _apply_cancellation(db, order, item, reason, user)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(item)
    email_utils.send_item_status_email(item.id)
    return order, item


def request_return(
    db: Session,
    order_id: int,
    item_id: int,
    reason: Optional[str],
    details: Optional[str],
    user: User,
) -> Tuple[Order, OrderItem]:
    order, item = load_order_item(db, order_id, item_id, user_id=user.id)

    if item.status != OrderItemStatus.DELIVERED:
        raise _bad_request("Only delivered items can be returned")

    if item.return_requested:
        raise _bad_request("Return already requested for this item")

    if item.delivered_at + timedelta(days=settings.RETURN_WINDOW_DAYS) < datetime.utcnow():
        raise _bad_request(
            f"Return window of {settings.RETURN_WINDOW_DAYS} days has expired"
        )

    if not reason:
        raise _bad_request("Return reason is required")
    if reason not in RETURN_REASONS:
        raise _bad_request("Invalid return reason")
    if not details:
        raise _bad_request("Please provide details about the return")

    item.return_requested = True
    item.return_reason = reason
    item.return_details = details
    item.return_status = ReturnStatus.REQUESTED
    item.return_requested_at = datetime.utcnow()
    _record_history(
        db,
        item,
        item.status,
        item.status,
        user,
        notes=f"Return requested: {reason}",
    )
    db.commit()
    db.refresh(item)

    logger.info("return_requested", order_id=order.id, item_id=item.id, reason=reason)
    return order, item


def resolve_return(
    db: Session,
    order_id: int,
    item_id: int,
    approve: bool,
    admin: User,
    notes: Optional[str] = None,
) -> Tuple[Order, OrderItem]:
    """Approve (restock + refund) or reject a pending return request."""
    order, item = load_order_item(db, order_id, item_id)

    if item.return_status != ReturnStatus.REQUESTED:
        raise _bad_request("No pending return request for this item")

    try:
        if approve:
            old_status = item.status
            item.status = OrderItemStatus.RETURNED
            item.return_status = ReturnStatus.APPROVED
            _restock(db, item)
            refunded = _refund_item(
                db,
                order,
                item,
                f"Refund for returned item {item.product_name} (order {order.order_number})",
            )
            _record_history(
                db, item, old_status, OrderItemStatus.RETURNED, admin,
                notes=notes or "Return approved",
            )
            refresh_payment_status(order)
        else:
            refunded = 0.0
            item.return_status = ReturnStatus.REJECTED
            _record_history(
                db, item, item.status, item.status, admin,
                notes=notes or "Return rejected",
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(item)
    logger.info(
        "return_resolved",
        order_id=order.id,
        item_id=item.id,
        approved=approve,
        refunded=refunded,
        admin_user_id=admin.id,
    )
    email_utils.send_item_status_email(item.id)
    return order, item


def update_item_status(
    db: Session,
    order_id: int,
    item_id: int,
    new_status: OrderItemStatus,
    admin: User,
    notes: Optional[str] = None,
    reason: Optional[str] = None,
) -> Tuple[Order, OrderItem]:
    order, item = load_order_item(db, order_id, item_id)

    if new_status == OrderItemStatus.RETURNED:
        raise _bad_request("Returns are completed by approving a return request")

    if new_status == item.status:
        raise _bad_request(f"Item is already {item.status.value}")

    try:
        if new_status == OrderItemStatus.CANCELLED:
            _apply_cancellation(db, order, item, reason or notes or "Cancelled by admin", admin)
        else:
            if not can_transition(item.status, new_status):
                raise _bad_request(
                    f"Cannot change status from {item.status.value} to {new_status.value}"
                )

            old_status = item.status
            item.status = new_status
            if new_status == OrderItemStatus.DELIVERED:
                item.delivered_at = datetime.utcnow()
            refresh_payment_status(order)
            _record_history(db, item, old_status, new_status, admin, notes=notes)
            logger.info(
                "order_item_status_updated",
                order_id=order.id,
                item_id=item.id,
                old_status=old_status.value,
                new_status=new_status.value,
                admin_user_id=admin.id,
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(item)
    email_utils.send_item_status_email(item.id)
    return order, item
