from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session, selectinload
from typing import Optional
import structlog

from storefront.api.deps import require_admin
from storefront.core.exceptions import UserNotFound
from storefront.core.rate_limiter import limiter
from storefront.db.session import get_db
from storefront.models.order import Order, OrderItem, ReturnStatus
from storefront.models.user import User, UserRole
from storefront.schemas.coupon import CouponCreate, CouponResponse
from storefront.schemas.offer import OfferCreate, OfferResponse
from storefront.schemas.order import ItemStatusUpdate, ReturnResolution
from storefront.schemas.product import BrandCreate, CategoryCreate, ProductCreate
from storefront.services import checkout_service, offer_service, order_lifecycle, product_service
from storefront.services.coupon_service import CouponService
from storefront.utils.response import paginated_response, success

router = APIRouter()
logger = structlog.get_logger()


def _item_payload(order, item) -> dict:
    return {
        "order_id": order.id,
        "order_status": order_lifecycle.derive_order_status(order),
        "payment_status": order.payment_status.value,
        "item": checkout_service.serialize_order_item(item),
    }


# --------------------------------------------------
# Orders
# --------------------------------------------------
@router.get("/orders", response_model=dict)
@limiter.limit("60/minute")
def get_all_orders(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Admin: all orders, newest first"""
    query = db.query(Order).options(selectinload(Order.items), selectinload(Order.user))
    total = query.count()
    orders = (
        query.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    orders_response = []
    for order in orders:
        data = checkout_service.serialize_order(order)
        data["customer_email"] = order.user.email
        data["customer_username"] = order.user.username
        orders_response.append(data)

    return paginated_response(orders_response, total, page, limit, message="Orders retrieved successfully")


@router.patch("/orders/{order_id}/items/{item_id}/status", response_model=dict)
@limiter.limit("60/minute")
def update_item_status(
    request: Request,
    order_id: int,
    item_id: int,
    payload: ItemStatusUpdate,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    order, item = order_lifecycle.update_item_status(
        db,
        order_id,
        item_id,
        payload.status,
        current_admin,
        notes=payload.notes,
        reason=payload.reason,
    )
    return success(data=_item_payload(order, item), message=f"Item status updated to {item.status.value}")


@router.get("/returns", response_model=dict)
@limiter.limit("60/minute")
def get_return_requests(
    request: Request,
    return_status: Optional[ReturnStatus] = Query(None, alias="status"),
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    query = (
        db.query(OrderItem, Order)
        .join(Order, Order.id == OrderItem.order_id)
        .filter(OrderItem.return_requested == True)  # noqa: E712
    )
    if return_status is not None:
        query = query.filter(OrderItem.return_status == return_status)

    rows = query.order_by(OrderItem.return_requested_at.desc(), OrderItem.id.desc()).all()
    returns = [
        {
            "order_id": order.id,
            "order_number": order.order_number,
            "user_id": order.user_id,
            "item": checkout_service.serialize_order_item(item),
            "return_requested_at": item.return_requested_at,
        }
        for item, order in rows
    ]
    return success(data=returns, message="Return requests retrieved")


@router.patch("/orders/{order_id}/items/{item_id}/return", response_model=dict)
@limiter.limit("60/minute")
def resolve_return_request(
    request: Request,
    order_id: int,
    item_id: int,
    payload: ReturnResolution,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    order, item = order_lifecycle.resolve_return(
        db, order_id, item_id, payload.approve, current_admin, notes=payload.notes
    )
    message = "Return approved and refunded" if payload.approve else "Return request rejected"
    return success(data=_item_payload(order, item), message=message)


# --------------------------------------------------
# Users
# --------------------------------------------------
def _set_blocked(db: Session, user_id: int, blocked: bool, admin: User) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise UserNotFound()
    if user.role == UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Admin accounts cannot be blocked"
        )

    user.is_blocked = blocked
    # Outstanding tokens stop working either way
    user.session_version += 1
    db.commit()
    db.refresh(user)
    logger.info("user_block_changed", user_id=user.id, is_blocked=blocked, admin_user_id=admin.id)
    return user


@router.patch("/users/{user_id}/block", response_model=dict)
def block_user(
    user_id: int,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    user = _set_blocked(db, user_id, True, current_admin)
    return success(data={"id": user.id, "is_blocked": user.is_blocked}, message="User blocked")


@router.patch("/users/{user_id}/unblock", response_model=dict)
def unblock_user(
    user_id: int,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    user = _set_blocked(db, user_id, False, current_admin)
    return success(data={"id": user.id, "is_blocked": user.is_blocked}, message="User unblocked")


# --------------------------------------------------
# Catalog
# --------------------------------------------------
@router.post("/brands", response_model=dict, status_code=status.HTTP_201_CREATED)
def create_brand(
    payload: BrandCreate,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    brand = product_service.create_brand(db, payload)
    return success(data={"id": brand.id, "name": brand.name}, message="Brand created")


@router.post("/categories", response_model=dict, status_code=status.HTTP_201_CREATED)
def create_category(
    payload: CategoryCreate,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    category = product_service.create_category(db, payload)
    return success(data={"id": category.id, "name": category.name}, message="Category created")


@router.post("/products", response_model=dict, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_product(
    request: Request,
    payload: ProductCreate,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    product = product_service.create_product(db, payload)
    return success(data=product_service.get_product_detail(db, product.id), message="Product created")


@router.patch("/products/{product_id}/toggle-delete", response_model=dict)
def toggle_product_delete(
    product_id: int,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    product = product_service.toggle_product_deleted(db, product_id)
    message = "Product deleted" if product.is_deleted else "Product restored"
    return success(data={"id": product.id, "is_deleted": product.is_deleted}, message=message)


# --------------------------------------------------
# Offers
# --------------------------------------------------
@router.post("/offers", response_model=dict, status_code=status.HTTP_201_CREATED)
def create_offer(
    payload: OfferCreate,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    offer = offer_service.create_offer(db, payload)
    return success(data=OfferResponse.model_validate(offer).model_dump(), message="Offer created")


@router.get("/offers", response_model=dict)
def list_offers(
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    offers = offer_service.list_offers(db)
    return success(
        data=[OfferResponse.model_validate(o).model_dump() for o in offers],
        message="Offers retrieved",
    )


@router.delete("/offers/{offer_id}", response_model=dict)
def delete_offer(
    offer_id: int,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    offer_service.deactivate_offer(db, offer_id)
    return success(message="Offer deleted")


# --------------------------------------------------
# Coupons
# --------------------------------------------------
@router.post("/coupons", response_model=dict, status_code=status.HTTP_201_CREATED)
def create_coupon(
    payload: CouponCreate,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    coupon = CouponService.create_coupon(db, payload)
    return success(data=CouponResponse.model_validate(coupon).model_dump(), message="Coupon created")


@router.get("/coupons", response_model=dict)
def list_coupons(
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    coupons = CouponService.list_coupons(db)
    return success(
        data=[CouponResponse.model_validate(c).model_dump() for c in coupons],
        message="Coupons retrieved",
    )
