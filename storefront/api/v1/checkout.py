from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_user
from storefront.core.rate_limiter import limiter
from storefront.db.session import get_db
from storefront.models.user import User
from storefront.schemas.order import CancelItemRequest, PlaceOrderRequest, ReturnItemRequest
from storefront.services import checkout_service, order_lifecycle
from storefront.utils.response import success

router = APIRouter()


@router.post(
    "/place-order",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Place order from cart",
    description="""
Turns the authenticated user's cart into an order.

Process:
1. Validates cart is not empty and the address belongs to the user
2. Locks size variants in id order to prevent overselling
3. Prices lines with active offers and applies the coupon, if any
4. Adds the delivery charge below the free-delivery threshold
5. Creates order, items and their first history rows
6. Decrements stock, debits the wallet for wallet payments, clears cart

Repeating a request with the same `idempotency_key` returns the order
created the first time with status 200.
""",
    responses={
        201: {"description": "Order placed"},
        200: {"description": "Order already placed with this idempotency key"},
        400: {"description": "Cart empty, insufficient stock, invalid coupon or wallet balance"},
        401: {"description": "Authentication required"},
        404: {"description": "Address not found"},
    },
    tags=["Checkout"],
)
@limiter.limit("10/minute")
def place_order(
    request: Request,
    payload: PlaceOrderRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    order, created = checkout_service.place_order(db, current_user, payload)
    body = success(
        data=checkout_service.serialize_order(order, include_address=True),
        message="Order placed successfully" if created else "Order already placed",
    )
    return JSONResponse(
        status_code=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        content=body,
    )


@router.get("/get-orders", response_model=dict, tags=["Checkout"])
def get_orders(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    orders = checkout_service.list_user_orders(db, current_user)
    return success(
        data=[checkout_service.serialize_order(order) for order in orders],
        message="Orders retrieved",
    )


@router.get("/order/{order_id}", response_model=dict, tags=["Checkout"])
def get_order(
    order_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    order = checkout_service.get_user_order(db, current_user, order_id)
    return success(
        data=checkout_service.serialize_order(order, include_address=True),
        message="Order retrieved",
    )


@router.get("/order/{order_id}/items/{item_id}/history", response_model=dict, tags=["Checkout"])
def get_item_history(
    order_id: int,
    item_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    history = checkout_service.item_history(db, current_user, order_id, item_id)
    return success(data=history, message="Item history retrieved")


@router.patch("/cancel-order/{order_id}/{item_id}", response_model=dict, tags=["Checkout"])
@limiter.limit("20/minute")
def cancel_order_item(
    request: Request,
    order_id: int,
    item_id: int,
    payload: CancelItemRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    order, item = order_lifecycle.cancel_item(db, order_id, item_id, payload.reason, current_user)
    return success(
        data={
            "order_id": order.id,
            "order_status": order_lifecycle.derive_order_status(order),
            "payment_status": order.payment_status.value,
            "item": checkout_service.serialize_order_item(item),
        },
        message="Item cancelled successfully",
    )


@router.patch("/return-product/{order_id}/{item_id}", response_model=dict, tags=["Checkout"])
@limiter.limit("20/minute")
def return_order_item(
    request: Request,
    order_id: int,
    item_id: int,
    payload: ReturnItemRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    order, item = order_lifecycle.request_return(
        db, order_id, item_id, payload.reason, payload.details, current_user
    )
    return success(
        data={
            "order_id": order.id,
            "item": checkout_service.serialize_order_item(item),
        },
        message="Return request submitted successfully",
    )
