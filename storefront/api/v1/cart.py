from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_user
from storefront.core.config import settings
from storefront.core.exceptions import InsufficientStock
from storefront.db.session import get_db
from storefront.models.cart import CartItem
from storefront.models.catalog import SizeVariant
from storefront.models.user import User
from storefront.schemas.cart import CartItemCreate, CartItemUpdate
from storefront.services.checkout_service import get_cart_summary
from storefront.utils.response import success

router = APIRouter()


def _check_quantity(size_variant: SizeVariant, quantity: int) -> None:
    if quantity > settings.MAX_CART_ITEM_QUANTITY:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Maximum {settings.MAX_CART_ITEM_QUANTITY} units allowed per item"
        )
    if size_variant.stock_count < quantity:
        raise InsufficientStock(size_variant.stock_count)


def _get_cart_item(db: Session, user: User, item_id: int) -> CartItem:
    cart_item = db.query(CartItem).filter(
        CartItem.id == item_id,
        CartItem.user_id == user.id
    ).first()
    if not cart_item:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Cart item not found"
        )
    return cart_item


@router.get("", response_model=dict)
def get_cart(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Cart lines priced with the offers active right now."""
    return success(data=get_cart_summary(db, current_user), message="Cart retrieved")


@router.post("/add", response_model=dict, status_code=status.HTTP_201_CREATED)
def add_to_cart(
    cart_item: CartItemCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    size_variant = db.query(SizeVariant).filter(SizeVariant.id == cart_item.size_variant_id).first()
    if not size_variant:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Product variant not found"
        )

    product = size_variant.variant.product
    if product.is_deleted:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{product.name} is no longer available"
        )

    existing_item = db.query(CartItem).filter(
        CartItem.user_id == current_user.id,
        CartItem.size_variant_id == size_variant.id
    ).first()

    if existing_item:
        new_quantity = existing_item.quantity + cart_item.quantity
        _check_quantity(size_variant, new_quantity)
        existing_item.quantity = new_quantity
        db.commit()
        return success(data=get_cart_summary(db, current_user), message="Cart updated")

    _check_quantity(size_variant, cart_item.quantity)
    db.add(
        CartItem(
            user_id=current_user.id,
            size_variant_id=size_variant.id,
            quantity=cart_item.quantity,
        )
    )
    db.commit()
    return success(data=get_cart_summary(db, current_user), message="Item added to cart")


@router.patch("/{item_id}", response_model=dict)
def update_cart_item(
    item_id: int,
    update_data: CartItemUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    cart_item = _get_cart_item(db, current_user, item_id)
    _check_quantity(cart_item.size_variant, update_data.quantity)

    cart_item.quantity = update_data.quantity
    db.commit()
    return success(data=get_cart_summary(db, current_user), message="Cart updated")


@router.delete("/{item_id}", response_model=dict)
def remove_cart_item(
    item_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    cart_item = _get_cart_item(db, current_user, item_id)
    db.delete(cart_item)
    db.commit()
    return success(data=get_cart_summary(db, current_user), message="Item removed from cart")
