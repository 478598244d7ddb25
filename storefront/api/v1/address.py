from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
import structlog

from storefront.api.deps import get_current_user
from storefront.db.session import get_db
from storefront.models.address import Address
from storefront.models.user import User
from storefront.schemas.address import AddressCreate, AddressResponse, AddressUpdate
from storefront.utils.response import success

router = APIRouter()
logger = structlog.get_logger()


def _serialize(address: Address) -> dict:
    return AddressResponse.model_validate(address).model_dump()


def _get_owned_address(db: Session, user: User, address_id: int) -> Address:
    address = db.query(Address).filter(
        Address.id == address_id,
        Address.user_id == user.id,
        Address.is_active == True,  # noqa: E712
    ).first()
    if not address:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Address not found"
        )
    return address


@router.get("", response_model=dict)
def get_addresses(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    addresses = (
        db.query(Address)
        .filter(Address.user_id == current_user.id, Address.is_active == True)  # noqa: E712
        .order_by(Address.created_at.desc(), Address.id.desc())
        .all()
    )
    return success(data=[_serialize(a) for a in addresses], message="Addresses retrieved")


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
def create_address(
    address_data: AddressCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    address = Address(user_id=current_user.id, **address_data.model_dump())
    db.add(address)
    db.commit()
    db.refresh(address)
    return success(data=_serialize(address), message="Address added successfully")


@router.put("/{address_id}", response_model=dict)
def update_address(
    address_id: int,
    address_update: AddressUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    address = _get_owned_address(db, current_user, address_id)
    update_data = address_update.model_dump(exclude_unset=True, exclude_none=True)

    if address.is_used_in_order:
        # Orders keep pointing at the old row; edits go to a fresh copy
        fields = {
            column.name: getattr(address, column.name)
            for column in Address.__table__.columns
            if column.name not in ("id", "created_at", "updated_at", "is_used_in_order", "is_active")
        }
        fields.update(update_data)
        address.is_active = False
        address = Address(**fields)
        db.add(address)
    else:
        for field, value in update_data.items():
            setattr(address, field, value)

    db.commit()
    db.refresh(address)
    return success(data=_serialize(address), message="Address updated successfully")


@router.delete("/{address_id}", response_model=dict)
def delete_address(
    address_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    address = _get_owned_address(db, current_user, address_id)

    if address.is_used_in_order:
        address.is_active = False
        logger.info("address_deactivated", address_id=address.id, user_id=current_user.id)
    else:
        db.delete(address)

    db.commit()
    return success(message="Address deleted successfully")
