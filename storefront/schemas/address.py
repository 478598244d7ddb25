from pydantic import BaseModel, field_validator
from typing import Literal, Optional
import re

from storefront.utils.sanitize import strip_html


class AddressBase(BaseModel):
    full_name: str
    mobile_number: str
    pincode: str
    locality: str
    address: str
    city: str
    state: str
    landmark: Optional[str] = None
    alternate_phone: Optional[str] = None
    address_type: Literal["Home", "Work"] = "Home"
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @field_validator('full_name', 'locality', 'address', 'city', 'state', 'landmark')
    @classmethod
    def sanitize_text(cls, v):
        v = strip_html(v)
        if v is not None and len(v) == 0:
            raise ValueError('Field cannot be empty')
        return v

    @field_validator('pincode')
    @classmethod
    def validate_pincode(cls, v):
        if not re.match(r'^\d{6}$', v):
            raise ValueError('Pincode must be 6 digits')
        return v

    @field_validator('mobile_number', 'alternate_phone')
    @classmethod
    def validate_phone(cls, v):
        if v is not None and not re.match(r'^\d{10}$', v):
            raise ValueError('Phone must be 10 digits')
        return v


class AddressCreate(AddressBase):
    pass


class AddressUpdate(BaseModel):
    full_name: Optional[str] = None
    mobile_number: Optional[str] = None
    pincode: Optional[str] = None
    locality: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    landmark: Optional[str] = None
    alternate_phone: Optional[str] = None
    address_type: Optional[Literal["Home", "Work"]] = None

    @field_validator('full_name', 'locality', 'address', 'city', 'state', 'landmark')
    @classmethod
    def sanitize_text(cls, v):
        return strip_html(v)

    @field_validator('pincode')
    @classmethod
    def validate_pincode(cls, v):
        if v is not None and not re.match(r'^\d{6}$', v):
            raise ValueError('Pincode must be 6 digits')
        return v

    @field_validator('mobile_number', 'alternate_phone')
    @classmethod
    def validate_phone(cls, v):
        if v is not None and not re.match(r'^\d{10}$', v):
            raise ValueError('Phone must be 10 digits')
        return v


class AddressResponse(AddressBase):
    id: int
    user_id: int
    is_used_in_order: bool

    class Config:
        from_attributes = True
