from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from storefront.core.security import create_user_tokens, hash_password
from storefront.models.address import Address
from storefront.models.cart import CartItem
from storefront.models.catalog import Brand, Category, Product, SizeVariant, Variant, VariantImage
from storefront.models.user import User, UserRole
from storefront.models.wallet import Wallet

PASSWORD = "Strong@Pass1"


def create_user(
    db: Session,
    username: str = "shopper",
    email: Optional[str] = None,
    role: UserRole = UserRole.CUSTOMER,
    balance: float = 0.0,
) -> User:
    user = User(
        username=username,
        email=email or f"{username}@gmail.com",
        password_hash=hash_password(PASSWORD),
        role=role,
        referral_code=username.upper()[:16],
    )
    db.add(user)
    db.flush()
    db.add(Wallet(user_id=user.id, balance=balance))
    db.commit()
    db.refresh(user)
    return user


def create_admin(db: Session) -> User:
    return create_user(db, username="storeadmin", role=UserRole.ADMIN)


def auth_headers(user: User) -> dict:
    access_token, _ = create_user_tokens(user)
    return {"Authorization": f"Bearer {access_token}"}


def create_category(db: Session, name: str = "Shirts") -> Category:
    category = Category(name=name)
    db.add(category)
    db.commit()
    db.refresh(category)
    return category


def create_product(
    db: Session,
    name: str = "Oxford Shirt",
    price: float = 1200.0,
    discount_price: Optional[float] = None,
    stock: int = 10,
    color: str = "Blue",
    size: str = "M",
    gender: str = "Men",
    category: Optional[Category] = None,
    brand: Optional[Brand] = None,
    created_at: Optional[datetime] = None,
) -> Product:
    """One product with one variant and one size."""
    if brand is None:
        brand = db.query(Brand).filter(Brand.name == "Acme").first()
        if brand is None:
            brand = Brand(name="Acme")
            db.add(brand)
            db.flush()
    if category is None:
        category = db.query(Category).filter(Category.name == "Shirts").first()
        if category is None:
            category = Category(name="Shirts")
            db.add(category)
            db.flush()

    product = Product(
        name=name,
        description=f"{name} in cotton",
        brand_id=brand.id,
        category_id=category.id,
        material="Cotton",
        pattern="Solid",
        gender=gender,
        created_at=created_at or datetime.utcnow(),
    )
    variant = Variant(color=color)
    variant.images = [VariantImage(image_url=f"https://cdn.test/{name}.jpg", display_order=0)]
    variant.sizes = [
        SizeVariant(size=size, price=price, discount_price=discount_price, stock_count=stock)
    ]
    product.variants.append(variant)
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


def size_of(product: Product) -> SizeVariant:
    return product.variants[0].sizes[0]


def create_address(db: Session, user: User) -> Address:
    address = Address(
        user_id=user.id,
        full_name="Test Shopper",
        mobile_number="9876543210",
        pincode="395007",
        locality="Adajan",
        address="12 Ring Road",
        city="Surat",
        state="Gujarat",
        address_type="Home",
    )
    db.add(address)
    db.commit()
    db.refresh(address)
    return address


def add_to_cart(db: Session, user: User, size_variant: SizeVariant, quantity: int = 1) -> CartItem:
    item = CartItem(user_id=user.id, size_variant_id=size_variant.id, quantity=quantity)
    db.add(item)
    db.commit()
    db.refresh(item)
    return item
