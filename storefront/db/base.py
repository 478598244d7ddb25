from storefront.db.base_class import Base  # noqa: F401


# IMPORT ALL MODELS HERE (THIS REGISTERS THEM WITH Base.metadata)
from storefront.models import (  # noqa: F401
    User,
    Wallet,
    WalletTransaction,
    Otp,
    Address,
    Brand,
    Category,
    Product,
    Variant,
    VariantImage,
    SizeVariant,
    Review,
    Offer,
    Coupon,
    CartItem,
    Order,
    OrderItem,
    OrderItemStatusHistory,
    TokenBlacklist,
)
