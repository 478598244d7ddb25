from storefront.models.user import User, UserRole
from storefront.models.wallet import Wallet, WalletTransaction, TransactionType
from storefront.models.otp import Otp, OtpPurpose
from storefront.models.address import Address
from storefront.models.catalog import Brand, Category, Product, Variant, VariantImage, SizeVariant
from storefront.models.review import Review
from storefront.models.offer import Offer
from storefront.models.coupon import Coupon
from storefront.models.cart import CartItem
from storefront.models.order import (
    Order,
    OrderItem,
    OrderItemStatus,
    OrderItemStatusHistory,
    PaymentMethod,
    PaymentStatus,
    ReturnStatus,
)
from storefront.models.token_blacklist import TokenBlacklist
