from sqlalchemy import Column, Integer, String, Float, Boolean, ForeignKey, DateTime, Text, Index
from sqlalchemy.orm import relationship
from datetime import datetime
from storefront.db.base_class import Base


class Brand(Base):
    __tablename__ = "brands"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    products = relationship("Product", back_populates="brand")


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    products = relationship("Product", back_populates="category")


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    brand_id = Column(Integer, ForeignKey("brands.id"), nullable=False)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False)

    name = Column(String(200), nullable=False, index=True)
    description = Column(Text, nullable=True)

    # Attributes used by search and filters
    material = Column(String(100), nullable=True)
    pattern = Column(String(100), nullable=True)
    gender = Column(String(20), nullable=True)

    is_deleted = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    brand = relationship("Brand", back_populates="products")
    category = relationship("Category", back_populates="products")
    variants = relationship(
        "Variant",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="Variant.id",
    )


# Composite indexes for listing queries
Index('idx_product_category_deleted', Product.category_id, Product.is_deleted)
Index('idx_product_brand_deleted', Product.brand_id, Product.is_deleted)


class Variant(Base):
    """Color option of a product"""
    __tablename__ = "variants"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    color = Column(String(50), nullable=False)

    # Relationships
    product = relationship("Product", back_populates="variants")
    images = relationship(
        "VariantImage",
        back_populates="variant",
        cascade="all, delete-orphan",
        order_by="VariantImage.display_order",
    )
    sizes = relationship(
        "SizeVariant",
        back_populates="variant",
        cascade="all, delete-orphan",
        order_by="SizeVariant.id",
    )
    reviews = relationship("Review", back_populates="variant", cascade="all, delete-orphan")


class VariantImage(Base):
    __tablename__ = "variant_images"

    id = Column(Integer, primary_key=True, index=True)
    variant_id = Column(Integer, ForeignKey("variants.id"), nullable=False)
    image_url = Column(String(500), nullable=False)
    display_order = Column(Integer, default=0)

    # Relationships
    variant = relationship("Variant", back_populates="images")


class SizeVariant(Base):
    """Size + price + stock of a variant"""
    __tablename__ = "size_variants"

    id = Column(Integer, primary_key=True, index=True)
    variant_id = Column(Integer, ForeignKey("variants.id"), nullable=False, index=True)

    size = Column(String(10), nullable=False)  # S, M, L, XL, 38, 40, etc.
    price = Column(Float, nullable=False)
    discount_price = Column(Float, nullable=True)
    stock_count = Column(Integer, default=0, nullable=False)

    # Relationships
    variant = relationship("Variant", back_populates="sizes")

    @property
    def selling_price(self) -> float:
        if self.discount_price is not None and self.discount_price < self.price:
            return self.discount_price
        return self.price
