from typing import Dict, List, Optional, Tuple

import structlog
from fastapi import HTTPException, status
from sqlalchemy import func, or_
from sqlalchemy.orm import Session, selectinload

from storefront.core.exceptions import ProductNotFound
from storefront.models.catalog import (
    Brand,
    Category,
    Product,
    SizeVariant,
    Variant,
    VariantImage,
)
from storefront.models.review import Review
from storefront.models.user import User
from storefront.schemas.product import BrandCreate, CategoryCreate, ProductCreate
from storefront.services import offer_service

logger = structlog.get_logger()

SEARCH_LIMIT = 10
RELATED_LIMIT = 2
RELATED_VARIANT_LIMIT = 3


def like_pattern(term: str) -> str:
    """Substring pattern for ILIKE with wildcards in the user's term escaped."""
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _with_catalog_relations(query):
    return query.options(
        selectinload(Product.brand),
        selectinload(Product.category),
        selectinload(Product.variants).selectinload(Variant.images),
        selectinload(Product.variants).selectinload(Variant.sizes),
    )


def _live_products(db: Session):
    return _with_catalog_relations(db.query(Product)).filter(Product.is_deleted == False)  # noqa: E712


def variant_ratings(db: Session, variant_ids: List[int]) -> Dict[int, Tuple[int, float]]:
    """variant id -> (review count, average rating rounded to one decimal)"""
    if not variant_ids:
        return {}
    rows = (
        db.query(
            Review.variant_id,
            func.count(Review.id),
            func.avg(Review.rating),
        )
        .filter(Review.variant_id.in_(variant_ids))
        .group_by(Review.variant_id)
        .all()
    )
    return {
        variant_id: (count, round(float(avg or 0.0), 1))
        for variant_id, count, avg in rows
    }


def _serialize_size(size: SizeVariant, offer) -> dict:
    return {
        "id": size.id,
        "size": size.size,
        "price": size.price,
        "discount_price": size.discount_price,
        "final_price": offer_service.apply_offer(size.price, size.selling_price, offer),
        "stock_count": size.stock_count,
    }


def _serialize_variant(variant: Variant, ratings, offer, reviews=None) -> dict:
    count, average = ratings.get(variant.id, (0, 0.0))
    data = {
        "id": variant.id,
        "color": variant.color,
        "images": [image.image_url for image in variant.images],
        "sizes": [_serialize_size(size, offer) for size in variant.sizes],
        "review_count": count,
        "average_rating": average,
    }
    if reviews is not None:
        data["reviews"] = reviews
    return data


def serialize_product(
    product: Product,
    ratings: Dict[int, Tuple[int, float]],
    offers: Dict,
    variant_limit: Optional[int] = None,
    reviews_by_variant: Optional[Dict[int, list]] = None,
) -> dict:
    offer = offers.get(product.id)
    variants = product.variants[:variant_limit] if variant_limit else product.variants
    in_stock = any(size.stock_count > 0 for variant in product.variants for size in variant.sizes)
    return {
        "id": product.id,
        "name": product.name,
        "description": product.description,
        "brand": {"id": product.brand.id, "name": product.brand.name} if product.brand else None,
        "category": {"id": product.category.id, "name": product.category.name} if product.category else None,
        "material": product.material,
        "pattern": product.pattern,
        "gender": product.gender,
        "created_at": product.created_at,
        "availability": "Available" if in_stock else "Out of Stock",
        "active_offer": offer_service.offer_summary(offer),
        "variants": [
            _serialize_variant(
                variant,
                ratings,
                offer,
                reviews=reviews_by_variant.get(variant.id, []) if reviews_by_variant is not None else None,
            )
            for variant in variants
        ],
    }


def serialize_products(db: Session, products: List[Product], variant_limit: Optional[int] = None) -> List[dict]:
    variant_ids = [variant.id for product in products for variant in product.variants]
    ratings = variant_ratings(db, variant_ids)
    offers = offer_service.active_offers_for(db, products)
    return [serialize_product(p, ratings, offers, variant_limit=variant_limit) for p in products]


def _paginate(query, page: int, limit: int) -> Tuple[List[Product], int]:
    total = query.order_by(None).count()
    products = (
        query.order_by(Product.created_at.desc(), Product.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return products, total


def list_products(
    db: Session,
    page: int = 1,
    limit: int = 12,
    search: Optional[str] = None,
    category_id: Optional[int] = None,
    colors: Optional[List[str]] = None,
    sizes: Optional[List[str]] = None,
) -> Tuple[List[dict], int]:
    query = _live_products(db)

    if search:
        query = query.filter(Product.name.ilike(like_pattern(search), escape="\\"))
    if category_id:
        query = query.filter(Product.category_id == category_id)
    if colors:
        query = query.filter(Product.variants.any(Variant.color.in_(colors)))
    if sizes:
        query = query.filter(
            Product.variants.any(Variant.sizes.any(SizeVariant.size.in_(sizes)))
        )

    products, total = _paginate(query, page, limit)
    return serialize_products(db, products), total


def get_filter_options(db: Session) -> dict:
    colors = (
        db.query(Variant.color)
        .join(Product, Product.id == Variant.product_id)
        .filter(Product.is_deleted == False)  # noqa: E712
        .distinct()
        .order_by(Variant.color)
        .all()
    )
    sizes = (
        db.query(SizeVariant.size)
        .join(Variant, Variant.id == SizeVariant.variant_id)
        .join(Product, Product.id == Variant.product_id)
        .filter(Product.is_deleted == False)  # noqa: E712
        .distinct()
        .order_by(SizeVariant.size)
        .all()
    )
    return {
        "colors": [row[0] for row in colors],
        "sizes": [row[0] for row in sizes],
    }


def _search_query(db: Session, term: str):
    pattern = like_pattern(term)
    return _live_products(db).filter(
        or_(
            Product.name.ilike(pattern, escape="\\"),
            Product.description.ilike(pattern, escape="\\"),
            Product.material.ilike(pattern, escape="\\"),
            Product.pattern.ilike(pattern, escape="\\"),
            Product.gender.ilike(pattern, escape="\\"),
        )
    )


def _require_query(term: Optional[str]) -> str:
    if not term or not term.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Search query is required",
        )
    return term.strip()


def search_products(db: Session, term: Optional[str]) -> List[dict]:
    term = _require_query(term)
    products = _search_query(db, term).order_by(Product.id).limit(SEARCH_LIMIT).all()
    return serialize_products(db, products)


def _related_to(db: Session, product: Product, variant_limit: Optional[int] = None) -> List[dict]:
    related = (
        _live_products(db)
        .filter(Product.category_id == product.category_id, Product.id != product.id)
        .order_by(Product.created_at.desc(), Product.id.desc())
        .limit(RELATED_LIMIT)
        .all()
    )
    return serialize_products(db, related, variant_limit=variant_limit)


def search_with_related(db: Session, term: Optional[str]) -> List[dict]:
    term = _require_query(term)
    products = _search_query(db, term).order_by(Product.id).limit(SEARCH_LIMIT).all()
    if not products:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No products found matching the query",
        )

    serialized = serialize_products(db, products)
    return [
        {"product": data, "related_products": _related_to(db, product)}
        for product, data in zip(products, serialized)
    ]


def related_products(db: Session, product_id: int) -> List[dict]:
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise ProductNotFound()
    return _related_to(db, product, variant_limit=RELATED_VARIANT_LIMIT)


def products_by_brand(db: Session, brand_id: int) -> List[dict]:
    products = (
        _live_products(db)
        .filter(Product.brand_id == brand_id)
        .order_by(Product.created_at.desc(), Product.id.desc())
        .all()
    )
    return serialize_products(db, products)


def products_by_category(db: Session, category_id: int, page: int = 1, limit: int = 8) -> Tuple[List[dict], int]:
    products, total = _paginate(
        _live_products(db).filter(Product.category_id == category_id), page, limit
    )
    return serialize_products(db, products), total


def products_by_gender(db: Session, gender: str, page: int = 1, limit: int = 8) -> Tuple[List[dict], int]:
    # Exact match: a substring match would put "women" under "men"
    products, total = _paginate(
        _live_products(db).filter(func.lower(Product.gender) == gender.strip().lower()),
        page,
        limit,
    )
    return serialize_products(db, products), total


def get_product_detail(db: Session, product_id: int) -> dict:
    product = _live_products(db).filter(Product.id == product_id).first()
    if not product:
        raise ProductNotFound()

    variant_ids = [variant.id for variant in product.variants]
    reviews_by_variant: Dict[int, list] = {variant_id: [] for variant_id in variant_ids}
    if variant_ids:
        rows = (
            db.query(Review, User.username, User.firstname, User.lastname)
            .join(User, User.id == Review.user_id)
            .filter(Review.variant_id.in_(variant_ids))
            .order_by(Review.created_at.desc(), Review.id.desc())
            .all()
        )
        for review, username, firstname, lastname in rows:
            full_name = " ".join(part for part in (firstname, lastname) if part)
            reviews_by_variant[review.variant_id].append(
                {
                    "id": review.id,
                    "user_id": review.user_id,
                    "user_name": full_name or username,
                    "rating": review.rating,
                    "comment": review.comment,
                    "created_at": review.created_at,
                }
            )

    ratings = variant_ratings(db, variant_ids)
    offers = offer_service.active_offers_for(db, [product])
    return serialize_product(product, ratings, offers, reviews_by_variant=reviews_by_variant)


# ---------------------------------------------------------------
# Admin catalog management
# ---------------------------------------------------------------
def create_brand(db: Session, data: BrandCreate) -> Brand:
    if db.query(Brand).filter(func.lower(Brand.name) == data.name.lower()).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Brand already exists")
    brand = Brand(name=data.name)
    db.add(brand)
    db.commit()
    db.refresh(brand)
    return brand


def create_category(db: Session, data: CategoryCreate) -> Category:
    if db.query(Category).filter(func.lower(Category.name) == data.name.lower()).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Category already exists")
    category = Category(name=data.name)
    db.add(category)
    db.commit()
    db.refresh(category)
    return category


def create_product(db: Session, data: ProductCreate) -> Product:
    if not db.query(Brand.id).filter(Brand.id == data.brand_id).first():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Brand not found")
    if not db.query(Category.id).filter(Category.id == data.category_id).first():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found")

    product = Product(
        name=data.name,
        description=data.description,
        brand_id=data.brand_id,
        category_id=data.category_id,
        material=data.material,
        pattern=data.pattern,
        gender=data.gender,
    )
    for variant_data in data.variants:
        variant = Variant(color=variant_data.color)
        variant.images = [
            VariantImage(image_url=url, display_order=index)
            for index, url in enumerate(variant_data.images)
        ]
        variant.sizes = [
            SizeVariant(
                size=size.size,
                price=size.price,
                discount_price=size.discount_price,
                stock_count=size.stock_count,
            )
            for size in variant_data.sizes
        ]
        product.variants.append(variant)

    db.add(product)
    db.commit()
    db.refresh(product)
    logger.info("product_created", product_id=product.id, variants=len(product.variants))
    return product


def toggle_product_deleted(db: Session, product_id: int) -> Product:
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise ProductNotFound()
    product.is_deleted = not product.is_deleted
    db.commit()
    db.refresh(product)
    logger.info("product_visibility_toggled", product_id=product_id, is_deleted=product.is_deleted)
    return product
