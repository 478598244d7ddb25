from datetime import datetime
from typing import Dict, Iterable, Optional

import structlog
from fastapi import HTTPException, status
from sqlalchemy import or_
from sqlalchemy.orm import Session

from storefront.models.catalog import Category, Product
from storefront.models.offer import Offer
from storefront.schemas.offer import OfferCreate

logger = structlog.get_logger()


def _active_filter(now: datetime):
    return (
        Offer.is_active == True,  # noqa: E712
        Offer.start_date <= now,
        Offer.end_date >= now,
    )


def active_offers_for(db: Session, products: Iterable[Product]) -> Dict[int, Offer]:
    """
    Map product id -> best currently running offer.

    Product offers and category offers compete; the higher percentage wins.
    Products without a running offer are absent from the result.
    """
    products = list(products)
    if not products:
        return {}

    product_ids = {p.id for p in products}
    category_ids = {p.category_id for p in products}
    now = datetime.utcnow()

    offers = (
        db.query(Offer)
        .filter(
            *_active_filter(now),
            or_(Offer.product_id.in_(product_ids), Offer.category_id.in_(category_ids)),
        )
        .all()
    )

    best: Dict[int, Offer] = {}
    for product in products:
        for offer in offers:
            applies = offer.product_id == product.id or (
                offer.product_id is None and offer.category_id == product.category_id
            )
            if not applies:
                continue
            current = best.get(product.id)
            if current is None or offer.discount_percentage > current.discount_percentage:
                best[product.id] = offer
    return best


def apply_offer(base_price: float, selling_price: float, offer: Optional[Offer]) -> float:
    """Customer pays the lower of the stored selling price and the offer price."""
    if offer is None:
        return round(selling_price, 2)
    offer_price = base_price * (1 - offer.discount_percentage / 100)
    return round(min(selling_price, offer_price), 2)


def offer_summary(offer: Optional[Offer]) -> Optional[dict]:
    if offer is None:
        return None
    return {
        "id": offer.id,
        "offer_name": offer.offer_name,
        "discount_percentage": offer.discount_percentage,
        "end_date": offer.end_date,
    }


def create_offer(db: Session, data: OfferCreate) -> Offer:
    if data.product_id is not None:
        if not db.query(Product.id).filter(Product.id == data.product_id).first():
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    if data.category_id is not None:
        if not db.query(Category.id).filter(Category.id == data.category_id).first():
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found")

    offer = Offer(
        offer_name=data.offer_name,
        discount_percentage=data.discount_percentage,
        product_id=data.product_id,
        category_id=data.category_id,
        start_date=data.start_date,
        end_date=data.end_date,
    )
    db.add(offer)
    db.commit()
    db.refresh(offer)
    logger.info("offer_created", offer_id=offer.id, product_id=offer.product_id, category_id=offer.category_id)
    return offer


def list_offers(db: Session) -> list[Offer]:
    return db.query(Offer).order_by(Offer.created_at.desc(), Offer.id.desc()).all()


def deactivate_offer(db: Session, offer_id: int) -> None:
    offer = db.query(Offer).filter(Offer.id == offer_id).first()
    if not offer:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Offer not found")
    offer.is_active = False
    db.commit()
    logger.info("offer_deactivated", offer_id=offer_id)
