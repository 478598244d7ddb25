from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
from typing import List, Optional

from storefront.core.rate_limiter import limiter
from storefront.db.session import get_db
from storefront.services import product_service
from storefront.utils.response import paginated_response, success

router = APIRouter()


def _split_values(values: Optional[List[str]]) -> List[str]:
    """Accept both ``?colors=Red,Blue`` and ``?colors=Red&colors=Blue``."""
    result = []
    for value in values or []:
        result.extend(part.strip() for part in value.split(",") if part.strip())
    return result


@router.get("/get", response_model=dict)
@limiter.limit("100/minute")
def get_products(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    search: Optional[str] = None,
    category: Optional[int] = None,
    colors: Optional[List[str]] = Query(None),
    sizes: Optional[List[str]] = Query(None),
    db: Session = Depends(get_db),
):
    """Paginated catalogue listing, newest first."""
    items, total = product_service.list_products(
        db,
        page=page,
        limit=limit,
        search=search.strip() if search else None,
        category_id=category,
        colors=_split_values(colors),
        sizes=_split_values(sizes),
    )
    return paginated_response(items, total, page, limit, message="Products retrieved")


@router.get("/filters", response_model=dict)
@limiter.limit("100/minute")
def get_filters(request: Request, db: Session = Depends(get_db)):
    return success(data=product_service.get_filter_options(db), message="Filters retrieved")


@router.get("/search", response_model=dict)
@limiter.limit("60/minute")
def search_products(
    request: Request,
    query: Optional[str] = None,
    db: Session = Depends(get_db),
):
    results = product_service.search_products(db, query)
    return success(data=results, message="Search results")


@router.get("/search-related", response_model=dict)
@limiter.limit("60/minute")
def search_related(
    request: Request,
    query: Optional[str] = None,
    db: Session = Depends(get_db),
):
    results = product_service.search_with_related(db, query)
    return success(data=results, message="Search results with related products")


@router.get("/related/{product_id}", response_model=dict)
@limiter.limit("100/minute")
def get_related_products(request: Request, product_id: int, db: Session = Depends(get_db)):
    return success(
        data=product_service.related_products(db, product_id),
        message="Related products retrieved",
    )


@router.get("/brand/{brand_id}", response_model=dict)
@limiter.limit("100/minute")
def get_products_by_brand(request: Request, brand_id: int, db: Session = Depends(get_db)):
    return success(
        data=product_service.products_by_brand(db, brand_id),
        message="Products retrieved",
    )


@router.get("/category/{category_id}", response_model=dict)
@limiter.limit("100/minute")
def get_products_by_category(
    request: Request,
    category_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(8, ge=1, le=100),
    db: Session = Depends(get_db),
):
    items, total = product_service.products_by_category(db, category_id, page=page, limit=limit)
    return paginated_response(items, total, page, limit, message="Products retrieved")


@router.get("/gender/{gender}", response_model=dict)
@limiter.limit("100/minute")
def get_products_by_gender(
    request: Request,
    gender: str,
    page: int = Query(1, ge=1),
    limit: int = Query(8, ge=1, le=100),
    db: Session = Depends(get_db),
):
    items, total = product_service.products_by_gender(db, gender, page=page, limit=limit)
    return paginated_response(items, total, page, limit, message="Products retrieved")


# Must stay last: it would otherwise shadow the static paths above
@router.get("/{product_id}", response_model=dict)
@limiter.limit("100/minute")
def get_product(request: Request, product_id: int, db: Session = Depends(get_db)):
    return success(
        data=product_service.get_product_detail(db, product_id),
        message="Product retrieved",
    )
