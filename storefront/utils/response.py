import math
from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder


def success(data: Any = None, message: str = "Success", meta: Optional[Dict[str, Any]] = None) -> dict:
    """Wrap a payload in the success envelope, JSON-ready."""
    body: Dict[str, Any] = {"success": True, "message": message, "data": data, "errors": None}
    if meta is not None:
        body["meta"] = meta
    return jsonable_encoder(body)


def page_meta(total: int, page: int, limit: int) -> Dict[str, int]:
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit) if limit else 0,
    }


def paginated_response(items, total: int, page: int, limit: int, message: str = "Success") -> dict:
    return success(items, message, page_meta(total, page, limit))
