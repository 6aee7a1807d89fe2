from __future__ import annotations

import logging
from typing import Any, Optional

from api.services.errors import ValidationFailed

logger = logging.getLogger(__name__)

TRANSACTION_TYPES = ("PURCHASE", "SALE", "ADJUSTMENT", "RETURN")
LARGE_ADJUSTMENT = 15


def with_available_stock(item: dict[str, Any]) -> dict[str, Any]:
    return {**item, "available_stock": int(item["stock"]) - int(item["reserved_stock"])}


def validate_item(item: dict[str, Any]) -> None:
    """Check stock bounds on a merged (stored + incoming) item."""
    stock = int(item.get("stock") or 0)
    min_stock: Optional[int] = item.get("min_stock")
    max_stock: Optional[int] = item.get("max_stock")
    if min_stock is not None and stock < min_stock:
        raise ValidationFailed("Stock cannot be below minimum stock", code="STOCK_BELOW_MINIMUM")
    if max_stock is not None and stock > max_stock:
        raise ValidationFailed("Stock cannot exceed maximum stock", code="STOCK_ABOVE_MAXIMUM")
    if min_stock is not None and int(item.get("reorder_point") or 0) < min_stock:
        raise ValidationFailed("Reorder point must be at least minimum stock", code="INVALID_REORDER_POINT")
    if float(item.get("price") or 0) < float(item.get("cost") or 0):
        logger.warning("Item %s priced below cost", item.get("sku"))


def is_low_stock(item: dict[str, Any]) -> bool:
    return int(item["stock"]) <= int(item["reorder_point"])


def adjustment_priority(quantity: int) -> str:
    return "high" if abs(quantity) > LARGE_ADJUSTMENT else "medium"


def _contains(value: Optional[str], needle: str) -> bool:
    return needle.lower() in (value or "").lower()


def filter_items(
    items: list[dict[str, Any]],
    *,
    category: Optional[str] = None,
    subcategory: Optional[str] = None,
    brand: Optional[str] = None,
    is_active: Optional[bool] = None,
    low_stock: Optional[bool] = None,
    out_of_stock: Optional[bool] = None,
    location: Optional[str] = None,
    supplier_id: Optional[str] = None,
    search: Optional[str] = None,
) -> list[dict[str, Any]]:
    result = []
    for item in items:
        if category and not _contains(item["category"], category):
            continue
        if subcategory and not _contains(item.get("subcategory"), subcategory):
            continue
        if brand and not _contains(item.get("brand"), brand):
            continue
        if is_active is not None and item["is_active"] != is_active:
            continue
        if low_stock and not is_low_stock(item):
            continue
        if out_of_stock and int(item["stock"]) != 0:
            continue
        if location and not _contains(str(item.get("location") or ""), location):
            continue
        if supplier_id and item.get("supplier_id") != supplier_id:
            continue
        if search and not any(
            _contains(item.get(field), search) for field in ("name", "sku", "description", "brand")
        ):
            continue
        result.append(item)
    return result
