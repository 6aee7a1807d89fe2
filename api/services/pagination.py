from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Optional, Sequence, TypeVar

T = TypeVar("T")

MAX_LIMIT = 100


@dataclass(frozen=True)
class Pagination:
    page: int
    limit: int
    total: int
    total_pages: int

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def normalize(page: int, limit: int) -> tuple[int, int]:
    return max(1, int(page)), min(MAX_LIMIT, max(1, int(limit)))


def build_pagination(total: int, page: int, limit: int) -> Pagination:
    page, limit = normalize(page, limit)
    return Pagination(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit))


def paginate(items: Sequence[T], page: int = 1, limit: int = 10) -> tuple[list[T], Pagination]:
    """Slice ``items`` to one 1-based page. Pages past the end are empty but keep the totals."""
    pagination = build_pagination(len(items), page, limit)
    start = (pagination.page - 1) * pagination.limit
    return list(items[start : start + pagination.limit]), pagination


def envelope(data: Any, pagination: Optional[Pagination] = None, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"success": True, "data": data}
    if pagination is not None:
        body["pagination"] = pagination.to_dict()
    body.update(extra)
    return body
