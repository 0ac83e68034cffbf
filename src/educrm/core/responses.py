# src/educrm/core/responses.py
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Generic, Optional, Sequence, TypeVar

from fastapi import Query
from pydantic import BaseModel, Field

from educrm.core.context import current_request_id

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PageMeta(BaseModel):
    page: int
    page_size: int
    total_items: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, page: int, page_size: int, total: int) -> "PageMeta":
        pages = math.ceil(total / page_size) if page_size else 0
        return cls(
            page=page,
            page_size=page_size,
            total_items=total,
            total_pages=pages,
            has_next=page < pages,
            has_prev=page > 1,
        )


class Envelope(BaseModel, Generic[T]):
    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None
    meta: Optional[dict[str, Any]] = None
    pagination: Optional[PageMeta] = None
    timestamp: datetime = Field(default_factory=utcnow)
    request_id: Optional[str] = Field(default_factory=current_request_id)


class PageParams:
    """Query-string pagination: page, page_size, sort, order, search."""

    def __init__(
        self,
        page: int = Query(1, description="1-based page number"),
        page_size: int = Query(DEFAULT_PAGE_SIZE, description="Items per page (1..100)"),
        sort: Optional[str] = Query(None, description="Column to sort by"),
        order: str = Query("desc", description="asc | desc"),
        search: Optional[str] = Query(None, description="Case-insensitive substring"),
    ):
        self.page = max(page, 1)
        self.page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
        self.sort = sort or "created_at"
        self.order = "asc" if str(order).lower() == "asc" else "desc"
        self.search = (search or "").strip() or None

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int:
        return self.page_size


def ok(data: Any = None, message: Optional[str] = None, meta: Optional[dict] = None) -> Envelope:
    return Envelope(data=data, message=message, meta=meta)


def paginated(items: Sequence[Any], params: PageParams, total: int, message: Optional[str] = None) -> Envelope:
    return Envelope(
        data=list(items),
        message=message,
        pagination=PageMeta.build(params.page, params.page_size, total),
    )


def error_body(code: str, kind: str, message: str, path: str, details: Any = None) -> dict[str, Any]:
    return {
        "success": False,
        "message": message,
        "errors": {
            "code": code,
            "kind": kind,
            "details": details,
            "path": path,
        },
        "timestamp": utcnow().isoformat(),
        "request_id": current_request_id(),
    }


__all__ = [
    "Envelope",
    "PageMeta",
    "PageParams",
    "ok",
    "paginated",
    "error_body",
    "utcnow",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
]
