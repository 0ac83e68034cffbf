from __future__ import annotations

from contextvars import ContextVar

# correlation id of the request currently being served
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)


def current_request_id() -> str | None:
    return request_id_ctx.get()
