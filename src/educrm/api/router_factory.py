import textwrap
import uuid
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence, Type, TypeVar

import sqlalchemy as sa
from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from educrm.auth.deps import Principal, require_auth, require_role
from educrm.core import errors
from educrm.core.responses import Envelope, PageParams, ok, paginated
from educrm.db.base import GUID
from educrm.db.models import AuditAction, Role
from educrm.db.repository import Repository, with_tx
from educrm.db.session import get_db
from educrm.services import audit

ModelT = TypeVar("ModelT")
SchemaT = TypeVar("SchemaT", bound=BaseModel)

# writes default to back-office roles
staff_only = require_role(Role.ADMIN, Role.STAFF)
admin_only = require_role(Role.ADMIN)

_TRUE = {"true", "1", "yes"}
_FALSE = {"false", "0", "no"}


def to_columns(data: dict[str, Any]) -> dict[str, Any]:
    """A request body's ``metadata`` key lives on the ``meta_data`` attribute."""
    out = dict(data)
    if "metadata" in out:
        out["meta_data"] = out.pop("metadata")
    return out


async def audit_write(
    db: AsyncSession,
    principal: Optional[Principal],
    action: AuditAction,
    resource: str,
    obj: Any = None,
    *,
    resource_id: Any = None,
    old: Any = None,
    new: Any = None,
    error: Optional[errors.AppError] = None,
) -> None:
    if resource_id is None and obj is not None:
        resource_id = getattr(obj, "id", None)
    await audit.record(
        db,
        action=action,
        resource=resource,
        resource_id=resource_id,
        # the SKIP_AUTH principal has no row behind it
        user_id=principal.id if principal is not None and principal.user is not None else None,
        old_value=old,
        new_value=audit.snapshot(obj) if obj is not None and error is None else new,
        ip_address=principal.ip if principal else None,
        user_agent=principal.user_agent if principal else None,
        success=error is None,
        error_msg=error.message if error is not None else None,
    )


async def audited(
    db: AsyncSession,
    principal: Optional[Principal],
    action: AuditAction,
    resource: str,
    op: Callable[[], Awaitable[Any]],
    *,
    resource_id: Any = None,
    old: Any = None,
) -> Any:
    """Run ``op`` and append an audit row for the outcome, failed or not."""
    try:
        obj = await op()
    except errors.AppError as exc:
        await audit_write(db, principal, action, resource, resource_id=resource_id, error=exc)
        raise
    await audit_write(db, principal, action, resource, obj, resource_id=resource_id, old=old)
    return obj


def parse_filter(model: type, name: str, raw: str) -> Any:
    column = sa.inspect(model).columns[name]
    if isinstance(column.type, GUID):
        try:
            return uuid.UUID(raw)
        except ValueError:
            raise errors.bad_request(f"Invalid {name}", {name: raw}) from None
    if isinstance(column.type, sa.Boolean):
        lowered = raw.lower()
        if lowered not in _TRUE | _FALSE:
            raise errors.bad_request(f"Invalid {name}", {name: raw})
        return lowered in _TRUE
    return raw


def query_filters(request: Request, model: type, names: Iterable[str]) -> list[Any]:
    """Equality filters for whitelisted columns present in the query string."""
    out = []
    for name in names:
        raw = request.query_params.get(name)
        if raw:
            out.append(getattr(model, name) == parse_filter(model, name, raw))
    return out


def _with_doc(doc: str, extra: str) -> str:
    if doc:
        return textwrap.dedent(f"""{doc}\n\n{extra}""").strip()
    return extra


def build_crud_router(
    *,
    model: Type[ModelT],
    create_schema: Optional[Type[SchemaT]],
    read_schema: Type[SchemaT],
    update_schema: Optional[Type[SchemaT]],
    path_prefix: str,
    tags: Optional[Iterable[str]] = None,
    resource: Optional[str] = None,
    read_dependency: Callable[..., Any] = require_auth,
    write_dependency: Callable[..., Any] = staff_only,
    create: Optional[Callable[..., Awaitable[Any]]] = None,
    update: Optional[Callable[..., Awaitable[Any]]] = None,
    delete: Optional[Callable[..., Awaitable[Any]]] = None,
    present: Optional[Callable[[AsyncSession, Sequence[Any]], Awaitable[list[Any]]]] = None,
    filter_fields: Iterable[str] = (),
    listable: bool = True,
    deletable: bool = True,
    restore: bool | Callable[..., Awaitable[Any]] = False,
    router: Optional[APIRouter] = None,
) -> APIRouter:
    """
    Standard list/get/create/update/delete (+ optional restore) routes for
    ``model`` in the envelope format, with every write audited.

    ``create(db, data, principal)``, ``update(db, id, data, principal)`` and
    ``delete(db, id)`` replace the plain repository operations when a write
    has to go through a domain service.  ``present(db, objs)`` turns rows
    into response models when they need more than ``read_schema``.
    """
    router = router or APIRouter(prefix=path_prefix, tags=list(tags or []))
    resource = resource or model.__tablename__
    label = getattr(model, "LABEL", model.__name__)
    doc = (model.__doc__ or "").strip()
    filter_fields = tuple(filter_fields)

    async def _present(db: AsyncSession, items: Sequence[Any]) -> list[Any]:
        if present is not None:
            return await present(db, items)
        return [read_schema.model_validate(it) for it in items]

    async def _one(db: AsyncSession, obj: Any) -> Any:
        return (await _present(db, [obj]))[0]

    # LIST
    if listable:

        async def list_items(
            request: Request,
            params: PageParams = Depends(),
            db: AsyncSession = Depends(get_db),
            _: Principal = Depends(read_dependency),
        ):
            filters = query_filters(request, model, filter_fields)
            items, total = await Repository(db, model).get_page(params, *filters)
            return paginated(await _present(db, items), params, total)

        router.add_api_route(
            "",
            list_items,
            methods=["GET"],
            response_model=Envelope[list[read_schema]],
            summary=f"List {label.lower()}s",
            description=_with_doc(
                doc,
                "Paginated with `page`/`page_size`; `sort`, `order` and `search` narrow the result."
                + (f" Filterable by {', '.join(f'`{f}`' for f in filter_fields)}." if filter_fields else ""),
            ),
        )

    # GET ONE
    async def get_item(
        item_id: uuid.UUID,
        db: AsyncSession = Depends(get_db),
        _: Principal = Depends(read_dependency),
    ):
        obj = await Repository(db, model).get_or_404(item_id)
        return ok(await _one(db, obj))

    router.add_api_route(
        "/{item_id}",
        get_item,
        methods=["GET"],
        response_model=Envelope[read_schema],
        summary=f"Get {label.lower()}",
    )

    # CREATE
    if create_schema is not None:

        async def create_item(
            payload: create_schema,  # type: ignore[valid-type]
            db: AsyncSession = Depends(get_db),
            principal: Principal = Depends(write_dependency),
        ):
            data = payload.model_dump()

            async def _op():
                if create is not None:
                    return await create(db, data, principal)

                async def _tx():
                    return await Repository(db, model).create(model(**to_columns(data)))

                return await with_tx(db, _tx)

            obj = await audited(db, principal, AuditAction.CREATE, resource, _op)
            return ok(await _one(db, obj), f"{label} created")

        router.add_api_route(
            "",
            create_item,
            methods=["POST"],
            response_model=Envelope[read_schema],
            status_code=status.HTTP_201_CREATED,
            summary=f"Create {label.lower()}",
        )

    # UPDATE
    if update_schema is not None:

        async def update_item(
            item_id: uuid.UUID,
            payload: update_schema,  # type: ignore[valid-type]
            db: AsyncSession = Depends(get_db),
            principal: Principal = Depends(write_dependency),
        ):
            data = payload.model_dump(exclude_unset=True)
            old = audit.snapshot(await Repository(db, model).get_or_404(item_id))

            async def _op():
                if update is not None:
                    return await update(db, item_id, data, principal)

                async def _tx():
                    repo = Repository(db, model)
                    obj = await repo.get_or_404(item_id, for_update=True)
                    return await repo.update(obj, to_columns(data))

                return await with_tx(db, _tx)

            obj = await audited(db, principal, AuditAction.UPDATE, resource, _op, resource_id=item_id, old=old)
            return ok(await _one(db, obj), f"{label} updated")

        router.add_api_route(
            "/{item_id}",
            update_item,
            methods=["PUT"],
            response_model=Envelope[read_schema],
            summary=f"Update {label.lower()}",
        )

    # DELETE
    if deletable:

        async def delete_item(
            item_id: uuid.UUID,
            db: AsyncSession = Depends(get_db),
            principal: Principal = Depends(write_dependency),
        ):
            old = audit.snapshot(await Repository(db, model).get_or_404(item_id))

            async def _op():
                if delete is not None:
                    return await delete(db, item_id)
                return await with_tx(db, lambda: Repository(db, model).delete(item_id))

            await audited(db, principal, AuditAction.DELETE, resource, _op, resource_id=item_id, old=old)
            return ok(None, f"{label} deleted")

        router.add_api_route(
            "/{item_id}",
            delete_item,
            methods=["DELETE"],
            response_model=Envelope[Any],
            summary=f"Delete {label.lower()}",
        )

    # RESTORE
    if restore:

        async def restore_item(
            item_id: uuid.UUID,
            db: AsyncSession = Depends(get_db),
            principal: Principal = Depends(write_dependency),
        ):
            async def _op():
                if callable(restore):
                    return await restore(db, item_id)
                return await with_tx(db, lambda: Repository(db, model).restore(item_id))

            obj = await audited(db, principal, AuditAction.UPDATE, resource, _op, resource_id=item_id)
            return ok(await _one(db, obj), f"{label} restored")

        router.add_api_route(
            "/{item_id}/restore",
            restore_item,
            methods=["POST"],
            response_model=Envelope[read_schema],
            summary=f"Restore {label.lower()}",
        )

    return router


__all__ = [
    "build_crud_router",
    "to_columns",
    "audit_write",
    "audited",
    "query_filters",
    "staff_only",
    "admin_only",
]
