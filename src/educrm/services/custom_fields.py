# src/educrm/services/custom_fields.py
"""
Admin-defined extra attributes for students, teachers, courses, groups and
parents.  Values are stored as text keyed by (field, entity) and checked
against the field's type and constraints before they are written.
"""
from __future__ import annotations

import json
import re
import uuid
from datetime import date
from typing import Any, Optional
from urllib.parse import urlparse

import sqlalchemy as sa
from email_validator import EmailNotValidError, validate_email
from sqlalchemy.ext.asyncio import AsyncSession

from educrm.core import errors
from educrm.db.models import (
    Course,
    CustomField,
    CustomFieldType,
    CustomFieldValue,
    Group,
    Parent,
    Student,
    Teacher,
)
from educrm.db.repository import Repository, with_tx

ENTITY_MODELS = {
    "student": Student,
    "teacher": Teacher,
    "course": Course,
    "group": Group,
    "parent": Parent,
}

_PHONE = re.compile(r"^\+?[0-9 ()\-]{7,20}$")
_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}

T = CustomFieldType


def _check_length(field: CustomField, text: str) -> None:
    if field.min_length is not None and len(text) < field.min_length:
        raise ValueError(f"must be at least {field.min_length} characters")
    if field.max_length is not None and len(text) > field.max_length:
        raise ValueError(f"must be at most {field.max_length} characters")
    if field.pattern and not re.fullmatch(field.pattern, text):
        raise ValueError("does not match the required pattern")


def _number(field: CustomField, value: Any) -> str:
    if isinstance(value, bool):
        raise ValueError("must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError("must be a number") from None
    if field.min_value is not None and number < field.min_value:
        raise ValueError(f"must be >= {field.min_value}")
    if field.max_value is not None and number > field.max_value:
        raise ValueError(f"must be <= {field.max_value}")
    return str(value).strip() if isinstance(value, str) else repr(value)


def _boolean(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value).strip().lower()
    if text in _TRUE:
        return "true"
    if text in _FALSE:
        return "false"
    raise ValueError("must be a boolean")


def coerce_value(field: CustomField, value: Any) -> Optional[str]:
    """Validate ``value`` for ``field`` and return its stored text form.

    Raises ``ValueError`` with a short reason when the value is unacceptable.
    """
    if value is None or value == "" or value == []:
        if field.is_required:
            raise ValueError("is required")
        return None

    kind = field.field_type
    if kind == T.NUMBER.value:
        return _number(field, value)
    if kind == T.BOOLEAN.value:
        return _boolean(value)
    if kind == T.DATE.value:
        try:
            return date.fromisoformat(str(value)).isoformat()
        except ValueError:
            raise ValueError("must be a date (YYYY-MM-DD)") from None
    if kind == T.SELECT.value:
        if str(value) not in (field.options or []):
            raise ValueError(f"must be one of {field.options}")
        return str(value)
    if kind == T.MULTI_SELECT.value:
        items = value if isinstance(value, list) else [value]
        bad = [str(v) for v in items if str(v) not in (field.options or [])]
        if bad:
            raise ValueError(f"unknown option(s): {', '.join(bad)}")
        return json.dumps([str(v) for v in items])

    if not isinstance(value, str):
        raise ValueError("must be a string")
    text = value.strip()
    if kind == T.URL.value:
        parsed = urlparse(text)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("must be an http(s) URL")
    elif kind == T.EMAIL.value:
        try:
            text = validate_email(text, check_deliverability=False).normalized
        except EmailNotValidError as exc:
            raise ValueError(str(exc)) from None
    elif kind == T.PHONE.value:
        if not _PHONE.match(text):
            raise ValueError("must be a phone number")
    _check_length(field, text)
    return text


async def create_field(db: AsyncSession, data: dict[str, Any]) -> CustomField:
    async def _tx() -> CustomField:
        taken = await db.execute(
            sa.select(CustomField.id).where(
                CustomField.entity_type == data["entity_type"], CustomField.name == data["name"]
            )
        )
        if taken.first() is not None:
            raise errors.duplicate_entry(
                f"Custom field '{data['name']}' already exists for {data['entity_type']}"
            )
        if data.get("pattern"):
            try:
                re.compile(data["pattern"])
            except re.error as exc:
                raise errors.validation(f"Invalid pattern: {exc}") from None
        return await Repository(db, CustomField).create(CustomField(**data))

    return await with_tx(db, _tx)


async def set_value(db: AsyncSession, field_id: uuid.UUID, entity_id: uuid.UUID, value: Any) -> CustomFieldValue:
    async def _tx() -> CustomFieldValue:
        field = await Repository(db, CustomField).get_or_404(field_id)
        if not field.is_active:
            raise errors.invalid_operation("Custom field is inactive")
        await Repository(db, ENTITY_MODELS[field.entity_type]).get_or_404(entity_id)
        try:
            stored = coerce_value(field, value)
        except ValueError as exc:
            raise errors.validation(f"{field.label} {exc}", {"field": field.name}) from None

        stmt = (
            sa.select(CustomFieldValue)
            .where(CustomFieldValue.field_id == field.id, CustomFieldValue.entity_id == entity_id)
            .with_for_update()
        )
        row = (await db.execute(stmt)).scalars().first()
        if row is None:
            row = CustomFieldValue(field_id=field.id, entity_id=entity_id)
            db.add(row)
        row.value = stored
        await db.flush()
        return row

    return await with_tx(db, _tx)


async def values_for(db: AsyncSession, entity_id: uuid.UUID) -> list[CustomFieldValue]:
    stmt = (
        sa.select(CustomFieldValue)
        .join(CustomField, CustomField.id == CustomFieldValue.field_id)
        .where(CustomFieldValue.entity_id == entity_id, CustomField.deleted_at.is_(None))
        .order_by(CustomField.display_order, CustomField.name)
    )
    return list((await db.execute(stmt)).scalars().all())
