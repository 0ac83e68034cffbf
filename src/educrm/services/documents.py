# src/educrm/services/documents.py
"""
Uploaded documents.

Bytes live on the local filesystem under ``<UPLOAD_ROOT>/<type>/<uuid><ext>``
(directories 0755, files 0644); the row keeps that path verbatim.  The file
is written before the row is inserted and removed again if the insert fails,
so a committed row always points at a file.
"""
from __future__ import annotations

import os
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from educrm.app_logger import get_logger
from educrm.core import errors
from educrm.core.config import settings
from educrm.db.base import utcnow
from educrm.db.models import Course, Document, DocumentStatus, Group, Student, Teacher
from educrm.db.repository import Repository, with_tx

log = get_logger("services.documents")

DIR_MODE = 0o755
FILE_MODE = 0o644

_OWNERS = {
    "student_id": Student,
    "teacher_id": Teacher,
    "group_id": Group,
    "course_id": Course,
}
ENTITY_COLUMNS = {
    "student": Document.student_id,
    "teacher": Document.teacher_id,
    "group": Document.group_id,
    "course": Document.course_id,
}


def _extension(filename: str) -> str:
    ext = os.path.splitext(filename or "")[1].lower()
    return ext if len(ext) <= 16 else ""


def storage_path(document_type: str, filename: str, root: Optional[str] = None) -> Path:
    root_dir = Path(root or settings.UPLOAD_ROOT)
    return root_dir / document_type / f"{uuid.uuid4()}{_extension(filename)}"


def write_file(path: Path, content: bytes) -> None:
    path.parent.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
    os.chmod(path.parent, DIR_MODE)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, FILE_MODE)
    with os.fdopen(fd, "wb") as fh:
        fh.write(content)
    os.chmod(path, FILE_MODE)


def remove_file(path: str | Path) -> None:
    try:
        Path(path).unlink()
    except FileNotFoundError:
        log.warning("document file already gone: %s", path)


async def upload(
    db: AsyncSession,
    *,
    content: bytes,
    filename: str,
    mime_type: Optional[str],
    fields: dict[str, Any],
    uploaded_by: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> Document:
    if not content:
        raise errors.validation("Uploaded file is empty")
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise errors.validation(
            "Uploaded file is too large", {"size": len(content), "max_size": settings.MAX_UPLOAD_BYTES}
        )

    path = storage_path(fields["document_type"], filename)

    async def _tx() -> Document:
        for key, model in _OWNERS.items():
            if fields.get(key) is not None:
                await Repository(db, model).get_or_404(fields[key])
        doc = Document(
            **fields,
            status=DocumentStatus.PENDING.value,
            file_name=os.path.basename(filename or path.name),
            file_path=str(path),
            file_size=len(content),
            mime_type=mime_type,
            uploaded_by=uploaded_by,
            uploaded_at=now or utcnow(),
        )
        return await Repository(db, Document).create(doc)

    write_file(path, content)
    try:
        doc = await with_tx(db, _tx)
    except BaseException:
        remove_file(path)
        raise
    log.info("document %s stored at %s (%d bytes)", doc.id, doc.file_path, doc.file_size)
    return doc


async def approve(
    db: AsyncSession,
    document_id: uuid.UUID,
    decision: str,
    *,
    approver: Optional[uuid.UUID],
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Document:
    target = {"approve": DocumentStatus.APPROVED.value, "reject": DocumentStatus.REJECTED.value}.get(decision)
    if target is None:
        raise errors.validation(f"Invalid decision: {decision}")

    async def _tx() -> Document:
        doc = await Repository(db, Document).get_or_404(document_id, for_update=True)
        if doc.status != DocumentStatus.PENDING.value:
            raise errors.invalid_operation(f"Document is already {doc.status}")
        doc.status = target
        doc.approved_by = approver
        doc.approved_at = now or utcnow()
        doc.review_notes = notes
        await db.flush()
        return doc

    return await with_tx(db, _tx)


async def delete(db: AsyncSession, document_id: uuid.UUID) -> Document:
    """Remove the row and then its file."""
    async def _tx() -> Document:
        doc = await Repository(db, Document).get_or_404(document_id, for_update=True)
        await db.delete(doc)
        await db.flush()
        return doc

    doc = await with_tx(db, _tx)
    remove_file(doc.file_path)
    return doc


async def for_entity(db: AsyncSession, entity_type: str, entity_id: uuid.UUID) -> list[Document]:
    column = ENTITY_COLUMNS.get(entity_type)
    if column is None:
        raise errors.bad_request(
            f"Unknown entity type: {entity_type}", {"allowed": sorted(ENTITY_COLUMNS)}
        )
    return await Repository(db, Document).list(column == entity_id)


def resolve_file(doc: Document) -> Path:
    path = Path(doc.file_path)
    if not path.is_file():
        raise errors.not_found("Document file")
    return path


__all__ = ["upload", "approve", "delete", "for_entity", "resolve_file", "storage_path"]
