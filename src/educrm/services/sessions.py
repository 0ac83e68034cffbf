# src/educrm/services/sessions.py
"""
Credential checks and opaque session tokens.

Passwords are stored as bcrypt hashes.  A login issues a random token
(64 bytes, URL-safe base64) bound to the caller's ip and user agent; the
token is the only thing a client ever holds.  Validation refuses unknown,
revoked and expired tokens alike.
"""
from __future__ import annotations

import base64
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Optional

import bcrypt
import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from educrm.app_logger import get_logger
from educrm.core import errors
from educrm.core.config import settings
from educrm.db.base import utcnow
from educrm.db.models import Session, User
from educrm.db.repository import with_tx

log = get_logger("services.sessions")

TOKEN_BYTES = 64
_BAD_CREDENTIALS = "Invalid email or password"


def hash_password(password: str, *, rounds: Optional[int] = None) -> str:
    salt = bcrypt.gensalt(rounds=max(rounds or settings.BCRYPT_ROUNDS, 10))
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # malformed hash in the row
        return False


def new_token() -> str:
    return base64.urlsafe_b64encode(secrets.token_bytes(TOKEN_BYTES)).decode("ascii")


class SessionService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _user_by_email(self, email: str) -> Optional[User]:
        stmt = sa.select(User).where(
            sa.func.lower(User.email) == email.strip().lower(),
            User.deleted_at.is_(None),
        )
        return (await self.db.execute(stmt)).scalars().first()

    async def create_session(
        self,
        email: str,
        password: str,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> tuple[str, Session, User]:
        user = await self._user_by_email(email)
        # same message for unknown email and wrong password
        if user is None or not verify_password(password, user.password_hash):
            raise errors.unauthorized(_BAD_CREDENTIALS)
        if not user.is_active:
            raise errors.forbidden("Account is inactive")

        now = utcnow()
        token = new_token()

        async def _tx() -> Session:
            sess = Session(
                user_id=user.id,
                token=token,
                ip_address=ip,
                user_agent=(user_agent or "")[:512] or None,
                expires_at=now + timedelta(hours=settings.SESSION_TTL_HOURS),
                last_activity_at=now,
            )
            self.db.add(sess)
            user.last_login_at = now
            await self.db.flush()
            return sess

        sess = await with_tx(self.db, _tx)
        log.info("session opened user=%s session=%s ip=%s", user.id, sess.id, ip)
        return token, sess, user

    async def validate(self, token: str, *, now: Optional[datetime] = None) -> tuple[Session, User]:
        if not token:
            raise errors.unauthorized("Missing session token")
        now = now or utcnow()
        stmt = sa.select(Session, User).join(User, User.id == Session.user_id).where(Session.token == token)
        row = (await self.db.execute(stmt)).first()
        if row is None:
            raise errors.unauthorized("Invalid session token")
        sess, user = row
        if not sess.is_valid(now):
            raise errors.unauthorized("Session has expired or been revoked")
        if user.deleted_at is not None or not user.is_active:
            raise errors.forbidden("Account is inactive")
        return sess, user

    async def revoke(self, session_id: uuid.UUID, user_id: uuid.UUID) -> Session:
        async def _tx() -> Session:
            stmt = sa.select(Session).where(Session.id == session_id, Session.user_id == user_id)
            sess = (await self.db.execute(stmt)).scalars().first()
            if sess is None:
                raise errors.not_found("Session")
            if sess.revoked_at is None:
                sess.revoked_at = utcnow()
                await self.db.flush()
            return sess

        return await with_tx(self.db, _tx)

    async def revoke_all(self, user_id: uuid.UUID) -> int:
        async def _tx() -> int:
            res = await self.db.execute(
                sa.update(Session)
                .where(Session.user_id == user_id, Session.revoked_at.is_(None))
                .values(revoked_at=utcnow())
            )
            return int(res.rowcount or 0)

        count = await with_tx(self.db, _tx)
        log.info("revoked %d session(s) for user=%s", count, user_id)
        return count

    async def list_active(self, user_id: uuid.UUID) -> list[Session]:
        stmt = (
            sa.select(Session)
            .where(
                Session.user_id == user_id,
                Session.revoked_at.is_(None),
                Session.expires_at > utcnow(),
            )
            .order_by(Session.created_at.desc())
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def cleanup(self, *, now: Optional[datetime] = None) -> int:
        """Delete sessions expired past the retention window, and revoked ones."""
        cutoff = (now or utcnow()) - timedelta(days=settings.SESSION_RETENTION_DAYS)

        async def _tx() -> int:
            res = await self.db.execute(
                sa.delete(Session).where(
                    sa.or_(Session.expires_at < cutoff, Session.revoked_at.is_not(None))
                )
            )
            return int(res.rowcount or 0)

        removed = await with_tx(self.db, _tx)
        if removed:
            log.info("session cleanup removed %d row(s)", removed)
        return removed


__all__ = ["SessionService", "hash_password", "verify_password", "new_token"]
