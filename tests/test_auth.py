# tests/test_auth.py
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest
import sqlalchemy as sa

from educrm.core.errors import AppError
from educrm.db.models import Role, Session
from educrm.services.sessions import SessionService

from .conftest import ADMIN_EMAIL, ADMIN_PASSWORD, login, make_user

pytestmark = pytest.mark.anyio


async def test_login_returns_token_and_user(client, admin_user):
    r = await client.post("/auth/login", json={"email": ADMIN_EMAIL.upper(), "password": ADMIN_PASSWORD})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["success"] is True
    assert body["data"]["token"]
    assert body["data"]["user"]["email"] == ADMIN_EMAIL
    assert "password_hash" not in body["data"]["user"]


async def test_bad_password_and_unknown_email_look_the_same(client, admin_user):
    wrong = await client.post("/auth/login", json={"email": ADMIN_EMAIL, "password": "nope-nope"})
    missing = await client.post("/auth/login", json={"email": "ghost@example.com", "password": "nope-nope"})
    assert wrong.status_code == missing.status_code == 401
    assert wrong.json()["message"] == missing.json()["message"]
    assert wrong.json()["errors"]["code"] == "UNAUTHORIZED"


async def test_missing_and_invalid_tokens_are_401(client, schema):
    r = await client.get("/courses")
    assert r.status_code == 401
    assert r.json()["success"] is False

    r = await client.get("/courses", headers={"X-Auth-Token": "not-a-real-token"})
    assert r.status_code == 401


async def test_me_and_logout(client, admin_headers):
    me = await client.get("/auth/me", headers=admin_headers)
    assert me.status_code == 200
    assert me.json()["data"]["role"] == "admin"

    out = await client.post("/auth/logout", headers=admin_headers)
    assert out.status_code == 200

    again = await client.get("/auth/me", headers=admin_headers)
    assert again.status_code == 401


async def test_sessions_listing_and_revoke_all(client, admin_user):
    first = await login(client, ADMIN_EMAIL, ADMIN_PASSWORD)
    second = await login(client, ADMIN_EMAIL, ADMIN_PASSWORD)

    listed = await client.get("/auth/sessions", headers=first)
    assert len(listed.json()["data"]) == 2

    revoked = await client.post("/auth/sessions/revoke-all", headers=second)
    assert revoked.json()["data"]["revoked"] == 2
    assert (await client.get("/auth/me", headers=first)).status_code == 401


async def test_expired_and_revoked_tokens_are_refused(db, admin_user):
    svc = SessionService(db)
    token, sess, _ = await svc.create_session(ADMIN_EMAIL, ADMIN_PASSWORD)
    # 64 random bytes, urlsafe base64, stored exactly as handed out
    assert len(token) == 88
    assert sess.token == token

    found, user = await svc.validate(token, now=sess.expires_at - timedelta(seconds=1))
    assert (found.id, user.id) == (sess.id, admin_user.id)

    with pytest.raises(AppError) as exc:
        await svc.validate(token, now=sess.expires_at)
    assert exc.value.status_code == 401

    await svc.revoke(sess.id, admin_user.id)
    with pytest.raises(AppError) as exc:
        await svc.validate(token)
    assert exc.value.status_code == 401

    with pytest.raises(AppError) as exc:
        await svc.validate("not-a-real-token")
    assert exc.value.status_code == 401


async def test_session_cleanup_keeps_recent_rows(db, admin_user):
    now = datetime(2024, 6, 1, 12, tzinfo=timezone.utc)
    rows = {
        "stale": dict(expires_at=now - timedelta(days=8)),
        "recent": dict(expires_at=now - timedelta(days=2)),
        "revoked": dict(expires_at=now + timedelta(days=1), revoked_at=now - timedelta(hours=1)),
        "live": dict(expires_at=now + timedelta(days=1)),
    }
    for token, cols in rows.items():
        db.add(Session(user_id=admin_user.id, token=token, **cols))
    await db.commit()

    removed = await SessionService(db).cleanup(now=now)
    assert removed == 2
    left = (await db.execute(sa.select(Session.token).order_by(Session.token))).scalars().all()
    assert left == ["live", "recent"]


async def test_inactive_account_cannot_log_in(client, db):
    await make_user(db, "gone@example.com", "password-123", Role.STAFF.value, is_active=False)
    r = await client.post("/auth/login", json={"email": "gone@example.com", "password": "password-123"})
    assert r.status_code == 403


async def test_teacher_cannot_write_back_office_data(client, db, admin_headers):
    await make_user(db, "teach@example.com", "password-123", Role.TEACHER.value)
    teacher = await login(client, "teach@example.com", "password-123")

    r = await client.post("/courses", json={"title": "X", "monthly_fee": 10, "duration": 1}, headers=teacher)
    assert r.status_code == 403
    assert r.json()["errors"]["kind"] == "forbidden"

    # reads are open to teachers
    assert (await client.get("/courses", headers=teacher)).status_code == 200
    # user administration is admin only
    assert (await client.get("/users", headers=teacher)).status_code == 403


async def test_student_only_sees_own_ledger(client, db, admin_headers, student_factory):
    mine = await student_factory()
    other = await student_factory()
    await make_user(db, "kid@example.com", "password-123", Role.STUDENT.value, student_id=uuid.UUID(mine["id"]))
    kid = await login(client, "kid@example.com", "password-123")

    assert (await client.get(f"/students/{mine['id']}/invoices", headers=kid)).status_code == 200
    assert (await client.get(f"/students/{other['id']}/invoices", headers=kid)).status_code == 403


async def test_user_admin_and_password_change(client, admin_headers):
    r = await client.post("/users", json={
        "email": "Staff@Example.com", "password": "password-123", "role": "staff",
    }, headers=admin_headers)
    assert r.status_code == 201, r.text
    user = r.json()["data"]
    assert user["email"] == "staff@example.com"

    dup = await client.post("/users", json={
        "email": "staff@example.com", "password": "password-123", "role": "staff",
    }, headers=admin_headers)
    assert dup.status_code == 409
    assert dup.json()["errors"]["kind"] == "duplicate_entry"

    staff = await login(client, "staff@example.com", "password-123")
    bad = await client.put(f"/users/{user['id']}/password", json={
        "old_password": "wrong-one", "new_password": "password-456",
    }, headers=staff)
    assert bad.status_code == 401

    good = await client.put(f"/users/{user['id']}/password", json={
        "old_password": "password-123", "new_password": "password-456",
    }, headers=staff)
    assert good.status_code == 200
    await login(client, "staff@example.com", "password-456")


async def test_audit_trail_records_success_and_failure(client, admin_headers):
    slot = {"classroom": "A1", "start_time": "09:00", "end_time": "10:00", "days": "Mon"}
    assert (await client.post("/timetables", json=slot, headers=admin_headers)).status_code == 201
    assert (await client.post("/timetables", json=slot, headers=admin_headers)).status_code == 409

    r = await client.get("/audit-logs", params={"resource": "timetables"}, headers=admin_headers)
    assert r.status_code == 200
    rows = r.json()["data"]
    assert sorted(row["success"] for row in rows) == [False, True]
    failed = next(row for row in rows if not row["success"])
    assert "already booked" in failed["error_msg"]

    logins = await client.get("/audit-logs", params={"resource": "auth", "action": "login"}, headers=admin_headers)
    assert logins.json()["pagination"]["total_items"] >= 1
