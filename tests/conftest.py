# tests/conftest.py
from __future__ import annotations

import logging
import os
import sys
import tempfile

import pytest

# ==============================================================
# Env bootstrap: must run before anything imports educrm, since the
# engine and settings are built at import time.
# ==============================================================
_TMP = tempfile.mkdtemp(prefix="educrm-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["TESTING"] = "1"
os.environ["SKIP_AUTH"] = "0"
os.environ["RATE_LIMIT_ENABLED"] = "0"
os.environ["METRICS_ENABLED"] = "1"
os.environ["BCRYPT_ROUNDS"] = "10"
os.environ["UPLOAD_ROOT"] = os.path.join(_TMP, "uploads")
os.environ.setdefault("LOG_LEVEL", "warn")

from httpx import ASGITransport, AsyncClient  # noqa: E402

from educrm.db import models  # noqa: E402,F401  (registers tables)
from educrm.db.base import Base  # noqa: E402
from educrm.db.models import Role, User  # noqa: E402
from educrm.db.session import get_engine, get_sessionmaker  # noqa: E402
from educrm.main import app  # noqa: E402
from educrm.services.sessions import hash_password  # noqa: E402

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin-password"


# =========================
# Logging -> stdout
# =========================
@pytest.fixture(scope="session", autouse=True)
def _tests_log_to_stdout():
    root = logging.getLogger()
    if not any(isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stdout for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        root.addHandler(handler)
    root.setLevel(os.getenv("TEST_LOG_LEVEL", "WARNING").upper())


# Make anyio run on asyncio (so our async fixtures work everywhere)
@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


# ==============================================================
# Schema per test: every test starts from empty tables
# ==============================================================
@pytest.fixture
async def schema(anyio_backend):
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def db(schema):
    async with get_sessionmaker()() as session:
        yield session


async def make_user(session, email: str, password: str, role: str, **extra) -> User:
    extra.setdefault("is_active", True)
    user = User(email=email, password_hash=hash_password(password), role=role, **extra)
    session.add(user)
    await session.commit()
    return user


@pytest.fixture
async def admin_user(db) -> User:
    return await make_user(db, ADMIN_EMAIL, ADMIN_PASSWORD, Role.ADMIN.value, first_name="Ada")


@pytest.fixture
async def client(schema):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def login(client: AsyncClient, email: str, password: str) -> dict[str, str]:
    r = await client.post("/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return {"X-Auth-Token": r.json()["data"]["token"]}


@pytest.fixture
async def admin_headers(client, admin_user) -> dict[str, str]:
    return await login(client, ADMIN_EMAIL, ADMIN_PASSWORD)


# ==============================================================
# Small builders for the academic skeleton most tests need
# ==============================================================
async def create(client: AsyncClient, headers: dict, path: str, body: dict) -> dict:
    r = await client.post(path, json=body, headers=headers)
    assert r.status_code == 201, f"{path}: {r.status_code} {r.text}"
    return r.json()["data"]


@pytest.fixture
async def group_factory(client, admin_headers):
    """Create teacher + course + timetable + group; each call books a fresh room."""
    rooms = iter(f"R{n}" for n in range(100, 1000))

    async def _make(capacity: int = 20, monthly_fee: float = 100.0) -> dict:
        teacher = await create(client, admin_headers, "/teachers", {
            "name": "Grace", "surname": "Hopper", "phone": "+15550001111",
        })
        course = await create(client, admin_headers, "/courses", {
            "title": "Algebra", "monthly_fee": monthly_fee, "duration": 6,
        })
        timetable = await create(client, admin_headers, "/timetables", {
            "classroom": next(rooms), "start_time": "09:00", "end_time": "11:00", "days": "Mon,Wed",
        })
        return await create(client, admin_headers, "/groups", {
            "name": "Algebra A",
            "course_id": course["id"],
            "teacher_id": teacher["id"],
            "timetable_id": timetable["id"],
            "start_date": "2024-01-08",
            "capacity": capacity,
        })

    return _make


@pytest.fixture
async def student_factory(client, admin_headers):
    counter = iter(range(1, 10_000))

    async def _make(group_id: str | None = None, **extra) -> dict:
        n = next(counter)
        body = {"name": f"Student{n}", "surname": "Test", "phone": f"+1555{n:07d}", **extra}
        if group_id is not None:
            body["group_id"] = group_id
        return await create(client, admin_headers, "/students", body)

    return _make
