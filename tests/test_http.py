# tests/test_http.py
from __future__ import annotations

import asyncio

import anyio
import pytest
from sqlalchemy.exc import OperationalError

from educrm import main
from educrm.services.sessions import SessionService

pytestmark = pytest.mark.anyio


async def test_health_ready_live(client):
    r = await client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "healthy"
    assert body["database"] == "up"

    assert (await client.get("/ready")).json() == {"status": "ready"}
    assert (await client.get("/live")).json() == {"status": "alive"}


async def test_request_id_is_echoed_or_minted(client, admin_headers):
    r = await client.get("/courses", headers={**admin_headers, "X-Request-ID": "trace-me-123"})
    assert r.headers["X-Request-ID"] == "trace-me-123"
    assert r.json()["request_id"] == "trace-me-123"

    minted = await client.get("/courses", headers=admin_headers)
    assert len(minted.headers["X-Request-ID"]) == 36


async def test_error_envelope_shape(client, admin_headers):
    r = await client.get("/courses/00000000-0000-0000-0000-000000000001", headers=admin_headers)
    assert r.status_code == 404
    body = r.json()
    assert body["success"] is False
    assert body["message"] == "Course not found"
    assert body["errors"]["code"] == "NOT_FOUND"
    assert body["errors"]["path"] == "/courses/00000000-0000-0000-0000-000000000001"
    assert body["request_id"] == r.headers["X-Request-ID"]


async def test_validation_failures_are_400_with_field_details(client, admin_headers):
    r = await client.post("/courses", json={"title": "", "monthly_fee": -1, "duration": 1}, headers=admin_headers)
    assert r.status_code == 400
    fields = {d["field"] for d in r.json()["errors"]["details"]}
    assert {"title", "monthly_fee"} <= fields


async def test_unknown_update_keys_are_rejected(client, admin_headers):
    created = await client.post("/courses", json={"title": "Bio", "monthly_fee": 20, "duration": 2}, headers=admin_headers)
    cid = created.json()["data"]["id"]
    r = await client.put(f"/courses/{cid}", json={"title": "Biology", "colour": "green"}, headers=admin_headers)
    assert r.status_code == 400


async def test_create_then_read_round_trip_and_pagination(client, admin_headers):
    for n in range(3):
        await client.post("/courses", json={"title": f"C{n}", "monthly_fee": 10 + n, "duration": 1}, headers=admin_headers)

    page = await client.get("/courses", params={"page": 1, "page_size": 2, "sort": "title", "order": "asc"},
                            headers=admin_headers)
    body = page.json()
    assert [c["title"] for c in body["data"]] == ["C0", "C1"]
    assert body["pagination"] == {
        "page": 1, "page_size": 2, "total_items": 3, "total_pages": 2, "has_next": True, "has_prev": False,
    }

    first = body["data"][0]
    again = await client.get(f"/courses/{first['id']}", headers=admin_headers)
    assert again.json()["data"] == first

    found = await client.get("/courses", params={"search": "c2"}, headers=admin_headers)
    assert [c["title"] for c in found.json()["data"]] == ["C2"]


async def test_soft_delete_and_restore(client, admin_headers):
    created = await client.post("/teachers", json={"name": "A", "surname": "B", "phone": "+15550009999"},
                                headers=admin_headers)
    tid = created.json()["data"]["id"]

    assert (await client.delete(f"/teachers/{tid}", headers=admin_headers)).status_code == 200
    assert (await client.get(f"/teachers/{tid}", headers=admin_headers)).status_code == 404

    restored = await client.post(f"/teachers/{tid}/restore", headers=admin_headers)
    assert restored.status_code == 200
    assert (await client.get(f"/teachers/{tid}", headers=admin_headers)).status_code == 200


async def test_metrics_endpoint(client, admin_headers):
    await client.get("/courses", headers=admin_headers)
    r = await client.get("/metrics")
    assert r.status_code == 200
    assert "http_requests_total" in r.text


async def test_maintenance_loop_survives_a_failed_pass(schema, monkeypatch):
    calls = []

    async def flaky_cleanup(self, now=None):
        calls.append(now)
        if len(calls) == 1:
            raise OperationalError("DELETE FROM sessions", {}, Exception("database is locked"))
        return 0

    monkeypatch.setattr(SessionService, "cleanup", flaky_cleanup)
    task = asyncio.create_task(main._maintenance(None, 0.01))
    try:
        with anyio.fail_after(5):
            while len(calls) < 2:
                await asyncio.sleep(0.01)
        assert not task.done()
    finally:
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
