# tests/test_analytics.py
from __future__ import annotations

import uuid
from datetime import date, timedelta

import pytest

from educrm.db.models import Role

from .conftest import create, login, make_user

pytestmark = pytest.mark.anyio


async def _invoice_with_payment(client, headers, student_id: str, amount: float, paid: float) -> dict:
    due = (date.today() + timedelta(days=14)).isoformat()
    inv = await create(client, headers, "/invoices", {"student_id": student_id, "subtotal": amount, "due_date": due})
    if paid:
        await create(client, headers, "/payments", {
            "student_id": student_id, "invoice_id": inv["id"], "amount": paid, "method": "cash",
        })
    return inv


async def test_dashboard_counts(client, admin_headers, group_factory, student_factory):
    group = await group_factory()
    s1 = await student_factory(group_id=group["id"])
    await student_factory()
    await _invoice_with_payment(client, admin_headers, s1["id"], 100, 60)

    r = await client.get("/analytics/dashboard", headers=admin_headers)
    assert r.status_code == 200, r.text
    d = r.json()["data"]
    assert d["total_students"] == 2
    assert d["total_groups"] == 1
    assert d["total_teachers"] == 1
    assert d["revenue_this_month"] == 60
    assert d["pending_invoices"] == 1
    assert d["outstanding_balance"] == 40


async def test_financial_report(client, admin_headers, student_factory):
    student = await student_factory()
    await _invoice_with_payment(client, admin_headers, student["id"], 100, 60)
    await _invoice_with_payment(client, admin_headers, student["id"], 50, 50)

    r = await client.get("/analytics/reports/financial", headers=admin_headers)
    rep = r.json()["data"]
    assert rep["total_invoiced"] == 150
    assert rep["total_collected"] == 110
    assert rep["total_outstanding"] == 40
    assert rep["invoice_count"] == 2
    assert set(rep["by_status"]) == {"partial_paid", "paid"}

    backwards = await client.get("/analytics/reports/financial",
                                 params={"start": "2024-02-01", "end": "2024-01-01"}, headers=admin_headers)
    assert backwards.status_code == 400


async def test_attendance_report_rejects_inverted_window(client, admin_headers):
    r = await client.get("/analytics/reports/attendance",
                         params={"start": "2024-02-01", "end": "2024-01-01"}, headers=admin_headers)
    assert r.status_code == 400


async def test_student_progress(client, admin_headers, group_factory, student_factory):
    group = await group_factory()
    student = await student_factory(group_id=group["id"])
    url = f"/groups/{group['id']}/attendance"
    for day, status in (("2024-02-05", "present"), ("2024-02-07", "late"), ("2024-02-12", "absent"), ("2024-02-14", "present")):
        r = await client.post(url, json={"student_id": student["id"], "date": day, "status": status},
                              headers=admin_headers)
        assert r.status_code == 200
    await _invoice_with_payment(client, admin_headers, student["id"], 80, 20)

    r = await client.get(f"/analytics/students/{student['id']}/progress", headers=admin_headers)
    p = r.json()["data"]
    assert p["attendance"]["total"] == 4
    assert p["attendance"]["attendance_rate"] == 75
    assert p["invoices"] == {"count": 1, "total": 80, "paid": 20, "balance": 60}


async def test_portals_are_owner_scoped(client, db, admin_headers, group_factory, student_factory):
    group = await group_factory()
    mine = await student_factory(group_id=group["id"])
    other = await student_factory()
    pupil_user = await make_user(db, "pupil@example.com", "password-123", Role.STUDENT.value,
                                 student_id=uuid.UUID(mine["id"]))
    own_user_id = str(pupil_user.id)
    pupil = await login(client, "pupil@example.com", "password-123")

    own = await client.get(f"/portal/students/{mine['id']}", headers=pupil)
    assert own.status_code == 200, own.text
    data = own.json()["data"]
    assert data["student"]["id"] == mine["id"]
    assert data["group"]["id"] == group["id"]
    assert data["course"]["id"] == group["course_id"]

    assert (await client.get(f"/portal/students/{other['id']}", headers=pupil)).status_code == 403

    await make_user(db, "prof@example.com", "password-123", Role.TEACHER.value,
                    teacher_id=uuid.UUID(group["teacher_id"]))
    prof = await login(client, "prof@example.com", "password-123")
    tp = await client.get(f"/portal/teachers/{group['teacher_id']}", headers=prof)
    assert tp.status_code == 200, tp.text
    assert tp.json()["data"]["total_students"] == 1
    assert tp.json()["data"]["groups"][0]["student_count"] == 1

    stranger = await create(client, admin_headers, "/teachers", {"name": "N", "surname": "O", "phone": "+15550004444"})
    assert (await client.get(f"/portal/teachers/{stranger['id']}", headers=prof)).status_code == 403

    seen = await client.get("/audit-logs", params={"resource": "students", "resource_id": mine["id"], "action": "read"},
                            headers=admin_headers)
    assert [a["user_id"] for a in seen.json()["data"]] == [own_user_id]
    trail = await client.get("/audit-logs", params={"resource": "audit_logs", "action": "read"}, headers=admin_headers)
    assert trail.json()["pagination"]["total_items"] == 1


async def test_transfer_workflow(client, admin_headers, group_factory, student_factory):
    src = await group_factory(monthly_fee=100)
    dst = await group_factory(monthly_fee=150)
    student = await student_factory(group_id=src["id"])
    body = {"student_id": student["id"], "from_group_id": src["id"], "to_group_id": dst["id"],
            "reason": "schedule_conflict"}

    t = await create(client, admin_headers, "/transfers", body)
    assert t["status"] == "pending"
    assert t["fee_difference"] == 50

    dup = await client.post("/transfers", json=body, headers=admin_headers)
    assert dup.status_code == 409

    early = await client.post(f"/transfers/{t['id']}/complete", headers=admin_headers)
    assert early.status_code == 409

    approved = await client.post(f"/transfers/{t['id']}/approve", json={"notes": "fine"}, headers=admin_headers)
    assert approved.json()["data"]["status"] == "approved"

    done = await client.post(f"/transfers/{t['id']}/complete", headers=admin_headers)
    assert done.status_code == 200, done.text
    assert done.json()["data"]["status"] == "completed"
    assert done.json()["data"]["fee_adjustment_note"] == "Monthly fee increase of 50.00"

    moved = await client.get(f"/students/{student['id']}", headers=admin_headers)
    assert moved.json()["data"]["group_id"] == dst["id"]


async def test_transfer_into_full_group_fails_on_complete(client, admin_headers, group_factory, student_factory):
    src = await group_factory()
    dst = await group_factory(capacity=1)
    await student_factory(group_id=dst["id"])
    student = await student_factory(group_id=src["id"])

    t = await create(client, admin_headers, "/transfers", {
        "student_id": student["id"], "from_group_id": src["id"], "to_group_id": dst["id"], "reason": "capacity",
    })
    await client.post(f"/transfers/{t['id']}/approve", json={}, headers=admin_headers)
    r = await client.post(f"/transfers/{t['id']}/complete", headers=admin_headers)
    assert r.status_code == 409
    assert r.json()["errors"]["kind"] == "capacity_exceeded"

    still = await client.get(f"/students/{student['id']}", headers=admin_headers)
    assert still.json()["data"]["group_id"] == src["id"]
