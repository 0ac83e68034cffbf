# tests/test_scenarios.py
"""End-to-end walks through the enrollment, scheduling and billing cores."""
from __future__ import annotations

import asyncio
import uuid
from datetime import date, datetime, timedelta, timezone

import pytest
import sqlalchemy as sa

from educrm.core.errors import AppError, ErrorKind
from educrm.db.models import Invoice, RecurringInvoice, Waitlist, WaitlistStatus
from educrm.db.session import get_sessionmaker
from educrm.schemas.billing import RecurringInvoiceCreate
from educrm.schemas.enrollment import WaitlistCreate
from educrm.services import billing, enrollment, scheduling

from .conftest import create

pytestmark = pytest.mark.anyio

UTC = timezone.utc


async def test_group_capacity_is_enforced(client, admin_headers, group_factory):
    group = await group_factory(capacity=2)

    for name in ("A", "B"):
        r = await client.post("/students", json={
            "name": name, "surname": "X", "phone": "+15550000001", "group_id": group["id"],
        }, headers=admin_headers)
        assert r.status_code == 201

    r = await client.post("/students", json={
        "name": "C", "surname": "X", "phone": "+15550000001", "group_id": group["id"],
    }, headers=admin_headers)
    assert r.status_code == 409
    assert r.json()["errors"]["kind"] == "capacity_exceeded"

    g = await client.get(f"/groups/{group['id']}", headers=admin_headers)
    assert g.json()["data"]["student_count"] == 2


async def test_moving_into_a_full_group_is_refused(client, admin_headers, group_factory, student_factory):
    full = await group_factory(capacity=1)
    await student_factory(group_id=full["id"])
    loose = await student_factory()

    r = await client.put(f"/students/{loose['id']}", json={"group_id": full["id"]}, headers=admin_headers)
    assert r.status_code == 409
    assert r.json()["errors"]["kind"] == "capacity_exceeded"


async def test_timetable_conflicts(client, admin_headers):
    base = {"classroom": "R1", "days": "Mon,Wed", "start_time": "09:00", "end_time": "11:00"}
    assert (await client.post("/timetables", json=base, headers=admin_headers)).status_code == 201

    clash = await client.post("/timetables", json={
        "classroom": "R1", "days": "Wed,Fri", "start_time": "10:30", "end_time": "12:00",
    }, headers=admin_headers)
    assert clash.status_code == 409
    assert clash.json()["errors"]["kind"] == "conflict"

    other_day = await client.post("/timetables", json={
        "classroom": "R1", "days": "Tue", "start_time": "09:00", "end_time": "11:00",
    }, headers=admin_headers)
    assert other_day.status_code == 201

    touching = await client.post("/timetables", json={
        "classroom": "R1", "days": "Mon", "start_time": "11:00", "end_time": "12:00",
    }, headers=admin_headers)
    assert touching.status_code == 201


async def test_timetable_update_does_not_conflict_with_itself(client, admin_headers):
    r = await client.post("/timetables", json={
        "classroom": "R2", "days": "Mon", "start_time": "09:00", "end_time": "10:00",
    }, headers=admin_headers)
    tid = r.json()["data"]["id"]
    moved = await client.put(f"/timetables/{tid}", json={"end_time": "10:30"}, headers=admin_headers)
    assert moved.status_code == 200
    assert moved.json()["data"]["end_time"] == "10:30"

    backwards = await client.put(f"/timetables/{tid}", json={"start_time": "11:00"}, headers=admin_headers)
    assert backwards.status_code == 400


async def test_invoice_and_payments(client, admin_headers, student_factory):
    student = await student_factory()
    d = await client.post("/discounts", json={
        "code": "pct10", "name": "Ten percent", "type": "percentage", "value": 10,
    }, headers=admin_headers)
    assert d.status_code == 201
    assert d.json()["data"]["code"] == "PCT10"

    due = (date.today() + timedelta(days=30)).isoformat()
    r = await client.post("/invoices", json={
        "student_id": student["id"], "subtotal": 100, "tax_amount": 10, "discount_code": "PCT10", "due_date": due,
    }, headers=admin_headers)
    assert r.status_code == 201, r.text
    inv = r.json()["data"]
    assert inv["discount_amount"] == 10
    assert inv["total_amount"] == 100
    assert inv["balance"] == 100
    assert inv["status"] == "draft"
    assert inv["invoice_number"].startswith("INV-")

    pay = {"student_id": student["id"], "invoice_id": inv["id"], "method": "cash"}
    assert (await client.post("/payments", json={**pay, "amount": 60}, headers=admin_headers)).status_code == 201
    after_first = (await client.get(f"/invoices/{inv['id']}", headers=admin_headers)).json()["data"]
    assert after_first["status"] == "partial_paid"
    assert after_first["balance"] == 40
    assert after_first["paid_date"] is None

    too_much = await client.post("/payments", json={**pay, "amount": 50}, headers=admin_headers)
    assert too_much.status_code == 400

    assert (await client.post("/payments", json={**pay, "amount": 40}, headers=admin_headers)).status_code == 201
    paid = (await client.get(f"/invoices/{inv['id']}", headers=admin_headers)).json()["data"]
    assert paid["status"] == "paid"
    assert paid["balance"] == 0
    assert paid["paid_date"] is not None

    used = await client.get(f"/discounts/{d.json()['data']['id']}", headers=admin_headers)
    assert used.json()["data"]["current_uses"] == 1


async def test_refund_reopens_the_invoice(client, admin_headers, student_factory):
    student = await student_factory()
    due = (date.today() + timedelta(days=10)).isoformat()
    inv = (await client.post("/invoices", json={
        "student_id": student["id"], "subtotal": 50, "due_date": due,
    }, headers=admin_headers)).json()["data"]
    payment = (await client.post("/payments", json={
        "student_id": student["id"], "invoice_id": inv["id"], "amount": 50, "method": "card",
    }, headers=admin_headers)).json()["data"]

    r = await client.post(f"/payments/{payment['id']}/refund", json={"amount": 20}, headers=admin_headers)
    assert r.status_code == 200, r.text
    assert r.json()["data"]["refunded_amount"] == 20

    reopened = (await client.get(f"/invoices/{inv['id']}", headers=admin_headers)).json()["data"]
    assert reopened["status"] == "partial_paid"
    assert reopened["balance"] == 20

    over = await client.post(f"/payments/{payment['id']}/refund", json={"amount": 40}, headers=admin_headers)
    assert over.status_code == 400


async def test_sub_cent_amounts_are_rejected(client, admin_headers, student_factory):
    student = await student_factory()
    due = (date.today() + timedelta(days=10)).isoformat()
    inv = await create(client, admin_headers, "/invoices", {"student_id": student["id"], "subtotal": 50, "due_date": due})
    pay = {"student_id": student["id"], "invoice_id": inv["id"], "method": "cash"}

    dust = await client.post("/payments", json={**pay, "amount": 0.001}, headers=admin_headers)
    assert dust.status_code == 400
    assert dust.json()["errors"]["kind"] == "validation"

    payment = await create(client, admin_headers, "/payments", {**pay, "amount": 20})
    refund = await client.post(f"/payments/{payment['id']}/refund", json={"amount": 0.004}, headers=admin_headers)
    assert refund.status_code == 400
    after = (await client.get(f"/invoices/{inv['id']}", headers=admin_headers)).json()["data"]
    assert after["paid_amount"] == 20


async def test_concurrent_invoices_get_distinct_numbers(client, student_factory):
    student = await student_factory()
    now = datetime(2024, 5, 2, 10, 0, tzinfo=UTC)

    async def _issue(subtotal: float) -> str:
        async with get_sessionmaker()() as session:
            inv = await billing.create_invoice(session, {
                "student_id": uuid.UUID(student["id"]), "subtotal": subtotal, "due_date": date(2024, 6, 1),
            }, now=now)
            return inv.invoice_number

    numbers = await asyncio.gather(*(_issue(10.0 * n) for n in range(1, 5)))
    assert sorted(numbers) == [f"INV-20240502-{n:06d}" for n in range(1, 5)]

    # a new day starts its own sequence
    async with get_sessionmaker()() as session:
        nxt = await billing.create_invoice(session, {
            "student_id": uuid.UUID(student["id"]), "subtotal": 5, "due_date": date(2024, 6, 1),
        }, now=now + timedelta(days=1))
    assert nxt.invoice_number == "INV-20240503-000001"


async def test_fully_discounted_invoice_is_settled_and_never_overdue(client, admin_headers, db, student_factory):
    student = await student_factory()
    await create(client, admin_headers, "/discounts", {"code": "FREE", "name": "Scholarship", "type": "percentage", "value": 100})
    due = (date.today() + timedelta(days=7)).isoformat()

    inv = await create(client, admin_headers, "/invoices", {
        "student_id": student["id"], "subtotal": 100, "discount_code": "FREE", "due_date": due,
    })
    assert inv["total_amount"] == 0
    assert inv["balance"] == 0
    assert inv["status"] == "paid"
    assert inv["paid_date"] is not None

    later = datetime.now(UTC) + timedelta(days=40)
    assert await billing.mark_overdue(db, now=later) == []
    still = (await client.get(f"/invoices/{inv['id']}", headers=admin_headers)).json()["data"]
    assert still["status"] == "paid"


async def test_late_submission_is_penalised(client, admin_headers, db, group_factory, student_factory):
    group = await group_factory()
    student = await student_factory(group_id=group["id"])

    assignment = await scheduling.create_assignment(db, {
        "group_id": uuid.UUID(group["id"]),
        "title": "Essay",
        "status": "published",
        "due_date": datetime(2024, 1, 10, 23, 59, tzinfo=UTC),
        "max_points": 100,
        "late_penalty_percent": 10,
        "allow_late": True,
    })
    sub = await scheduling.submit(
        db, assignment.id, uuid.UUID(student["id"]), content="draft",
        now=datetime(2024, 1, 12, 6, 0, tzinfo=UTC),
    )
    assert sub.is_late is True
    assert sub.days_late == 2

    graded = await scheduling.grade(db, sub.id, 80)
    assert graded.penalty_applied == 20
    assert graded.final_points == 60
    assert graded.status == "graded"


async def test_monthly_schedule_clamps_to_end_of_february(db, client, student_factory):
    student = await student_factory()
    payload = RecurringInvoiceCreate(
        student_id=uuid.UUID(student["id"]),
        base_amount=100,
        frequency="monthly",
        day_of_month=31,
        start_date=date(2024, 1, 31),
        auto_send=False,
    ).model_dump()
    sched = await billing.create_recurring(db, payload)

    first = await billing.generate_due_invoices(db, as_of=date(2024, 1, 31))
    assert first["generated"] == 1
    await db.refresh(sched)
    assert sched.next_invoice_date == date(2024, 2, 29)
    assert sched.total_generated == 1

    inv = await db.get(Invoice, first["invoice_ids"][0])
    assert inv.issue_date == date(2024, 1, 31)
    assert inv.recurring_invoice_id == sched.id

    # same wall clock again: nothing new
    second = await billing.generate_due_invoices(db, as_of=date(2024, 1, 31))
    assert second["generated"] == 0

    # catching up over several periods keeps the clamp per month
    third = await billing.generate_due_invoices(db, as_of=date(2024, 4, 30))
    assert third["generated"] == 3
    await db.refresh(sched)
    assert sched.next_invoice_date == date(2024, 5, 31)
    dates = (await db.execute(
        sa.select(Invoice.issue_date)
        .where(Invoice.recurring_invoice_id == sched.id)
        .order_by(Invoice.issue_date)
    )).scalars().all()
    assert dates == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30)]


async def test_paused_schedule_is_skipped(db, client, student_factory):
    student = await student_factory()
    sched = await billing.create_recurring(db, RecurringInvoiceCreate(
        student_id=uuid.UUID(student["id"]), base_amount=30, frequency="weekly",
        start_date=date(2024, 3, 1), auto_send=False,
    ).model_dump())
    await billing.set_recurring_state(db, sched.id, "pause")

    report = await billing.generate_due_invoices(db, as_of=date(2024, 3, 31))
    assert report["generated"] == 0
    count = (await db.execute(sa.select(sa.func.count()).select_from(RecurringInvoice))).scalar_one()
    assert count == 1


async def _pending_positions(db, group_id: uuid.UUID) -> list[tuple[int, str]]:
    rows = (await db.execute(
        sa.select(Waitlist.position, Waitlist.prospect_name)
        .where(Waitlist.group_id == group_id, Waitlist.status == WaitlistStatus.PENDING.value)
        .order_by(Waitlist.position)
    )).all()
    return [(pos, name) for pos, name in rows]


async def test_waitlist_ordering_and_enroll(db, group_factory):
    group = await group_factory()
    gid = uuid.UUID(group["id"])
    t0 = datetime(2024, 1, 1, 9, 0, tzinfo=UTC)
    entries = {}
    for n, (label, priority) in enumerate(
        [("urgent@t1", "urgent"), ("normal@t2", "normal"), ("high@t3", "high"), ("normal@t4", "normal")],
        start=1,
    ):
        data = WaitlistCreate(group_id=gid, prospect_name=label, priority=priority).model_dump()
        entries[label] = await enrollment.add_to_waitlist(db, data, now=t0 + timedelta(minutes=n))

    assert await _pending_positions(db, gid) == [
        (1, "urgent@t1"), (2, "high@t3"), (3, "normal@t2"), (4, "normal@t4"),
    ]

    enrolled = await enrollment.process_waitlist(db, entries["urgent@t1"].id, "enroll")
    assert enrolled.status == "enrolled"
    assert enrolled.student_id is not None

    assert await _pending_positions(db, gid) == [(1, "high@t3"), (2, "normal@t2"), (3, "normal@t4")]


async def test_attendance_upsert_keeps_latest(client, admin_headers, group_factory, student_factory):
    group = await group_factory()
    student = await student_factory(group_id=group["id"])
    url = f"/groups/{group['id']}/attendance"

    for status in ("absent", "late"):
        r = await client.post(url, json={
            "student_id": student["id"], "date": "2024-02-05", "status": status,
        }, headers=admin_headers)
        assert r.status_code == 200, r.text

    rows = (await client.get(url, params={"date": "2024-02-05"}, headers=admin_headers)).json()["data"]
    assert len(rows) == 1
    assert rows[0]["status"] == "late"


async def test_attendance_for_non_member_is_rejected(client, admin_headers, group_factory, student_factory):
    group = await group_factory()
    outsider = await student_factory()
    r = await client.post(f"/groups/{group['id']}/attendance", json={
        "student_id": outsider["id"], "date": "2024-02-05", "status": "present",
    }, headers=admin_headers)
    assert r.status_code == 400


async def test_group_capacity_cannot_drop_below_enrolment(client, admin_headers, group_factory, student_factory):
    group = await group_factory(capacity=3)
    for _ in range(2):
        await student_factory(group_id=group["id"])

    shrink = await client.put(f"/groups/{group['id']}", json={"capacity": 1}, headers=admin_headers)
    assert shrink.status_code == 409
    assert shrink.json()["errors"]["kind"] == "invalid_operation"
    assert shrink.json()["errors"]["details"] == {"capacity": 1, "current": 2}

    snug = await client.put(f"/groups/{group['id']}", json={"capacity": 2}, headers=admin_headers)
    assert snug.status_code == 200, snug.text
    assert snug.json()["data"]["capacity"] == 2


async def test_application_review_then_enroll(client, admin_headers, group_factory):
    group = await group_factory()
    app = await create(client, admin_headers, "/applications", {
        "first_name": "Lena", "last_name": "Park", "email": "lena@example.com",
        "phone": "+15550009999", "course_id": group["course_id"],
    })
    assert app["status"] == "pending"
    url = f"/applications/{app['id']}"

    early = await client.post(f"{url}/enroll", json={"group_id": group["id"]}, headers=admin_headers)
    assert early.status_code == 409
    assert early.json()["errors"]["kind"] == "invalid_operation"

    reviewed = await client.post(f"{url}/review", json={"decision": "reviewed"}, headers=admin_headers)
    assert reviewed.json()["data"]["status"] == "reviewed"
    assert reviewed.json()["data"]["reviewed_at"] is not None

    backwards = await client.post(f"{url}/review", json={"decision": "reviewed"}, headers=admin_headers)
    assert backwards.status_code == 409

    approved = await client.post(f"{url}/review", json={"decision": "approved", "notes": "strong"},
                                 headers=admin_headers)
    assert approved.json()["data"]["status"] == "approved"
    assert approved.json()["data"]["review_notes"] == "strong"

    done = await client.post(f"{url}/enroll", json={"group_id": group["id"]}, headers=admin_headers)
    assert done.status_code == 200, done.text
    enrolled = done.json()["data"]
    assert enrolled["status"] == "enrolled"
    assert enrolled["enrolled_as"] is not None

    student = (await client.get(f"/students/{enrolled['enrolled_as']}", headers=admin_headers)).json()["data"]
    assert (student["name"], student["surname"], student["group_id"]) == ("Lena", "Park", group["id"])

    twice = await client.post(f"{url}/enroll", json={}, headers=admin_headers)
    assert twice.status_code == 409


async def test_waitlist_notify_expire_and_close(db, group_factory, student_factory):
    group = await group_factory(capacity=1)
    await student_factory(group_id=group["id"])
    gid = uuid.UUID(group["id"])
    t0 = datetime(2024, 3, 1, 9, 0, tzinfo=UTC)

    ids = {}
    for n, (name, email) in enumerate([("Ann Lee", "ann@example.com"), ("Bob Ray", None), ("Cid Roe", None)]):
        data = WaitlistCreate(group_id=gid, prospect_name=name, prospect_email=email).model_dump()
        ids[name] = (await enrollment.add_to_waitlist(db, data, now=t0 + timedelta(minutes=n))).id

    offered_at = t0 + timedelta(hours=1)
    ann = await enrollment.process_waitlist(db, ids["Ann Lee"], "notify", now=offered_at)
    assert ann.status == "notified"
    assert ann.notified_at == offered_at
    assert ann.expires_at == offered_at + timedelta(hours=48)
    assert await _pending_positions(db, gid) == [(1, "Bob Ray"), (2, "Cid Roe")]

    # the offer is still open one minute before it lapses
    quiet = await enrollment.expire_waitlists(db, now=offered_at + timedelta(hours=48) - timedelta(minutes=1))
    assert quiet == {"expired": 0, "groups_reordered": 0}
    swept = await enrollment.expire_waitlists(db, now=offered_at + timedelta(hours=49))
    assert swept == {"expired": 1, "groups_reordered": 1}

    with pytest.raises(AppError) as exc:
        await enrollment.process_waitlist(db, ids["Ann Lee"], "decline")
    assert exc.value.kind is ErrorKind.INVALID_OPERATION

    # the only seat is taken: enrolling a prospect fails and leaves the entry alone
    with pytest.raises(AppError) as exc:
        await enrollment.process_waitlist(db, ids["Bob Ray"], "enroll")
    assert exc.value.kind is ErrorKind.CAPACITY_EXCEEDED
    row = (await db.execute(
        sa.select(Waitlist.status, Waitlist.student_id).where(Waitlist.id == ids["Bob Ray"])
    )).one()
    assert tuple(row) == ("pending", None)
    assert await enrollment.count_students(db, gid) == 1

    cancelled = await enrollment.process_waitlist(db, ids["Bob Ray"], "cancel", notes="moved away")
    assert cancelled.status == "cancelled"
    assert cancelled.cancelled_at is not None
    assert "cancel: moved away" in cancelled.internal_notes
    assert await _pending_positions(db, gid) == [(1, "Cid Roe")]

    declined = await enrollment.process_waitlist(db, ids["Cid Roe"], "decline")
    assert declined.status == "declined"
    assert await _pending_positions(db, gid) == []

    statuses = dict((await db.execute(
        sa.select(Waitlist.prospect_name, Waitlist.status).where(Waitlist.group_id == gid)
    )).all())
    assert statuses == {"Ann Lee": "expired", "Bob Ray": "cancelled", "Cid Roe": "declined"}


async def test_waitlist_expire_route(client, admin_headers, group_factory):
    group = await group_factory()
    entry = await create(client, admin_headers, "/waitlists", {"group_id": group["id"], "prospect_name": "Dee Fox"})
    assert entry["status"] == "pending"

    offered = await client.post(f"/waitlists/{entry['id']}/process", json={
        "action": "notify", "expires_at": "2020-01-01T00:00:00Z",
    }, headers=admin_headers)
    assert offered.status_code == 200, offered.text
    assert offered.json()["data"]["status"] == "notified"

    again = await client.post(f"/waitlists/{entry['id']}/process", json={"action": "notify"}, headers=admin_headers)
    assert again.status_code == 409

    sweep = await client.post("/waitlists/expire", headers=admin_headers)
    assert sweep.status_code == 200, sweep.text
    assert sweep.json()["data"] == {"expired": 1, "groups_reordered": 1}

    after = await client.get(f"/waitlists/{entry['id']}", headers=admin_headers)
    assert after.json()["data"]["status"] == "expired"

    idle = await client.post("/waitlists/expire", headers=admin_headers)
    assert idle.json()["data"]["expired"] == 0


async def test_grade_batch_is_idempotent(client, admin_headers, group_factory, student_factory):
    group = await group_factory()
    a = await student_factory(group_id=group["id"])
    b = await student_factory(group_id=group["id"])
    url = f"/groups/{group['id']}/grades/batch"

    first = {"date": "2024-02-05", "type": "quiz",
             "records": [{"student_id": a["id"], "value": 70}, {"student_id": b["id"], "value": 85}]}
    r = await client.post(url, json=first, headers=admin_headers)
    assert r.status_code == 200, r.text
    ids = sorted(g["id"] for g in r.json()["data"])

    regrade = {**first, "records": [{"student_id": a["id"], "value": 90, "notes": "retake"},
                                    {"student_id": b["id"], "value": 85}]}
    r = await client.post(url, json=regrade, headers=admin_headers)
    assert r.status_code == 200, r.text
    assert sorted(g["id"] for g in r.json()["data"]) == ids

    rows = (await client.get(f"/groups/{group['id']}/grades", headers=admin_headers)).json()["data"]
    assert len(rows) == 2
    by_student = {g["student_id"]: (g["value"], g["notes"]) for g in rows}
    assert by_student == {a["id"]: (90, "retake"), b["id"]: (85, None)}

    # a different assessment type on the same day is its own row
    await client.post(url, json={**first, "type": "homework"}, headers=admin_headers)
    rows = (await client.get(f"/groups/{group['id']}/grades", headers=admin_headers)).json()["data"]
    assert len(rows) == 4
