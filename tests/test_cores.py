# tests/test_cores.py
"""Pure helpers behind the services; no database involved."""
from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from educrm.core.errors import ErrorKind
from educrm.db.models import CustomField, Discount, Invoice, Timetable, Waitlist
from educrm.main import integrity_kind
from educrm.middleware.access_log import level_for
from educrm.middleware.rate_limit import RateLimiter, TokenBucket
from educrm.services import billing, custom_fields, enrollment, exams, notifications, scheduling

UTC = timezone.utc


# ---- scheduling --------------------------------------------------------------

@pytest.mark.parametrize(
    "a, b, expected",
    [
        ((540, 660), (630, 720), True),   # 09:00-11:00 vs 10:30-12:00
        ((540, 660), (660, 720), False),  # touching ends
        ((540, 660), (480, 540), False),
        ((540, 660), (560, 600), True),   # contained
    ],
)
def test_overlaps(a, b, expected):
    assert scheduling.overlaps(*a, *b) is expected
    assert scheduling.overlaps(*b, *a) is expected


def test_parse_hhmm_rejects_garbage():
    assert scheduling.parse_hhmm("09:05") == 545
    for bad in ("9:05", "24:00", "12:60", "ab:cd"):
        with pytest.raises(ValueError):
            scheduling.parse_hhmm(bad)


def test_find_conflict_needs_a_shared_day():
    existing = [Timetable(id=uuid.uuid4(), classroom="R1", days="Mon,Wed", start_time="09:00", end_time="11:00")]
    assert scheduling.find_conflict(
        {"days": "Wed,Fri", "start_time": "10:30", "end_time": "12:00"}, existing
    ) is existing[0]
    assert scheduling.find_conflict({"days": "Tue", "start_time": "09:00", "end_time": "11:00"}, existing) is None
    assert scheduling.find_conflict(
        {"days": "Mon", "start_time": "10:00", "end_time": "10:30"}, existing, skip_id=existing[0].id
    ) is None


def test_late_penalty_math():
    due = datetime(2024, 1, 10, 23, 59, tzinfo=UTC)
    assert scheduling.days_late(due, due) == 0
    assert scheduling.days_late(due, due + timedelta(minutes=1)) == 1
    assert scheduling.days_late(due, datetime(2024, 1, 12, 6, 0, tzinfo=UTC)) == 2

    assert scheduling.late_penalty(10, 100, 0) == 0
    assert scheduling.late_penalty(10, 100, 2) == 20
    assert scheduling.final_score(80, 20) == 60
    assert scheduling.final_score(10, 50) == 0


# ---- billing -----------------------------------------------------------------

@pytest.mark.parametrize(
    "current, freq, dom, expected",
    [
        (date(2024, 1, 31), "monthly", 31, date(2024, 2, 29)),
        (date(2024, 2, 29), "monthly", 31, date(2024, 3, 31)),
        (date(2023, 1, 31), "monthly", 31, date(2023, 2, 28)),
        (date(2024, 1, 15), "weekly", None, date(2024, 1, 22)),
        (date(2024, 1, 15), "biweekly", None, date(2024, 1, 29)),
        (date(2024, 11, 30), "quarterly", 30, date(2025, 2, 28)),
        (date(2024, 8, 31), "semester", 31, date(2025, 2, 28)),
        (date(2024, 2, 29), "yearly", 29, date(2025, 2, 28)),
    ],
)
def test_advance_date(current, freq, dom, expected):
    assert billing.advance_date(current, freq, dom) == expected


def test_advance_date_unknown_frequency():
    with pytest.raises(ValueError):
        billing.advance_date(date(2024, 1, 1), "daily")


def test_compute_discount_is_capped():
    assert billing.compute_discount("percentage", 10, 100) == 10
    assert billing.compute_discount("fixed", 25, 100) == 25
    assert billing.compute_discount("fixed", 250, 100) == 100


def test_discount_validity_window():
    now = datetime(2024, 6, 1, tzinfo=UTC)
    d = Discount(is_active=True, current_uses=0, max_uses=1,
                 valid_from=now - timedelta(days=1), valid_until=now + timedelta(days=1))
    assert billing.discount_is_valid(d, now)
    assert not billing.discount_is_valid(d, now + timedelta(days=2))
    d.current_uses = 1
    assert not billing.discount_is_valid(d, now)

    course = uuid.uuid4()
    scoped = Discount(is_active=True, current_uses=0, course_id=course)
    assert billing.discount_is_valid(scoped, now, course)
    assert not billing.discount_is_valid(scoped, now, uuid.uuid4())


def test_derive_status():
    today = date(2024, 3, 1)

    def inv(**kw):
        base = dict(status="draft", paid_amount=0.0, total_amount=100.0, due_date=date(2024, 3, 10), sent_at=None)
        base.update(kw)
        return Invoice(**base)

    assert billing.derive_status(inv(), today) == "draft"
    assert billing.derive_status(inv(sent_at=datetime(2024, 2, 1, tzinfo=UTC)), today) == "sent"
    assert billing.derive_status(inv(due_date=date(2024, 2, 1)), today) == "overdue"
    assert billing.derive_status(inv(paid_amount=40.0, due_date=date(2024, 2, 1)), today) == "partial_paid"
    assert billing.derive_status(inv(paid_amount=100.0), today) == "paid"
    assert billing.derive_status(inv(status="cancelled", paid_amount=100.0), today) == "cancelled"
    # a fully discounted invoice has nothing left to collect
    assert billing.derive_status(inv(total_amount=0.0, due_date=date(2024, 2, 1)), today) == "paid"


def test_recompute_stamps_and_clears_paid_date():
    now = datetime(2024, 3, 1, 12, tzinfo=UTC)
    i = Invoice(status="draft", paid_amount=100.0, total_amount=100.0, due_date=date(2024, 3, 10), sent_at=None)
    billing.recompute(i, now)
    assert (i.status, i.balance, i.paid_date) == ("paid", 0.0, now)

    i.paid_amount = 30.0
    billing.recompute(i, now)
    assert (i.status, i.balance, i.paid_date) == ("partial_paid", 70.0, None)


# ---- waitlist ordering -------------------------------------------------------

def test_order_pending_priority_then_age():
    t = datetime(2024, 1, 1, tzinfo=UTC)
    rows = [
        Waitlist(prospect_name="normal@t2", priority="normal", requested_at=t + timedelta(minutes=2)),
        Waitlist(prospect_name="urgent@t1", priority="urgent", requested_at=t + timedelta(minutes=1)),
        Waitlist(prospect_name="normal@t4", priority="normal", requested_at=t + timedelta(minutes=4)),
        Waitlist(prospect_name="high@t3", priority="high", requested_at=t + timedelta(minutes=3)),
    ]
    ordered = [w.prospect_name for w in enrollment.order_pending(rows)]
    assert ordered == ["urgent@t1", "high@t3", "normal@t2", "normal@t4"]


# ---- exams -------------------------------------------------------------------

@pytest.mark.parametrize(
    "pct, letter",
    [(100, "A+"), (90, "A+"), (89.9, "A"), (80, "A-"), (72, "B"), (60, "C+"), (50, "C-"), (49.99, "F"), (0, "F")],
)
def test_letter_grade(pct, letter):
    assert exams.letter_grade(pct) == letter


# ---- notifications -----------------------------------------------------------

def test_render_leaves_unknown_placeholders():
    text = "Hi {{ name }}, invoice {{number}} ({{missing}})"
    assert notifications.render(text, {"name": "Ann", "number": 7}) == "Hi Ann, invoice 7 ({{missing}})"
    assert notifications.render(None, {}) is None


def test_check_recipient():
    notifications.check_recipient("email", "a@b.co")
    notifications.check_recipient("sms", "+15550001111")
    notifications.check_recipient("push", "device-token")
    for channel, recipient in (("email", "nobody"), ("sms", "123"), ("fax", "x")):
        with pytest.raises(notifications.DeliveryError):
            notifications.check_recipient(channel, recipient)


# ---- custom fields -----------------------------------------------------------

def _field(kind: str, **kw) -> CustomField:
    return CustomField(name="f", label="F", field_type=kind, entity_type="student", **kw)


def test_coerce_value_by_type():
    assert custom_fields.coerce_value(_field("number", min_value=0, max_value=10), "7") == "7"
    assert custom_fields.coerce_value(_field("boolean"), "Yes") == "true"
    assert custom_fields.coerce_value(_field("date"), "2024-02-29") == "2024-02-29"
    assert custom_fields.coerce_value(_field("select", options=["a", "b"]), "b") == "b"
    assert custom_fields.coerce_value(_field("multi_select", options=["a", "b"]), ["a", "b"]) == '["a", "b"]'
    assert custom_fields.coerce_value(_field("url"), "https://example.com/x") == "https://example.com/x"
    assert custom_fields.coerce_value(_field("text"), "") is None


@pytest.mark.parametrize(
    "field, value",
    [
        (_field("number", max_value=10), 11),
        (_field("number"), "ten"),
        (_field("boolean"), "maybe"),
        (_field("date"), "2023-02-29"),
        (_field("select", options=["a"]), "z"),
        (_field("url"), "ftp://example.com"),
        (_field("email"), "not-an-email"),
        (_field("phone"), "call me"),
        (_field("text", max_length=3), "toolong"),
        (_field("text", is_required=True), None),
    ],
)
def test_coerce_value_rejects(field, value):
    with pytest.raises(ValueError):
        custom_fields.coerce_value(field, value)


# ---- rate limiting -----------------------------------------------------------

class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_token_bucket_refills_over_time():
    bucket = TokenBucket(rate=1.0, capacity=2)
    assert bucket.allow(0.0) and bucket.allow(0.0)
    assert not bucket.allow(0.0)
    assert bucket.allow(1.0)
    assert not bucket.allow(1.5)


def test_rate_limiter_is_per_key_and_prunes():
    clock = FakeClock()
    limiter = RateLimiter(rps=1, burst=1, clock=clock)
    assert limiter.allow("a")
    assert not limiter.allow("a")
    assert limiter.allow("b")

    clock.now = 10.0
    assert limiter.prune() == 2
    assert len(limiter) == 0


def test_rate_limiter_resets_when_full():
    limiter = RateLimiter(rps=1, burst=1, max_entries=2, clock=FakeClock())
    limiter.allow("a")
    limiter.allow("b")
    limiter.allow("c")
    assert len(limiter) == 1


# ---- HTTP edge helpers -------------------------------------------------------

def test_integrity_kind():
    dup = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: users.email"))
    fk = IntegrityError("INSERT", {}, Exception("FOREIGN KEY constraint failed"))
    assert integrity_kind(dup)[0] is ErrorKind.DUPLICATE_ENTRY
    assert integrity_kind(fk)[0] is ErrorKind.VALIDATION


def test_access_log_levels():
    assert level_for(200) == logging.INFO
    assert level_for(404) == logging.WARNING
    assert level_for(503) == logging.ERROR
