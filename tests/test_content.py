# tests/test_content.py
"""Documents, messaging, notifications, parents, calendar and custom fields."""
from __future__ import annotations

import pytest

from educrm.db.models import Role

from .conftest import create, login, make_user

pytestmark = pytest.mark.anyio


async def test_document_upload_download_and_review(client, admin_headers, student_factory):
    student = await student_factory()
    r = await client.post(
        "/documents/upload",
        files={"file": ("contract.txt", b"signed on the dotted line", "text/plain")},
        data={"title": "Enrollment contract", "document_type": "contract",
              "student_id": student["id"], "tags": "signed, 2024"},
        headers=admin_headers,
    )
    assert r.status_code == 201, r.text
    doc = r.json()["data"]
    assert doc["status"] == "pending"
    assert doc["file_size"] == len(b"signed on the dotted line")
    assert doc["tags"] == ["signed", "2024"]

    listed = await client.get(f"/documents/entity/student/{student['id']}", headers=admin_headers)
    assert [d["id"] for d in listed.json()["data"]] == [doc["id"]]
    assert (await client.get(f"/documents/entity/planet/{student['id']}", headers=admin_headers)).status_code == 400

    body = await client.get(f"/documents/{doc['id']}/download", headers=admin_headers)
    assert body.status_code == 200
    assert body.content == b"signed on the dotted line"

    reads = await client.get("/audit-logs", params={"resource": "documents", "action": "read"}, headers=admin_headers)
    assert [a["resource_id"] for a in reads.json()["data"]] == [doc["id"]]

    approved = await client.post(f"/documents/{doc['id']}/approve",
                                 json={"decision": "approve", "notes": "ok"}, headers=admin_headers)
    assert approved.json()["data"]["status"] == "approved"

    again = await client.post(f"/documents/{doc['id']}/approve", json={"decision": "reject"}, headers=admin_headers)
    assert again.status_code == 409
    assert again.json()["errors"]["kind"] == "invalid_operation"

    assert (await client.delete(f"/documents/{doc['id']}", headers=admin_headers)).status_code == 200
    assert (await client.get(f"/documents/{doc['id']}", headers=admin_headers)).status_code == 404


async def test_empty_upload_is_rejected(client, admin_headers):
    r = await client.post(
        "/documents/upload",
        files={"file": ("empty.txt", b"", "text/plain")},
        data={"title": "Nothing", "document_type": "other"},
        headers=admin_headers,
    )
    assert r.status_code == 400


async def test_private_message_lifecycle(client, db, admin_headers):
    alice = await make_user(db, "alice@example.com", "password-123", Role.TEACHER.value)
    await make_user(db, "bob@example.com", "password-123", Role.TEACHER.value)
    alice_h = await login(client, "alice@example.com", "password-123")
    bob_h = await login(client, "bob@example.com", "password-123")

    sent = await client.post("/messages/send", json={
        "recipient_id": str(alice.id), "subject": "Room change", "body": "Use R2 today",
    }, headers=admin_headers)
    assert sent.status_code == 201, sent.text
    mid = sent.json()["data"]["id"]
    assert sent.json()["data"]["status"] == "sent"

    inbox = await client.get("/messages/inbox", headers=alice_h)
    assert [m["id"] for m in inbox.json()["data"]] == [mid]

    assert (await client.get(f"/messages/{mid}", headers=bob_h)).status_code == 403

    opened = await client.get(f"/messages/{mid}", headers=alice_h)
    assert opened.json()["data"]["status"] == "delivered"

    assert (await client.post(f"/messages/{mid}/read", headers=bob_h)).status_code == 403
    read = await client.post(f"/messages/{mid}/read", headers=alice_h)
    assert read.json()["data"]["status"] == "read"
    assert read.json()["data"]["read_at"] is not None

    assert (await client.delete(f"/messages/{mid}", headers=bob_h)).status_code == 403
    assert (await client.delete(f"/messages/{mid}", headers=alice_h)).status_code == 200


async def test_private_message_needs_a_recipient(client, admin_headers):
    r = await client.post("/messages/send", json={"body": "hello"}, headers=admin_headers)
    assert r.status_code == 400


async def test_announcements_are_role_scoped(client, db, admin_headers):
    await make_user(db, "kid@example.com", "password-123", Role.STUDENT.value)
    kid = await login(client, "kid@example.com", "password-123")

    for role in (None, "student", "teacher"):
        body = {"type": "announcement", "subject": f"for {role}", "body": "notice"}
        if role:
            body["target_role"] = role
        assert (await client.post("/messages/send", json=body, headers=admin_headers)).status_code == 201

    seen = await client.get("/messages/announcements", headers=kid)
    assert sorted(m["subject"] for m in seen.json()["data"]) == ["for None", "for student"]

    everything = await client.get("/messages/announcements", headers=admin_headers)
    assert everything.json()["pagination"]["total_items"] == 3

    denied = await client.post("/messages/send", json={"type": "announcement", "body": "party"}, headers=kid)
    assert denied.status_code == 403


async def test_notification_send_and_retry(client, admin_headers):
    ok = await client.post("/notifications/send", json={
        "type": "email", "recipient": "parent@example.com", "subject": "Hi {{name}}",
        "message": "Balance {{amount}}", "variables": {"name": "Ann", "amount": 40},
    }, headers=admin_headers)
    assert ok.status_code == 201, ok.text
    sent = ok.json()["data"]
    assert sent["status"] == "sent"
    assert sent["subject"] == "Hi Ann"
    assert sent["message"] == "Balance 40"

    bad = await client.post("/notifications/send", json={
        "type": "sms", "recipient": "12", "message": "x",
    }, headers=admin_headers)
    assert bad.status_code == 201
    failed = bad.json()["data"]
    assert failed["status"] == "failed"
    assert failed["error_msg"]

    retried = await client.post(f"/notifications/{failed['id']}/retry", headers=admin_headers)
    assert retried.status_code == 200
    assert retried.json()["data"]["retry_count"] == 1

    not_failed = await client.post(f"/notifications/{sent['id']}/retry", headers=admin_headers)
    assert not_failed.status_code == 409

    history = await client.get("/notifications/recipient/parent@example.com", headers=admin_headers)
    assert [n["id"] for n in history.json()["data"]] == [sent["id"]]


async def test_bulk_notifications_report_failures(client, admin_headers):
    tpl = await create(client, admin_headers, "/notification-templates", {
        "name": "reminder", "type": "email", "subject": "Reminder", "body": "Dear {{name}}, class at {{time}}",
        "variables": ["name", "time"],
    })
    r = await client.post("/notifications/send/bulk", json={
        "type": "email",
        "template_id": tpl["id"],
        "variables": {"time": "09:00"},
        "recipients": [
            {"recipient": "a@example.com", "variables": {"name": "A"}},
            {"recipient": "broken"},
            {"recipient": "c@example.com", "variables": {"name": "C"}},
        ],
    }, headers=admin_headers)
    assert r.status_code == 200, r.text
    report = r.json()["data"]
    assert (report["total"], report["sent"], report["failed"]) == (3, 2, 1)
    assert report["failures"][0]["recipient"] == "broken"
    first = next(n for n in report["notifications"] if n["recipient"] == "a@example.com")
    assert first["message"] == "Dear A, class at 09:00"
    assert first["template_id"] == tpl["id"]


async def test_template_channel_must_match(client, admin_headers):
    tpl = await create(client, admin_headers, "/notification-templates", {
        "name": "sms-only", "type": "sms", "body": "Short text",
    })
    r = await client.post("/notifications/send", json={
        "type": "email", "recipient": "x@example.com", "template_id": tpl["id"],
    }, headers=admin_headers)
    assert r.status_code == 400


async def test_parent_links(client, admin_headers, student_factory):
    student = await student_factory()
    mum = await create(client, admin_headers, "/parents", {
        "first_name": "Mary", "last_name": "Test", "phone": "+15550002222", "email": "mary@example.com",
    })
    dad = await create(client, admin_headers, "/parents", {
        "first_name": "John", "last_name": "Test", "phone": "+15550003333",
    })

    link = await client.post(f"/parents/{mum['id']}/students", json={
        "student_id": student["id"], "relation": "mother", "is_primary": True,
    }, headers=admin_headers)
    assert link.status_code == 201, link.text
    await create(client, admin_headers, f"/parents/{dad['id']}/students", {
        "student_id": student["id"], "relation": "father",
    })

    dup = await client.post(f"/parents/{mum['id']}/students", json={
        "student_id": student["id"], "relation": "mother",
    }, headers=admin_headers)
    assert dup.status_code == 409

    listed = (await client.get(f"/students/{student['id']}/parents", headers=admin_headers)).json()["data"]
    assert [(p["parent"]["first_name"], p["relation"], p["is_primary"]) for p in listed] == [
        ("Mary", "mother", True), ("John", "father", False),
    ]

    assert (await client.delete(f"/parents/{dad['id']}/students/{student['id']}", headers=admin_headers)).status_code == 200
    assert (await client.delete(f"/parents/{dad['id']}/students/{student['id']}", headers=admin_headers)).status_code == 404
    listed = (await client.get(f"/students/{student['id']}/parents", headers=admin_headers)).json()["data"]
    assert len(listed) == 1


async def test_calendar_window(client, admin_headers):
    for title, start, end in (
        ("Morning", "2024-03-04T09:00:00Z", "2024-03-04T10:00:00Z"),
        ("Evening", "2024-03-04T18:00:00Z", "2024-03-04T19:00:00Z"),
        ("Next day", "2024-03-05T09:00:00Z", "2024-03-05T10:00:00Z"),
    ):
        await create(client, admin_headers, "/calendar/events", {
            "title": title, "type": "class", "start_time": start, "end_time": end,
        })

    r = await client.get("/calendar/events", params={
        "start": "2024-03-04T09:30:00Z", "end": "2024-03-04T23:59:00Z", "sort": "start_time", "order": "asc",
    }, headers=admin_headers)
    assert [e["title"] for e in r.json()["data"]] == ["Morning", "Evening"]

    backwards = await client.get("/calendar/events", params={
        "start": "2024-03-05T00:00:00Z", "end": "2024-03-04T00:00:00Z",
    }, headers=admin_headers)
    assert backwards.status_code == 400

    bad = await client.post("/calendar/events", json={
        "title": "Broken", "type": "meeting",
        "start_time": "2024-03-04T10:00:00Z", "end_time": "2024-03-04T09:00:00Z",
    }, headers=admin_headers)
    assert bad.status_code == 400


async def test_custom_field_values(client, admin_headers, student_factory):
    student = await student_factory()
    field = await create(client, admin_headers, "/custom-fields", {
        "name": "shoe_size", "label": "Shoe size", "field_type": "number", "entity_type": "student",
        "min_value": 20, "max_value": 50,
    })
    url = f"/custom-fields/{field['id']}/values/{student['id']}"

    assert (await client.put(url, json={"value": 38}, headers=admin_headers)).status_code == 200
    assert (await client.put(url, json={"value": 41}, headers=admin_headers)).status_code == 200

    too_big = await client.put(url, json={"value": 99}, headers=admin_headers)
    assert too_big.status_code == 400
    assert too_big.json()["errors"]["kind"] == "validation"

    values = (await client.get(f"/custom-fields/values/{student['id']}", headers=admin_headers)).json()["data"]
    assert [v["value"] for v in values] == ["41"]

    bad_name = await client.post("/custom-fields", json={
        "name": "Shoe Size", "label": "x", "field_type": "text", "entity_type": "student",
    }, headers=admin_headers)
    assert bad_name.status_code == 400


async def test_custom_fields_are_admin_managed(client, db, admin_headers):
    await make_user(db, "desk@example.com", "password-123", Role.STAFF.value)
    staff = await login(client, "desk@example.com", "password-123")
    r = await client.post("/custom-fields", json={
        "name": "nickname", "label": "Nickname", "field_type": "text", "entity_type": "student",
    }, headers=staff)
    assert r.status_code == 403
