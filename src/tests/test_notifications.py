import pytest
from bookwise.email.templates import Event, render, fmt_date, TEMPLATES
from bookwise.notifications import Notifier

pytestmark = pytest.mark.asyncio

BORROW_DATA = {
    "record": {"borrow_date": "2024-01-01", "due_date": "2024-01-15", "return_date": None},
    "user": {"email": "alice@uni.edu", "full_name": "Alice Reader"},
    "book": {"title": "Dune", "author": "Frank Herbert"},
}

async def test_every_event_has_a_template():
    assert set(TEMPLATES) == set(Event)

async def test_fmt_date():
    assert fmt_date("2024-01-10") == "January 10, 2024"

async def test_templates_escape_user_input():
    subject, html = render(Event.ACCOUNT_APPROVED, full_name="<script>alert(1)</script>")
    assert subject == "Your Library Account Has Been Approved!"
    assert "<script>" not in html
    assert "&lt;script&gt;" in html

async def test_returned_template_mentions_lateness():
    ctx = dict(full_name="Alice", book_title="Dune", book_author="Frank Herbert",
               borrow_date="2024-01-01", due_date="2024-01-15", return_date="2024-01-18")
    subject, late = render(Event.BOOK_RETURNED, is_late=True, days_late=3, **ctx)
    assert subject == "Thank You for Returning Dune!"
    assert "3 day(s) late" in late
    _, on_time = render(Event.BOOK_RETURNED, is_late=False, days_late=0, **ctx)
    assert "returned on time" in on_time

async def test_book_borrowed_dispatch(notifier, outbox):
    ok = await notifier.book_borrowed(BORROW_DATA)
    assert ok is True
    msg = outbox.sent[0]
    assert msg["to"] == ["alice@uni.edu"]
    assert msg["from"] == "Library <library@example.edu>"
    assert msg["subject"] == "You've Borrowed Dune!"
    assert "January 15, 2024" in msg["html"]

async def test_book_returned_dispatch(notifier, outbox):
    data = {**BORROW_DATA, "record": {**BORROW_DATA["record"], "return_date": "2024-01-20"},
            "is_late": True, "days_late": 5}
    assert await notifier.book_returned(data) is True
    assert "5 day(s) late" in outbox.sent[0]["html"]

async def test_account_reviewed_picks_event(notifier, outbox):
    await notifier.account_reviewed({"email": "a@uni.edu", "full_name": "A", "status": "APPROVED"})
    await notifier.account_reviewed({"email": "b@uni.edu", "full_name": "B", "status": "REJECTED"})
    assert outbox.subjects() == ["Your Library Account Has Been Approved!", "Library Account Request Update"]

async def test_role_changed_dispatch(notifier, outbox):
    await notifier.role_changed({"email": "a@uni.edu", "full_name": "A", "role": "ADMIN"})
    assert "ADMIN" in outbox.sent[0]["html"]

async def test_send_failure_is_swallowed(notifier, outbox):
    outbox.fail = True
    assert await notifier.book_borrowed(BORROW_DATA) is False

async def test_without_mailer_nothing_is_sent():
    assert await Notifier(None).book_borrowed(BORROW_DATA) is False
