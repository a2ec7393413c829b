from __future__ import annotations
import enum
from datetime import date
from html import escape
from typing import Callable, Dict, Tuple

from bookwise.config import settings

class Event(str, enum.Enum):
    ACCOUNT_APPROVED = "ACCOUNT_APPROVED"
    ACCOUNT_REJECTED = "ACCOUNT_REJECTED"
    ROLE_CHANGED = "ROLE_CHANGED"
    BOOK_BORROWED = "BOOK_BORROWED"
    BOOK_DUE_REMINDER = "BOOK_DUE_REMINDER"
    BOOK_RETURNED = "BOOK_RETURNED"
    RECEIPT_READY = "RECEIPT_READY"

def fmt_date(d: date | str) -> str:
    if isinstance(d, str):
        d = date.fromisoformat(d)
    return f"{d:%B} {d.day}, {d.year}"

def _layout(title: str, name: str, *paragraphs: str, details: Dict[str, str] | None = None) -> str:
    rows = ""
    if details:
        rows = "".join(
            f'<p style="margin: 5px 0;"><strong>{escape(k)}:</strong> {escape(v)}</p>'
            for k, v in details.items()
        )
        rows = f'<div style="background: #f3f4f6; padding: 15px; border-radius: 8px; margin: 20px 0;">{rows}</div>'
    body = "".join(f"<p>{p}</p>" for p in paragraphs)
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f'<h2 style="color: #10b981;">{escape(title)}</h2>'
        f"<p>Hello {escape(name)},</p>"
        f"{rows}{body}"
        f"<p>Best regards,<br/>{escape(settings.LIBRARY_NAME)} Team</p>"
        "</div>"
    )

def _account_approved(*, full_name: str, **_) -> Tuple[str, str]:
    return (
        "Your Library Account Has Been Approved!",
        _layout("Account approved", full_name,
                "Your account request has been approved. You can now browse the catalog and borrow books."),
    )

def _account_rejected(*, full_name: str, **_) -> Tuple[str, str]:
    return (
        "Library Account Request Update",
        _layout("Account request update", full_name,
                "Unfortunately your account request could not be approved.",
                "If you think this is a mistake, please contact the library staff with your university card."),
    )

def _role_changed(*, full_name: str, role: str, **_) -> Tuple[str, str]:
    return (
        "Your Library Role Has Been Updated",
        _layout("Role updated", full_name, f"Your role is now <strong>{escape(str(role))}</strong>."),
    )

def _book_borrowed(*, full_name: str, book_title: str, book_author: str, borrow_date, due_date, **_) -> Tuple[str, str]:
    return (
        f"You've Borrowed {book_title}!",
        _layout("Book borrowed successfully", full_name,
                "Please return the book on or before the due date to avoid late fees.",
                "Your receipt will be emailed to you shortly.",
                details={
                    "Book": book_title,
                    "Author": book_author,
                    "Borrow Date": fmt_date(borrow_date),
                    "Due Date": fmt_date(due_date),
                }),
    )

def _book_due_reminder(*, full_name: str, book_title: str, due_date, stage: str = "", **_) -> Tuple[str, str]:
    if stage == "AFTER_DUE":
        line = "This book is now overdue. Please return it as soon as possible; late fees may apply."
    elif stage == "ON_DUE":
        line = "This book is due today."
    else:
        line = "This book is due soon."
    return (
        f"Reminder: {book_title} is Due Soon!",
        _layout("Book due reminder", full_name, escape(line),
                details={"Book": book_title, "Due Date": fmt_date(due_date)}),
    )

def _book_returned(*, full_name: str, book_title: str, book_author: str, borrow_date, due_date,
                   return_date, is_late: bool = False, days_late: int = 0, **_) -> Tuple[str, str]:
    if is_late:
        note = (f'<span style="color: #ef4444;"><strong>Note:</strong> This book was returned '
                f"{int(days_late)} day(s) late. Late fees may apply.</span>")
    else:
        note = '<span style="color: #10b981;">Book returned on time. Thank you!</span>'
    return (
        f"Thank You for Returning {book_title}!",
        _layout("Book returned successfully", full_name, note,
                details={
                    "Book": book_title,
                    "Author": book_author,
                    "Borrowed": fmt_date(borrow_date),
                    "Due Date": fmt_date(due_date),
                    "Returned": fmt_date(return_date),
                }),
    )

def _receipt_ready(*, full_name: str, book_title: str, receipt_id: str, receipt_url: str, **_) -> Tuple[str, str]:
    return (
        f"Your Receipt for {book_title} is Ready!",
        _layout("Your receipt is ready", full_name,
                f'<a href="{escape(receipt_url, quote=True)}">Download receipt #{escape(receipt_id)}</a>'),
    )

TEMPLATES: Dict[Event, Callable[..., Tuple[str, str]]] = {
    Event.ACCOUNT_APPROVED: _account_approved,
    Event.ACCOUNT_REJECTED: _account_rejected,
    Event.ROLE_CHANGED: _role_changed,
    Event.BOOK_BORROWED: _book_borrowed,
    Event.BOOK_DUE_REMINDER: _book_due_reminder,
    Event.BOOK_RETURNED: _book_returned,
    Event.RECEIPT_READY: _receipt_ready,
}

def render(event: Event, **context) -> Tuple[str, str]:
    return TEMPLATES[Event(event)](**context)
