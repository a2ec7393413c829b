"""Fire-and-forget notification dispatch.

Dispatch happens after the database transaction has committed. A failed
send is logged and dropped: it is never retried here and never reaches the
caller of the borrow/return/account action that triggered it.
"""
from __future__ import annotations
import logging
from typing import Any, Dict, Optional

from bookwise.email.client import MailClient
from bookwise.email.templates import Event, render

logger = logging.getLogger(__name__)

class Notifier:
    def __init__(self, mailer: Optional[MailClient]):
        self.mailer = mailer

    async def dispatch(self, event: Event, to_email: str, **context: Any) -> bool:
        if self.mailer is None:
            logger.info("mail not configured; %s for %s not sent", Event(event).value, to_email)
            return False
        try:
            subject, html = render(event, **context)
            await self.mailer.send_mail(to_email=to_email, subject=subject, html=html)
        except Exception as e:
            logger.error("failed to send %s to %s: %s", Event(event).value, to_email, e)
            return False
        logger.info("sent %s to %s", Event(event).value, to_email)
        return True

    # Shortcuts over the action result payloads

    async def book_borrowed(self, data: Dict[str, Any]) -> bool:
        return await self.dispatch(
            Event.BOOK_BORROWED, data["user"]["email"],
            full_name=data["user"]["full_name"],
            book_title=data["book"]["title"],
            book_author=data["book"]["author"],
            borrow_date=data["record"]["borrow_date"],
            due_date=data["record"]["due_date"],
        )

    async def book_returned(self, data: Dict[str, Any]) -> bool:
        return await self.dispatch(
            Event.BOOK_RETURNED, data["user"]["email"],
            full_name=data["user"]["full_name"],
            book_title=data["book"]["title"],
            book_author=data["book"]["author"],
            borrow_date=data["record"]["borrow_date"],
            due_date=data["record"]["due_date"],
            return_date=data["record"]["return_date"],
            is_late=data["is_late"],
            days_late=data["days_late"],
        )

    async def account_reviewed(self, data: Dict[str, Any]) -> bool:
        event = Event.ACCOUNT_APPROVED if data["status"] == "APPROVED" else Event.ACCOUNT_REJECTED
        return await self.dispatch(event, data["email"], full_name=data["full_name"])

    async def role_changed(self, data: Dict[str, Any]) -> bool:
        return await self.dispatch(Event.ROLE_CHANGED, data["email"], full_name=data["full_name"], role=data["role"])
