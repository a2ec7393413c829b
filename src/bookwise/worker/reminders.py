import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bookwise.config import settings
from bookwise.db import SessionLocal
from bookwise.email.templates import Event
from bookwise.models import (
    Book, BorrowRecord, BorrowStatus, ReminderStage, ReminderStatus,
    ScheduledReminder, User,
)
from bookwise.notifications import Notifier

logger = logging.getLogger(__name__)

REMINDER_OFFSETS = {
    ReminderStage.BEFORE_DUE: -3,
    ReminderStage.ON_DUE: 0,
    ReminderStage.AFTER_DUE: 1,
}
_STAGE_ORDER = list(REMINDER_OFFSETS)

def schedule_due_reminders(session: AsyncSession, record: BorrowRecord) -> List[ScheduledReminder]:
    """Adds the three reminder rows to the caller's transaction."""
    rows = []
    for stage, offset in REMINDER_OFFSETS.items():
        send_on = max(record.due_date + timedelta(days=offset), record.borrow_date)
        rows.append(ScheduledReminder(borrow_record_id=record.id, stage=stage, send_on=send_on))
    session.add_all(rows)
    return rows

async def skip_pending_reminders(session: AsyncSession, record_ids: List[str]) -> None:
    if not record_ids:
        return
    await session.execute(
        update(ScheduledReminder)
        .where(ScheduledReminder.borrow_record_id.in_(record_ids),
               ScheduledReminder.status == ReminderStatus.PENDING)
        .values(status=ReminderStatus.SKIPPED)
        .execution_options(synchronize_session=False)
    )

async def process_due_reminders(session: AsyncSession, notifier: Notifier, *, today: date | None = None) -> Dict[str, int]:
    today = today or date.today()
    rows = (await session.execute(
        select(ScheduledReminder, BorrowRecord, User, Book)
        .join(BorrowRecord, ScheduledReminder.borrow_record_id == BorrowRecord.id)
        .join(User, BorrowRecord.user_id == User.id)
        .join(Book, BorrowRecord.book_id == Book.id)
        .where(ScheduledReminder.status == ReminderStatus.PENDING, ScheduledReminder.send_on <= today)
    )).all()

    # latest due stage per record wins; older ones are stale
    latest: Dict[str, tuple] = {}
    stale: List[ScheduledReminder] = []
    for reminder, record, user, book in rows:
        if record.status != BorrowStatus.BORROWED:
            reminder.status = ReminderStatus.SKIPPED
            continue
        current = latest.get(record.id)
        if current is None or _STAGE_ORDER.index(reminder.stage) > _STAGE_ORDER.index(current[0].stage):
            if current is not None:
                stale.append(current[0])
            latest[record.id] = (reminder, record, user, book)
        else:
            stale.append(reminder)
    for reminder in stale:
        reminder.status = ReminderStatus.SKIPPED

    now = datetime.now(timezone.utc)
    for reminder, *_ in latest.values():
        reminder.status = ReminderStatus.SENT
        reminder.sent_at = now
    skipped = len(rows) - len(latest)
    # committed before sending: a reminder is attempted at most once
    await session.commit()

    sent = 0
    for reminder, record, user, book in latest.values():
        ok = await notifier.dispatch(
            Event.BOOK_DUE_REMINDER, user.email,
            full_name=user.full_name,
            book_title=book.title,
            due_date=record.due_date,
            stage=reminder.stage.value,
        )
        sent += int(ok)
    return {"due": len(rows), "sent": sent, "skipped": skipped, "failed": len(latest) - sent}

async def run_reminder_worker(notifier: Notifier):
    interval = max(5, int(settings.REMINDER_POLL_INTERVAL_SECONDS))
    logger.info("[reminders] started. interval: %ss", interval)
    while True:
        try:
            async with SessionLocal() as session:
                stats = await process_due_reminders(session, notifier)
            if stats["due"]:
                logger.info("[reminders] %s", stats)
            await asyncio.sleep(interval)
        except asyncio.CancelledError:
            raise
        except Exception as ex:
            logger.exception("[reminders] error in cycle: %s", ex)
            await asyncio.sleep(interval * 2)
