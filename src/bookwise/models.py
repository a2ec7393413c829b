import enum, uuid
from datetime import date, datetime
from sqlalchemy import (
    String, Integer, Enum, ForeignKey, Text, Date, DateTime, func, text,
    CheckConstraint, Index, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from bookwise.db import Base

def _uuid() -> str:
    return str(uuid.uuid4())

def new_receipt_code() -> str:
    return uuid.uuid4().hex[:12].upper()

class UserRole(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"

class UserStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

class BorrowStatus(str, enum.Enum):
    BORROWED = "BORROWED"
    RETURNED = "RETURNED"

class DisplayStatus(str, enum.Enum):
    # computed at read time, never stored
    BORROWED = "BORROWED"
    RETURNED = "RETURNED"
    LATE_RETURN = "LATE_RETURN"

class ReminderStage(str, enum.Enum):
    BEFORE_DUE = "BEFORE_DUE"
    ON_DUE = "ON_DUE"
    AFTER_DUE = "AFTER_DUE"

class ReminderStatus(str, enum.Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    SKIPPED = "SKIPPED"

class Book(Base):
    __tablename__ = "books"
    __table_args__ = (
        CheckConstraint("total_copies >= 0", name="ck_books_total_copies"),
        CheckConstraint("available_copies >= 0 AND available_copies <= total_copies", name="ck_books_available_copies"),
        CheckConstraint("rating >= 0 AND rating <= 5", name="ck_books_rating"),
    )
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String, nullable=False, index=True)
    author: Mapped[str] = mapped_column(String, nullable=False)
    genre: Mapped[str] = mapped_column(String, nullable=False, index=True)
    rating: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_copies: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    available_copies: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    cover_url: Mapped[str | None] = mapped_column(String)
    cover_color: Mapped[str | None] = mapped_column(String(7))
    video_url: Mapped[str | None] = mapped_column(String)
    summary: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    borrow_records = relationship("BorrowRecord", back_populates="book")

class User(Base):
    __tablename__ = "users"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    full_name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    university_id: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    password: Mapped[str] = mapped_column(String, nullable=False)
    university_card: Mapped[str | None] = mapped_column(String)
    role: Mapped[UserRole] = mapped_column(Enum(UserRole, native_enum=False), default=UserRole.USER, nullable=False)
    status: Mapped[UserStatus] = mapped_column(Enum(UserStatus, native_enum=False), default=UserStatus.PENDING, nullable=False)
    last_activity_date: Mapped[date | None] = mapped_column(Date, default=date.today)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    borrow_records = relationship("BorrowRecord", back_populates="user")

class BorrowRecord(Base):
    __tablename__ = "borrow_records"
    __table_args__ = (
        # at most one open loan per (user, book)
        Index(
            "uq_borrow_records_open_loan", "user_id", "book_id", unique=True,
            sqlite_where=text("status = 'BORROWED'"),
            postgresql_where=text("status = 'BORROWED'"),
        ),
    )
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    book_id: Mapped[str] = mapped_column(String, ForeignKey("books.id", ondelete="RESTRICT"), nullable=False, index=True)
    receipt_code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, default=new_receipt_code)
    borrow_date: Mapped[date] = mapped_column(Date, nullable=False, default=date.today)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    return_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[BorrowStatus] = mapped_column(Enum(BorrowStatus, native_enum=False), default=BorrowStatus.BORROWED, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    user = relationship("User", back_populates="borrow_records")
    book = relationship("Book", back_populates="borrow_records")

class ScheduledReminder(Base):
    __tablename__ = "scheduled_reminders"
    __table_args__ = (UniqueConstraint("borrow_record_id", "stage", name="uq_scheduled_reminders_stage"),)
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    borrow_record_id: Mapped[str] = mapped_column(String, ForeignKey("borrow_records.id", ondelete="CASCADE"), nullable=False, index=True)
    stage: Mapped[ReminderStage] = mapped_column(Enum(ReminderStage, native_enum=False), nullable=False)
    send_on: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    status: Mapped[ReminderStatus] = mapped_column(Enum(ReminderStatus, native_enum=False), default=ReminderStatus.PENDING, nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
