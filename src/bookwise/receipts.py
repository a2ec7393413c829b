"""Borrow receipts.

A receipt is rendered from the borrow record, the borrower and the book only.
The issue date is the borrow date and the PDF creation date is pinned to it,
so rendering the same loan twice yields the same document.
"""
from __future__ import annotations
import logging
import os
import re
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict

from fastapi.concurrency import run_in_threadpool
from fpdf import FPDF
from pydantic import BaseModel

from bookwise.config import settings
from bookwise.email.templates import Event, fmt_date

logger = logging.getLogger(__name__)

RECEIPT_ID_RE = re.compile(r"^[A-Za-z0-9-]+$")

class InvalidReceiptId(ValueError):
    pass

class ReceiptData(BaseModel):
    receipt_id: str
    issued_on: date
    borrower_name: str
    borrower_email: str
    university_id: int
    book_title: str
    book_author: str
    book_genre: str
    borrow_date: date
    due_date: date
    loan_days: int

def build_receipt(record: Dict[str, Any], user: Dict[str, Any], book: Dict[str, Any]) -> ReceiptData:
    borrow_date = date.fromisoformat(str(record["borrow_date"]))
    due_date = date.fromisoformat(str(record["due_date"]))
    return ReceiptData(
        receipt_id=record["receipt_code"],
        issued_on=borrow_date,
        borrower_name=user["full_name"],
        borrower_email=user["email"],
        university_id=user["university_id"],
        book_title=book["title"],
        book_author=book["author"],
        book_genre=book["genre"],
        borrow_date=borrow_date,
        due_date=due_date,
        loan_days=(due_date - borrow_date).days,
    )

def _latin1(s: Any) -> str:
    # core PDF fonts only cover latin-1
    return str(s).encode("latin-1", "replace").decode("latin-1")

def _section(pdf: FPDF, title: str):
    pdf.ln(4)
    pdf.set_font("helvetica", "B", 13)
    pdf.cell(0, 8, _latin1(title), new_x="LMARGIN", new_y="NEXT")
    y = pdf.get_y()
    pdf.set_line_width(0.3)
    pdf.line(20, y, 190, y)
    pdf.ln(3)

def _field(pdf: FPDF, label: str, value: Any, color: tuple[int, int, int] | None = None):
    pdf.set_font("helvetica", "B", 11)
    pdf.cell(50, 8, _latin1(label))
    pdf.set_font("helvetica", "", 11)
    if color:
        pdf.set_text_color(*color)
    pdf.multi_cell(120, 8, _latin1(value), new_x="LMARGIN", new_y="NEXT")
    pdf.set_text_color(0, 0, 0)

def render_receipt_pdf(data: ReceiptData) -> bytes:
    pdf = FPDF(orientation="portrait", unit="mm", format="A4")
    issued = datetime(data.issued_on.year, data.issued_on.month, data.issued_on.day, tzinfo=timezone.utc)
    pdf.set_creation_date(issued)
    pdf.set_title(f"Borrow receipt {data.receipt_id}")
    pdf.set_author(_latin1(settings.LIBRARY_NAME))
    pdf.set_margins(20, 20, 20)
    pdf.set_auto_page_break(auto=True, margin=25)
    pdf.add_page()

    pdf.set_font("helvetica", "B", 20)
    pdf.cell(0, 10, _latin1(settings.LIBRARY_NAME.upper()), align="C", new_x="LMARGIN", new_y="NEXT")
    pdf.set_font("helvetica", "B", 16)
    pdf.cell(0, 10, "Book Borrow Receipt", align="C", new_x="LMARGIN", new_y="NEXT")
    pdf.set_line_width(0.5)
    pdf.line(20, pdf.get_y() + 2, 190, pdf.get_y() + 2)
    pdf.ln(8)

    _field(pdf, "Receipt ID:", f"#{data.receipt_id}")
    _field(pdf, "Date Issued:", fmt_date(data.issued_on))

    _section(pdf, "Student Information")
    _field(pdf, "Name:", data.borrower_name)
    _field(pdf, "Email:", data.borrower_email)
    _field(pdf, "University ID:", data.university_id)

    _section(pdf, "Book Information")
    _field(pdf, "Title:", data.book_title)
    _field(pdf, "Author:", data.book_author)
    _field(pdf, "Genre:", data.book_genre)

    _section(pdf, "Borrow Details")
    _field(pdf, "Borrow Date:", fmt_date(data.borrow_date))
    _field(pdf, "Due Date:", fmt_date(data.due_date), color=(220, 38, 38))
    _field(pdf, "Duration:", f"{data.loan_days} days")

    pdf.ln(8)
    pdf.set_font("helvetica", "B", 10)
    pdf.cell(0, 6, "Important Notes:", new_x="LMARGIN", new_y="NEXT")
    pdf.set_font("helvetica", "", 9)
    for note in (
        "- Please return the book on or before the due date to avoid late fees.",
        "- Keep this receipt for your records.",
        "- Contact the library if you need to extend your borrowing period.",
        "- Lost or damaged books must be reported immediately.",
    ):
        pdf.cell(0, 5, note, new_x="LMARGIN", new_y="NEXT")

    pdf.ln(10)
    pdf.set_font("helvetica", "", 8)
    pdf.set_text_color(100, 100, 100)
    pdf.cell(0, 5, "This is a computer-generated receipt and does not require a signature.",
             align="C", new_x="LMARGIN", new_y="NEXT")
    return bytes(pdf.output())

class ReceiptStore:
    """Write-once PDF storage keyed by receipt id."""

    def __init__(self, directory: str | os.PathLike):
        self.directory = Path(directory)

    def path_for(self, receipt_id: str) -> Path:
        if not receipt_id or not RECEIPT_ID_RE.fullmatch(receipt_id):
            raise InvalidReceiptId(receipt_id)
        return self.directory / f"{receipt_id}.pdf"

    def exists(self, receipt_id: str) -> bool:
        return self.path_for(receipt_id).is_file()

    def read(self, receipt_id: str) -> bytes | None:
        path = self.path_for(receipt_id)
        if not path.is_file():
            return None
        return path.read_bytes()

    def write_once(self, receipt_id: str, content: bytes) -> Path:
        path = self.path_for(receipt_id)
        if path.is_file():
            return path
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        tmp.write_bytes(content)
        os.replace(tmp, path)
        return path

def materialize_receipt(store: ReceiptStore, data: ReceiptData) -> Path | None:
    try:
        if store.exists(data.receipt_id):
            return store.path_for(data.receipt_id)
        path = store.write_once(data.receipt_id, render_receipt_pdf(data))
    except Exception as e:
        logger.error("failed to generate receipt %s: %s", data.receipt_id, e)
        return None
    logger.info("receipt %s stored at %s", data.receipt_id, path)
    return path

def receipt_url(receipt_id: str) -> str:
    return f"{settings.PUBLIC_BASE_URL.rstrip('/')}/receipts/{receipt_id}"

async def issue_receipt(store: ReceiptStore, notifier, d: Dict[str, Any]) -> Path | None:
    """Background step after a borrow: store the receipt, then mail its link."""
    try:
        data = build_receipt(d["record"], d["user"], d["book"])
    except Exception as e:
        logger.error("cannot build receipt for record %s: %s", d.get("record", {}).get("id"), e)
        return None
    path = await run_in_threadpool(materialize_receipt, store, data)
    if path is None:
        return None
    await notifier.dispatch(
        Event.RECEIPT_READY, data.borrower_email,
        full_name=data.borrower_name,
        book_title=data.book_title,
        receipt_id=data.receipt_id,
        receipt_url=receipt_url(data.receipt_id),
    )
    return path
