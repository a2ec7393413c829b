from pydantic import BaseModel, Field, constr
from datetime import date
from typing import Literal

class BookIn(BaseModel):
    title: constr(min_length=1)
    author: constr(min_length=1)
    genre: constr(min_length=1)
    rating: int = Field(default=0, ge=0, le=5)
    total_copies: int = Field(default=1, ge=0)
    description: str = ""
    cover_url: str | None = None
    cover_color: constr(pattern=r'^#[0-9A-Fa-f]{6}$') | None = None
    video_url: str | None = None
    summary: str = ""

class BookUpdate(BaseModel):
    title: constr(min_length=1) | None = None
    author: constr(min_length=1) | None = None
    genre: constr(min_length=1) | None = None
    rating: int | None = Field(default=None, ge=0, le=5)
    total_copies: int | None = Field(default=None, ge=0)
    description: str | None = None
    cover_url: str | None = None
    cover_color: constr(pattern=r'^#[0-9A-Fa-f]{6}$') | None = None
    video_url: str | None = None
    summary: str | None = None

class BookOut(BaseModel):
    id: str
    title: str
    author: str
    genre: str
    rating: int
    total_copies: int
    available_copies: int
    description: str
    cover_url: str | None
    cover_color: str | None
    video_url: str | None
    summary: str
    created_at: str | None

class BorrowIn(BaseModel):
    user_id: str | None = Field(default=None, alias="userId")
    book_id: str | None = Field(default=None, alias="bookId")

    model_config = {"populate_by_name": True}

class BorrowStatusIn(BaseModel):
    status: Literal["BORROWED", "RETURNED"]

class BorrowUser(BaseModel):
    id: str
    full_name: str
    email: str
    university_id: int

class BorrowBook(BaseModel):
    id: str
    title: str
    author: str
    genre: str
    available_copies: int
    total_copies: int

class BorrowRecordOut(BaseModel):
    id: str
    user_id: str
    book_id: str
    receipt_code: str
    borrow_date: date
    due_date: date
    return_date: date | None
    status: str
    display_status: str

class BorrowOut(BaseModel):
    record: BorrowRecordOut
    user: BorrowUser
    book: BorrowBook
    message: str

class ReturnOut(BorrowOut):
    is_late: bool
    days_late: int

class UserIn(BaseModel):
    full_name: constr(min_length=1)
    email: constr(pattern=r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
    university_id: int = Field(gt=0)
    password: constr(min_length=8, max_length=72)
    university_card: str | None = None

class UserOut(BaseModel):
    id: str
    full_name: str
    email: str
    university_id: int
    university_card: str | None
    role: str
    status: str
    created_at: str | None
    books_borrowed: int | None = None

class RoleIn(BaseModel):
    role: Literal["USER", "ADMIN"]
