from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Response
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.ext.asyncio import AsyncSession

from bookwise.cache import Cache
from bookwise.config import settings
from bookwise.deps import get_cache, get_notifier, get_receipt_store, get_session, rate_limit
from bookwise.notifications import Notifier
from bookwise.receipts import InvalidReceiptId, ReceiptStore, build_receipt, issue_receipt, materialize_receipt
from bookwise.schemas import (
    BookIn, BookOut, BookUpdate,
    BorrowIn, BorrowOut, BorrowStatusIn, ReturnOut,
    UserIn, UserOut, RoleIn,
)
from bookwise.actions import (
    borrow_book, return_book, set_borrow_status, get_borrow_record, list_borrow_records,
)
from bookwise.catalog import list_books, get_book, featured_books, new_books, create_book, update_book, delete_book
from bookwise.accounts import (
    register_user, approve_account, reject_account, change_role, delete_user,
    list_account_requests, list_users, get_user, user_borrow_history,
)
from bookwise.analytics import dashboard_stats, trend_data, top_borrowed_books, recent_activity

router = APIRouter()

NOT_FOUND = {"BOOK_NOT_FOUND", "USER_NOT_FOUND", "RECORD_NOT_FOUND"}
FORBIDDEN = {"ACCOUNT_NOT_APPROVED"}

def _fail(r: dict):
    code = r.get("code")
    status = 404 if code in NOT_FOUND else 403 if code in FORBIDDEN else 400
    raise HTTPException(status_code=status, detail=r["message"])

def _after_borrow(background: BackgroundTasks, d: dict, notifier: Notifier, store: ReceiptStore):
    background.add_task(notifier.book_borrowed, d)
    background.add_task(issue_receipt, store, notifier, d)

# Books

@router.get("/books", response_model=list[BookOut], dependencies=[Depends(rate_limit("search"))])
async def http_list_books(search: str | None = None, genre: str | None = None, available: bool = False,
                          session: AsyncSession = Depends(get_session), cache: Cache = Depends(get_cache)):
    r = await list_books(session, search=search, genre=genre, available_only=available, cache=cache)
    return [BookOut(**it) for it in r["data"]["items"]]

@router.get("/books/featured", response_model=list[BookOut], dependencies=[Depends(rate_limit("search"))])
async def http_featured_books(limit: int = Query(default=10, ge=1, le=50), session: AsyncSession = Depends(get_session),
                              cache: Cache = Depends(get_cache)):
    r = await featured_books(session, limit=limit, cache=cache)
    return [BookOut(**it) for it in r["data"]["items"]]

@router.get("/books/new", response_model=list[BookOut], dependencies=[Depends(rate_limit("search"))])
async def http_new_books(limit: int = Query(default=10, ge=1, le=50), session: AsyncSession = Depends(get_session),
                         cache: Cache = Depends(get_cache)):
    r = await new_books(session, limit=limit, cache=cache)
    return [BookOut(**it) for it in r["data"]["items"]]

@router.get("/books/{book_id}", response_model=BookOut, dependencies=[Depends(rate_limit("api"))])
async def http_get_book(book_id: str, session: AsyncSession = Depends(get_session), cache: Cache = Depends(get_cache)):
    r = await get_book(session, book_id=book_id, cache=cache)
    if not r["ok"]:
        _fail(r)
    return BookOut(**r["data"]["book"])

@router.post("/books", response_model=BookOut, status_code=201)
async def http_create_book(payload: BookIn, session: AsyncSession = Depends(get_session), cache: Cache = Depends(get_cache)):
    r = await create_book(session, cache=cache, **payload.model_dump())
    if not r["ok"]:
        _fail(r)
    return BookOut(**r["data"]["book"])

@router.patch("/books/{book_id}", response_model=BookOut)
async def http_update_book(book_id: str, payload: BookUpdate, session: AsyncSession = Depends(get_session),
                           cache: Cache = Depends(get_cache)):
    r = await update_book(session, book_id=book_id, cache=cache, **payload.model_dump(exclude_unset=True))
    if not r["ok"]:
        _fail(r)
    return BookOut(**r["data"]["book"])

@router.delete("/books/{book_id}")
async def http_delete_book(book_id: str, session: AsyncSession = Depends(get_session), cache: Cache = Depends(get_cache)):
    r = await delete_book(session, book_id=book_id, cache=cache)
    if not r["ok"]:
        _fail(r)
    return {"detail": r["message"], **(r.get("data") or {})}

# Borrowing

@router.post("/borrow", response_model=BorrowOut, status_code=201, dependencies=[Depends(rate_limit("borrow"))])
async def http_borrow(payload: BorrowIn, background: BackgroundTasks,
                      session: AsyncSession = Depends(get_session), cache: Cache = Depends(get_cache),
                      notifier: Notifier = Depends(get_notifier), store: ReceiptStore = Depends(get_receipt_store)):
    r = await borrow_book(session, user_id=payload.user_id, book_id=payload.book_id, cache=cache)
    if not r["ok"]:
        _fail(r)
    d = r["data"]
    _after_borrow(background, d, notifier, store)
    return BorrowOut(message=r["message"], **d)

@router.get("/borrow", dependencies=[Depends(rate_limit("api"))])
async def http_list_borrows(user_id: str | None = Query(default=None, alias="userId"), status: str | None = None,
                            search: str | None = None, page: int = Query(default=1, ge=1),
                            limit: int = Query(default=20, ge=1, le=100),
                            session: AsyncSession = Depends(get_session), cache: Cache = Depends(get_cache)):
    r = await list_borrow_records(session, user_id=user_id, status=status, search=search, page=page, limit=limit, cache=cache)
    if not r["ok"]:
        _fail(r)
    return r["data"]

@router.get("/borrow/{record_id}", dependencies=[Depends(rate_limit("api"))])
async def http_get_borrow(record_id: str, session: AsyncSession = Depends(get_session)):
    r = await get_borrow_record(session, record_id=record_id)
    if not r["ok"]:
        _fail(r)
    return r["data"]

@router.patch("/borrow/{record_id}/return", response_model=ReturnOut, dependencies=[Depends(rate_limit("api"))])
async def http_return(record_id: str, background: BackgroundTasks,
                      session: AsyncSession = Depends(get_session), cache: Cache = Depends(get_cache),
                      notifier: Notifier = Depends(get_notifier)):
    r = await return_book(session, record_id=record_id, cache=cache)
    if not r["ok"]:
        _fail(r)
    d = r["data"]
    background.add_task(notifier.book_returned, d)
    return ReturnOut(message=r["message"], **d)

@router.patch("/admin/borrow/{record_id}/status")
async def http_set_borrow_status(record_id: str, payload: BorrowStatusIn, background: BackgroundTasks,
                                 session: AsyncSession = Depends(get_session), cache: Cache = Depends(get_cache),
                                 notifier: Notifier = Depends(get_notifier),
                                 store: ReceiptStore = Depends(get_receipt_store)):
    r = await set_borrow_status(session, record_id=record_id, status=payload.status, cache=cache)
    if not r["ok"]:
        _fail(r)
    d = r["data"]
    if settings.ADMIN_OVERRIDE_NOTIFY:
        if payload.status == "RETURNED":
            background.add_task(notifier.book_returned, d)
        else:
            _after_borrow(background, d, notifier, store)
    return {"detail": r["message"], **d}

# Receipts

def _pdf(content: bytes, receipt_id: str) -> Response:
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="receipt-{receipt_id}.pdf"'},
    )

@router.get("/borrow/{record_id}/receipt", dependencies=[Depends(rate_limit("api"))])
async def http_borrow_receipt(record_id: str, session: AsyncSession = Depends(get_session),
                              store: ReceiptStore = Depends(get_receipt_store)):
    r = await get_borrow_record(session, record_id=record_id)
    if not r["ok"]:
        _fail(r)
    d = r["data"]
    data = build_receipt(d["record"], d["user"], d["book"])
    path = await run_in_threadpool(materialize_receipt, store, data)
    if path is None:
        raise HTTPException(status_code=500, detail="Failed to generate receipt")
    return _pdf(path.read_bytes(), data.receipt_id)

@router.get("/receipts/{receipt_id}")
async def http_get_receipt(receipt_id: str, store: ReceiptStore = Depends(get_receipt_store)):
    try:
        content = await run_in_threadpool(store.read, receipt_id)
    except InvalidReceiptId:
        raise HTTPException(status_code=400, detail="Invalid receipt id")
    if content is None:
        raise HTTPException(status_code=404, detail="Receipt not found")
    return _pdf(content, receipt_id)

# Accounts

@router.post("/users", response_model=UserOut, status_code=201, dependencies=[Depends(rate_limit("auth"))])
async def http_sign_up(payload: UserIn, session: AsyncSession = Depends(get_session), cache: Cache = Depends(get_cache)):
    r = await register_user(session, cache=cache, **payload.model_dump())
    if not r["ok"]:
        _fail(r)
    return UserOut(**r["data"]["user"])

@router.post("/admin/users", response_model=UserOut, status_code=201)
async def http_admin_create_user(payload: UserIn, session: AsyncSession = Depends(get_session),
                                 cache: Cache = Depends(get_cache)):
    r = await register_user(session, cache=cache, admin_created=True, **payload.model_dump())
    if not r["ok"]:
        _fail(r)
    return UserOut(**r["data"]["user"])

@router.get("/users", response_model=list[UserOut])
async def http_list_users(search: str | None = None, session: AsyncSession = Depends(get_session),
                          cache: Cache = Depends(get_cache)):
    r = await list_users(session, search=search, cache=cache)
    return [UserOut(**it) for it in r["data"]["items"]]

@router.get("/users/requests", response_model=list[UserOut])
async def http_account_requests(search: str | None = None, newest_first: bool = False,
                                session: AsyncSession = Depends(get_session), cache: Cache = Depends(get_cache)):
    r = await list_account_requests(session, search=search, newest_first=newest_first, cache=cache)
    return [UserOut(**it) for it in r["data"]["items"]]

@router.get("/users/{user_id}", response_model=UserOut)
async def http_get_user(user_id: str, session: AsyncSession = Depends(get_session), cache: Cache = Depends(get_cache)):
    r = await get_user(session, user_id=user_id, cache=cache)
    if not r["ok"]:
        _fail(r)
    return UserOut(**r["data"]["user"])

@router.get("/users/{user_id}/borrows")
async def http_user_borrows(user_id: str, session: AsyncSession = Depends(get_session), cache: Cache = Depends(get_cache)):
    r = await user_borrow_history(session, user_id=user_id, cache=cache)
    if not r["ok"]:
        _fail(r)
    return r["data"]["items"]

@router.post("/users/{user_id}/approve")
async def http_approve(user_id: str, background: BackgroundTasks, session: AsyncSession = Depends(get_session),
                       cache: Cache = Depends(get_cache), notifier: Notifier = Depends(get_notifier)):
    r = await approve_account(session, user_id=user_id, cache=cache)
    if not r["ok"]:
        _fail(r)
    background.add_task(notifier.account_reviewed, r["data"])
    return {"detail": r["message"], **r["data"]}

@router.post("/users/{user_id}/reject")
async def http_reject(user_id: str, background: BackgroundTasks, session: AsyncSession = Depends(get_session),
                      cache: Cache = Depends(get_cache), notifier: Notifier = Depends(get_notifier)):
    r = await reject_account(session, user_id=user_id, cache=cache)
    if not r["ok"]:
        _fail(r)
    background.add_task(notifier.account_reviewed, r["data"])
    return {"detail": r["message"], **r["data"]}

@router.patch("/users/{user_id}/role")
async def http_change_role(user_id: str, payload: RoleIn, background: BackgroundTasks,
                           session: AsyncSession = Depends(get_session), cache: Cache = Depends(get_cache),
                           notifier: Notifier = Depends(get_notifier)):
    r = await change_role(session, user_id=user_id, role=payload.role, cache=cache)
    if not r["ok"]:
        _fail(r)
    background.add_task(notifier.role_changed, r["data"])
    return {"detail": r["message"], **r["data"]}

@router.delete("/users/{user_id}")
async def http_delete_user(user_id: str, session: AsyncSession = Depends(get_session), cache: Cache = Depends(get_cache)):
    r = await delete_user(session, user_id=user_id, cache=cache)
    if not r["ok"]:
        _fail(r)
    return {"detail": r["message"], **r["data"]}

# Analytics

@router.get("/analytics/dashboard")
async def http_dashboard(session: AsyncSession = Depends(get_session), cache: Cache = Depends(get_cache)):
    r = await dashboard_stats(session, cache=cache)
    return r["data"]

@router.get("/analytics/trends")
async def http_trends(days: int = Query(default=30, ge=1, le=365), session: AsyncSession = Depends(get_session),
                      cache: Cache = Depends(get_cache)):
    r = await trend_data(session, days=days, cache=cache)
    return r["data"]["items"]

@router.get("/analytics/top-books")
async def http_top_books(limit: int = Query(default=5, ge=1, le=50), session: AsyncSession = Depends(get_session),
                         cache: Cache = Depends(get_cache)):
    r = await top_borrowed_books(session, limit=limit, cache=cache)
    return r["data"]["items"]

@router.get("/analytics/recent")
async def http_recent_activity(session: AsyncSession = Depends(get_session), cache: Cache = Depends(get_cache)):
    r = await recent_activity(session, cache=cache)
    return r["data"]

@router.get("/health")
async def http_health():
    return {"status": "ok", "app": settings.APP_NAME}
