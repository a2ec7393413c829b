import pytest
from datetime import datetime
from bookwise import models

pytestmark = pytest.mark.asyncio

async def _borrow(client, user_id, book_id, ip="10.0.0.1"):
    return await client.post("/borrow", json={"userId": user_id, "bookId": book_id},
                             headers={"X-Forwarded-For": ip})

async def test_health(client):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"

async def test_create_and_get_book(client):
    r = await client.post("/books", json={"title": "Dune", "author": "Frank Herbert", "genre": "Sci-Fi",
                                          "total_copies": 2, "cover_color": "#112233"})
    assert r.status_code == 201
    book = r.json()
    assert book["available_copies"] == 2
    r2 = await client.get(f"/books/{book['id']}")
    assert r2.status_code == 200
    assert r2.json()["title"] == "Dune"
    r3 = await client.get("/books", params={"search": "dune"})
    assert [b["id"] for b in r3.json()] == [book["id"]]
    assert (await client.get("/books/nope")).status_code == 404

async def test_create_book_validation(client):
    r = await client.post("/books", json={"title": "Dune", "author": "Frank Herbert", "genre": "Sci-Fi",
                                          "total_copies": -1})
    assert r.status_code == 422

async def test_borrow_flow_sends_mail_and_receipt(client, make_book, make_user, outbox, receipt_store):
    b = await make_book(title="Dune", author="Frank Herbert", total_copies=2)
    u = await make_user()
    r = await _borrow(client, u.id, b.id)
    assert r.status_code == 201
    body = r.json()
    assert body["record"]["status"] == "BORROWED"
    assert body["book"]["available_copies"] == 1
    assert body["user"]["id"] == u.id
    code = body["record"]["receipt_code"]
    assert set(outbox.subjects()) == {"You've Borrowed Dune!", "Your Receipt for Dune is Ready!"}
    assert receipt_store.exists(code)

    rr = await client.get(f"/receipts/{code}")
    assert rr.status_code == 200
    assert rr.headers["content-type"] == "application/pdf"
    assert f"receipt-{code}.pdf" in rr.headers["content-disposition"]
    assert rr.content.startswith(b"%PDF")

async def test_borrow_errors(client, make_book, make_user):
    b = await make_book(total_copies=2)
    u = await make_user()
    pending = await make_user(status=models.UserStatus.PENDING)
    assert (await _borrow(client, u.id, "nope", ip="10.0.0.2")).status_code == 404
    assert (await _borrow(client, pending.id, b.id, ip="10.0.0.3")).status_code == 403
    assert (await _borrow(client, u.id, b.id, ip="10.0.0.4")).status_code == 201
    dup = await _borrow(client, u.id, b.id, ip="10.0.0.5")
    assert dup.status_code == 400
    assert dup.json()["detail"] == "You have already borrowed this book."
    last = await make_book(title="Emma", author="Jane Austen", total_copies=1)
    assert (await _borrow(client, u.id, last.id, ip="10.0.0.6")).status_code == 201
    other = await make_user(full_name="Bob Reader")
    out = await _borrow(client, other.id, last.id, ip="10.0.0.7")
    assert out.status_code == 400
    assert out.json()["detail"] == "No copies available for this book."

async def test_borrow_missing_fields_is_bad_request(client, make_book, make_user):
    b = await make_book()
    u = await make_user()
    r = await client.post("/borrow", json={"bookId": b.id}, headers={"X-Forwarded-For": "10.0.1.1"})
    assert r.status_code == 400
    assert r.json()["detail"] == "Missing userId or bookId."
    r2 = await client.post("/borrow", json={"userId": u.id, "bookId": ""}, headers={"X-Forwarded-For": "10.0.1.2"})
    assert r2.status_code == 400

async def test_borrow_is_rate_limited(client, make_book, make_user):
    b = await make_book(total_copies=1)
    u = await make_user(status=models.UserStatus.PENDING)
    codes = [(await _borrow(client, u.id, b.id, ip="10.9.9.9")).status_code for _ in range(4)]
    assert codes == [403, 403, 403, 429]
    limited = await _borrow(client, u.id, b.id, ip="10.9.9.9")
    assert limited.headers["X-RateLimit-Remaining"] == "0"

async def test_return_flow(client, make_book, make_user, outbox):
    b = await make_book(title="Dune", author="Frank Herbert", total_copies=1)
    u = await make_user()
    record_id = (await _borrow(client, u.id, b.id)).json()["record"]["id"]
    r = await client.patch(f"/borrow/{record_id}/return")
    assert r.status_code == 200
    body = r.json()
    assert body["record"]["status"] == "RETURNED"
    assert body["book"]["available_copies"] == 1
    assert body["is_late"] is False
    assert "Thank You for Returning Dune!" in outbox.subjects()
    again = await client.patch(f"/borrow/{record_id}/return")
    assert again.status_code == 400
    assert (await client.patch("/borrow/missing/return")).status_code == 404

async def test_list_and_get_borrow_records(client, make_book, make_user):
    b = await make_book()
    u = await make_user()
    record_id = (await _borrow(client, u.id, b.id)).json()["record"]["id"]
    r = await client.get("/borrow", params={"userId": u.id})
    assert r.status_code == 200
    assert r.json()["pagination"]["total"] == 1
    assert r.json()["items"][0]["id"] == record_id
    g = await client.get(f"/borrow/{record_id}")
    assert g.json()["record"]["display_status"] == "BORROWED"
    assert (await client.get("/borrow", params={"status": "LOST"})).status_code == 400

async def test_receipt_endpoints(client, make_book, make_user, receipt_store):
    b = await make_book()
    u = await make_user()
    body = (await _borrow(client, u.id, b.id)).json()
    r = await client.get(f"/borrow/{body['record']['id']}/receipt")
    assert r.status_code == 200
    assert r.content == receipt_store.read(body["record"]["receipt_code"])
    assert (await client.get("/receipts/abc_def")).status_code == 400
    assert (await client.get("/receipts/ABCDEF123456")).status_code == 404

async def test_admin_override(client, make_book, make_user, outbox):
    b = await make_book(total_copies=1)
    u = await make_user()
    record_id = (await _borrow(client, u.id, b.id)).json()["record"]["id"]
    sent_before = len(outbox.sent)
    r = await client.patch(f"/admin/borrow/{record_id}/status", json={"status": "RETURNED"})
    assert r.status_code == 200
    assert r.json()["book"]["available_copies"] == 1
    # no mail unless ADMIN_OVERRIDE_NOTIFY is set
    assert len(outbox.sent) == sent_before
    r2 = await client.patch(f"/admin/borrow/{record_id}/status", json={"status": "BORROWED"})
    assert r2.status_code == 200
    assert r2.json()["record"]["id"] != record_id
    bad = await client.patch(f"/admin/borrow/{record_id}/status", json={"status": "LOST"})
    assert bad.status_code == 422

async def test_account_endpoints(client, outbox):
    r = await client.post("/users", json={"full_name": "Carol Reader", "email": "carol@uni.edu",
                                          "university_id": 4242, "password": "long-enough"})
    assert r.status_code == 201
    user = r.json()
    assert user["status"] == "PENDING"
    assert "password" not in user
    dup = await client.post("/users", json={"full_name": "Carol", "email": "carol@uni.edu",
                                            "university_id": 4343, "password": "long-enough"})
    assert dup.status_code == 400
    reqs = await client.get("/users/requests")
    assert [u["id"] for u in reqs.json()] == [user["id"]]
    a = await client.post(f"/users/{user['id']}/approve")
    assert a.status_code == 200
    assert outbox.subjects() == ["Your Library Account Has Been Approved!"]
    assert (await client.post(f"/users/{user['id']}/reject")).status_code == 400
    role = await client.patch(f"/users/{user['id']}/role", json={"role": "ADMIN"})
    assert role.json()["role"] == "ADMIN"
    users = await client.get("/users")
    assert users.json()[0]["books_borrowed"] == 0
    d = await client.delete(f"/users/{user['id']}")
    assert d.status_code == 200
    assert (await client.delete(f"/users/{user['id']}")).status_code == 404

async def test_delete_book_with_open_loan(client, make_book, make_user):
    b = await make_book()
    u = await make_user()
    record_id = (await _borrow(client, u.id, b.id)).json()["record"]["id"]
    assert (await client.delete(f"/books/{b.id}")).status_code == 400
    await client.patch(f"/borrow/{record_id}/return")
    d = await client.delete(f"/books/{b.id}")
    assert d.status_code == 200
    assert d.json()["removed_records"] == 1

async def test_analytics(client, make_book, make_user):
    b = await make_book(title="Dune", author="Frank Herbert")
    u = await make_user()
    await _borrow(client, u.id, b.id)
    dash = (await client.get("/analytics/dashboard")).json()
    assert dash["total_books"] == 1
    assert dash["total_users"] == 1
    assert dash["total_borrowed_books"] == 1
    assert dash["borrows_this_month"] == 1
    assert dash["available_books"] == 2
    trends = (await client.get("/analytics/trends", params={"days": 7})).json()
    assert len(trends) == 7
    assert trends[-1]["borrowed"] == 1
    top = (await client.get("/analytics/top-books")).json()
    assert top[0]["title"] == "Dune"
    assert top[0]["borrow_count"] == 1

async def test_patch_book_clears_cover(client):
    r = await client.post("/books", json={"title": "Dune", "author": "Frank Herbert", "genre": "Sci-Fi",
                                          "cover_url": "https://img/dune.png", "cover_color": "#112233"})
    book_id = r.json()["id"]
    p = await client.patch(f"/books/{book_id}", json={"cover_url": None})
    assert p.status_code == 200
    assert p.json()["cover_url"] is None
    assert p.json()["cover_color"] == "#112233"

async def test_featured_and_new_books(client, make_book):
    await make_book(title="Dune", author="Frank Herbert", rating=5, created_at=datetime(2024, 1, 1))
    await make_book(title="Twilight", author="Stephenie Meyer", rating=2, created_at=datetime(2024, 3, 1))
    featured = await client.get("/books/featured")
    assert featured.status_code == 200
    assert [b["title"] for b in featured.json()] == ["Dune"]
    new = await client.get("/books/new", params={"limit": 1})
    assert [b["title"] for b in new.json()] == ["Twilight"]

async def test_user_detail_and_history(client, make_book, make_user):
    b = await make_book(title="Dune", author="Frank Herbert")
    u = await make_user()
    await _borrow(client, u.id, b.id)
    r = await client.get(f"/users/{u.id}")
    assert r.status_code == 200
    assert r.json()["email"] == u.email
    assert "password" not in r.json()
    h = await client.get(f"/users/{u.id}/borrows")
    assert [(it["book"]["title"], it["status"]) for it in h.json()] == [("Dune", "BORROWED")]
    assert (await client.get("/users/nope")).status_code == 404
    assert (await client.get("/users/nope/borrows")).status_code == 404

async def test_recent_activity(client, make_book, make_user):
    b = await make_book(title="Dune", author="Frank Herbert")
    u = await make_user(full_name="Alice Reader")
    await make_user(full_name="Pat Pending", status=models.UserStatus.PENDING)
    await _borrow(client, u.id, b.id)
    r = await client.get("/analytics/recent")
    assert r.status_code == 200
    body = r.json()
    assert [(it["book"]["title"], it["user"]["full_name"]) for it in body["borrow_requests"]] == [("Dune", "Alice Reader")]
    assert [it["title"] for it in body["recent_books"]] == ["Dune"]
    assert [it["full_name"] for it in body["account_requests"]] == ["Pat Pending"]
