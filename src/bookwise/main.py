import asyncio
import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from bookwise.config import settings
from bookwise.db import init_db
from bookwise.deps import get_notifier
from bookwise.api.router import router
from bookwise.worker.reminders import run_reminder_worker

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("bookwise")

app = FastAPI(title=settings.APP_NAME)
app.include_router(router)

@app.exception_handler(SQLAlchemyError)
async def on_db_error(request: Request, exc: SQLAlchemyError):
    logger.exception("database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})

@app.on_event("startup")
async def on_startup():
    await init_db()
    if settings.ENABLE_REMINDER_WORKER:
        app.state.reminder_task = asyncio.create_task(run_reminder_worker(get_notifier()))
