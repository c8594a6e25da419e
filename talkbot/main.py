import asyncio
import os

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from talkbot.config import get_settings
from talkbot.database import SessionLocal, get_db, init_db
from talkbot.dependencies import build_pipeline
from talkbot.logging_config import get_logger, setup_logging
from talkbot.models import BotPersona, CompletionJob, ConversationTurn, RoomSession
from talkbot.routers import admin, webhook
from talkbot.services.job_queue_service import STATUS_PENDING, claim_pending_jobs

settings = get_settings()
setup_logging(settings.log_level)

app = FastAPI(
    title="Talkbot API",
    description="Multi-persona RAG bot for Nextcloud Talk webhooks",
    version="0.1.0",
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook.router)
app.include_router(admin.router)

worker_logger = get_logger("job_worker")
_job_worker_task: asyncio.Task | None = None


def _is_job_worker_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return get_settings().completion_mode == "queue"


def _process_job_batch() -> int:
    db = SessionLocal()
    try:
        rows = claim_pending_jobs(db, limit=get_settings().job_batch_size)
        if not rows:
            return 0
        pipeline = build_pipeline(db)
        delivered = sum(1 for row in rows if pipeline.run_completion_job(row))
        worker_logger.info(
            "Job worker processed",
            extra={"context": {"claimed": len(rows), "delivered": delivered}},
        )
        return len(rows)
    finally:
        db.close()


async def _job_worker_loop() -> None:
    while True:
        try:
            await asyncio.sleep(max(get_settings().job_worker_interval_seconds, 0.1))
            await run_in_threadpool(_process_job_batch)
        except asyncio.CancelledError:
            break
        except Exception as exc:
            worker_logger.error(
                "Job worker loop failed",
                extra={"context": {"error": str(exc)}},
            )


@app.on_event("startup")
async def startup() -> None:
    global _job_worker_task
    if settings.auto_create_tables:
        init_db()
    if not _is_job_worker_enabled():
        return
    if _job_worker_task is None or _job_worker_task.done():
        _job_worker_task = asyncio.create_task(_job_worker_loop())
        worker_logger.info("Job worker started")


@app.on_event("shutdown")
async def stop_job_worker() -> None:
    global _job_worker_task
    if _job_worker_task is None:
        return
    _job_worker_task.cancel()
    try:
        await _job_worker_task
    except asyncio.CancelledError:
        pass
    _job_worker_task = None


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    return {
        "status": "ok",
        "personas": db.query(BotPersona).count(),
        "rooms": db.query(RoomSession).count(),
        "turns": db.query(ConversationTurn).count(),
        "pending_jobs": db.query(CompletionJob).filter(CompletionJob.status == STATUS_PENDING).count(),
    }
