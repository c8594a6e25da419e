from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from talkbot.models import CompletionJob

STATUS_PENDING = "PENDING"
STATUS_PROCESSING = "PROCESSING"
STATUS_DONE = "DONE"
STATUS_FAILED = "FAILED"


def enqueue_completion_job(db: Session, *, room_token: str, payload_json: dict[str, Any]) -> int:
    """Add a job to the caller's transaction; the caller commits."""
    now = datetime.now(timezone.utc)
    job = CompletionJob(
        room_token=room_token,
        payload=payload_json,
        status=STATUS_PENDING,
        attempts=0,
        created_at=now,
        updated_at=now,
    )
    db.add(job)
    db.flush()
    return job.id


def claim_pending_jobs(db: Session, *, limit: int = 10) -> list[dict[str, Any]]:
    """Move up to `limit` oldest PENDING jobs to PROCESSING and return them.

    FOR UPDATE SKIP LOCKED on PostgreSQL keeps concurrent workers apart; other
    backends ignore the clause.
    """
    jobs = (
        db.query(CompletionJob)
        .filter(CompletionJob.status == STATUS_PENDING)
        .order_by(CompletionJob.created_at, CompletionJob.id)
        .limit(limit)
        .with_for_update(skip_locked=True)
        .all()
    )
    now = datetime.now(timezone.utc)
    rows = []
    for job in jobs:
        job.status = STATUS_PROCESSING
        job.attempts = (job.attempts or 0) + 1
        job.updated_at = now
        rows.append(
            {
                "id": job.id,
                "room_token": job.room_token,
                "payload_json": job.payload,
                "attempts": job.attempts,
            }
        )
    db.commit()
    return rows


def mark_job_status(
    db: Session,
    *,
    job_id: int,
    status: str,
    last_error: str | None = None,
) -> None:
    db.query(CompletionJob).filter(CompletionJob.id == job_id).update(
        {
            CompletionJob.status: status,
            CompletionJob.last_error: last_error,
            CompletionJob.updated_at: datetime.now(timezone.utc),
        },
        synchronize_session=False,
    )
    db.commit()
