from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from talkbot.logging_config import get_logger
from talkbot.models import ApiUsage

logger = get_logger("usage")


class UsageRecorder:
    """Writes ApiUsage rows through a private session so telemetry never touches the request transaction."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def record(
        self,
        endpoint: str,
        model: Optional[str],
        tokens_used: Optional[int],
        latency_ms: int,
        success: bool,
        error_message: Optional[str] = None,
    ) -> None:
        db = None
        try:
            db = self.session_factory()
            db.add(
                ApiUsage(
                    endpoint=endpoint,
                    model=model,
                    tokens_used=tokens_used,
                    latency_ms=latency_ms,
                    success=success,
                    error_message=error_message[:1000] if error_message else None,
                    created_at=datetime.now(timezone.utc),
                )
            )
            db.commit()
        except Exception as exc:
            logger.warning(
                "Failed to record API usage",
                extra={"context": {"endpoint": endpoint, "error": str(exc)}},
            )
            if db is not None:
                db.rollback()
        finally:
            if db is not None:
                db.close()


def usage_summary(db: Session, days: int = 7) -> List[dict]:
    """Per endpoint and model: requests, tokens, average latency and failures."""
    since = datetime.now(timezone.utc) - timedelta(days=days)
    rows = (
        db.query(
            ApiUsage.endpoint,
            ApiUsage.model,
            func.count(ApiUsage.id),
            func.coalesce(func.sum(ApiUsage.tokens_used), 0),
            func.avg(ApiUsage.latency_ms),
            func.sum(case((ApiUsage.success.is_(False), 1), else_=0)),
        )
        .filter(ApiUsage.created_at >= since)
        .group_by(ApiUsage.endpoint, ApiUsage.model)
        .order_by(ApiUsage.endpoint, ApiUsage.model)
        .all()
    )
    return [
        {
            "endpoint": endpoint,
            "model": model,
            "requests": int(requests),
            "tokens": int(tokens or 0),
            "avg_latency_ms": round(float(avg_latency or 0), 1),
            "failures": int(failures or 0),
        }
        for endpoint, model, requests, tokens, avg_latency, failures in rows
    ]
