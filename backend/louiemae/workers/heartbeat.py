"""Heartbeat rows for the background loops.

Each loop owns one BackgroundWorker row (keyed by worker_name) so the admin
API can show when it last ran, what it did and whether it is failing.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from louiemae.models_sqlalchemy.models import BackgroundWorker
from louiemae.utils.logger import logger


def get_or_create_worker_row(db: Session, worker_name: str, interval_seconds: int) -> Optional[BackgroundWorker]:
    try:
        worker: Optional[BackgroundWorker] = (
            db.query(BackgroundWorker)
            .filter(BackgroundWorker.worker_name == worker_name)
            .one_or_none()
        )
        if worker is None:
            worker = BackgroundWorker(worker_name=worker_name)
            db.add(worker)
        worker.interval_seconds = interval_seconds
        db.commit()
        db.refresh(worker)
        return worker
    except Exception as exc:
        logger.error("Failed to load/create BackgroundWorker row for %s: %s", worker_name, exc)
        db.rollback()
        return None


def mark_started(db: Session, worker: Optional[BackgroundWorker]) -> None:
    if worker is None:
        return
    worker.last_started_at = datetime.now(timezone.utc)
    worker.last_status = "running"
    worker.last_error_message = None
    db.commit()


def mark_finished(
    db: Session,
    worker: Optional[BackgroundWorker],
    summary: Optional[Dict[str, Any]] = None,
    error: Optional[BaseException] = None,
) -> None:
    if worker is None:
        return
    worker.last_finished_at = datetime.now(timezone.utc)
    if error is None:
        worker.last_status = "ok"
        worker.last_summary = summary
        worker.runs_ok_in_row = (worker.runs_ok_in_row or 0) + 1
        worker.runs_error_in_row = 0
    else:
        worker.last_status = "error"
        worker.last_error_message = str(error)[:2000]
        worker.runs_error_in_row = (worker.runs_error_in_row or 0) + 1
        worker.runs_ok_in_row = 0
    db.commit()
