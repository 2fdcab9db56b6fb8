"""CJ sourcing worker.

Every 2 hours: submit imported products that are still waiting for a CJ
sourcing request, then reconcile every pending request with CJ.

Started from the FastAPI startup hook (see louiemae.main), or standalone via
``python -m louiemae.workers.cj_sourcing_worker``.
"""
import asyncio
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from louiemae.config import settings
from louiemae.models_sqlalchemy import SessionLocal
from louiemae.services.cj_sourcing import auto_submit_pending, check_sourcing_status
from louiemae.utils.logger import logger
from louiemae.workers.heartbeat import get_or_create_worker_row, mark_finished, mark_started


WORKER_NAME = "cj_sourcing_loop"


async def run_sourcing_cycle(db: Session, *, delay_seconds: Optional[float] = None) -> Dict[str, Any]:
    """Auto-submit, then status check. Shared by the loop and the admin button."""

    submitted = await auto_submit_pending(db, delay_seconds=delay_seconds)
    checked = await check_sourcing_status(db, delay_seconds=delay_seconds)
    return {"auto_submit": submitted, "status_check": checked}


async def run_cj_sourcing_once() -> Dict[str, Any]:
    db = SessionLocal()
    try:
        return await run_sourcing_cycle(db)
    finally:
        db.close()


async def run_cj_sourcing_loop(interval_seconds: Optional[int] = None) -> None:
    interval_seconds = interval_seconds or settings.CJ_SOURCING_CHECK_INTERVAL_SECONDS
    logger.info("CJ sourcing loop started (interval=%s seconds)", interval_seconds)

    while True:
        db = SessionLocal()
        try:
            worker_row = get_or_create_worker_row(db, WORKER_NAME, interval_seconds)
            mark_started(db, worker_row)
            try:
                summary = await run_sourcing_cycle(db)
            except Exception as exc:
                db.rollback()
                logger.error("[cj_sourcing] Sourcing cycle failed: %s", exc, exc_info=True)
                mark_finished(db, worker_row, error=exc)
            else:
                logger.info("[cj_sourcing] Sourcing cycle completed: %s", summary)
                mark_finished(db, worker_row, summary=summary)
        except Exception as exc:
            logger.error("CJ sourcing loop error: %s", exc, exc_info=True)
        finally:
            db.close()

        await asyncio.sleep(interval_seconds)


if __name__ == "__main__":
    asyncio.run(run_cj_sourcing_loop())
