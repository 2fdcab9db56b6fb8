"""CJ tracking worker.

Every 4 hours: poll CJ for tracking numbers of confirmed/processing orders
(each order at most once an hour) and mark shipped orders.

Started from the FastAPI startup hook (see louiemae.main), or standalone via
``python -m louiemae.workers.cj_tracking_worker``.
"""
import asyncio
from typing import Dict, Optional

from louiemae.config import settings
from louiemae.models_sqlalchemy import SessionLocal
from louiemae.services.cj_tracking import sync_all_tracking
from louiemae.utils.logger import logger
from louiemae.workers.heartbeat import get_or_create_worker_row, mark_finished, mark_started


WORKER_NAME = "cj_tracking_loop"


async def run_cj_tracking_once() -> Dict[str, int]:
    db = SessionLocal()
    try:
        return await sync_all_tracking(db)
    finally:
        db.close()


async def run_cj_tracking_loop(interval_seconds: Optional[int] = None) -> None:
    interval_seconds = interval_seconds or settings.CJ_TRACKING_SYNC_INTERVAL_SECONDS
    logger.info("CJ tracking loop started (interval=%s seconds)", interval_seconds)

    while True:
        db = SessionLocal()
        try:
            worker_row = get_or_create_worker_row(db, WORKER_NAME, interval_seconds)
            mark_started(db, worker_row)
            try:
                summary = await sync_all_tracking(db)
            except Exception as exc:
                db.rollback()
                logger.error("[cj_tracking] Tracking cycle failed: %s", exc, exc_info=True)
                mark_finished(db, worker_row, error=exc)
            else:
                mark_finished(db, worker_row, summary=summary)
        except Exception as exc:
            logger.error("CJ tracking loop error: %s", exc, exc_info=True)
        finally:
            db.close()

        await asyncio.sleep(interval_seconds)


if __name__ == "__main__":
    asyncio.run(run_cj_tracking_loop())
