from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from louiemae.models_sqlalchemy import SessionLocal
from louiemae.models_sqlalchemy.models import CjEvent
from louiemae.utils.logger import logger


def log_cj_event(
    *,
    payload: Optional[Dict[str, Any]] = None,
    message_id: Optional[str] = None,
    event_type: Optional[str] = None,
    message_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    status: str = "RECEIVED",
    error: Optional[str] = None,
    db: Optional[Session] = None,
) -> CjEvent:
    """Insert a row into cj_events.

    Every CJ webhook delivery is recorded here before it is processed, so
    dropped or unmatched events can be diagnosed later.

    Args:
        payload: Full raw webhook body.
        message_id: CJ ``messageId`` of the delivery.
        event_type: CJ ``type`` (ORDER, LOGISTIC, PRODUCT, VARIANT, STOCK...).
        message_type: CJ ``messageType`` (INSERT, UPDATE, DELETE).
        entity_id: Primary identifier of the entity the event is about.
        status: Processing status on our side (default RECEIVED).
        error: Optional error description for FAILED/IGNORED events.
        db: Optional existing session; if omitted, a short-lived session is
            created for this insert.
    """

    owns_session = db is None
    session: Session = SessionLocal() if owns_session else db

    try:
        ev = CjEvent(
            message_id=message_id,
            event_type=event_type,
            message_type=message_type,
            entity_id=entity_id,
            status=status or "RECEIVED",
            error=error,
            payload=payload or {},
        )
        session.add(ev)
        if owns_session:
            session.commit()
            session.refresh(ev)
        else:
            session.flush()
        return ev

    except Exception:
        logger.error(
            "[cj_webhook] Failed to log CJ event (type=%s, message_id=%s)", event_type, message_id, exc_info=True,
        )
        session.rollback()
        raise

    finally:
        if owns_session:
            session.close()


def mark_cj_event(db: Session, ev: CjEvent, status: str, error: Optional[str] = None) -> None:
    ev.status = status
    ev.error = error
    ev.processed_at = datetime.now(timezone.utc)
    db.commit()
