from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from louiemae.models_sqlalchemy import get_db
from louiemae.services.cj_webhooks import CjWebhookError, handle_cj_webhook
from louiemae.utils.logger import logger


router = APIRouter(prefix="/cj", tags=["cj_webhooks"])


@router.post("/webhook")
async def cj_webhook(request: Request, db: Session = Depends(get_db)) -> JSONResponse:
    """Callback URL registered with CJ for product, stock, order and logistics events.

    CJ expects a 200 within 3 seconds. Malformed envelopes get a 400; failures
    while processing a valid envelope are recorded in cj_events and still
    acknowledged.
    """

    raw_body = await request.body()
    try:
        payload: Any = json.loads(raw_body) if raw_body else None
    except json.JSONDecodeError as exc:
        logger.warning("[cj_webhook] Invalid JSON body: %s", exc)
        return JSONResponse({"success": False, "error": "Invalid webhook payload"}, status_code=400)

    try:
        result = await handle_cj_webhook(db, payload)
    except CjWebhookError as exc:
        logger.warning("[cj_webhook] Rejected envelope: %s", exc)
        return JSONResponse({"success": False, "error": str(exc)}, status_code=400)
    except Exception as exc:
        logger.error("[cj_webhook] Webhook handling failed: %s", exc, exc_info=True)
        return JSONResponse({"success": False, "error": str(exc)}, status_code=500)

    return JSONResponse(result, status_code=200)
