import logging
import uuid
import asyncio

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from louiemae.config import settings
from louiemae.routers import admin_cj, cj_webhooks, storefront
from louiemae.utils.logger import logger


app = FastAPI(title="Louie Mae API", version="1.0.0")

origins = [o.strip() for o in settings.ALLOWED_ORIGINS.split(",") if o.strip()]
if settings.FRONTEND_URL and settings.FRONTEND_URL not in origins:
    origins.append(settings.FRONTEND_URL)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
    max_age=3600,
)


# Request logging middleware with request ID
@app.middleware("http")
async def request_logger(request: Request, call_next):
    rid = uuid.uuid4().hex[:8]
    request.state.rid = rid
    logging.info("→ %s %s rid=%s", request.method, request.url.path, rid)
    try:
        resp = await call_next(request)
        logging.info("← %s status=%s rid=%s", request.url.path, resp.status_code, rid)
        resp.headers["X-Request-ID"] = rid
        return resp
    except Exception as e:
        logging.exception("Unhandled error rid=%s: %s", rid, str(e))
        error_resp = JSONResponse(
            {"error": "internal_error", "rid": rid, "message": str(e), "type": type(e).__name__},
            status_code=500,
        )
        error_resp.headers["X-Request-ID"] = rid
        return error_resp


app.include_router(storefront.router)
app.include_router(cj_webhooks.router)
app.include_router(admin_cj.router)


@app.on_event("startup")
async def startup_event():
    logger.info("Louie Mae API starting up...")

    if not settings.CJ_WORKERS_ENABLED:
        logger.info("CJ background workers disabled (CJ_WORKERS_ENABLED=false)")
        return

    try:
        from louiemae.workers import run_cj_sourcing_loop, run_cj_tracking_loop

        asyncio.create_task(run_cj_sourcing_loop())
        logger.info(
            "CJ sourcing worker started (runs every %s seconds)", settings.CJ_SOURCING_CHECK_INTERVAL_SECONDS,
        )

        asyncio.create_task(run_cj_tracking_loop())
        logger.info(
            "CJ tracking worker started (runs every %s seconds)", settings.CJ_TRACKING_SYNC_INTERVAL_SECONDS,
        )
    except Exception as e:
        logger.error("Failed to start background workers: %s", e)
        logger.info("Workers can be run separately if needed")


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}


@app.get("/healthz/db")
async def healthz_db():
    """Database health check endpoint"""
    from fastapi import HTTPException, status

    try:
        from louiemae.models_sqlalchemy import engine

        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        return {"status": "ok", "database": "connected"}
    except Exception as e:
        logger.exception("Database health check failed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Database unavailable: {type(e).__name__}: {str(e)}",
        )


@app.get("/")
async def root():
    return {
        "message": "Louie Mae API",
        "version": "1.0.0",
        "docs": "/docs",
    }
