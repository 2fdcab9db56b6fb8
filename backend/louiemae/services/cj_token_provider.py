"""CJ access token provider.

Single source of truth for CJ credentials. Every CJ call site asks this module
for a token; nothing else reads or writes the ``cj_credentials`` row.

Resolution order (CJ only allows ~1 getAccessToken call per 300 seconds, so
the cheap paths come first):

1. Stored access token valid for more than 24h -> reuse it, no network.
2. Stored refresh token valid for more than 7 days -> call refreshAccessToken.
   CJ answers with a boolean; on success the *same* access token is extended
   by 15 days.
3. Otherwise (no row, both windows exhausted, refresh failed) -> call
   getAccessToken with the API key and store the new pair.

Failures never raise; callers get ``success=False`` (or ``None`` from
:func:`get_access_token`) and must abort the current external operation.

Usage:
    from louiemae.services.cj_token_provider import get_access_token

    token = await get_access_token(db)
    if token is None:
        # CJ unavailable this cycle
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Literal, Optional

from sqlalchemy.orm import Session

from louiemae.config import settings
from louiemae.models_sqlalchemy.models import CjCredential
from louiemae.services.cj_api_client import cj_client, normalize_record
from louiemae.utils import crypto
from louiemae.utils.logger import logger


ACCESS_TOKEN_BUFFER = timedelta(hours=24)
REFRESH_TOKEN_BUFFER = timedelta(days=7)

# refreshAccessToken does not return a new expiry; CJ access tokens live 15 days.
REFRESH_EXTENSION = timedelta(days=15)

DEFAULT_ACCESS_TOKEN_TTL = timedelta(days=15)
DEFAULT_REFRESH_TOKEN_TTL = timedelta(days=180)

ISSUE_MIN_INTERVAL = timedelta(seconds=300)


TokenSource = Literal["existing", "refreshed", "issued", "none"]


@dataclass
class CjTokenResult:
    """Result of token retrieval."""

    success: bool
    access_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    source: TokenSource = "none"
    token_hash: Optional[str] = None

    error_code: Optional[str] = None
    error_message: Optional[str] = None

    retrieved_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Serialisable view for API responses. Never includes the raw token."""
        return {
            "success": self.success,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "source": self.source,
            "token_hash": self.token_hash,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "retrieved_at": self.retrieved_at.isoformat(),
        }


def _compute_token_hash(token: Optional[str]) -> str:
    if not token:
        return "empty"
    return hashlib.sha256(token.encode()).hexdigest()[:16]


def _normalize_datetime(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to timezone-aware UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_expiry(value: Any) -> Optional[datetime]:
    """Parse a CJ expiry value (ISO8601 string or epoch milliseconds)."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _normalize_datetime(value)
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 10_000_000_000 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)

    s = str(value).strip()
    try:
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        return _normalize_datetime(datetime.fromisoformat(s))
    except ValueError:
        logger.warning("[cj_token] Unparseable expiry value %r, using default TTL", value)
        return None


def load_credential(db: Session) -> Optional[CjCredential]:
    return db.get(CjCredential, CjCredential.SINGLETON_ID)


def _failure(code: str, message: str) -> CjTokenResult:
    return CjTokenResult(success=False, error_code=code, error_message=message)


def _readable(token: Optional[str]) -> Optional[str]:
    # A value that still carries the ciphertext prefix could not be decrypted
    # (e.g. SECRET_KEY changed) and is treated as missing.
    if not token or crypto.is_encrypted(token):
        return None
    return token


def _success(credential: CjCredential, source: TokenSource) -> CjTokenResult:
    token = credential.access_token
    return CjTokenResult(
        success=True,
        access_token=token,
        expires_at=_normalize_datetime(credential.access_token_expires_at),
        source=source,
        token_hash=_compute_token_hash(token),
    )


async def _refresh(db: Session, credential: CjCredential, now: datetime, triggered_by: str) -> bool:
    """Try refreshAccessToken. Returns True when the stored token was extended."""

    try:
        resp = await cj_client.refresh_access_token(credential.refresh_token)
    except Exception as exc:
        logger.warning("[cj_token] Refresh request failed: error=%s triggered_by=%s", exc, triggered_by)
        return False

    if not resp.result or resp.data is False:
        logger.warning(
            "[cj_token] Refresh rejected by CJ: message=%s triggered_by=%s",
            resp.error_message, triggered_by,
        )
        return False

    # Some CJ environments return a fresh pair instead of a boolean.
    data = normalize_record(resp.data)
    if data.get("accessToken"):
        credential.access_token = data["accessToken"]
        credential.access_token_expires_at = _parse_expiry(data.get("accessTokenExpiryDate")) or now + REFRESH_EXTENSION
        if data.get("refreshToken"):
            credential.refresh_token = data["refreshToken"]
            credential.refresh_token_expires_at = (
                _parse_expiry(data.get("refreshTokenExpiryDate")) or now + DEFAULT_REFRESH_TOKEN_TTL
            )
    else:
        credential.access_token_expires_at = now + REFRESH_EXTENSION

    credential.last_refreshed_at = now
    credential.last_error = None
    db.commit()
    return True


async def _issue(
    db: Session, credential: Optional[CjCredential], now: datetime, triggered_by: str,
) -> CjTokenResult:
    """Request a brand-new token pair with the API key."""

    api_key = settings.CJ_API_KEY
    if not api_key:
        logger.error("[cj_token] CJ_API_KEY is not configured")
        return _failure("missing_api_key", "CJ API key is not configured")

    last_attempt = _normalize_datetime(credential.last_issue_attempt_at) if credential else None
    if last_attempt and now - last_attempt < ISSUE_MIN_INTERVAL:
        wait = int((ISSUE_MIN_INTERVAL - (now - last_attempt)).total_seconds())
        logger.warning(
            "[cj_token] Skipping getAccessToken, last attempt %ss ago (retry in %ss) triggered_by=%s",
            int((now - last_attempt).total_seconds()), wait, triggered_by,
        )
        return _failure("rate_limited", f"CJ authentication is rate limited, retry in {wait}s")

    if credential is None:
        credential = CjCredential(id=CjCredential.SINGLETON_ID)
        db.add(credential)
    credential.last_issue_attempt_at = now
    db.commit()

    try:
        resp = await cj_client.get_access_token(api_key)
    except Exception as exc:
        credential.last_error = str(exc)
        db.commit()
        logger.error("[cj_token] getAccessToken failed: error=%s triggered_by=%s", exc, triggered_by)
        return _failure("network_error", str(exc))

    data = normalize_record(resp.data)
    if not resp.result or not data.get("accessToken"):
        credential.last_error = resp.error_message
        db.commit()
        logger.error("[cj_token] CJ authentication failed: message=%s triggered_by=%s", resp.error_message, triggered_by)
        return _failure("auth_failed", resp.error_message)

    credential.access_token = data["accessToken"]
    credential.access_token_expires_at = (
        _parse_expiry(data.get("accessTokenExpiryDate")) or now + DEFAULT_ACCESS_TOKEN_TTL
    )
    credential.refresh_token = data.get("refreshToken")
    credential.refresh_token_expires_at = (
        _parse_expiry(data.get("refreshTokenExpiryDate")) or now + DEFAULT_REFRESH_TOKEN_TTL
    )
    credential.last_error = None
    db.commit()
    return _success(credential, "issued")


async def get_valid_access_token(
    db: Session,
    *,
    triggered_by: str = "worker",
    now: Optional[datetime] = None,
) -> CjTokenResult:
    """Return a usable CJ access token, refreshing or re-issuing as needed."""

    now = _normalize_datetime(now) or datetime.now(timezone.utc)

    try:
        credential = load_credential(db)

        if credential is not None and (
            crypto.is_encrypted(credential.access_token) or crypto.is_encrypted(credential.refresh_token)
        ):
            logger.warning("[cj_token] Stored CJ token could not be decrypted, ignoring it")

        if credential is not None and _readable(credential.access_token):
            access_expires = _normalize_datetime(credential.access_token_expires_at)
            if access_expires and access_expires - ACCESS_TOKEN_BUFFER > now:
                result = _success(credential, "existing")
                logger.debug("[cj_token] Reusing stored token hash=%s", result.token_hash)
                return result

            refresh_expires = _normalize_datetime(credential.refresh_token_expires_at)
            if _readable(credential.refresh_token) and refresh_expires and refresh_expires - REFRESH_TOKEN_BUFFER > now:
                logger.info("[cj_token] Access token near expiry, refreshing triggered_by=%s", triggered_by)
                if await _refresh(db, credential, now, triggered_by):
                    result = _success(credential, "refreshed")
                    logger.info(
                        "[cj_token] Token refreshed hash=%s expires_at=%s",
                        result.token_hash, result.expires_at.isoformat() if result.expires_at else None,
                    )
                    return result

        result = await _issue(db, credential, now, triggered_by)
        if result.success:
            logger.info("[cj_token] Issued new CJ token hash=%s triggered_by=%s", result.token_hash, triggered_by)
        return result

    except Exception as exc:
        logger.error("[cj_token] Unexpected token provider error: %s", exc, exc_info=True)
        try:
            db.rollback()
        except Exception:
            logger.debug("[cj_token] Rollback after provider error failed", exc_info=True)
        return _failure("provider_error", str(exc))


async def get_access_token(db: Session, *, triggered_by: str = "worker") -> Optional[str]:
    """Token or ``None``. Never raises."""

    result = await get_valid_access_token(db, triggered_by=triggered_by)
    return result.access_token if result.success else None
