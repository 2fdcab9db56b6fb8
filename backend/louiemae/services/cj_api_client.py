"""Thin async client for the CJ Dropshipping REST API.

Every call goes through :meth:`CjApiClient._request`, which enforces a finite
timeout and turns transport problems (timeouts, connection errors, HTTP 5xx,
non-JSON bodies) into :class:`CjApiError`. Provider-level rejections are not
exceptions: CJ answers with ``{"result": false, "message": ...}`` and callers
get a :class:`CjResponse` with ``result=False``.

CJ is inconsistent about response shapes (ids arrive as a scalar or as a
one-element array, ``data`` is sometimes a list). The normalisation helpers at
the bottom of this module absorb that so workflows only see plain values.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from louiemae.config import settings
from louiemae.utils.logger import cj_logger, logger


class CjApiError(Exception):
    """Transport-level failure talking to CJ (timeout, 5xx, malformed body)."""


@dataclass
class CjResponse:
    result: bool
    message: Optional[str] = None
    code: Optional[int] = None
    data: Any = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def error_message(self) -> str:
        return self.message or "Unknown CJ API error"


class CjApiClient:
    """Stateless CJ API client. Tokens are passed in per call."""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        self._base_url = base_url
        self._timeout = timeout

    @property
    def base_url(self) -> str:
        return (self._base_url or settings.cj_api_base_url).rstrip("/")

    @property
    def timeout(self) -> httpx.Timeout:
        seconds = self._timeout or settings.CJ_HTTP_TIMEOUT_SECONDS
        return httpx.Timeout(seconds, connect=min(seconds, 10.0))

    async def _request(
        self,
        method: str,
        path: str,
        *,
        event_type: str,
        token: Optional[str] = None,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> CjResponse:
        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = {"Content-Type": "application/json"}
        if token:
            headers["CJ-Access-Token"] = token

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.request(method, url, headers=headers, json=json_body, params=params)
        except httpx.TimeoutException as exc:
            cj_logger.log_cj_event(event_type, f"{method} {path} timed out", request_data=json_body, status="error", error=str(exc))
            raise CjApiError(f"CJ API timeout on {path}") from exc
        except httpx.RequestError as exc:
            cj_logger.log_cj_event(event_type, f"{method} {path} request failed", request_data=json_body, status="error", error=str(exc))
            raise CjApiError(f"CJ API request error on {path}: {exc}") from exc

        if resp.status_code >= 500:
            cj_logger.log_cj_event(
                event_type,
                f"{method} {path} server error",
                request_data=json_body,
                status="error",
                error=f"HTTP {resp.status_code}",
            )
            raise CjApiError(f"CJ API HTTP {resp.status_code} on {path}")

        try:
            body = resp.json()
        except ValueError as exc:
            cj_logger.log_cj_event(event_type, f"{method} {path} returned non-JSON body", status="error", error=str(exc))
            raise CjApiError(f"CJ API returned a non-JSON body on {path}") from exc

        if not isinstance(body, dict):
            raise CjApiError(f"CJ API returned an unexpected body on {path}")

        result = CjResponse(
            result=bool(body.get("result")),
            message=body.get("message"),
            code=body.get("code"),
            data=body.get("data"),
            raw=body,
        )
        cj_logger.log_cj_event(
            event_type,
            f"{method} {path} -> result={result.result} code={result.code}",
            request_data=json_body,
            response_data=body,
            status="success" if result.result else "error",
            error=None if result.result else result.error_message,
        )
        return result

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    async def get_access_token(self, api_key: str) -> CjResponse:
        return await self._request(
            "POST", "authentication/getAccessToken", event_type="cj_auth", json_body={"apiKey": api_key},
        )

    async def refresh_access_token(self, refresh_token: str) -> CjResponse:
        return await self._request(
            "POST",
            "authentication/refreshAccessToken",
            event_type="cj_auth_refresh",
            json_body={"refreshToken": refresh_token},
        )

    # ------------------------------------------------------------------
    # Sourcing
    # ------------------------------------------------------------------
    async def create_sourcing(self, token: str, payload: Dict[str, Any]) -> CjResponse:
        return await self._request(
            "POST", "product/sourcing/create", event_type="cj_sourcing_create", token=token, json_body=payload,
        )

    async def query_sourcing(self, token: str, sourcing_ids: List[str]) -> CjResponse:
        return await self._request(
            "POST",
            "product/sourcing/query",
            event_type="cj_sourcing_query",
            token=token,
            json_body={"sourceIds": list(sourcing_ids)},
        )

    async def cancel_sourcing(self, token: str, sourcing_id: str) -> CjResponse:
        return await self._request(
            "POST",
            "product/sourcing/cancel",
            event_type="cj_sourcing_cancel",
            token=token,
            json_body={"sourcingId": sourcing_id},
        )

    # ------------------------------------------------------------------
    # Orders and logistics
    # ------------------------------------------------------------------
    async def create_order(self, token: str, payload: Dict[str, Any]) -> CjResponse:
        return await self._request(
            "POST", "shopping/order/createOrderV2", event_type="cj_order_create", token=token, json_body=payload,
        )

    async def get_track_info(self, token: str, external_order_id: str) -> CjResponse:
        return await self._request(
            "GET",
            "logistic/getTrackInfo",
            event_type="cj_tracking",
            token=token,
            params={"orderId": external_order_id},
        )

    async def set_webhooks(self, token: str, callback_url: str) -> CjResponse:
        topic = {"type": "ENABLE", "callbackUrls": [callback_url]}
        payload = {
            "product": dict(topic),
            "stock": dict(topic),
            "order": dict(topic),
            "logistics": dict(topic),
        }
        logger.info("[cj_webhook] Registering CJ webhooks callback_url=%s", callback_url)
        return await self._request("POST", "webhook/set", event_type="cj_webhook_set", token=token, json_body=payload)


# ----------------------------------------------------------------------
# Response normalisation
# ----------------------------------------------------------------------

def first_scalar(value: Any) -> Optional[str]:
    """Return ``value`` as a string, unwrapping a one-element (or longer) list.

    Empty strings, empty lists and ``None`` all normalise to ``None``.
    """

    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def extract_id(data: Any, *keys: str) -> Optional[str]:
    """Return the first non-empty id found under ``keys`` in ``data``.

    ``data`` may itself be a scalar id (or a list holding one), in which case
    it is returned directly.
    """

    if isinstance(data, (list, tuple)) and data and isinstance(data[0], dict):
        data = data[0]
    if isinstance(data, dict):
        for key in keys:
            found = first_scalar(data.get(key))
            if found:
                return found
        return None
    return first_scalar(data)


def normalize_record(data: Any) -> Dict[str, Any]:
    """Coerce a ``data`` envelope into a single dict (first element of a list)."""

    if isinstance(data, list):
        data = next((item for item in data if isinstance(item, dict)), None)
    return data if isinstance(data, dict) else {}


cj_client = CjApiClient()
