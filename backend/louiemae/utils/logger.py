import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger("louiemae")


class CjConnectionLogger:
    """Bounded in-memory log of CJ API calls, readable from the admin surface."""

    def __init__(self, max_logs: int = 1000):
        self.logs = []
        self.max_logs = max_logs

    def log_cj_event(
        self,
        event_type: str,
        description: str,
        request_data: Optional[Dict[str, Any]] = None,
        response_data: Optional[Dict[str, Any]] = None,
        status: str = "info",
        error: Optional[str] = None
    ):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            "description": description,
            "request_data": self._sanitize_credentials(request_data) if request_data else None,
            "response_data": self._sanitize_credentials(response_data) if response_data else None,
            "status": status,
            "error": error
        }

        self.logs.append(log_entry)

        if len(self.logs) > self.max_logs:
            self.logs.pop(0)

        log_msg = f"[{event_type}] {description}"
        if error:
            logger.error(f"{log_msg} - Error: {error}")
        else:
            logger.info(log_msg)

        return log_entry

    def _sanitize_credentials(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if not data or not isinstance(data, dict):
            return {}

        sanitized = dict(data)
        sensitive_keys = [
            "apiKey", "accessToken", "refreshToken",
            "CJ-Access-Token", "authorization", "password",
        ]

        for key in sensitive_keys:
            if key in sanitized and sanitized[key] is not None:
                value = str(sanitized[key])
                if len(value) > 8:
                    sanitized[key] = f"{value[:4]}...{value[-4:]}"
                else:
                    sanitized[key] = "***"

        nested = sanitized.get("data")
        if isinstance(nested, dict):
            sanitized["data"] = self._sanitize_credentials(nested)

        return sanitized

    def get_logs(self, limit: Optional[int] = None) -> list:
        if limit:
            return self.logs[-limit:]
        return self.logs

    def clear_logs(self):
        self.logs = []
        logger.info("Cleared CJ connection logs")


cj_logger = CjConnectionLogger()
