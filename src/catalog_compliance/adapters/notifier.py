"""Outbound notification adapters.

Notifications (drift alerts, report-ready messages) are best-effort: a
delivery failure is logged and reported as ``False`` but never fails the
engine operation that triggered it.

- HttpNotifier  — POSTs JSON to a configured webhook URL with a hard timeout
- NullNotifier  — used when no webhook URL is configured
"""

from datetime import UTC, datetime
from typing import Any

import httpx

from catalog_compliance.observability import get_logger

logger = get_logger(__name__)

# Default delivery timeout in milliseconds, overridden by CATALOG_COMPLIANCE_NOTIFICATION_TIMEOUT_MS
_DEFAULT_TIMEOUT_MS = 2000


class HttpNotifier:
    """Async webhook notifier.

    Sends ``{"kind": ..., "sent_at": ..., "payload": {...}}`` to a single
    endpoint. Any HTTP error, timeout or non-2xx status yields ``False``.

    Args:
        webhook_url: Endpoint receiving notifications.
        timeout_ms: Hard timeout per delivery in milliseconds.
        transport: Optional httpx transport, used by tests.
    """

    def __init__(
        self,
        webhook_url: str,
        timeout_ms: int = _DEFAULT_TIMEOUT_MS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize HttpNotifier.

        Args:
            webhook_url: Endpoint receiving notifications.
            timeout_ms: Hard timeout per delivery in milliseconds.
            transport: Optional httpx transport override.
        """
        self._webhook_url = webhook_url
        self._timeout_ms = timeout_ms
        self._timeout_s = timeout_ms / 1000.0
        self._transport = transport

    async def notify(self, kind: str, payload: dict[str, Any]) -> bool:
        """Deliver one notification.

        Args:
            kind: Notification kind, e.g. drift_alert or report_ready.
            payload: JSON-serializable body.

        Returns:
            True if the endpoint accepted the notification.
        """
        body = {"kind": kind, "sent_at": datetime.now(UTC).isoformat(), "payload": payload}
        try:
            async with httpx.AsyncClient(timeout=self._timeout_s, transport=self._transport) as client:
                response = await client.post(self._webhook_url, json=body)
        except httpx.TimeoutException:
            logger.warning("Notification timed out", kind=kind, timeout_ms=self._timeout_ms)
            return False
        except httpx.HTTPError as exc:
            logger.warning("Notification request failed", kind=kind, error=str(exc))
            return False

        if response.is_success:
            logger.info("Notification delivered", kind=kind, status_code=response.status_code)
            return True

        logger.warning(
            "Notification rejected",
            kind=kind,
            status_code=response.status_code,
            body=response.text[:200],
        )
        return False


class NullNotifier:
    """Notifier that drops every notification."""

    async def notify(self, kind: str, payload: dict[str, Any]) -> bool:
        logger.debug("Notification dropped, no webhook configured", kind=kind)
        return False
