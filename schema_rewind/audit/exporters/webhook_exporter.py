"""
Webhook Exporter
~~~~~~~~~~~~~~~~

Notifies operators of rollback outcomes by POSTing each audit entry to a
chat or paging webhook. The payload carries a ``text`` summary, which chat
integrations render directly, plus the full entry under ``entry``.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from typing import Any

from schema_rewind.core.models import AuditEntry

__all__ = ["WebhookExporter"]

logger = logging.getLogger(__name__)


class WebhookExporter:
    """
    Args:
        url: Destination URL.
        headers: Extra request headers (e.g. an auth token).
        timeout: Request timeout in seconds.
        failures_only: Notify only for attempts that ended with an ErrorKind.
    """

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 10,
        failures_only: bool = False,
    ) -> None:
        self._url = url
        self._headers = {"Content-Type": "application/json", **(headers or {})}
        self._timeout = timeout
        self._failures_only = failures_only

    def export(self, entry: AuditEntry) -> None:
        if self._failures_only and entry.error_kind is None:
            logger.debug("Webhook skips successful rollback %s", entry.rollback_id)
            return
        self._post({"text": entry.summary(), "entry": entry.to_dict()})

    def _post(self, payload: dict[str, Any]) -> None:
        rollback_id = payload["entry"]["rollback_id"]
        request = urllib.request.Request(
            self._url,
            data=json.dumps(payload, default=str).encode("utf-8"),
            headers=self._headers,
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as resp:
                if resp.status >= 400:
                    logger.warning(
                        "Webhook %s answered %d for rollback %s",
                        self._url,
                        resp.status,
                        rollback_id,
                    )
        except (urllib.error.URLError, OSError) as exc:
            logger.error("Webhook notification for rollback %s failed: %s", rollback_id, exc)
