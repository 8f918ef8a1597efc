"""Audit trail exporters."""

from schema_rewind.audit.exporters.stdout_exporter import StdoutExporter
from schema_rewind.audit.exporters.webhook_exporter import WebhookExporter

__all__ = [
    "StdoutExporter",
    "WebhookExporter",
]
