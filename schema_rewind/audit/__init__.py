"""Rollback audit trail and exporters."""

from schema_rewind.audit.exporters import StdoutExporter, WebhookExporter
from schema_rewind.audit.trail import AuditTrail

__all__ = [
    "AuditTrail",
    "StdoutExporter",
    "WebhookExporter",
]
