"""
Stdout Exporter
~~~~~~~~~~~~~~~

Echoes each audited rollback attempt to a stream, either as one JSON
object per line (for log shippers) or as a one-line operator summary.
"""

from __future__ import annotations

import json
import sys
from typing import TextIO

from schema_rewind.core.models import AuditEntry

__all__ = ["StdoutExporter"]


class StdoutExporter:
    """
    Writes audit entries to stdout (or any text stream).

    Args:
        stream: Destination stream. Defaults to ``sys.stdout`` at export time.
        fmt: ``"json"`` for JSON lines, ``"text"`` for summary lines.
    """

    FORMATS = ("json", "text")

    def __init__(self, stream: TextIO | None = None, fmt: str = "json") -> None:
        if fmt not in self.FORMATS:
            raise ValueError(f"Unknown stdout exporter format: {fmt!r}")
        self._stream = stream
        self._fmt = fmt

    def export(self, entry: AuditEntry) -> None:
        stream = self._stream or sys.stdout
        if self._fmt == "text":
            stream.write(entry.summary() + "\n")
        else:
            stream.write(json.dumps(entry.to_dict(), default=str) + "\n")
        stream.flush()
