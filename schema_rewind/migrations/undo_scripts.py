"""
Undo Script Resolver
~~~~~~~~~~~~~~~~~~~~

Locates and parses the hand-authored undo script for a migration version.

Scripts live in the configured ``rollback.undo_script_dirs`` and are named
``U{version}__{description}.sql``, e.g. ``U1.0.2__Add_audit_log_table_undo.sql``.

Normalization rules:

- Statements are split on ``;`` separators outside quotes.
- ``--`` comments (whole-line and inline) and ``/* ... */`` blocks are removed.
- Blank lines are dropped.
- Continuation lines are re-joined with a single space.

An empty script yields zero statements and is an explicit no-op.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from schema_rewind.core.models import MigrationVersion, RollbackOperation, UndoScript
from schema_rewind.exceptions import UndoScriptError, UndoScriptMissingError

__all__ = ["UndoScriptResolver", "parse_undo_script", "split_statements"]

logger = logging.getLogger(__name__)


def _strip_comments_and_split(text: str) -> list[str]:
    """Scan ``text`` once, dropping comments and splitting on bare ``;``."""
    statements: list[str] = []
    current: list[str] = []
    quote: str | None = None
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]
        nxt = text[i + 1] if i + 1 < n else ""

        if quote is not None:
            current.append(ch)
            if ch == quote:
                # Doubled quote is an escaped quote inside the literal
                if nxt == quote:
                    current.append(nxt)
                    i += 2
                    continue
                quote = None
            i += 1
            continue

        if ch in ("'", '"'):
            quote = ch
            current.append(ch)
            i += 1
        elif ch == "-" and nxt == "-":
            end = text.find("\n", i)
            i = n if end == -1 else end
        elif ch == "/" and nxt == "*":
            end = text.find("*/", i + 2)
            if end == -1:
                raise UndoScriptError("Unterminated /* comment in undo script")
            current.append(" ")
            i = end + 2
        elif ch == ";":
            statements.append("".join(current))
            current = []
            i += 1
        else:
            current.append(ch)
            i += 1

    if quote is not None:
        raise UndoScriptError(f"Unterminated {quote} quoted literal in undo script")

    statements.append("".join(current))
    return statements


def _normalize(statement: str) -> str:
    lines = [line.strip() for line in statement.splitlines()]
    return " ".join(line for line in lines if line)


def split_statements(text: str) -> list[str]:
    """
    Split SQL text into normalized statements.

    Deterministic: the same text always yields the same statements.
    """
    normalized = (_normalize(s) for s in _strip_comments_and_split(text))
    return [s for s in normalized if s]


def parse_undo_script(
    text: str,
    version: str,
    source: str = "",
    description: str = "",
) -> UndoScript:
    """Parse the text of an undo script into an UndoScript."""
    return UndoScript(
        version=version,
        statements=tuple(split_statements(text)),
        source=source,
        description=description,
    )


def _description_from_filename(stem: str) -> str:
    _, _, tail = stem.partition("__")
    if tail.lower().endswith("_undo"):
        tail = tail[: -len("_undo")]
    return tail.replace("_", " ").strip()


class UndoScriptResolver:
    """
    Finds the undo script for a version across the configured directories.

    A missing script is distinct from a script that fails to execute.
    Missing scripts fail closed unless the version is whitelisted in
    ``noop_versions`` or ``strict`` coverage is disabled, in which case a
    warning is logged and the operation becomes a no-op.
    """

    def __init__(
        self,
        script_dirs: list[str] | None = None,
        noop_versions: list[str] | None = None,
        strict: bool = True,
    ) -> None:
        self._script_dirs = [Path(d) for d in (script_dirs or [])]
        self._noop_versions = set(noop_versions or [])
        self._strict = strict

    def find(self, version: str) -> Path | None:
        """
        Return the path of the undo script for ``version``, or None.

        Raises:
            UndoScriptError: If more than one script matches.
        """
        prefix = f"U{version}__"
        exact = f"U{version}.sql"
        matches: list[Path] = []
        for directory in self._script_dirs:
            if not directory.is_dir():
                logger.debug("Undo script directory does not exist: %s", directory)
                continue
            for entry in sorted(os.listdir(directory)):
                if not entry.endswith(".sql"):
                    continue
                if entry == exact or entry.startswith(prefix):
                    matches.append(directory / entry)

        if len(matches) > 1:
            raise UndoScriptError(
                f"Multiple undo scripts found for version {version}: "
                + ", ".join(str(m) for m in matches)
            )
        return matches[0] if matches else None

    def resolve(self, version: str) -> UndoScript | None:
        """
        Load and parse the undo script for ``version``.

        Returns:
            The parsed script, or None if no script exists.

        Raises:
            UndoScriptError: If the script cannot be read or parsed.
        """
        path = self.find(version)
        if path is None:
            return None
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise UndoScriptError(f"Cannot read undo script {path}: {exc}") from exc

        try:
            script = parse_undo_script(
                text,
                version=version,
                source=str(path),
                description=_description_from_filename(path.stem),
            )
        except UndoScriptError as exc:
            raise UndoScriptError(f"{path}: {exc}") from exc

        logger.debug(
            "Resolved undo script for %s: %s (%d statements)",
            version,
            path,
            len(script.statements),
        )
        return script

    def operation_for(self, version: MigrationVersion) -> RollbackOperation:
        """
        Build the rollback operation that undoes ``version``.

        Raises:
            UndoScriptMissingError: If no script exists and no-op is not allowed.
        """
        script = self.resolve(version.version)
        if script is not None:
            return RollbackOperation(version=version, script=script)

        if version.version in self._noop_versions:
            return RollbackOperation(version=version, noop_reason="whitelisted no-op")

        if not self._strict:
            logger.warning(
                "No undo script for version %s; treating as no-op "
                "because strict undo coverage is disabled",
                version.version,
            )
            return RollbackOperation(
                version=version,
                noop_reason="undo script missing, strict coverage disabled",
            )

        raise UndoScriptMissingError(version.version)
