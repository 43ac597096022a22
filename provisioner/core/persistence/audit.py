"""
Audit ledger — append-only history of build runs.

Every build run writes one entry to an NDJSON (newline-delimited JSON)
file next to the build spec. This is the provisioning history: which
variant was built with which versions, when, and how it ended.

The ledger is append-only: entries are never modified or deleted.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from provisioner.core.models.run import RunReport

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_DIR = ".provisioner"
DEFAULT_AUDIT_FILE = "audit.ndjson"


class AuditEntry(BaseModel):
    """A single audit log entry (one build run)."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    run_id: str = ""
    spec: str = ""
    variant: str = ""

    # Results
    state: str = ""                # completed, failed
    versions: dict[str, str] = Field(default_factory=dict)
    stages_total: int = 0
    stages_ok: int = 0
    stages_failed: int = 0
    duration_ms: int = 0
    published: bool = False

    # Failure (if any)
    error_kind: str | None = None
    failed_stage: str | None = None
    error: str | None = None

    # Extensible context
    context: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_report(cls, report: RunReport, **context: Any) -> AuditEntry:
        failed = report.failed_stage
        error = report.error or {}
        return cls(
            run_id=report.run_id,
            spec=report.spec_name,
            variant=report.variant,
            state=str(report.state),
            versions=report.versions,
            stages_total=len(report.stages),
            stages_ok=sum(1 for s in report.stages if s.ok),
            stages_failed=sum(1 for s in report.stages if s.failed),
            duration_ms=report.duration_ms,
            published=report.published,
            error_kind=error.get("kind"),
            failed_stage=failed.stage_id if failed else None,
            error=error.get("message"),
            context=context,
        )


class AuditWriter:
    """Append-only audit ledger writer.

    Each call to write() appends a single JSON line to the ledger file.
    The file is created if it doesn't exist.
    """

    def __init__(self, path: Path | None = None, spec_root: Path | None = None):
        if path is not None:
            self._path = path
        elif spec_root is not None:
            self._path = spec_root / DEFAULT_AUDIT_DIR / DEFAULT_AUDIT_FILE
        else:
            self._path = Path(DEFAULT_AUDIT_DIR) / DEFAULT_AUDIT_FILE

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        """Append an audit entry to the ledger."""
        self._path.parent.mkdir(parents=True, exist_ok=True)

        data = entry.model_dump(mode="json")
        line = json.dumps(data, ensure_ascii=False) + "\n"

        try:
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
            logger.debug("Audit entry written: %s/%s", entry.variant, entry.run_id)
        except OSError as e:
            logger.error("Failed to write audit entry: %s", e)

    def read_all(self) -> list[AuditEntry]:
        """Read all entries from the ledger, oldest first."""
        if not self._path.is_file():
            return []

        entries = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(AuditEntry.model_validate(json.loads(line)))
                    except (json.JSONDecodeError, ValidationError) as e:
                        logger.warning("Skipping corrupt audit entry at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read audit ledger: %s", e)

        return entries

    def read_recent(self, n: int = 20) -> list[AuditEntry]:
        """Read the most recent N entries."""
        if n <= 0:
            return []
        return self.read_all()[-n:]
