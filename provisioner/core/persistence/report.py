"""
Outcome report persistence — atomic write of the build report.

The report is the machine-readable result of ``provisioner build``:
one entry per build run with stage-by-stage status and the failure
that stopped the run, if any. Writes are atomic (write to temp file,
then rename) so a consumer never reads a half-written report.
"""

from __future__ import annotations

import json
import logging
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from provisioner.core.models.run import RunReport

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = ".provisioner"
DEFAULT_REPORT_FILE = "report.json"


def default_report_path(spec_root: Path) -> Path:
    """Get the default report path for a spec directory."""
    return spec_root / DEFAULT_STATE_DIR / DEFAULT_REPORT_FILE


class BuildReport(BaseModel):
    """All runs of one ``provisioner build`` invocation."""

    schema_version: int = 1
    spec: str = ""
    spec_path: str = ""
    generated_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    runs: list[RunReport] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return bool(self.runs) and all(r.ok for r in self.runs)

    @property
    def status(self) -> str:
        if not self.runs:
            return "failed"
        if all(r.ok for r in self.runs):
            return "ok"
        if any(r.ok for r in self.runs):
            return "partial"
        return "failed"

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json")
        data["status"] = self.status
        return data


def save_report(report: BuildReport, path: Path) -> None:
    """Save the build report to a JSON file (atomic write).

    Args:
        report: The report to save.
        path: Target path for the report file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    content = json.dumps(report.to_dict(), indent=2, ensure_ascii=False) + "\n"

    _fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".report_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with open(_fd, "w", encoding="utf-8") as f:
            f.write(content)
        tmp.replace(path)
        logger.debug("Report saved to %s", path)
    except Exception:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to save report to %s", path)
        raise


def load_report(path: Path) -> BuildReport | None:
    """Load a previously written report, or None if missing or corrupt."""
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        data.pop("status", None)
        return BuildReport.model_validate(data)
    except (json.JSONDecodeError, ValueError) as e:
        logger.warning("Corrupt report %s: %s", path, e)
        return None
