"""
Logging setup for provisioner runs.

Every record is stamped with the label of the build run that emitted it
(the variant name, ``-`` outside a run), so interleaved output from
parallel variants and concurrent stages stays attributable. The label
lives in a context variable: ``run_log_context`` sets it for a run, and
worker threads inherit it through ``contextvars.copy_context()``.

``setup_logging`` is called once by the CLI; modules only ever do
``logger = logging.getLogger(__name__)``.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

_run_label: ContextVar[str] = ContextVar("provisioner_run_label", default="-")

# Console layout per level; WARNING and above print the bare message.
_CONSOLE_FORMATS: dict[int, tuple[str, str | None]] = {
    logging.DEBUG: (
        "%(asctime)s %(levelname)-5s [%(run)s] %(name)s:%(lineno)d (%(threadName)s) %(message)s",
        "%H:%M:%S",
    ),
    logging.INFO: ("%(asctime)s [%(run)s] %(message)s", "%H:%M:%S"),
}
_FMT_MINIMAL = "%(message)s"

_FMT_FILE = "%(asctime)s %(levelname)-5s [%(run)s] %(name)s:%(lineno)d (%(threadName)s) %(message)s"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"


class RunLabelFilter(logging.Filter):
    """Adds ``record.run``, the label of the current build run."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run = _run_label.get()
        return True


@contextmanager
def run_log_context(label: str) -> Iterator[None]:
    """Stamp every record logged inside the block with ``label``."""
    token = _run_label.set(label)
    try:
        yield
    finally:
        _run_label.reset(token)


def current_run_label() -> str:
    return _run_label.get()


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Configure the root logger: a stderr handler plus an optional file.

    Args:
        level: Console level name (DEBUG, INFO, WARNING, ...).
        log_file: Optional path; the file always gets the detailed layout.
        log_file_level: Level for the file, defaults to ``level``.
    """
    console_level = _parse_level(level)
    handlers = [_console_handler(console_level)]

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(file_level)
        fh.setFormatter(logging.Formatter(_FMT_FILE, datefmt=_DATEFMT_FILE))
        handlers.append(fh)

    root = logging.getLogger()
    root.handlers.clear()

    run_filter = RunLabelFilter()
    for handler in handlers:
        handler.addFilter(run_filter)
        root.addHandler(handler)
    root.setLevel(min(h.level for h in handlers))

    logging.raiseExceptions = False


def _console_handler(level: int) -> logging.Handler:
    fmt, datefmt = _FMT_MINIMAL, None
    for threshold in sorted(_CONSOLE_FORMATS):
        if level <= threshold:
            fmt, datefmt = _CONSOLE_FORMATS[threshold]
            break

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def _parse_level(level: str | None) -> int:
    """Level name → numeric level; unknown names fall back to WARNING."""
    if not level:
        return logging.WARNING
    numeric = logging.getLevelName(level.upper())
    return numeric if isinstance(numeric, int) else logging.WARNING
