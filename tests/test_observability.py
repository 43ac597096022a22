"""
Tests for logging setup — levels, formats, file output, run labels.
"""

import logging
import textwrap
import threading
from pathlib import Path

import pytest
from conftest import GCC_SPEC

from provisioner.adapters.mock import MockCommandRunner
from provisioner.adapters.probe import StaticVersionProbe
from provisioner.core.config.loader import parse_build_spec
from provisioner.core.engine.build_run import BuildRun, Collaborators, RunSettings
from provisioner.core.observability.logging_config import (
    RunLabelFilter,
    _parse_level,
    current_run_label,
    run_log_context,
    setup_logging,
)


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class _Collect(logging.Handler):
    def __init__(self):
        super().__init__(logging.DEBUG)
        self.records: list[logging.LogRecord] = []
        self.addFilter(RunLabelFilter())

    def emit(self, record):
        self.records.append(record)


class TestParseLevel:
    def test_names(self):
        assert _parse_level("debug") == logging.DEBUG
        assert _parse_level("ERROR") == logging.ERROR

    def test_fallback(self):
        assert _parse_level(None) == logging.WARNING
        assert _parse_level("loud") == logging.WARNING
        assert _parse_level("BASIC_FORMAT") == logging.WARNING


class TestSetupLogging:
    def test_console_level(self):
        setup_logging("INFO")
        root = logging.getLogger()
        assert root.level == logging.INFO
        assert len(root.handlers) == 1
        assert "[%(run)s]" in root.handlers[0].formatter._fmt

    def test_minimal_format_at_warning(self):
        setup_logging("WARNING")
        assert logging.getLogger().handlers[0].formatter._fmt == "%(message)s"

    def test_debug_format(self):
        setup_logging("DEBUG")
        fmt = logging.getLogger().handlers[0].formatter._fmt
        assert "%(lineno)d" in fmt
        assert "%(threadName)s" in fmt

    def test_file_output(self, tmp_path: Path):
        log_file = tmp_path / "provisioner.log"
        setup_logging("WARNING", log_file=str(log_file), log_file_level="DEBUG")
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 2

        with run_log_context("clang-18"):
            logging.getLogger("provisioner.test").debug("verifier detail")
        for handler in root.handlers:
            handler.flush()
        text = log_file.read_text()
        assert "verifier detail" in text
        assert "[clang-18]" in text


# ── Run labels ───────────────────────────────────────────────────────


class TestRunLabels:
    def test_default_and_nesting(self):
        assert current_run_label() == "-"
        with run_log_context("gcc-13"):
            assert current_run_label() == "gcc-13"
            with run_log_context("clang-18"):
                assert current_run_label() == "clang-18"
            assert current_run_label() == "gcc-13"
        assert current_run_label() == "-"

    def test_not_shared_with_other_threads(self):
        seen = []
        with run_log_context("gcc-13"):
            worker = threading.Thread(target=lambda: seen.append(current_run_label()))
            worker.start()
            worker.join()
        assert seen == ["-"]

    def test_stage_threads_log_under_the_run_label(self, smoke_dir):
        collector = _Collect()
        logger = logging.getLogger("provisioner")
        old_level = logger.level
        logger.addHandler(collector)
        logger.setLevel(logging.INFO)
        try:
            spec = parse_build_spec(textwrap.dedent(GCC_SPEC))
            probe = StaticVersionProbe({"/usr/bin/gcc": "13.2.0", "/usr/bin/g++": "13.2.0"})
            run = BuildRun(
                spec, spec.get_variant("gcc-13"),
                Collaborators(runner=MockCommandRunner(), probe=probe),
                RunSettings(base_dir=smoke_dir.parent, max_workers=2),
            )
            assert run.run().ok
        finally:
            logger.removeHandler(collector)
            logger.setLevel(old_level)

        stage_records = [r for r in collector.records if r.threadName.startswith("stage")]
        assert stage_records
        assert {r.run for r in collector.records} == {"gcc-13"}
