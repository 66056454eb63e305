"""!
@brief Tests for :mod:`twingate_janitor.logging_ext`.
"""
from __future__ import annotations

import io
import json
import logging
import pathlib
import sys
from contextlib import redirect_stdout

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from twingate_janitor import logging_ext  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_logging_state() -> None:
    """!
    @brief Reset logging between tests to avoid handler leakage.
    """

    yield
    for name in (logging_ext.HUMAN_LOGGER_NAME, logging_ext.MACHINE_LOGGER_NAME):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        for flt in list(logger.filters):
            logger.removeFilter(flt)


def _flush(logger: logging.Logger) -> None:
    for handler in logger.handlers:
        handler.flush()


def test_setup_logging_creates_per_run_files(tmp_path) -> None:
    """!
    @brief Setup opens a timestamped text/JSONL pair and records run metadata.
    """

    human_logger, machine_logger = logging_ext.setup_logging(tmp_path, run_label="fresh")
    human_logger.info("hello world")
    machine_logger.info("startup", extra=logging_ext.build_event_extra("startup", command="remediate"))
    _flush(human_logger)
    _flush(machine_logger)

    files = logging_ext.get_log_files()
    human_log = files["human"]
    machine_log = files["machine"]

    assert human_log.parent == tmp_path
    assert human_log.name.startswith("twingate-janitor-") and human_log.suffix == ".log"
    assert machine_log.suffix == ".jsonl"

    human_text = human_log.read_text(encoding="utf-8")
    assert "hello world" in human_text
    assert "[human]" in human_text

    entries = [json.loads(line) for line in machine_log.read_text(encoding="utf-8").splitlines() if line.strip()]
    assert entries[0]["event"] == "run_start"
    assert entries[0]["run"]["label"] == "fresh"

    startup = next(item for item in entries if item.get("event") == "startup")
    assert startup["channel"] == "machine"
    assert startup["command"] == "remediate"

    metadata = logging_ext.get_run_metadata()
    assert metadata is not None
    assert metadata["run_id"] == entries[0]["run"]["run_id"]
    assert logging_ext.get_log_directory() == tmp_path


def test_json_stdout_mirror(tmp_path) -> None:
    """!
    @brief Machine events can be mirrored to stdout.
    """

    buffer = io.StringIO()
    with redirect_stdout(buffer):
        _, machine_logger = logging_ext.setup_logging(tmp_path, json_to_stdout=True)
        machine_logger.warning("mirror", extra=logging_ext.build_event_extra("mirror"))
        _flush(machine_logger)

    lines = [line for line in buffer.getvalue().splitlines() if line.strip()]
    assert json.loads(lines[0])["event"] == "run_start"
    parsed = json.loads(lines[-1])
    assert parsed["event"] == "mirror"
    assert parsed["level"] == "WARNING"


def test_console_formatter_colours_by_severity() -> None:
    record = logging.LogRecord("x", logging.ERROR, __file__, 1, "boom", None, None)

    coloured = logging_ext._ConsoleFormatter(use_color=True).format(record)
    plain = logging_ext._ConsoleFormatter(use_color=False).format(record)

    assert coloured.startswith("\033[31m") and coloured.endswith("\033[0m")
    assert "\033[" not in plain
    assert plain.endswith("boom")


def test_console_level_filters_info(tmp_path, capsys) -> None:
    """!
    @brief Quiet mode only lets errors through to the console.
    """

    human_logger, _ = logging_ext.setup_logging(
        tmp_path, console=True, use_color=False, console_level=logging.ERROR
    )
    human_logger.info("routine detail")
    human_logger.error("something broke")

    err = capsys.readouterr().err
    assert "something broke" in err
    assert "routine detail" not in err

    _flush(human_logger)
    assert "routine detail" in logging_ext.get_log_files()["human"].read_text(encoding="utf-8")


def test_non_serialisable_extras_are_coerced(tmp_path) -> None:
    _, machine_logger = logging_ext.setup_logging(tmp_path)
    machine_logger.info("odd", extra={"event": "odd", "path": pathlib.Path("C:/x"), "items": {1, 2}})
    _flush(machine_logger)

    lines = logging_ext.get_log_files()["machine"].read_text(encoding="utf-8").splitlines()
    parsed = json.loads(lines[-1])
    assert parsed["event"] == "odd"
    assert "x" in parsed["path"]


def test_logger_helpers_return_configured_instances(tmp_path) -> None:
    human_logger, machine_logger = logging_ext.setup_logging(tmp_path)
    assert logging_ext.get_human_logger() is human_logger
    assert logging_ext.get_machine_logger() is machine_logger
