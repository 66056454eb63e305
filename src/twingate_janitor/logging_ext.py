"""!
@brief Structured logging helpers for Twingate Janitor.
@details Implements a dual-stream pipeline: a human-readable text log that is
also mirrored to the console with severity colours, and a JSONL telemetry log
for automation. Each run writes its own pair of files so logs from the phases
of one remediation (separated by reboots) remain distinguishable.
"""
from __future__ import annotations

import datetime as _dt
import json
import logging
import sys
import uuid
from pathlib import Path
from typing import Dict, Iterable, Mapping, Tuple

from . import version

HUMAN_LOGGER_NAME = "twingate_janitor.human"
"""!
@brief Logger name for human-readable output.
"""

MACHINE_LOGGER_NAME = "twingate_janitor.machine"
"""!
@brief Logger name for JSONL telemetry output.
"""

_STANDARD_RECORD_KEYS: Dict[str, None] = dict.fromkeys(
    (
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "message",
        "asctime",
        "channel",
        "taskName",
    )
)

_LEVEL_COLOURS = {
    logging.DEBUG: "\033[90m",
    logging.INFO: "\033[36m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[1;31m",
}
_RESET = "\033[0m"

_CURRENT_LOG_DIRECTORY: Path | None = None
_CURRENT_LOG_FILES: Dict[str, Path] = {}
_RUN_METADATA: Dict[str, object] | None = None


class _ChannelFilter(logging.Filter):
    """!
    @brief Inject a fixed ``channel`` attribute on log records.
    """

    def __init__(self, channel: str) -> None:
        super().__init__()
        self._channel = channel

    def filter(self, record: logging.LogRecord) -> bool:
        record.channel = self._channel
        return True


class _JsonLineFormatter(logging.Formatter):
    """!
    @brief Format ``LogRecord`` instances as single-line JSON objects.
    @details Standard metadata (timestamp, level, logger, message) is merged
    with any ``extra`` attributes supplied by callers. Values that are not JSON
    serializable are coerced to their ``repr``.
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - concise override
        moment = _dt.datetime.fromtimestamp(record.created, tz=_dt.timezone.utc)
        payload: Dict[str, object] = {
            "timestamp": moment.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "channel": getattr(record, "channel", "machine"),
        }
        payload.update(_extract_extras(record))
        try:
            return json.dumps(payload, ensure_ascii=False)
        except TypeError:
            sanitized = {key: _coerce_json(value) for key, value in payload.items()}
            return json.dumps(sanitized, ensure_ascii=False)


class _ConsoleFormatter(logging.Formatter):
    """!
    @brief Severity-coloured console formatter mirroring the human log.
    """

    def __init__(self, *, use_color: bool) -> None:
        super().__init__("%(asctime)s %(levelname)-8s %(message)s", datefmt="%H:%M:%S")
        self._use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        if not self._use_color:
            return text
        colour = _LEVEL_COLOURS.get(record.levelno, "")
        return f"{colour}{text}{_RESET}" if colour else text


def _extract_extras(record: logging.LogRecord) -> Dict[str, object]:
    extras: Dict[str, object] = {}
    for key, value in record.__dict__.items():
        if key in _STANDARD_RECORD_KEYS:
            continue
        extras[key] = value
    return extras


def _coerce_json(value: object) -> object:
    try:
        json.dumps(value)
    except TypeError:
        return repr(value)
    return value


def _configure_logger(
    logger: logging.Logger,
    pairs: Iterable[Tuple[logging.Handler, logging.Formatter]],
) -> None:
    """!
    @brief Reset a logger and attach the supplied handler/formatter pairs.
    """

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for flt in list(logger.filters):
        logger.removeFilter(flt)
    for handler, formatter in pairs:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.propagate = False


def build_event_extra(event: str, **payload: object) -> Dict[str, object]:
    """!
    @brief Build the ``extra`` mapping for a machine-log event.
    """

    extra: Dict[str, object] = {"event": event}
    extra.update(payload)
    return extra


def setup_logging(
    root_dir: Path,
    *,
    json_to_stdout: bool = False,
    console: bool = False,
    use_color: bool = True,
    level: int = logging.INFO,
    console_level: int = logging.INFO,
    run_label: str | None = None,
) -> Tuple[logging.Logger, logging.Logger]:
    """!
    @brief Set up the human and machine loggers for one run.
    @details Creates ``root_dir`` when needed and opens a per-run pair of files
    named after the UTC start time. When ``console`` is set the human channel
    is mirrored to ``stderr`` with severity colours.
    @param root_dir Directory receiving the log files.
    @param json_to_stdout Mirror machine events to ``stdout``.
    @param console Mirror human messages to the console.
    @param use_color Colourise console output.
    @param level Level applied to both file channels.
    @param console_level Minimum level shown on the console.
    @param run_label Optional label (the phase) recorded in run metadata.
    @returns Tuple of ``(human_logger, machine_logger)``.
    """

    global _CURRENT_LOG_DIRECTORY

    root_dir.mkdir(parents=True, exist_ok=True)
    _CURRENT_LOG_DIRECTORY = root_dir

    stamp = _dt.datetime.now(tz=_dt.timezone.utc).strftime("%Y%m%d-%H%M%S")
    human_path = root_dir / f"twingate-janitor-{stamp}.log"
    machine_path = root_dir / f"twingate-janitor-{stamp}.jsonl"
    _CURRENT_LOG_FILES.clear()
    _CURRENT_LOG_FILES.update({"human": human_path, "machine": machine_path})

    human_logger = logging.getLogger(HUMAN_LOGGER_NAME)
    machine_logger = logging.getLogger(MACHINE_LOGGER_NAME)
    human_logger.setLevel(min(level, console_level))
    machine_logger.setLevel(level)

    human_file = logging.FileHandler(human_path, encoding="utf-8")
    human_file.setLevel(level)
    human_pairs: list[Tuple[logging.Handler, logging.Formatter]] = [
        (
            human_file,
            logging.Formatter(
                "%(asctime)s %(levelname)-8s [%(channel)s] %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            ),
        )
    ]
    if console:
        console_handler = logging.StreamHandler(stream=sys.stderr)
        console_handler.setLevel(console_level)
        human_pairs.append((console_handler, _ConsoleFormatter(use_color=use_color)))

    machine_pairs: list[Tuple[logging.Handler, logging.Formatter]] = [
        (logging.FileHandler(machine_path, encoding="utf-8"), _JsonLineFormatter())
    ]
    if json_to_stdout:
        machine_pairs.append((logging.StreamHandler(stream=sys.stdout), _JsonLineFormatter()))

    _configure_logger(human_logger, human_pairs)
    _configure_logger(machine_logger, machine_pairs)

    human_logger.addFilter(_ChannelFilter("human"))
    machine_logger.addFilter(_ChannelFilter("machine"))

    _emit_run_metadata(human_logger, machine_logger, run_label)

    return human_logger, machine_logger


def get_human_logger() -> logging.Logger:
    """!
    @brief Retrieve the configured human-readable logger.
    """

    return logging.getLogger(HUMAN_LOGGER_NAME)


def get_machine_logger() -> logging.Logger:
    """!
    @brief Retrieve the configured machine/JSON logger.
    """

    return logging.getLogger(MACHINE_LOGGER_NAME)


def get_log_directory() -> Path | None:
    """!
    @brief Return the most recently configured log directory, if any.
    """

    return _CURRENT_LOG_DIRECTORY


def get_log_files() -> Mapping[str, Path]:
    """!
    @brief Return the ``human``/``machine`` file paths of the current run.
    """

    return dict(_CURRENT_LOG_FILES)


def get_run_metadata() -> Mapping[str, object] | None:
    """!
    @brief Return the most recent run metadata payload.
    @details Contains ``run_id`` (UUID4 hex), ``timestamp`` in ISO-8601 UTC
    form, version/build identifiers, and the optional run label.
    """

    return dict(_RUN_METADATA) if _RUN_METADATA is not None else None


def _emit_run_metadata(
    human_logger: logging.Logger,
    machine_logger: logging.Logger,
    run_label: str | None,
) -> None:
    global _RUN_METADATA

    moment = _dt.datetime.now(tz=_dt.timezone.utc)
    _RUN_METADATA = {
        "run_id": uuid.uuid4().hex,
        "timestamp": moment.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        "version": version.__version__,
        "build": version.__build__,
        "python": sys.version.split()[0],
        "logdir": str(_CURRENT_LOG_DIRECTORY) if _CURRENT_LOG_DIRECTORY else None,
        "label": run_label,
    }

    human_logger.info(
        "Twingate Janitor %s (%s) starting, run %s",
        version.__version__,
        version.__build__,
        _RUN_METADATA["run_id"],
    )
    if _CURRENT_LOG_DIRECTORY is not None:
        human_logger.debug("Logs directory: %s", _CURRENT_LOG_DIRECTORY)

    machine_logger.info("run_start", extra={"event": "run_start", "run": dict(_RUN_METADATA)})


__all__ = [
    "HUMAN_LOGGER_NAME",
    "MACHINE_LOGGER_NAME",
    "build_event_extra",
    "get_human_logger",
    "get_log_directory",
    "get_log_files",
    "get_machine_logger",
    "get_run_metadata",
    "setup_logging",
]
