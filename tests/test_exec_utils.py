"""!
@brief Exec utils behaviour tests.
@details Validates environment sanitisation, dry-run and missing-tool flows,
installer exit-code classification, and busy-installer retries for
:mod:`twingate_janitor.exec_utils`.
"""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Dict, List

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from twingate_janitor import exec_utils  # noqa: E402


class _StubLogger:
    """!
    @brief Lightweight logger capturing structured log calls.
    """

    def __init__(self) -> None:
        self.records: List[tuple[str, str, Dict[str, object]]] = []

    def _record(self, level: str, message: str, args: tuple[object, ...], kwargs: Dict[str, object]) -> None:
        text = message % args if args else message
        self.records.append((level, text, dict(kwargs)))

    def debug(self, message: str, *args: object, **kwargs: object) -> None:  # noqa: D401 - logging compatibility
        self._record("debug", message, args, kwargs)

    def info(self, message: str, *args: object, **kwargs: object) -> None:  # noqa: D401 - logging compatibility
        self._record("info", message, args, kwargs)

    def warning(self, message: str, *args: object, **kwargs: object) -> None:  # noqa: D401 - logging compatibility
        self._record("warning", message, args, kwargs)

    def error(self, message: str, *args: object, **kwargs: object) -> None:  # noqa: D401 - logging compatibility
        self._record("error", message, args, kwargs)


@pytest.fixture
def stub_loggers(monkeypatch: pytest.MonkeyPatch) -> tuple[_StubLogger, _StubLogger]:
    human_logger = _StubLogger()
    machine_logger = _StubLogger()
    monkeypatch.setattr(exec_utils.logging_ext, "get_human_logger", lambda: human_logger)
    monkeypatch.setattr(exec_utils.logging_ext, "get_machine_logger", lambda: machine_logger)
    return human_logger, machine_logger


def test_sanitize_environment_strips_blocklist_and_overrides() -> None:
    """!
    @brief Sanitisation removes interpreter variables and applies overrides.
    """

    base_env = {"PYTHONPATH": "should_remove", "KEEP": "1", "LANG": "C"}

    sanitized = exec_utils.sanitize_environment(
        base_env=base_env,
        inherit=False,
        extra={"NEW": "value"},
        remove=["KEEP"],
    )

    assert "PYTHONPATH" not in sanitized
    assert "KEEP" not in sanitized
    assert sanitized["LANG"] == "C"
    assert sanitized["NEW"] == "value"


def test_run_command_dry_run_logs_without_invocation(monkeypatch, stub_loggers) -> None:
    """!
    @brief Dry-run execution skips the subprocess while logging intent.
    """

    human_logger, machine_logger = stub_loggers

    def fake_run(*args: object, **kwargs: object) -> None:  # pragma: no cover - should not be called
        raise AssertionError("subprocess.run should not be called in dry-run mode")

    monkeypatch.setattr(exec_utils.subprocess, "run", fake_run)

    result = exec_utils.run_command(
        ["pnputil.exe", "/remove-device", "ROOT\\NET\\0001"],
        event="device_remove",
        dry_run=True,
        human_message="Removing device ROOT\\NET\\0001",
    )

    assert result.skipped is True
    assert result.returncode == 0
    assert any("[dry-run]" in text for _, text, _ in human_logger.records)
    events = [kwargs["extra"]["event"] for _, _, kwargs in machine_logger.records]
    assert events == ["device_remove_plan", "device_remove_dry_run"]


def test_run_command_missing_tool_returns_127(monkeypatch, stub_loggers) -> None:
    """!
    @brief A missing executable becomes return code 127 instead of an exception.
    """

    def fake_run(command, **kwargs):
        raise FileNotFoundError(2, "No such file", command[0])

    monkeypatch.setattr(exec_utils.subprocess, "run", fake_run)

    result = exec_utils.run_command(["pnputil.exe", "/enum-devices"], event="device_enum")

    assert result.returncode == 127
    assert result.error
    assert not result.ok


def test_run_command_timeout_is_flagged(monkeypatch, stub_loggers) -> None:
    """!
    @brief Timeouts are reported on the result rather than raised.
    """

    def fake_run(command, **kwargs):
        raise subprocess.TimeoutExpired(command, kwargs.get("timeout"))

    monkeypatch.setattr(exec_utils.subprocess, "run", fake_run)

    result = exec_utils.run_command(["msiexec.exe", "/x", "{GUID}"], event="package_uninstall", timeout=5)

    assert result.timed_out is True
    assert result.returncode != 0
    assert result.error == "timeout"


def test_run_command_returns_completed_output(monkeypatch, stub_loggers) -> None:
    """!
    @brief Captured stdout and the exit code are carried through unchanged.
    """

    captured: Dict[str, object] = {}

    def fake_run(command, **kwargs):
        captured["command"] = command
        captured["env"] = kwargs["env"]
        return SimpleNamespace(returncode=0, stdout="STATE : 4 RUNNING", stderr="")

    monkeypatch.setenv("PYTHONPATH", "leak")
    monkeypatch.setattr(exec_utils.subprocess, "run", fake_run)

    result = exec_utils.run_command(["sc.exe", "query", "Twingate.Service"], event="service_query")

    assert result.ok
    assert result.stdout == "STATE : 4 RUNNING"
    assert captured["command"] == ["sc.exe", "query", "Twingate.Service"]
    assert "PYTHONPATH" not in captured["env"]


@pytest.mark.parametrize(
    ("code", "expected"),
    [
        (0, exec_utils.ExitDisposition.SUCCESS),
        (3010, exec_utils.ExitDisposition.SUCCESS_REBOOT_REQUIRED),
        (1641, exec_utils.ExitDisposition.SUCCESS_REBOOT_REQUIRED),
        (1618, exec_utils.ExitDisposition.BUSY),
        (1603, exec_utils.ExitDisposition.FAILURE),
        (127, exec_utils.ExitDisposition.FAILURE),
    ],
)
def test_classify_exit_code(code: int, expected: exec_utils.ExitDisposition) -> None:
    assert exec_utils.classify_exit_code(code) is expected


def test_reboot_required_counts_as_success() -> None:
    assert exec_utils.ExitDisposition.SUCCESS_REBOOT_REQUIRED.succeeded
    assert not exec_utils.ExitDisposition.BUSY.succeeded


def test_busy_backoff_doubles_and_caps() -> None:
    """!
    @brief Backoff starts at the base delay, doubles, and stops at the cap.
    """

    delays = [exec_utils.compute_busy_backoff(attempt) for attempt in range(1, 6)]
    assert delays == [10.0, 20.0, 40.0, 60.0, 60.0]


def _result(code: int) -> exec_utils.CommandResult:
    return exec_utils.CommandResult(command=["msiexec.exe"], returncode=code, stdout="", stderr="", duration=0.0)


def test_busy_retry_succeeds_after_busy_responses(monkeypatch, stub_loggers) -> None:
    """!
    @brief ``1618`` is retried with backoff until the installer is free.
    """

    codes = iter([1618, 1618, 0])
    calls: List[Dict[str, object]] = []
    sleeps: List[float] = []

    def fake_run_command(command, *, event, **kwargs):
        calls.append(dict(kwargs.get("extra") or {}))
        return _result(next(codes))

    monkeypatch.setattr(exec_utils, "run_command", fake_run_command)

    result = exec_utils.run_with_busy_retry(
        ["msiexec.exe", "/i", "client.msi"], event="package_install", attempts=3, sleep=sleeps.append
    )

    assert result.returncode == 0
    assert [call["attempt"] for call in calls] == [1, 2, 3]
    assert sleeps == [10.0, 20.0]


def test_busy_retry_gives_up_and_returns_last_result(monkeypatch, stub_loggers) -> None:
    """!
    @brief After the attempt budget the busy result is handed back to the caller.
    """

    sleeps: List[float] = []
    monkeypatch.setattr(exec_utils, "run_command", lambda command, **kwargs: _result(1618))

    result = exec_utils.run_with_busy_retry(
        ["msiexec.exe", "/x", "{GUID}"], event="package_uninstall", attempts=2, sleep=sleeps.append
    )

    assert result.returncode == 1618
    assert sleeps == [10.0]


def test_busy_retry_does_not_retry_real_failures(monkeypatch, stub_loggers) -> None:
    calls: List[object] = []

    def fake_run_command(command, **kwargs):
        calls.append(command)
        return _result(1603)

    monkeypatch.setattr(exec_utils, "run_command", fake_run_command)

    result = exec_utils.run_with_busy_retry(["msiexec.exe"], event="package_install", attempts=3, sleep=lambda _: None)

    assert result.returncode == 1603
    assert len(calls) == 1


def test_launch_detached_reports_spawn_failure(monkeypatch, stub_loggers) -> None:
    def fake_popen(*args, **kwargs):
        raise OSError("access denied")

    monkeypatch.setattr(exec_utils.subprocess, "Popen", fake_popen)

    assert exec_utils.launch_detached(["Twingate.exe"], event="client_launch") is False


def test_busy_retry_with_no_attempt_budget_still_runs_once(monkeypatch, stub_loggers) -> None:
    calls: List[object] = []
    sleeps: List[float] = []

    def fake_run_command(command, **kwargs):
        calls.append(command)
        return _result(1618)

    monkeypatch.setattr(exec_utils, "run_command", fake_run_command)

    result = exec_utils.run_with_busy_retry(["msiexec.exe"], event="package_install", attempts=0, sleep=sleeps.append)

    assert result.returncode == 1618
    assert len(calls) == 1
    assert sleeps == []
