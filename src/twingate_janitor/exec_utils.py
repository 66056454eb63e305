"""!
@brief Subprocess execution helpers with sanitised environments.
@details Centralises invocation of :func:`subprocess.run` so callers inherit
consistent logging, dry-run behaviour, and environment handling. The module
also owns the installer exit-code policy: which codes count as success, which
mean "success, reboot required", and which mean another installation is in
progress and may be retried.
"""

from __future__ import annotations

import enum
import os
import subprocess
import time
from collections.abc import Callable, Iterable, Mapping, MutableMapping, Sequence
from dataclasses import dataclass

from . import constants, logging_ext

_SANITIZE_BLOCKLIST = {
    "PYTHONPATH",
    "PYTHONHOME",
    "PYTHONWARNINGS",
    "VIRTUAL_ENV",
    "PIP_REQUIRE_VIRTUALENV",
    "CONDA_PREFIX",
    "CONDA_DEFAULT_ENV",
    "PYENV_VERSION",
    "POETRY_ACTIVE",
    "__PYVENV_LAUNCHER__",
}

BUSY_BACKOFF_BASE = 10.0
BUSY_BACKOFF_CAP = 60.0


@dataclass
class CommandResult:
    """!
    @brief Outcome information from :func:`run_command`.
    @details Encapsulates the executed command, captured output streams,
    duration, and metadata describing dry-run or timeout states. A missing
    executable is reported with return code ``127``.
    """

    command: Sequence[str]
    returncode: int
    stdout: str
    stderr: str
    duration: float
    skipped: bool = False
    timed_out: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.error


class ExitDisposition(enum.Enum):
    """!
    @brief Classification of an installer exit code.
    """

    SUCCESS = "success"
    SUCCESS_REBOOT_REQUIRED = "success_reboot_required"
    BUSY = "busy"
    FAILURE = "failure"

    @property
    def succeeded(self) -> bool:
        return self in (ExitDisposition.SUCCESS, ExitDisposition.SUCCESS_REBOOT_REQUIRED)


def classify_exit_code(code: int) -> ExitDisposition:
    """!
    @brief Map an installer exit code onto an :class:`ExitDisposition`.
    @details ``3010`` and ``1641`` are collapsed into the success path with a
    reboot flag; ``1618`` (another installation in progress) is retryable.
    """

    if code in constants.INSTALLER_SUCCESS_CODES:
        return ExitDisposition.SUCCESS
    if code in constants.INSTALLER_REBOOT_CODES:
        return ExitDisposition.SUCCESS_REBOOT_REQUIRED
    if code == constants.INSTALLER_BUSY_CODE:
        return ExitDisposition.BUSY
    return ExitDisposition.FAILURE


def compute_busy_backoff(attempt: int) -> float:
    """!
    @brief Exponential backoff for busy installer states, capped at
    :data:`BUSY_BACKOFF_CAP`.
    @param attempt Current attempt number (1-indexed).
    """

    exponent = max(0, int(attempt) - 1)
    return float(min(BUSY_BACKOFF_CAP, BUSY_BACKOFF_BASE * (2**exponent)))


def _build_call_payload(
    command_list: Sequence[str],
    *,
    timeout: float | int | None,
    cwd: str | None,
    extra: Mapping[str, object] | None,
) -> MutableMapping[str, object]:
    payload: MutableMapping[str, object] = {
        "command": list(command_list),
        "timeout": timeout,
    }
    if cwd:
        payload["cwd"] = cwd
    if extra:
        for key, value in extra.items():
            if key not in {"event", "result"}:
                payload[key] = value
    return payload


def _build_result_payload(
    *,
    return_code: int,
    duration: float,
    stdout: str,
    stderr: str,
    error: str | None = None,
    timed_out: bool = False,
) -> dict[str, object]:
    return {
        "rc": return_code,
        "duration_ms": round(duration * 1000, 3),
        "stdout": stdout,
        "stderr": stderr,
        "error": error,
        "timed_out": timed_out,
    }


def sanitize_environment(
    *,
    base_env: Mapping[str, str] | None = None,
    inherit: bool = True,
    extra: Mapping[str, str] | None = None,
    remove: Iterable[str] | None = None,
) -> MutableMapping[str, str]:
    """!
    @brief Produce a subprocess environment stripped of virtualenv artefacts.
    @details ``base_env`` defaults to :data:`os.environ` when ``inherit`` is
    ``True``. Installers launched from a frozen build must not see the
    bundle's ``PYTHONHOME``/``PYTHONPATH``.
    """

    if base_env is not None:
        environment: MutableMapping[str, str] = {
            str(k): str(v) for k, v in base_env.items() if v is not None
        }
    elif inherit:
        environment = {str(k): str(v) for k, v in os.environ.items() if v is not None}
    else:
        environment = {}

    for key in _SANITIZE_BLOCKLIST:
        environment.pop(key, None)

    if remove is not None:
        for key in remove:
            environment.pop(key, None)

    if extra:
        for key, value in extra.items():
            environment[str(key)] = str(value)

    return environment


def run_command(
    command: Sequence[str] | str,
    *,
    event: str,
    timeout: int | float | None = None,
    dry_run: bool = False,
    human_message: str | None = None,
    extra: Mapping[str, object] | None = None,
    env: Mapping[str, str] | None = None,
    inherit_env: bool = True,
    env_overrides: Mapping[str, str] | None = None,
    cwd: str | None = None,
) -> CommandResult:
    """!
    @brief Execute ``command`` with consistent logging and environment hygiene.
    @details Emits ``*_plan`` and ``*_result`` machine-log events, logs human
    friendly messaging, and supports dry-run mode which echoes the intended
    command without executing it. Failures to launch are returned as results
    rather than raised so every caller applies its own step discipline.
    @param command Sequence of command arguments.
    @param event Base name for structured log events.
    @param timeout Optional timeout (seconds) passed to :func:`subprocess.run`.
    @param dry_run When ``True`` no subprocess is spawned and the result is
    marked as ``skipped``.
    @param human_message Optional message emitted to the human logger before
    execution.
    @param extra Additional metadata merged into machine log payloads.
    @param env Explicit environment mapping to start from prior to sanitisation.
    @param inherit_env Whether to inherit :data:`os.environ` when ``env`` is
    ``None``.
    @param env_overrides Mapping applied after sanitisation.
    @param cwd Working directory supplied to :func:`subprocess.run`.
    @returns :class:`CommandResult` describing the observed outcome.
    """

    human_logger = logging_ext.get_human_logger()
    machine_logger = logging_ext.get_machine_logger()

    if isinstance(command, str):
        command_list = [command]
    else:
        command_list = [str(part) for part in command]

    call_payload = _build_call_payload(command_list, timeout=timeout, cwd=cwd, extra=extra)
    machine_logger.info(
        f"{event}_plan",
        extra={"event": f"{event}_plan", "call": call_payload, "dry_run": dry_run},
    )

    if dry_run:
        if human_message:
            human_logger.info("%s [dry-run]", human_message)
        else:
            human_logger.info("Dry-run: would execute %s", " ".join(command_list))
        machine_logger.info(
            f"{event}_dry_run",
            extra={
                "event": f"{event}_dry_run",
                "call": call_payload,
                "result": _build_result_payload(return_code=0, duration=0.0, stdout="", stderr=""),
            },
        )
        return CommandResult(
            command=command_list,
            returncode=0,
            stdout="",
            stderr="",
            duration=0.0,
            skipped=True,
        )

    if human_message:
        human_logger.info(human_message)

    sanitized_env = sanitize_environment(base_env=env, inherit=inherit_env, extra=env_overrides)

    start = time.monotonic()
    try:
        completed = subprocess.run(  # noqa: S603 - intentional command execution
            command_list,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
            env=sanitized_env,
            cwd=cwd,
        )
    except FileNotFoundError as exc:
        duration = time.monotonic() - start
        human_logger.error("Command not found: %s", command_list[0])
        machine_logger.error(
            f"{event}_missing",
            extra={
                "event": f"{event}_missing",
                "call": call_payload,
                "result": _build_result_payload(
                    return_code=127, duration=duration, stdout="", stderr="", error=str(exc)
                ),
            },
        )
        return CommandResult(
            command=command_list,
            returncode=127,
            stdout="",
            stderr="",
            duration=duration,
            error=str(exc),
        )
    except subprocess.TimeoutExpired as exc:
        duration = time.monotonic() - start
        human_logger.error("Command timed out after %.1fs: %s", duration, command_list[0])
        machine_logger.error(
            f"{event}_timeout",
            extra={
                "event": f"{event}_timeout",
                "call": call_payload,
                "result": _build_result_payload(
                    return_code=1,
                    duration=duration,
                    stdout=str(exc.stdout or ""),
                    stderr=str(exc.stderr or ""),
                    error="timeout",
                    timed_out=True,
                ),
            },
        )
        return CommandResult(
            command=command_list,
            returncode=1,
            stdout=str(exc.stdout or ""),
            stderr=str(exc.stderr or ""),
            duration=duration,
            timed_out=True,
            error="timeout",
        )
    except OSError as exc:
        duration = time.monotonic() - start
        human_logger.error("Failed to execute %s: %s", command_list[0], exc)
        machine_logger.error(
            f"{event}_error",
            extra={
                "event": f"{event}_error",
                "call": call_payload,
                "result": _build_result_payload(
                    return_code=1, duration=duration, stdout="", stderr="", error=str(exc)
                ),
            },
        )
        return CommandResult(
            command=command_list,
            returncode=1,
            stdout="",
            stderr="",
            duration=duration,
            error=str(exc),
        )

    duration = time.monotonic() - start
    machine_logger.info(
        f"{event}_result",
        extra={
            "event": f"{event}_result",
            "call": call_payload,
            "result": _build_result_payload(
                return_code=completed.returncode,
                duration=duration,
                stdout=str(completed.stdout),
                stderr=str(completed.stderr),
            ),
        },
    )

    if completed.returncode != 0:
        human_logger.warning("Command %s exited with %s", command_list[0], completed.returncode)

    return CommandResult(
        command=command_list,
        returncode=completed.returncode,
        stdout=completed.stdout,
        stderr=completed.stderr,
        duration=duration,
    )


def run_with_busy_retry(
    command: Sequence[str],
    *,
    event: str,
    attempts: int,
    timeout: int | float | None = None,
    human_message: str | None = None,
    extra: Mapping[str, object] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> CommandResult:
    """!
    @brief Run an installer command, retrying while it reports "busy".
    @details Only :data:`constants.INSTALLER_BUSY_CODE` is retried; any other
    code is returned immediately. After ``attempts`` busy responses the last
    result is returned and the caller escalates it.
    """

    human_logger = logging_ext.get_human_logger()
    total = max(1, int(attempts))
    attempt = 1

    while True:
        payload = dict(extra or {})
        payload.update({"attempt": attempt, "attempts": total})
        result = run_command(
            command,
            event=event,
            timeout=timeout,
            human_message=human_message,
            extra=payload,
        )
        if classify_exit_code(result.returncode) is not ExitDisposition.BUSY:
            return result
        if attempt >= total:
            human_logger.error("Windows Installer remained busy after %d attempts.", total)
            return result

        delay = compute_busy_backoff(attempt)
        human_logger.warning(
            "Windows Installer is busy with another installation; retrying in %.0fs (attempt %d/%d).",
            delay,
            attempt,
            total,
        )
        sleep(delay)
        attempt += 1


def launch_detached(command: Sequence[str], *, event: str) -> bool:
    """!
    @brief Start ``command`` without waiting for it to exit.
    @returns ``True`` when the process was spawned.
    """

    human_logger = logging_ext.get_human_logger()
    machine_logger = logging_ext.get_machine_logger()
    command_list = [str(part) for part in command]
    machine_logger.info(f"{event}_plan", extra={"event": f"{event}_plan", "command": command_list})
    try:
        subprocess.Popen(  # noqa: S603 - intentional command execution
            command_list,
            env=sanitize_environment(),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except OSError as exc:
        human_logger.warning("Unable to launch %s: %s", command_list[0], exc)
        machine_logger.warning(
            f"{event}_error", extra={"event": f"{event}_error", "command": command_list, "error": str(exc)}
        )
        return False
    return True


__all__ = [
    "CommandResult",
    "ExitDisposition",
    "classify_exit_code",
    "compute_busy_backoff",
    "launch_detached",
    "run_command",
    "run_with_busy_retry",
    "sanitize_environment",
]
