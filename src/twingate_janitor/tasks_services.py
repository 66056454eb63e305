"""!
@brief Scheduled task and service management utilities.
@details Wraps ``schtasks.exe`` to register, query, and remove the logon
tasks that resume remediation after a reboot, starts the MDM enrollment tasks
on demand through PowerShell, and wraps ``sc.exe`` to stop and query the
client service with retry-aware logging.
"""
from __future__ import annotations

import subprocess
import time
from typing import Callable, Iterable, List, Sequence

from . import exec_utils, logging_ext, retry

SCHTASKS = "schtasks.exe"
POWERSHELL = "powershell.exe"

_SERVICE_MISSING_CODE = 1060
"""!
@brief ``sc.exe`` exit code for a service that does not exist.
"""


def task_exists(name: str) -> bool:
    """!
    @brief Return ``True`` when ``schtasks /Query`` finds the task.
    """

    result = exec_utils.run_command(
        [SCHTASKS, "/Query", "/TN", name],
        event="task_query",
        timeout=60,
        extra={"task": name},
    )
    return result.returncode == 0


def unregister_task(name: str) -> bool:
    """!
    @brief Remove a scheduled task; a task that does not exist is a success.
    @returns ``True`` when the task is absent afterwards.
    """

    human_logger = logging_ext.get_human_logger()

    if not task_exists(name):
        human_logger.debug("Scheduled task %s not present; nothing to remove", name)
        return True

    result = exec_utils.run_command(
        [SCHTASKS, "/Delete", "/TN", name, "/F"],
        event="task_delete",
        timeout=60,
        human_message=f"Removing scheduled task {name}",
        extra={"task": name},
    )
    if result.returncode == 0 and not result.error:
        human_logger.info("Removed scheduled task %s", name)
        return True

    human_logger.warning(
        "schtasks exited with %s while removing %s: %s",
        result.returncode,
        name,
        result.stderr.strip(),
    )
    return False


def register_task(
    name: str,
    command: Sequence[str],
    arguments: Sequence[str],
    *,
    identity: str,
    trigger: str = "ONLOGON",
    run_level: str = "HIGHEST",
) -> bool:
    """!
    @brief Register (or replace) a logon-triggered task.
    @details Any task with the same name is removed first so re-registration
    never leaves two tasks behind. The task runs ``command`` + ``arguments``
    as ``identity`` at the highest available run level, interactively.
    @returns ``True`` when ``schtasks /Create`` succeeded.
    """

    human_logger = logging_ext.get_human_logger()

    if not unregister_task(name):
        human_logger.error("Could not remove the existing task %s before re-registering it", name)
        return False

    task_run = subprocess.list2cmdline([*command, *arguments])
    create = [SCHTASKS, "/Create", "/TN", name, "/TR", task_run, "/SC", trigger, "/RL", run_level, "/F"]
    if identity:
        create[-1:-1] = ["/RU", identity, "/IT"]

    result = exec_utils.run_command(
        create,
        event="task_create",
        timeout=60,
        human_message=f"Registering scheduled task {name}",
        extra={"task": name, "identity": identity, "trigger": trigger},
    )
    if result.returncode == 0 and not result.error:
        human_logger.info("Registered scheduled task %s", name)
        return True

    human_logger.error(
        "schtasks exited with %s while registering %s: %s",
        result.returncode,
        name,
        (result.stderr or result.error or "").strip(),
    )
    return False


def trigger_now(namespace: str) -> bool:
    """!
    @brief Start every scheduled task under ``namespace``.
    @details Fire-and-forget: the tasks' own exit status is never inspected.
    @returns ``True`` when the PowerShell launcher itself succeeded.
    """

    human_logger = logging_ext.get_human_logger()
    task_path = namespace if namespace.endswith("\\") else namespace + "\\"
    quoted = task_path.replace("'", "''")
    script = (
        f"Get-ScheduledTask -TaskPath '{quoted}*' -ErrorAction Stop | "
        "Start-ScheduledTask -ErrorAction Stop"
    )
    result = exec_utils.run_command(
        [POWERSHELL, "-NoProfile", "-NonInteractive", "-Command", script],
        event="task_trigger",
        timeout=120,
        human_message=f"Starting scheduled tasks under {task_path}",
        extra={"namespace": task_path},
    )
    if result.returncode != 0:
        human_logger.warning("Could not start tasks under %s: %s", task_path, result.stderr.strip())
        return False
    return True


def stop_services(
    service_names: Iterable[str],
    *,
    timeout: int = 30,
    wait_attempts: int = 10,
    wait_interval: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
) -> List[str]:
    """!
    @brief Stop services and wait until each reports ``STOPPED``.
    @details A service that does not exist counts as stopped.
    @returns Names of services that are still not stopped.
    """

    human_logger = logging_ext.get_human_logger()

    services: List[str] = [name for name in (str(name).strip() for name in service_names) if name]
    still_running: List[str] = []

    for service in services:
        stop_result = exec_utils.run_command(
            ["sc.exe", "stop", service],
            event="service_stop",
            timeout=timeout,
            human_message=f"Stopping service {service}",
            extra={"service": service},
        )
        if stop_result.returncode == _SERVICE_MISSING_CODE:
            human_logger.info("Service %s is not installed", service)
            continue

        outcome = retry.retry(
            lambda name=service: query_service_status(name, retries=1, timeout=timeout),
            max_attempts=wait_attempts,
            interval=wait_interval,
            is_success=lambda status: status in {"STOPPED", "MISSING"},
            label=f"service {service} stopped",
            sleep=sleep,
        )
        if outcome.succeeded:
            human_logger.info("Service %s stopped", service)
        else:
            human_logger.warning("Service %s still reports %s", service, outcome.value)
            still_running.append(service)

    return still_running


def start_services(service_names: Iterable[str], *, timeout: int = 30) -> None:
    human_logger = logging_ext.get_human_logger()

    services: List[str] = [name for name in (str(name).strip() for name in service_names) if name]
    for service in services:
        result = exec_utils.run_command(
            ["sc.exe", "start", service],
            event="service_start",
            timeout=timeout,
            human_message=f"Starting service {service}",
            extra={"service": service},
        )
        if result.returncode == 0 and not result.error:
            human_logger.info("Started service %s", service)
        else:
            human_logger.debug("Service %s start returned %s", service, result.returncode)


def query_service_status(
    service: str,
    *,
    retries: int = 3,
    delay: float = 1.0,
    timeout: int = 30,
) -> str:
    """!
    @brief Query the current status of a Windows service with retry support.
    @details Returns the uppercase state token (``RUNNING``, ``STOPPED``...),
    ``MISSING`` when the service does not exist, or ``UNKNOWN`` when every
    attempt failed.
    """

    service_name = str(service).strip()
    if not service_name:
        return "UNKNOWN"

    human_logger = logging_ext.get_human_logger()

    for attempt in range(1, max(1, retries) + 1):
        result = exec_utils.run_command(
            ["sc.exe", "query", service_name],
            event="service_query",
            timeout=timeout,
            extra={"service": service_name, "attempt": attempt},
        )

        if result.returncode == _SERVICE_MISSING_CODE:
            return "MISSING"

        if result.returncode == 0 and not result.error:
            status = _parse_service_state(result.stdout)
            if status:
                return status
        else:
            human_logger.debug("sc query for %s returned %s", service_name, result.returncode)

        if attempt < retries:
            time.sleep(delay)

    return "UNKNOWN"


def _parse_service_state(output: str) -> str:
    """!
    @brief Extract the status token from ``sc query`` output.
    """

    for line in output.splitlines():
        stripped = line.strip()
        if stripped.upper().startswith("STATE"):
            _, _, remainder = stripped.partition(":")
            tokens = remainder.strip().split()
            if tokens:
                return tokens[-1].upper()
    return ""


def request_reboot(delay_seconds: int = 15, *, message: str = "Twingate remediation will continue after restart.") -> bool:
    """!
    @brief Schedule a system restart through ``shutdown.exe``.
    @returns ``True`` when the restart was accepted.
    """

    result = exec_utils.run_command(
        ["shutdown.exe", "/r", "/t", str(max(0, int(delay_seconds))), "/c", message],
        event="system_reboot",
        timeout=60,
        human_message=f"Restarting in {delay_seconds}s",
    )
    if result.returncode != 0:
        logging_ext.get_human_logger().error("shutdown.exe exited with %s", result.returncode)
        return False
    return True


__all__ = [
    "query_service_status",
    "register_task",
    "request_reboot",
    "start_services",
    "stop_services",
    "task_exists",
    "trigger_now",
    "unregister_task",
]
