"""!
@brief Client process control helpers.
@details Terminates the VPN client's executables before uninstalling and
confirms afterwards that none of them survived, since a resident process
keeps the adapter driver and the install directory locked.
"""
from __future__ import annotations

import csv
import io
import os
import time
from typing import Callable, Iterable, List, Sequence

from . import exec_utils, logging_ext, tasks_services


def terminate_processes(names: Iterable[str], *, timeout: int = 30) -> None:
    """!
    @brief Force-stop every process whose image name is in ``names``.
    @details ``taskkill`` returns ``128`` when no such process exists; that is
    logged at debug level only.
    """

    human_logger = logging_ext.get_human_logger()

    processes: List[str] = [name for name in (str(name).strip() for name in names) if name]
    if not processes:
        human_logger.debug("No client processes supplied for termination.")
        return

    for process in processes:
        result = exec_utils.run_command(
            ["taskkill.exe", "/IM", process, "/F", "/T"],
            event="terminate_process",
            timeout=timeout,
            extra={"process_name": process},
        )
        if result.returncode == 0:
            human_logger.info("Terminated %s", process)
        else:
            human_logger.debug(
                "taskkill exited with %s for %s: %s", result.returncode, process, result.stderr.strip()
            )


def running_processes(names: Iterable[str], *, timeout: int = 30) -> List[str]:
    """!
    @brief Return the subset of ``names`` that is currently running.
    @raises RuntimeError when the process list cannot be read, since callers
    use this as a verification and must not treat "unknown" as "stopped".
    """

    wanted = {str(name).strip().lower(): str(name).strip() for name in names if str(name).strip()}
    if not wanted:
        return []

    result = exec_utils.run_command(
        ["tasklist.exe", "/FO", "CSV", "/NH"],
        event="process_list",
        timeout=timeout,
    )
    if result.returncode != 0:
        raise RuntimeError(f"tasklist failed with exit code {result.returncode}")

    found: List[str] = []
    for row in csv.reader(io.StringIO(result.stdout)):
        if not row:
            continue
        image = row[0].strip().lower()
        if image in wanted and wanted[image] not in found:
            found.append(wanted[image])
    return found


class ClientControl:
    """!
    @brief Stop, launch, and restart the VPN client.
    """

    def __init__(
        self,
        *,
        executable: str,
        process_names: Sequence[str],
        service_names: Sequence[str],
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.executable = executable
        self.process_names = tuple(process_names)
        self.service_names = tuple(service_names)
        self.sleep = sleep

    def stop(self) -> List[str]:
        """!
        @brief Stop the client service and processes.
        @returns Names of services or processes still running afterwards.
        @raises RuntimeError when the process list cannot be read.
        """

        remaining = tasks_services.stop_services(self.service_names, sleep=self.sleep)
        terminate_processes(self.process_names)
        return [*remaining, *running_processes(self.process_names)]

    def launch(self) -> bool:
        human_logger = logging_ext.get_human_logger()
        if not os.path.exists(self.executable):
            human_logger.warning("Client executable not found: %s", self.executable)
            return False
        human_logger.info("Launching %s", self.executable)
        return exec_utils.launch_detached([self.executable], event="client_launch")

    def restart(self) -> bool:
        """!
        @brief Stop everything, start the service again, and relaunch the UI.
        @details Relaunching forces the client through sign-in again.
        """

        try:
            self.stop()
        except RuntimeError as exc:
            logging_ext.get_human_logger().warning("Could not confirm client shutdown: %s", exc)
        tasks_services.start_services(self.service_names)
        return self.launch()


__all__ = ["ClientControl", "running_processes", "terminate_processes"]
