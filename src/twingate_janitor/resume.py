"""!
@brief Cross-reboot resume points.
@details The only memory that survives a reboot is a logon-triggered
scheduled task whose argument string is the flag of the phase to resume
into. :class:`ResumePointStore` keeps that primitive abstract so the state
machine never talks to ``schtasks`` directly.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Protocol, Sequence

from . import constants, elevation, logging_ext, tasks_services
from .phases import Phase


@dataclass(frozen=True)
class ResumeTask:
    """!
    @brief A persisted unit of work that re-invokes the orchestrator.
    """

    name: str
    command: tuple[str, ...]
    arguments: tuple[str, ...]
    identity: str
    trigger: str = "ONLOGON"
    run_level: str = "HIGHEST"


class ResumePointStore(Protocol):
    def persist_resume_point(self, phase: Phase) -> bool: ...

    def consume_resume_point(self, phase: Phase) -> bool: ...


def task_name_for(phase: Phase) -> str:
    """!
    @brief Well-known task name guarding the reboot that leads into ``phase``.
    @raises ValueError for :attr:`Phase.FRESH`, which is never resumed into.
    """

    try:
        return constants.RESUME_TASK_NAMES[phase.value]
    except KeyError:
        raise ValueError(f"No resume task exists for phase {phase.value}") from None


class ScheduledTaskResumeStore:
    """!
    @brief :class:`ResumePointStore` backed by Windows scheduled tasks.
    @details At most one resume task is registered at any time: persisting a
    new point first removes every known resume task.
    """

    def __init__(
        self,
        *,
        command: Sequence[str] | None = None,
        identity: str | None = None,
        identity_provider: Callable[[], str] = elevation.current_username,
    ) -> None:
        self._command = tuple(command) if command is not None else tuple(elevation.self_command())
        self._identity = identity
        self._identity_provider = identity_provider

    def build_task(self, phase: Phase) -> ResumeTask:
        identity = self._identity if self._identity is not None else self._identity_provider()
        return ResumeTask(
            name=task_name_for(phase),
            command=self._command,
            arguments=(phase.flag,),
            identity=identity,
        )

    def persist_resume_point(self, phase: Phase) -> bool:
        """!
        @brief Register the task that resumes into ``phase`` at next logon.
        @returns ``True`` only when registration succeeded; callers must not
        reboot otherwise.
        """

        human_logger = logging_ext.get_human_logger()
        machine_logger = logging_ext.get_machine_logger()
        task = self.build_task(phase)

        for name in constants.RESUME_TASK_NAMES.values():
            if not tasks_services.unregister_task(name):
                human_logger.error("Leftover resume task %s could not be removed", name)
                return False

        registered = tasks_services.register_task(
            task.name,
            task.command,
            task.arguments,
            identity=task.identity,
            trigger=task.trigger,
            run_level=task.run_level,
        )
        machine_logger.info(
            "resume_point_persist",
            extra={
                "event": "resume_point_persist",
                "phase": phase.value,
                "task": task.name,
                "arguments": list(task.arguments),
                "identity": task.identity,
                "registered": registered,
            },
        )
        return registered

    def consume_resume_point(self, phase: Phase) -> bool:
        """!
        @brief Remove the task that resumed into ``phase``.
        """

        removed = tasks_services.unregister_task(task_name_for(phase))
        logging_ext.get_machine_logger().info(
            "resume_point_consume",
            extra={"event": "resume_point_consume", "phase": phase.value, "removed": removed},
        )
        return removed


__all__ = ["ResumePointStore", "ResumeTask", "ScheduledTaskResumeStore", "task_name_for"]
