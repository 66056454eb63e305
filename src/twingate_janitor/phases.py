"""!
@brief Remediation phases.
@details A phase is selected only by the ``--phase`` flag the process was
started with; the resume task for a reboot checkpoint carries the flag of the
phase that follows it.
"""
from __future__ import annotations

import enum


class Phase(enum.Enum):
    """!
    @brief Named stages of the remediation state machine.
    """

    FRESH = "fresh"
    AFTER_REBOOT_1 = "after-reboot-1"
    AFTER_REBOOT_2 = "after-reboot-2"

    @property
    def flag(self) -> str:
        return f"--phase={self.value}"

    def next(self) -> "Phase | None":
        """!
        @brief Phase entered after this phase's reboot, ``None`` when terminal.
        """

        order = list(Phase)
        index = order.index(self)
        return order[index + 1] if index + 1 < len(order) else None

    @classmethod
    def from_flag(cls, text: str) -> "Phase":
        """!
        @brief Parse ``fresh``/``after-reboot-N`` (a leading ``--phase=`` is accepted).
        @raises ValueError for unknown phases.
        """

        value = text.strip().lower()
        if value.startswith("--phase="):
            value = value[len("--phase="):]
        for phase in cls:
            if phase.value == value:
                return phase
        raise ValueError(f"Unknown phase: {text!r}")


__all__ = ["Phase"]
