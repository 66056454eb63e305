"""!
@brief Exception hierarchy shared across Twingate Janitor.
@details Every error that is allowed to cross a module boundary derives from
:class:`JanitorError` so :mod:`twingate_janitor.main` can translate it into
exit code ``1`` at the process boundary.
"""
from __future__ import annotations


class JanitorError(Exception):
    """!
    @brief Base class for recoverable, operator-facing failures.
    """


class ConfigError(JanitorError):
    """!
    @brief Raised when a configuration file or option is invalid.
    """


class ElevationError(JanitorError):
    """!
    @brief Raised when administrative rights cannot be acquired.
    """


class RegistryError(JanitorError):
    """!
    @brief Raised when a registry operation targets an invalid key.
    """


class StepFailed(JanitorError):
    """!
    @brief Raised by a fatal remediation step.
    @details Carries the failing step name so the final operator message can
    name it.
    """

    def __init__(self, step: str, message: str) -> None:
        super().__init__(f"{step}: {message}")
        self.step = step
        self.message = message


__all__ = ["ConfigError", "ElevationError", "JanitorError", "RegistryError", "StepFailed"]
