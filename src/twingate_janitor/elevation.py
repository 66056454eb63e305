"""!
@brief Elevation and user-context helpers.
@details Detects whether the process token holds administrative rights and,
when it does not, relaunches an elevated copy of the same program with every
original argument (including the phase flag) before the unprivileged instance
exits without side effects.
"""
from __future__ import annotations

import ctypes
import os
import subprocess
import sys
from typing import Sequence

from . import logging_ext
from .errors import ElevationError


def is_admin() -> bool:
    """!
    @brief Determine whether the current process token has administrative rights.
    """

    if os.name != "nt":
        return False
    try:
        shell32 = ctypes.windll.shell32  # type: ignore[attr-defined]
        return bool(shell32.IsUserAnAdmin())
    except Exception:
        return False


def current_username() -> str:
    """!
    @brief Return the invoking user, domain-qualified when the domain is known.
    """

    name = ""
    for candidate in (os.getlogin, lambda: os.environ.get("USERNAME"), lambda: os.environ.get("USER")):
        try:
            value = candidate()
        except Exception:
            value = None
        if value:
            name = str(value)
            break
    domain = os.environ.get("USERDOMAIN")
    if name and domain and "\\" not in name:
        return f"{domain}\\{name}"
    return name


def self_command() -> list[str]:
    """!
    @brief Command prefix that re-invokes this program.
    @details Frozen builds are their own executable; source installs run the
    package as a module under the current interpreter.
    """

    if getattr(sys, "frozen", False):
        return [sys.executable]
    return [sys.executable, "-m", "twingate_janitor"]


def relaunch_as_admin(argv: Sequence[str] | None = None) -> bool:
    """!
    @brief Relaunch this program elevated via ``ShellExecuteW("runas")``.
    @param argv Arguments to forward; defaults to ``sys.argv[1:]``.
    @returns ``True`` when the relaunch request was issued successfully.
    """

    if os.name != "nt":
        return False
    try:
        shell32 = ctypes.windll.shell32  # type: ignore[attr-defined]
    except Exception:
        return False

    executable, *prefix = self_command()
    arguments = [*prefix, *(list(argv) if argv is not None else list(sys.argv[1:]))]
    params = subprocess.list2cmdline(arguments)
    result = shell32.ShellExecuteW(None, "runas", executable, params, None, 1)
    return int(result) > 32


def ensure_elevated(argv: Sequence[str]) -> None:
    """!
    @brief Guarantee administrative rights before any privileged work.
    @details Returns normally when already elevated. Otherwise requests an
    elevated relaunch forwarding ``argv`` verbatim and raises
    :class:`SystemExit` with status ``0``; the caller must not reach any
    privileged operation in this process.
    @raises ElevationError when the elevation request could not be issued.
    """

    if is_admin():
        return

    human_logger = logging_ext.get_human_logger()
    machine_logger = logging_ext.get_machine_logger()
    forwarded = [str(arg) for arg in argv]
    machine_logger.info("elevation_relaunch", extra={"event": "elevation_relaunch", "argv": forwarded})

    if not relaunch_as_admin(forwarded):
        raise ElevationError("Administrative rights are required and the elevation request failed.")

    human_logger.info("Relaunched with administrative rights; this instance will exit.")
    raise SystemExit(0)


__all__ = ["current_username", "ensure_elevated", "is_admin", "relaunch_as_admin", "self_command"]
