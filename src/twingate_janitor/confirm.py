"""!
@brief Confirmation prompt for the standalone cleanup.
@details Deleting network profile records cannot be undone without the
exported ``.reg`` backups, so interactive runs ask first.
"""

from __future__ import annotations

import sys
from typing import Callable

CONFIRM_PROMPT = (
    "This will remove ghost Twingate adapters and delete stale Twingate "
    "network profiles. Continue? (Y/n)"
)


def request_cleanup_confirmation(
    *,
    dry_run: bool,
    assume_yes: bool,
    input_func: Callable[[str], str] | None = None,
    interactive: bool | None = None,
) -> bool:
    """!
    @brief Ask the operator to confirm a cleanup.
    @details Dry-runs and ``--yes`` skip the prompt. Non-interactive sessions
    are treated as accepted so unattended invocations are not blocked.
    @param input_func Optional input function override.
    @param interactive Optional override for terminal detection.
    @returns ``True`` when the cleanup should proceed.
    """

    if dry_run or assume_yes:
        return True

    if interactive is None:
        stdin = getattr(sys, "stdin", None)
        isatty = getattr(stdin, "isatty", None)
        interactive = bool(isatty and isatty())

    if not interactive:
        return True

    if input_func is None:
        input_func = input

    try:
        response = input_func(f"{CONFIRM_PROMPT} ")
    except EOFError:
        return False

    return response.strip().lower() in ("", "y", "yes")


__all__ = ["CONFIRM_PROMPT", "request_cleanup_confirmation"]
