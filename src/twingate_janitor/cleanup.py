"""!
@brief Ghost adapter and stale profile cleanup.
@details One routine shared by the remediation phases and the standalone
``cleanup`` command: remove every non-healthy adapter matching the product's
naming convention, then apply the profile policy. Whether a partial failure
is fatal is decided by the caller.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from . import logging_ext
from .devices import BatchResult, DeviceInventory
from .profiles import ProfileStore


@dataclass
class CleanupReport:
    """!
    @brief Aggregated outcome of one cleanup pass.
    """

    devices: BatchResult = field(default_factory=BatchResult)
    profiles: BatchResult = field(default_factory=BatchResult)
    active_guid: str | None = None
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.devices.ok and self.profiles.ok and not self.errors

    def summary(self) -> str:
        text = (
            f"devices removed {self.devices.succeeded}/{self.devices.attempted}, "
            f"profiles deleted {self.profiles.succeeded}/{self.profiles.attempted}"
        )
        if self.errors:
            text += f", errors: {'; '.join(self.errors)}"
        return text


def run_cleanup(
    devices: DeviceInventory,
    profiles: ProfileStore,
    *,
    adapter_pattern: str,
    preserve_active: bool = True,
    export_before_delete: bool = False,
    active_guid: str | None = None,
) -> CleanupReport:
    """!
    @brief Remove ghost adapters, then clean matching network profiles.
    @param preserve_active Keep (and canonically rename) the active profile;
    when ``False`` every matching profile is deleted.
    @param export_before_delete Export each profile to a ``.reg`` file first.
    @param active_guid Active profile recorded earlier; discovered from the
    live connection when omitted.
    """

    human_logger = logging_ext.get_human_logger()
    report = CleanupReport(active_guid=active_guid)

    try:
        _, report.devices = devices.remove_ghosts(adapter_pattern)
    except RuntimeError as exc:
        human_logger.error("Ghost adapter enumeration failed: %s", exc)
        report.errors.append(f"device enumeration: {exc}")

    if preserve_active:
        if report.active_guid is None:
            report.active_guid = profiles.find_active_guid()
        if report.active_guid:
            human_logger.info("Active connection profile: %s", report.active_guid)
        else:
            human_logger.info("No active connection profile found for %s", adapter_pattern)

    hook = profiles.export_profile if export_before_delete else None
    report.profiles = profiles.delete_stale(
        None,
        report.active_guid,
        preserve_active=preserve_active,
        export_hook=hook,
    )

    logging_ext.get_machine_logger().info(
        "cleanup_summary",
        extra={
            "event": "cleanup_summary",
            "preserve_active": preserve_active,
            "devices_attempted": report.devices.attempted,
            "devices_failed": report.devices.failed,
            "profiles_attempted": report.profiles.attempted,
            "profiles_failed": report.profiles.failed,
            "errors": list(report.errors),
        },
    )
    return report


__all__ = ["CleanupReport", "run_cleanup"]
