"""!
@brief Network device inventory and ghost adapter removal.
@details Enumerates PnP devices through ``Get-PnpDevice`` (which includes
non-present devices) and removes them with ``pnputil /remove-device``. A
device is a ghost unless its status is exactly ``OK``. Removal of several
devices is a best-effort batch; the caller decides whether a partial failure
is fatal.
"""
from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence

from . import constants, exec_utils, logging_ext

POWERSHELL = "powershell.exe"
PNPUTIL = "pnputil.exe"


class DeviceHealth(enum.Enum):
    HEALTHY = "healthy"
    GHOST = "ghost"


@dataclass(frozen=True)
class Device:
    """!
    @brief A PnP device entry as reported by enumeration.
    """

    friendly_name: str
    instance_id: str
    status: str

    @property
    def is_ghost(self) -> bool:
        return classify(self) is DeviceHealth.GHOST


@dataclass
class BatchResult:
    """!
    @brief Accounting for a best-effort batch of removals or deletions.
    """

    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    failures: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def record(self, identifier: str, success: bool) -> None:
        self.attempted += 1
        if success:
            self.succeeded += 1
        else:
            self.failed += 1
            self.failures.append(identifier)

    def merge(self, other: "BatchResult") -> "BatchResult":
        return BatchResult(
            attempted=self.attempted + other.attempted,
            succeeded=self.succeeded + other.succeeded,
            failed=self.failed + other.failed,
            failures=[*self.failures, *other.failures],
        )


def classify(device: Device) -> DeviceHealth:
    """!
    @brief ``HEALTHY`` iff the status is exactly the healthy sentinel.
    """

    if device.status == constants.HEALTHY_DEVICE_STATUS:
        return DeviceHealth.HEALTHY
    return DeviceHealth.GHOST


def _parse_devices(output: str) -> List[Device]:
    text = output.strip()
    if not text:
        return []
    data = json.loads(text)
    if isinstance(data, dict):
        data = [data]
    devices: List[Device] = []
    for entry in data:
        if not isinstance(entry, dict):
            continue
        devices.append(
            Device(
                friendly_name=str(entry.get("FriendlyName") or ""),
                instance_id=str(entry.get("InstanceId") or ""),
                status=str(entry.get("Status") or ""),
            )
        )
    return [device for device in devices if device.instance_id]


class DeviceInventory:
    """!
    @brief Enumerate, classify, and remove network devices.
    """

    def __init__(self, *, dry_run: bool = False) -> None:
        self.dry_run = dry_run

    def list_by_name(self, pattern: str) -> List[Device]:
        """!
        @brief Return all devices whose friendly name matches the wildcard
        ``pattern``; an empty result is not an error.
        @raises RuntimeError when enumeration itself fails.
        """

        quoted = pattern.replace("'", "''")
        script = (
            f"@(Get-PnpDevice -FriendlyName '{quoted}' -ErrorAction SilentlyContinue | "
            "Select-Object FriendlyName,InstanceId,Status) | ConvertTo-Json -Compress"
        )
        result = exec_utils.run_command(
            [POWERSHELL, "-NoProfile", "-NonInteractive", "-Command", script],
            event="device_list",
            timeout=120,
            extra={"pattern": pattern},
        )
        if result.returncode != 0:
            raise RuntimeError(f"Device enumeration failed with exit code {result.returncode}")
        try:
            return _parse_devices(result.stdout)
        except ValueError as exc:
            raise RuntimeError(f"Unreadable device enumeration output: {exc}") from exc

    def list_ghosts(self, pattern: str) -> List[Device]:
        return [device for device in self.list_by_name(pattern) if device.is_ghost]

    def adapter_healthy(self, pattern: str) -> bool:
        """!
        @brief ``True`` when at least one matching device reports ``OK``.
        """

        try:
            devices = self.list_by_name(pattern)
        except RuntimeError as exc:
            logging_ext.get_human_logger().debug("Adapter health check failed: %s", exc)
            return False
        return any(classify(device) is DeviceHealth.HEALTHY for device in devices)

    def remove(self, instance_id: str) -> exec_utils.CommandResult:
        return exec_utils.run_command(
            [PNPUTIL, "/remove-device", instance_id],
            event="device_remove",
            timeout=120,
            dry_run=self.dry_run,
            human_message=f"Removing device {instance_id}",
            extra={"instance_id": instance_id},
        )

    def remove_many(self, instance_ids: Iterable[str]) -> BatchResult:
        """!
        @brief Attempt every removal; never stop at the first failure.
        """

        human_logger = logging_ext.get_human_logger()
        batch = BatchResult()
        for instance_id in instance_ids:
            result = self.remove(instance_id)
            success = result.returncode == 0 and not result.error
            batch.record(instance_id, success)
            if not success:
                human_logger.warning(
                    "Failed to remove device %s (exit code %s)", instance_id, result.returncode
                )
        human_logger.info(
            "Device removal: %d succeeded, %d failed", batch.succeeded, batch.failed
        )
        return batch

    def remove_ghosts(self, pattern: str) -> tuple[Sequence[Device], BatchResult]:
        ghosts = self.list_ghosts(pattern)
        if not ghosts:
            logging_ext.get_human_logger().info("No ghost adapters matching %s", pattern)
            return ghosts, BatchResult()
        for device in ghosts:
            logging_ext.get_human_logger().info(
                "Ghost adapter: %s [%s] status=%s",
                device.friendly_name,
                device.instance_id,
                device.status or "<none>",
            )
        return ghosts, self.remove_many(device.instance_id for device in ghosts)


__all__ = ["BatchResult", "Device", "DeviceHealth", "DeviceInventory", "classify"]
