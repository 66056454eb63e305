"""!
@brief Network-location profile cleanup.
@details Every reinstall of the client can leave another profile under
``NetworkList\\Profiles`` (``Twingate 2``, ``Twingate 3``...). The profile
whose GUID equals the ``InstanceID`` of the live connection is the active
one; every other matching record is stale. Two policies are supported:

- *preserve-active* renames the active profile to the canonical name first,
  then deletes every other matching record;
- *delete-all* deletes every matching record, active included, and is only
  used right before a fresh install.

Deletion failures are counted per record and never abort the batch. An
optional hook exports each record to a ``.reg`` file before it is deleted.
"""
from __future__ import annotations

import datetime as _dt
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Pattern

from . import constants, exec_utils, logging_ext, registry_tools
from .devices import BatchResult

POWERSHELL = "powershell.exe"

ExportHook = Callable[["NetworkProfile"], bool]


@dataclass(frozen=True)
class NetworkProfile:
    """!
    @brief A profile record keyed by its GUID.
    """

    name: str
    guid: str
    registry_path: str

    @property
    def handle(self) -> str:
        return registry_tools.compose_handle(constants.HKLM, self.registry_path)


def normalise_guid(raw: str | None) -> str:
    """!
    @brief Return ``{GUID}`` in upper case, or ``""`` for empty input.
    """

    token = str(raw or "").strip().strip("{}").strip()
    return f"{{{token.upper()}}}" if token else ""


class ProfileStore:
    """!
    @brief Enumerate, rename, export, and delete network profile records.
    """

    def __init__(
        self,
        *,
        name_pattern: str = constants.DEFAULT_PROFILE_PATTERN,
        canonical_name: str = constants.CANONICAL_PROFILE_NAME,
        adapter_pattern: str = constants.DEFAULT_ADAPTER_PATTERN,
        backup_directory: Path | None = None,
        dry_run: bool = False,
    ) -> None:
        self.name_pattern: Pattern[str] = re.compile(name_pattern, re.IGNORECASE)
        self.canonical_name = canonical_name
        self.adapter_pattern = adapter_pattern
        self.backup_directory = backup_directory
        self.dry_run = dry_run

    def _profile_at(self, key_name: str) -> NetworkProfile | None:
        path = f"{constants.NETWORK_PROFILES_PATH}\\{key_name}"
        name = registry_tools.get_value(constants.HKLM, path, "ProfileName")
        if name is None:
            return None
        return NetworkProfile(name=str(name), guid=normalise_guid(key_name), registry_path=path)

    def list_profiles(self) -> List[NetworkProfile]:
        profiles: List[NetworkProfile] = []
        for key_name in registry_tools.list_subkeys(constants.HKLM, constants.NETWORK_PROFILES_PATH):
            profile = self._profile_at(key_name)
            if profile is not None:
                profiles.append(profile)
        return profiles

    def list_by_name_pattern(self, pattern: Pattern[str] | str | None = None) -> List[NetworkProfile]:
        """!
        @brief Profiles whose name matches ``pattern`` (default: configured rule).
        """

        regex = self.name_pattern if pattern is None else (
            re.compile(pattern, re.IGNORECASE) if isinstance(pattern, str) else pattern
        )
        return [profile for profile in self.list_profiles() if regex.search(profile.name)]

    def find(self, guid: str) -> NetworkProfile | None:
        wanted = normalise_guid(guid)
        for key_name in registry_tools.list_subkeys(constants.HKLM, constants.NETWORK_PROFILES_PATH):
            if normalise_guid(key_name) == wanted:
                return self._profile_at(key_name)
        return None

    def find_active_guid(self) -> Optional[str]:
        """!
        @brief GUID of the connection profile bound to the product's adapter.
        @details ``Get-NetConnectionProfile`` reports the profile GUID as
        ``InstanceID``. Returns ``None`` when no matching connection is up or
        the query fails.
        """

        quoted = self.adapter_pattern.replace("'", "''")
        script = (
            "Get-NetConnectionProfile -ErrorAction SilentlyContinue | "
            f"Where-Object {{ $_.InterfaceAlias -like '{quoted}' }} | "
            "Select-Object -First 1 -ExpandProperty InstanceID"
        )
        result = exec_utils.run_command(
            [POWERSHELL, "-NoProfile", "-NonInteractive", "-Command", script],
            event="profile_active_query",
            timeout=60,
            extra={"adapter_pattern": self.adapter_pattern},
        )
        if result.returncode != 0:
            logging_ext.get_human_logger().warning(
                "Could not query the active connection profile (exit code %s)", result.returncode
            )
            return None
        guid = normalise_guid(result.stdout.strip().splitlines()[0] if result.stdout.strip() else "")
        return guid or None

    def rename_to_canonical(self, profile: NetworkProfile) -> bool:
        """!
        @brief Rename the record at ``profile.guid`` to the canonical name.
        @details No-op when the record no longer exists or is already
        canonical.
        @returns ``True`` when a rename was written.
        """

        human_logger = logging_ext.get_human_logger()
        current = self.find(profile.guid)
        if current is None:
            human_logger.debug("Profile %s no longer exists; nothing to rename", profile.guid)
            return False
        if current.name == self.canonical_name:
            return False

        if self.dry_run:
            human_logger.info(
                "Dry-run: would rename profile %s from '%s' to '%s'",
                current.guid,
                current.name,
                self.canonical_name,
            )
            return True

        for value_name in ("ProfileName", "Description"):
            registry_tools.set_string_value(
                constants.HKLM, current.registry_path, value_name, self.canonical_name
            )
        human_logger.info("Renamed profile %s from '%s' to '%s'", current.guid, current.name, self.canonical_name)
        logging_ext.get_machine_logger().info(
            "profile_rename",
            extra={"event": "profile_rename", "guid": current.guid, "old": current.name, "new": self.canonical_name},
        )
        return True

    def export_profile(self, profile: NetworkProfile) -> bool:
        """!
        @brief Export ``profile``'s subtree to the backup directory.
        """

        if self.backup_directory is None:
            return True
        stamp = _dt.datetime.now(tz=_dt.timezone.utc).strftime("%Y%m%d-%H%M%S")
        destination = self.backup_directory / f"profile-{profile.guid.strip('{}')}-{stamp}.reg"
        try:
            result = registry_tools.export_key(profile.handle, destination, dry_run=self.dry_run)
        except OSError as exc:
            logging_ext.get_human_logger().warning("Export of profile %s failed: %s", profile.guid, exc)
            return False
        if result.returncode != 0:
            logging_ext.get_human_logger().warning(
                "Export of profile %s failed (exit code %s)", profile.guid, result.returncode
            )
            return False
        logging_ext.get_human_logger().info("Exported profile %s to %s", profile.guid, destination)
        return True

    def delete_stale(
        self,
        pattern: Pattern[str] | str | None,
        active_guid: str | None,
        *,
        preserve_active: bool,
        export_hook: ExportHook | None = None,
    ) -> BatchResult:
        """!
        @brief Delete matching records under the preserve-active or delete-all policy.
        @details With ``preserve_active`` the active record is renamed before
        any deletion runs and is excluded from the batch. Without it every
        matching record is deleted, active included. A record whose export
        hook fails is not deleted and counts as a failure.
        """

        human_logger = logging_ext.get_human_logger()
        active = normalise_guid(active_guid)

        if preserve_active and active:
            active_profile = self.find(active)
            if active_profile is not None:
                try:
                    self.rename_to_canonical(active_profile)
                except OSError as exc:
                    human_logger.warning("Could not rename active profile %s: %s", active, exc)
            else:
                human_logger.info("Active profile %s has no registry record", active)

        candidates = self.list_by_name_pattern(pattern)
        if preserve_active and active:
            candidates = [profile for profile in candidates if profile.guid != active]

        batch = BatchResult()
        for profile in candidates:
            if export_hook is not None and not export_hook(profile):
                batch.record(profile.guid, False)
                continue
            try:
                result = registry_tools.delete_key(profile.handle, dry_run=self.dry_run)
            except OSError as exc:
                human_logger.warning("Failed to delete profile %s: %s", profile.guid, exc)
                batch.record(profile.guid, False)
                continue
            success = result.returncode == 0 and not result.error
            batch.record(profile.guid, success)
            if success:
                human_logger.info("Deleted profile '%s' %s", profile.name, profile.guid)
            else:
                human_logger.warning(
                    "Failed to delete profile '%s' %s (exit code %s)",
                    profile.name,
                    profile.guid,
                    result.returncode,
                )

        policy = "preserve-active" if preserve_active else "delete-all"
        logging_ext.get_machine_logger().info(
            "profile_cleanup",
            extra={
                "event": "profile_cleanup",
                "policy": policy,
                "active_guid": active or None,
                "attempted": batch.attempted,
                "failed": batch.failed,
                "failures": list(batch.failures),
            },
        )
        human_logger.info(
            "Profile cleanup (%s): %d deleted, %d failed", policy, batch.succeeded, batch.failed
        )
        return batch


__all__ = ["NetworkProfile", "ProfileStore", "normalise_guid"]
