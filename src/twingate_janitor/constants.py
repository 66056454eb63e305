"""!
@brief Static data for Twingate Janitor.
@details Centralises registry roots, uninstall roots, well-known scheduled
task names, installer exit codes, and product defaults so detection,
cleanup, and the remediation phases work from one source of truth.
"""
from __future__ import annotations

from typing import Dict, Tuple

try:  # pragma: no cover - Windows registry handles are optional on test hosts.
    import winreg
except ImportError:  # pragma: no cover - test scaffolding supplies substitutes.
    winreg = None  # type: ignore[assignment]


if winreg is not None:  # pragma: no branch - deterministic assignments.
    HKLM = winreg.HKEY_LOCAL_MACHINE
    HKCU = winreg.HKEY_CURRENT_USER
    HKU = winreg.HKEY_USERS
else:  # pragma: no cover - exercised implicitly in non-Windows CI.
    HKLM = 0x80000002
    HKCU = 0x80000001
    HKU = 0x80000003


REGISTRY_ROOTS: Dict[str, int] = {
    "HKLM": HKLM,
    "HKCU": HKCU,
    "HKU": HKU,
}

UNINSTALL_ROOTS: Tuple[Tuple[int, str], ...] = (
    (HKLM, r"SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall"),
    (HKLM, r"SOFTWARE\WOW6432Node\Microsoft\Windows\CurrentVersion\Uninstall"),
    (HKCU, r"SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall"),
)
"""!
@brief Installed-software roots: 64-bit, 32-bit-on-64-bit, and per-user views.
"""

NETWORK_PROFILES_PATH = r"SOFTWARE\Microsoft\Windows NT\CurrentVersion\NetworkList\Profiles"
"""!
@brief Registry key holding one subkey per network-location profile GUID.
"""

NETWORK_IDENTITY_PATH = r"SOFTWARE\Twingate"
NETWORK_IDENTITY_VALUE = "Network"

DEFAULT_PRODUCT_PATTERN = r"^Twingate( Client)?$"
CANONICAL_PROFILE_NAME = "Twingate"
DEFAULT_PROFILE_PATTERN = r"^Twingate( \d+)?$"
DEFAULT_ADAPTER_PATTERN = "Twingate*"

DEFAULT_CLIENT_EXECUTABLE = r"C:\Program Files\Twingate\Twingate.exe"
DEFAULT_CLIENT_PROCESSES: Tuple[str, ...] = ("Twingate.exe", "Twingate.Service.exe")
DEFAULT_CLIENT_SERVICES: Tuple[str, ...] = ("Twingate.Service",)

DEFAULT_INSTALLER_URL = "https://api.twingate.com/download/windows?installer=msi"
DEFAULT_MDM_TASK_NAMESPACE = "\\Microsoft\\Windows\\EnterpriseMgmt\\"

HEALTHY_DEVICE_STATUS = "OK"
"""!
@brief The single PnP status string treated as a healthy device.
"""

RESUME_TASK_NAMES: Dict[str, str] = {
    "after-reboot-1": "TwingateJanitor-AfterReboot1",
    "after-reboot-2": "TwingateJanitor-AfterReboot2",
}
"""!
@brief Well-known scheduled task names keyed by the phase they resume into.
"""

EXIT_SUCCESS = 0
EXIT_FAILURE = 1

INSTALLER_SUCCESS_CODES = frozenset({0})
INSTALLER_REBOOT_CODES = frozenset({3010, 1641})
INSTALLER_BUSY_CODE = 1618

DATA_DIRECTORY_NAME = "TwingateJanitor"
CONFIG_FILE_NAME = "config.json"
LOG_DIRECTORY_NAME = "logs"
BACKUP_DIRECTORY_NAME = "backups"
