"""!
@brief Installed-software discovery, install, and uninstall for the client.
@details Scans the uninstall registry across the 64-bit, 32-bit-on-64-bit,
and per-user views, composes silent ``msiexec`` command lines, downloads the
installer, and re-queries the registry after every install/uninstall because
installer exit codes alone are not trusted to reflect system state.
Exit-code classification is left to the caller.
"""
from __future__ import annotations

import re
import shlex
import tempfile
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, List, Sequence

from . import constants, exec_utils, logging_ext, registry_tools, retry, version

INSTALLER_TIMEOUT = 3600
"""!
@brief Maximum seconds to wait for a single installer invocation.
"""

_GUID_PATTERN = re.compile(r"^\{[0-9A-Fa-f-]{36}\}$")


@dataclass(frozen=True)
class PackageInfo:
    """!
    @brief One installed-software entry.
    """

    display_name: str
    version: str
    registry_handle: str
    product_code: str | None = None
    uninstall_string: str = ""
    quiet_uninstall_string: str = ""
    windows_installer: bool = False


def _package_from_values(root: int, path: str, key_name: str, values: dict) -> PackageInfo:
    code = key_name if _GUID_PATTERN.match(key_name) else None
    return PackageInfo(
        display_name=str(values.get("DisplayName", "")),
        version=str(values.get("DisplayVersion", "")),
        registry_handle=registry_tools.compose_handle(root, f"{path}\\{key_name}"),
        product_code=code.upper() if code else None,
        uninstall_string=str(values.get("UninstallString", "") or ""),
        quiet_uninstall_string=str(values.get("QuietUninstallString", "") or ""),
        windows_installer=bool(values.get("WindowsInstaller")) and code is not None,
    )


def _split_command_line(text: str) -> List[str]:
    parts = shlex.split(text, posix=False)
    return [part.strip('"') for part in parts]


class PackageManager:
    """!
    @brief Query, install, and uninstall the client package.
    """

    def __init__(self, *, name_pattern: str = constants.DEFAULT_PRODUCT_PATTERN) -> None:
        self.name_pattern = re.compile(name_pattern, re.IGNORECASE)

    def iter_installed(self, pattern: str | None = None) -> Iterator[PackageInfo]:
        regex = self.name_pattern if pattern is None else re.compile(pattern, re.IGNORECASE)
        for root, path in constants.UNINSTALL_ROOTS:
            for key_name in registry_tools.list_subkeys(root, path):
                values = registry_tools.read_values(root, f"{path}\\{key_name}")
                name = values.get("DisplayName")
                if name and regex.search(str(name)):
                    yield _package_from_values(root, path, key_name, values)

    def find_installed(self, pattern: str | None = None) -> PackageInfo | None:
        """!
        @brief First matching entry across all uninstall views, or ``None``.
        """

        return next(self.iter_installed(pattern), None)

    def find_all_installed(self, pattern: str | None = None) -> List[PackageInfo]:
        return list(self.iter_installed(pattern))

    def is_installed(self, pattern: str | None = None) -> bool:
        return self.find_installed(pattern) is not None

    def build_uninstall_command(self, package: PackageInfo, extra_args: Sequence[str] = ()) -> List[str]:
        """!
        @brief Silent uninstall command for ``package``.
        @raises ValueError when the entry has no usable uninstall information.
        """

        if package.windows_installer and package.product_code:
            return ["msiexec.exe", "/x", package.product_code, "/qn", "/norestart", *extra_args]
        if package.quiet_uninstall_string:
            return [*_split_command_line(package.quiet_uninstall_string), *extra_args]
        if package.uninstall_string:
            parts = _split_command_line(package.uninstall_string)
            if parts and parts[0].lower().endswith("msiexec.exe"):
                parts = [("/X" + part[2:] if part.lower().startswith("/i") else part) for part in parts]
                return [*parts, "/qn", "/norestart", *extra_args]
            return [*parts, "/quiet", "/norestart", *extra_args]
        raise ValueError(f"No uninstall command recorded for {package.display_name}")

    def build_install_command(self, installer_path: Path, args: Sequence[str] = ()) -> List[str]:
        if installer_path.suffix.lower() == ".msi":
            return ["msiexec.exe", "/i", str(installer_path), "/qn", "/norestart", *args]
        return [str(installer_path), "/quiet", "/norestart", *args]

    def uninstall(
        self,
        package: PackageInfo,
        args: Sequence[str] = (),
        *,
        attempts: int = 1,
        sleep: Callable[[float], None] = time.sleep,
    ) -> exec_utils.CommandResult:
        """!
        @brief Run the silent uninstall and return its result unclassified.
        @param attempts Busy-installer attempts (``1618`` only).
        @param sleep Used between busy retries.
        """

        return exec_utils.run_with_busy_retry(
            self.build_uninstall_command(package, args),
            event="package_uninstall",
            attempts=attempts,
            sleep=sleep,
            timeout=INSTALLER_TIMEOUT,
            human_message=f"Uninstalling {package.display_name} {package.version}".strip(),
            extra={"package": package.display_name, "version": package.version},
        )

    def install(
        self,
        installer_path: Path,
        args: Sequence[str] = (),
        *,
        attempts: int = 1,
        sleep: Callable[[float], None] = time.sleep,
    ) -> exec_utils.CommandResult:
        return exec_utils.run_with_busy_retry(
            self.build_install_command(installer_path, args),
            event="package_install",
            attempts=attempts,
            sleep=sleep,
            timeout=INSTALLER_TIMEOUT,
            human_message=f"Installing {installer_path.name}",
            extra={"installer": str(installer_path)},
        )

    def verify_presence(
        self, *, attempts: int = 3, interval: float = 5.0, sleep: Callable[[float], None] = time.sleep
    ) -> bool:
        """!
        @brief Re-query the registry until the package appears.
        """

        return retry.retry(
            self.is_installed,
            max_attempts=attempts,
            interval=interval,
            label="package present",
            sleep=sleep,
        ).succeeded

    def verify_absence(
        self, *, attempts: int = 3, interval: float = 5.0, sleep: Callable[[float], None] = time.sleep
    ) -> bool:
        return retry.retry(
            lambda: not self.is_installed(),
            max_attempts=attempts,
            interval=interval,
            label="package absent",
            sleep=sleep,
        ).succeeded

    def download_installer(self, url: str, dest_dir: Path | None = None) -> Path | None:
        """!
        @brief Download the installer to ``dest_dir`` (default: temp directory).
        @returns Path to the file, or ``None`` when the download failed.
        """

        human_logger = logging_ext.get_human_logger()
        directory = Path(dest_dir) if dest_dir is not None else Path(tempfile.gettempdir())
        suffix = ".msi" if "msi" in url.lower() else ".exe"
        dest_path = directory / f"TwingateInstaller{suffix}"

        human_logger.info("Downloading installer from %s", url)
        try:
            directory.mkdir(parents=True, exist_ok=True)
            request = urllib.request.Request(
                url,
                headers={"User-Agent": f"TwingateJanitor/{version.__version__}"},
            )
            with urllib.request.urlopen(request, timeout=120) as response:
                content = response.read()
            dest_path.write_bytes(content)
        except urllib.error.URLError as exc:
            human_logger.error("Failed to download installer: %s", exc)
            return None
        except OSError as exc:
            human_logger.error("Failed to save installer: %s", exc)
            return None

        if not content:
            human_logger.error("Downloaded installer is empty")
            return None
        human_logger.info("Downloaded installer to %s (%d bytes)", dest_path, len(content))
        return dest_path

    def apply_network_identity(self, identity: str) -> bool:
        """!
        @brief Write the target network of record for an installed client.
        """

        human_logger = logging_ext.get_human_logger()
        try:
            registry_tools.set_string_value(
                constants.HKLM,
                constants.NETWORK_IDENTITY_PATH,
                constants.NETWORK_IDENTITY_VALUE,
                identity,
                create=True,
            )
        except OSError as exc:
            human_logger.error("Could not record network identity %s: %s", identity, exc)
            return False
        human_logger.info("Network identity set to %s", identity)
        return True


def install_arguments(network_identity: str) -> List[str]:
    """!
    @brief MSI properties configuring the client for ``network_identity``.
    """

    return [f"network={network_identity}", "auto_update=true"]


__all__ = ["PackageInfo", "PackageManager", "install_arguments"]
