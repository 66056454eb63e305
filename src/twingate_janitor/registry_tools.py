"""!
@brief Registry management helpers.
@details Thin ``winreg`` wrappers for enumeration and value edits, plus
``reg.exe`` wrappers for exporting a subtree to a human-readable ``.reg`` file
and deleting keys. The ``reg.exe`` helpers route through
:mod:`twingate_janitor.exec_utils` so their telemetry matches every other
external command.
"""
from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Tuple

from . import constants, exec_utils
from .errors import RegistryError

try:  # pragma: no cover - exercised through mocks on non-Windows platforms.
    import winreg
except ImportError:  # pragma: no cover - handled gracefully during tests.
    winreg = None  # type: ignore[assignment]


def _ensure_winreg() -> None:
    if winreg is None:  # pragma: no cover - simplifies non-Windows test runs.
        raise FileNotFoundError("Windows registry APIs are unavailable on this platform")


@contextmanager
def open_key(root: int, path: str, access: int | None = None) -> Iterator[Any]:
    """!
    @brief Context manager that mirrors ``winreg.OpenKey`` while ensuring
    handles are closed correctly.
    """

    _ensure_winreg()
    access_mask = access if access is not None else winreg.KEY_READ  # type: ignore[union-attr]
    handle = winreg.OpenKey(root, path, 0, access_mask)  # type: ignore[union-attr]
    try:
        yield handle
    finally:
        winreg.CloseKey(handle)  # type: ignore[union-attr]


def iter_subkeys(root: int, path: str) -> Iterator[str]:
    """!
    @brief Yield subkey names for ``root``/``path``.
    """

    _ensure_winreg()
    with open_key(root, path) as handle:
        subkey_count, _, _ = winreg.QueryInfoKey(handle)  # type: ignore[union-attr]
        for index in range(subkey_count):
            yield winreg.EnumKey(handle, index)  # type: ignore[union-attr]


def iter_values(root: int, path: str) -> Iterator[Tuple[str, Any]]:
    _ensure_winreg()
    with open_key(root, path) as handle:
        _, value_count, _ = winreg.QueryInfoKey(handle)  # type: ignore[union-attr]
        for index in range(value_count):
            name, value, _ = winreg.EnumValue(handle, index)  # type: ignore[union-attr]
            yield name, value


def list_subkeys(root: int, path: str) -> list[str]:
    """!
    @brief Return subkey names, or an empty list when the key is missing.
    """

    try:
        return list(iter_subkeys(root, path))
    except OSError:
        return []


def read_values(root: int, path: str) -> Dict[str, Any]:
    """!
    @brief Read all values beneath ``root``/``path`` into a dictionary.
    """

    data: Dict[str, Any] = {}
    try:
        for name, value in iter_values(root, path):
            data[name] = value
    except OSError:
        return {}
    return data


def get_value(root: int, path: str, value_name: str, default: Any | None = None) -> Any | None:
    try:
        _ensure_winreg()
        with open_key(root, path) as handle:
            value, _ = winreg.QueryValueEx(handle, value_name)  # type: ignore[union-attr]
            return value
    except OSError:
        return default


def set_string_value(root: int, path: str, value_name: str, value: str, *, create: bool = False) -> None:
    """!
    @brief Write a ``REG_SZ`` value.
    @param create Create the key when it does not exist yet.
    @raises OSError when the key is missing (and ``create`` is false) or the
    write is denied.
    """

    _ensure_winreg()
    if create:
        handle = winreg.CreateKeyEx(root, path, 0, winreg.KEY_SET_VALUE)  # type: ignore[union-attr]
        try:
            winreg.SetValueEx(handle, value_name, 0, winreg.REG_SZ, value)  # type: ignore[union-attr]
        finally:
            winreg.CloseKey(handle)  # type: ignore[union-attr]
        return
    with open_key(root, path, winreg.KEY_SET_VALUE) as handle:  # type: ignore[union-attr]
        winreg.SetValueEx(handle, value_name, 0, winreg.REG_SZ, value)  # type: ignore[union-attr]


def set_dword_value(root: int, path: str, value_name: str, value: int) -> None:
    """!
    @brief Write a ``REG_DWORD`` value, creating the key when needed.
    """

    _ensure_winreg()
    handle = winreg.CreateKeyEx(root, path, 0, winreg.KEY_SET_VALUE)  # type: ignore[union-attr]
    try:
        winreg.SetValueEx(handle, value_name, 0, winreg.REG_DWORD, int(value))  # type: ignore[union-attr]
    finally:
        winreg.CloseKey(handle)  # type: ignore[union-attr]


def hive_name(root: int) -> str:
    """!
    @brief Provide a friendly identifier for a registry hive.
    """

    for name, value in constants.REGISTRY_ROOTS.items():
        if value == root:
            return name
    return hex(root)


def compose_handle(root: int, path: str) -> str:
    return f"{hive_name(root)}\\{path}"


def parse_handle(handle: str) -> tuple[int, str]:
    """!
    @brief Break a ``HKLM\\...`` style handle into hive/path components.
    @raises RegistryError when the hive prefix is unknown or the path empty.
    """

    cleaned = str(handle).strip()
    prefix, _, path = cleaned.partition("\\")
    hive = constants.REGISTRY_ROOTS.get(prefix.upper())
    if hive is None or not path:
        raise RegistryError(f"Unsupported registry handle: {handle!r}")
    return hive, path


def export_key(handle: str, destination: Path, *, dry_run: bool = False) -> exec_utils.CommandResult:
    """!
    @brief Export ``handle`` (and its subtree) to a ``.reg`` text file.
    """

    parse_handle(handle)
    destination.parent.mkdir(parents=True, exist_ok=True)
    return exec_utils.run_command(
        ["reg.exe", "export", handle, str(destination), "/y"],
        event="registry_export",
        timeout=60,
        dry_run=dry_run,
        extra={"key": handle, "destination": str(destination)},
    )


def delete_key(handle: str, *, dry_run: bool = False) -> exec_utils.CommandResult:
    """!
    @brief Delete ``handle`` and its subtree through ``reg delete``.
    """

    parse_handle(handle)
    return exec_utils.run_command(
        ["reg.exe", "delete", handle, "/f"],
        event="registry_delete",
        timeout=60,
        dry_run=dry_run,
        extra={"key": handle},
    )


__all__ = [
    "compose_handle",
    "delete_key",
    "export_key",
    "get_value",
    "hive_name",
    "iter_subkeys",
    "iter_values",
    "list_subkeys",
    "open_key",
    "parse_handle",
    "read_values",
    "set_dword_value",
    "set_string_value",
]
