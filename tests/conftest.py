"""!
@brief Shared fixtures: an in-memory network profile registry.
"""
from __future__ import annotations

import pathlib
import sys

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from twingate_janitor import constants, exec_utils, registry_tools  # noqa: E402


def _key_of(path: str) -> str:
    return path.rstrip("\\").rsplit("\\", 1)[-1]


class FakeProfileRegistry:
    """!
    @brief Stand-in for the ``NetworkList\\Profiles`` subtree.
    @details Records keyed by GUID subkey name. ``fail_delete`` and
    ``fail_export`` hold GUIDs whose ``reg.exe`` call should fail.
    """

    def __init__(self) -> None:
        self.records: dict[str, dict[str, object]] = {}
        self.deleted: list[str] = []
        self.exported: list[str] = []
        self.fail_delete: set[str] = set()
        self.fail_export: set[str] = set()

    def add(self, guid: str, name: str) -> None:
        self.records[guid] = {"ProfileName": name, "Description": name}

    def names(self) -> dict[str, object]:
        return {guid: values.get("ProfileName") for guid, values in self.records.items()}

    @staticmethod
    def _result(command: str, returncode: int = 0) -> exec_utils.CommandResult:
        return exec_utils.CommandResult(command=[command], returncode=returncode, stdout="", stderr="", duration=0.0)

    def list_subkeys(self, root: int, path: str) -> list[str]:
        if path == constants.NETWORK_PROFILES_PATH:
            return list(self.records)
        return []

    def get_value(self, root: int, path: str, value_name: str, default=None):
        return self.records.get(_key_of(path), {}).get(value_name, default)

    def set_string_value(self, root: int, path: str, value_name: str, value: str, *, create: bool = False) -> None:
        key = _key_of(path)
        if key not in self.records and not create:
            raise FileNotFoundError(path)
        self.records.setdefault(key, {})[value_name] = value

    def set_dword_value(self, root: int, path: str, value_name: str, value: int) -> None:
        self.records.setdefault(_key_of(path), {})[value_name] = int(value)

    def delete_key(self, handle: str, *, dry_run: bool = False) -> exec_utils.CommandResult:
        key = _key_of(handle)
        if key in self.fail_delete:
            return self._result("reg.exe", 1)
        if not dry_run:
            self.records.pop(key, None)
            self.deleted.append(key)
        return self._result("reg.exe")

    def export_key(self, handle: str, destination, *, dry_run: bool = False) -> exec_utils.CommandResult:
        key = _key_of(handle)
        if key in self.fail_export:
            return self._result("reg.exe", 1)
        self.exported.append(key)
        return self._result("reg.exe")


@pytest.fixture
def profile_registry(monkeypatch) -> FakeProfileRegistry:
    fake = FakeProfileRegistry()
    for name in ("list_subkeys", "get_value", "set_string_value", "set_dword_value", "delete_key", "export_key"):
        monkeypatch.setattr(registry_tools, name, getattr(fake, name))
    return fake
