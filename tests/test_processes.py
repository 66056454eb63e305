"""!
@brief Client process control and connectivity probe tests.
"""
from __future__ import annotations

import pathlib
import sys

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from twingate_janitor import connectivity, exec_utils, processes, tasks_services  # noqa: E402
from twingate_janitor.connectivity import ConnectivityProbe  # noqa: E402
from twingate_janitor.processes import ClientControl  # noqa: E402

TASKLIST = '"Twingate.exe","4120","Console","1","52,000 K"\r\n"explorer.exe","2000","Console","1","90,000 K"\r\n'


def _result(command, returncode=0, stdout=""):
    return exec_utils.CommandResult(command=list(command), returncode=returncode, stdout=stdout, stderr="", duration=0.0)


def test_running_processes_matches_case_insensitively(monkeypatch) -> None:
    monkeypatch.setattr(exec_utils, "run_command", lambda command, **kwargs: _result(command, stdout=TASKLIST))

    assert processes.running_processes(["twingate.exe", "Twingate.Service.exe"]) == ["twingate.exe"]


def test_running_processes_raises_when_tasklist_fails(monkeypatch) -> None:
    monkeypatch.setattr(exec_utils, "run_command", lambda command, **kwargs: _result(command, returncode=1))

    with pytest.raises(RuntimeError):
        processes.running_processes(["Twingate.exe"])


def test_terminate_processes_uses_taskkill(monkeypatch) -> None:
    commands = []

    def fake_run(command, **kwargs):
        commands.append(list(command))
        return _result(command, returncode=128)

    monkeypatch.setattr(exec_utils, "run_command", fake_run)

    processes.terminate_processes(["Twingate.exe", " "])

    assert commands == [["taskkill.exe", "/IM", "Twingate.exe", "/F", "/T"]]


def test_client_stop_reports_survivors(monkeypatch) -> None:
    monkeypatch.setattr(tasks_services, "stop_services", lambda names, **kwargs: ["Twingate.Service"])
    monkeypatch.setattr(processes, "terminate_processes", lambda names: None)
    monkeypatch.setattr(processes, "running_processes", lambda names: ["Twingate.exe"])

    control = ClientControl(executable="Twingate.exe", process_names=["Twingate.exe"], service_names=["Twingate.Service"])

    assert control.stop() == ["Twingate.Service", "Twingate.exe"]


def test_client_launch_requires_executable(monkeypatch, tmp_path) -> None:
    launched = []
    monkeypatch.setattr(exec_utils, "launch_detached", lambda command, *, event: launched.append(command) or True)

    missing = ClientControl(executable=str(tmp_path / "absent.exe"), process_names=[], service_names=[])
    assert missing.launch() is False

    exe = tmp_path / "Twingate.exe"
    exe.write_bytes(b"")
    assert ClientControl(executable=str(exe), process_names=[], service_names=[]).launch() is True
    assert launched == [[str(exe)]]


class _Inventory:
    def __init__(self, health):
        self.health = iter(health)

    def adapter_healthy(self, pattern: str) -> bool:
        return next(self.health)


def test_probe_waits_for_adapter() -> None:
    sleeps: list[float] = []
    probe = ConnectivityProbe(_Inventory([False, False, True]), adapter_pattern="Twingate*", sleep=sleeps.append)

    assert probe.wait_until_connected(attempts=5, interval=10) is True
    assert sleeps == [10, 10]


def test_probe_requires_reachable_endpoint(monkeypatch) -> None:
    monkeypatch.setattr(connectivity, "endpoint_reachable", lambda host, port: False)
    probe = ConnectivityProbe(_Inventory([True]), adapter_pattern="Twingate*", probe_host="intranet.corp")

    assert probe.check_once() is False


def test_endpoint_unreachable_on_socket_error(monkeypatch) -> None:
    def refuse(address, timeout):
        raise ConnectionRefusedError("refused")

    monkeypatch.setattr(connectivity.socket, "create_connection", refuse)

    assert connectivity.endpoint_reachable("intranet.corp", 443, timeout=0.1) is False
