"""!
@brief Post-install connectivity confirmation.
@details The client is considered working when its adapter reports ``OK``
and, if an internal probe endpoint is configured, a TCP connection to it
succeeds. Polling is bounded by the configured timeout and interval.
"""
from __future__ import annotations

import socket
import time
from typing import Callable

from . import logging_ext, retry
from .devices import DeviceInventory


def endpoint_reachable(host: str, port: int, *, timeout: float = 5.0) -> bool:
    """!
    @brief ``True`` when a TCP connection to ``host``:``port`` can be opened.
    """

    try:
        with socket.create_connection((host, int(port)), timeout=timeout):
            return True
    except OSError as exc:
        logging_ext.get_human_logger().debug("Endpoint %s:%s unreachable: %s", host, port, exc)
        return False


class ConnectivityProbe:
    """!
    @brief Poll adapter health and endpoint reachability.
    """

    def __init__(
        self,
        devices: DeviceInventory,
        *,
        adapter_pattern: str,
        probe_host: str = "",
        probe_port: int = 443,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.devices = devices
        self.adapter_pattern = adapter_pattern
        self.probe_host = probe_host
        self.probe_port = probe_port
        self.sleep = sleep

    def check_once(self) -> bool:
        if not self.devices.adapter_healthy(self.adapter_pattern):
            return False
        if not self.probe_host:
            return True
        return endpoint_reachable(self.probe_host, self.probe_port)

    def wait_until_connected(self, *, attempts: int, interval: float) -> bool:
        """!
        @brief Poll :meth:`check_once` up to ``attempts`` times.
        """

        outcome = retry.retry(
            self.check_once,
            max_attempts=attempts,
            interval=interval,
            label="client connectivity",
            sleep=self.sleep,
        )
        human_logger = logging_ext.get_human_logger()
        if outcome.succeeded:
            human_logger.info("Client connectivity confirmed after %d check(s)", outcome.attempts)
        else:
            human_logger.warning("Client connectivity not confirmed after %d check(s)", outcome.attempts)
        return outcome.succeeded


__all__ = ["ConnectivityProbe", "endpoint_reachable"]
