"""!
@brief Twingate Janitor package root.
@details Modules under this namespace stop, uninstall, clean up after, and
reinstall the Twingate Windows client across a sequence of reboots.
"""

__all__ = [
    "main",
    "orchestrator",
    "phases",
    "resume",
    "cleanup",
    "devices",
    "profiles",
    "packages",
    "connectivity",
    "processes",
    "tasks_services",
    "registry_tools",
    "elevation",
    "exec_utils",
    "retry",
    "logging_ext",
    "config",
    "confirm",
    "constants",
    "errors",
    "test_devices",
    "version",
]
