"""!
@brief Primary entry point for the Twingate Janitor CLI.
@details Parses the command line, acquires administrative rights, enables
Windows VT mode for coloured output, resolves configuration, sets up the
human and machine log channels, and dispatches to the remediation phases or
one of the maintenance commands.
"""
from __future__ import annotations

import argparse
import ctypes
import logging
import os
import pathlib
import sys
from typing import Iterable, Optional

from . import config as config_module
from . import confirm, elevation, logging_ext, version
from .cleanup import run_cleanup
from .constants import EXIT_FAILURE, EXIT_SUCCESS
from .devices import DeviceInventory
from .errors import ConfigError, ElevationError, JanitorError
from .orchestrator import RemediationContext, RemediationOrchestrator
from .phases import Phase
from .profiles import ProfileStore
from .test_devices import generate_test_profiles

PHASE_CHOICES = [phase.value for phase in Phase]


def enable_vt_mode_if_possible() -> None:
    """!
    @brief Attempt to enable ANSI/VT processing on Windows consoles.
    @details Failures are ignored; the console handler falls back to plain
    text when colours are disabled.
    """

    if os.name != "nt":  # pragma: no cover - Windows behaviour only
        return

    try:
        from ctypes import wintypes

        kernel32 = ctypes.windll.kernel32  # type: ignore[attr-defined]
    except Exception:  # pragma: no cover - import/attribute errors on non-Windows
        return

    for std_handle in (-11, -12):  # STD_OUTPUT_HANDLE, STD_ERROR_HANDLE
        handle = kernel32.GetStdHandle(std_handle)
        if not handle:
            continue
        mode = wintypes.DWORD()
        if kernel32.GetConsoleMode(handle, ctypes.byref(mode)):
            kernel32.SetConsoleMode(handle, mode.value | 0x0004)


def build_arg_parser() -> argparse.ArgumentParser:
    """!
    @brief Create the top-level argument parser.
    @details ``--phase`` is accepted without a subcommand because the resume
    tasks invoke the program with nothing but the phase flag.
    """

    parser = argparse.ArgumentParser(prog="twingate-janitor", add_help=True)
    metadata = version.build_info()
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=f"{metadata['version']} ({metadata['build']})",
    )
    parser.add_argument("--config", metavar="FILE", help="JSON configuration file.")
    parser.add_argument("--logdir", metavar="DIR", help="Directory for human/JSONL log output.")
    parser.add_argument("--quiet", action="store_true", help="Minimal console output (errors only).")
    parser.add_argument("--json", action="store_true", help="Mirror structured events to stdout.")
    parser.add_argument("--no-color", action="store_true", help="Disable ANSI color codes.")
    parser.add_argument(
        "--phase",
        choices=PHASE_CHOICES,
        default=Phase.FRESH.value,
        help="Remediation phase to run (default: fresh).",
    )

    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    remediate = commands.add_parser("remediate", help="Run the multi-reboot remediation (default).")
    remediate.add_argument(
        "--phase",
        choices=PHASE_CHOICES,
        default=argparse.SUPPRESS,
        help="Remediation phase to run (default: fresh).",
    )

    cleanup = commands.add_parser("cleanup", help="Remove ghost adapters and stale profiles only.")
    cleanup.add_argument("--yes", action="store_true", help="Skip the confirmation prompt.")
    cleanup.add_argument("--no-export", action="store_true", help="Do not export profiles before deleting them.")
    cleanup.add_argument("--dry-run", action="store_true", help="Log the actions without changing anything.")

    remove = commands.add_parser("remove-devices", help="Remove devices by instance ID.")
    remove.add_argument(
        "--instance-ids",
        required=True,
        metavar="ID[,ID...]",
        help="Comma-separated device instance IDs.",
    )

    generate = commands.add_parser("generate-test-devices", help="Create duplicate profiles for testing.")
    generate.add_argument("--count", type=int, required=True, metavar="N", help="Number of profiles to create.")

    return parser


def _bootstrap_logging(
    args: argparse.Namespace, log_directory: os.PathLike[str] | str
) -> tuple[logging.Logger, logging.Logger]:
    """!
    @brief Initialise the human and machine loggers for this run.
    """

    label = args.phase if (args.command or "remediate") == "remediate" else args.command
    return logging_ext.setup_logging(
        pathlib.Path(log_directory),
        json_to_stdout=bool(args.json),
        console=True,
        use_color=not args.no_color,
        console_level=logging.ERROR if args.quiet else logging.INFO,
        run_label=label,
    )


def main(argv: Optional[Iterable[str]] = None) -> int:
    """!
    @brief Entry point invoked by the console script, ``python -m`` and the shim.
    @returns Process exit code integer.
    """

    arguments = list(argv) if argv is not None else sys.argv[1:]
    parser = build_arg_parser()
    args = parser.parse_args(arguments)

    try:
        elevation.ensure_elevated(arguments)
    except ElevationError as exc:
        print(f"twingate-janitor: {exc}", file=sys.stderr)
        return EXIT_FAILURE

    enable_vt_mode_if_possible()

    try:
        config = config_module.resolve_config(args.config, logdir=args.logdir)
    except ConfigError as exc:
        print(f"twingate-janitor: {exc}", file=sys.stderr)
        return EXIT_FAILURE

    try:
        human_log, machine_log = _bootstrap_logging(args, config.log_directory)
    except OSError as exc:
        print(f"twingate-janitor: cannot open log directory {config.log_directory}: {exc}", file=sys.stderr)
        return EXIT_FAILURE

    command = args.command or "remediate"
    machine_log.info("startup", extra=logging_ext.build_event_extra("startup", command=command, phase=args.phase))

    try:
        if command == "cleanup":
            return _run_cleanup(args, config)
        if command == "remove-devices":
            return _run_remove_devices(args)
        if command == "generate-test-devices":
            return _run_generate_test_devices(args)
        return _run_remediation(args, config)
    except JanitorError as exc:
        human_log.error("%s", exc)
        machine_log.error("fatal_error", extra={"event": "fatal_error", "error": str(exc)})
        return EXIT_FAILURE
    except KeyboardInterrupt:
        human_log.error("Interrupted by user.")
        return EXIT_FAILURE


def _run_remediation(args: argparse.Namespace, config: config_module.RemediationConfig) -> int:
    phase = Phase.from_flag(args.phase)
    context = RemediationContext.from_config(config)
    return RemediationOrchestrator(context).run(phase)


def _run_cleanup(args: argparse.Namespace, config: config_module.RemediationConfig) -> int:
    """!
    @brief Standalone ghost-adapter and profile cleanup.
    @details Uses the preserve-active policy. A partial failure is reported as
    a warning and exit code ``1``.
    """

    human_log = logging_ext.get_human_logger()
    dry_run = bool(args.dry_run)

    if not confirm.request_cleanup_confirmation(dry_run=dry_run, assume_yes=bool(args.yes)):
        human_log.info("Cleanup cancelled at the confirmation prompt.")
        return EXIT_FAILURE

    devices = DeviceInventory(dry_run=dry_run)
    profiles = ProfileStore(
        name_pattern=config.profile_name_pattern,
        canonical_name=config.canonical_profile_name,
        adapter_pattern=config.adapter_name_pattern,
        backup_directory=config.backup_directory,
        dry_run=dry_run,
    )
    report = run_cleanup(
        devices,
        profiles,
        adapter_pattern=config.adapter_name_pattern,
        preserve_active=True,
        export_before_delete=config.export_profiles_before_delete and not args.no_export,
    )
    if report.ok:
        human_log.info("Cleanup complete: %s", report.summary())
        return EXIT_SUCCESS
    human_log.warning("Cleanup finished with failures: %s", report.summary())
    return EXIT_FAILURE


def _run_remove_devices(args: argparse.Namespace) -> int:
    human_log = logging_ext.get_human_logger()
    instance_ids = [token.strip() for token in str(args.instance_ids).split(",") if token.strip()]
    if not instance_ids:
        human_log.error("No device instance IDs supplied.")
        return EXIT_FAILURE
    batch = DeviceInventory().remove_many(instance_ids)
    return EXIT_SUCCESS if batch.ok else EXIT_FAILURE


def _run_generate_test_devices(args: argparse.Namespace) -> int:
    human_log = logging_ext.get_human_logger()
    try:
        created = generate_test_profiles(args.count)
    except ValueError as exc:
        human_log.error("%s", exc)
        return EXIT_FAILURE
    except OSError as exc:
        human_log.error("Could not create test profiles: %s", exc)
        return EXIT_FAILURE
    human_log.info("Created %d test profile(s).", len(created))
    return EXIT_SUCCESS


__all__ = ["build_arg_parser", "enable_vt_mode_if_possible", "main"]
