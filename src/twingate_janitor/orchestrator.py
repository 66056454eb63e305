"""!
@brief Multi-reboot remediation state machine.
@details A remediation is split into three phases separated by reboots:

* ``fresh``: stop and uninstall the client, then clean ghost adapters and
  stale profiles while keeping the active one;
* ``after-reboot-1``: delete every remaining profile, reinstall the client
  for the target network;
* ``after-reboot-2``: nudge MDM enrollment, launch the client and confirm it
  connects, then run a last cleanup pass.

Each phase ends by persisting a resume point for the next phase and asking
for a reboot. A reboot is never requested unless the resume point was
persisted immediately before. Steps follow one of two disciplines: fatal
steps stop the run with exit code ``1``, best-effort steps downgrade the run
to ``degraded-success`` and carry on.
"""
from __future__ import annotations

import datetime
import logging
import pathlib
import time
from dataclasses import dataclass, field
from typing import Callable, List, NoReturn

from . import exec_utils, logging_ext, retry, tasks_services
from .cleanup import run_cleanup
from .config import RemediationConfig, default_config_path, load_resume_config, write_config_file
from .connectivity import ConnectivityProbe
from .constants import EXIT_FAILURE, EXIT_SUCCESS
from .devices import DeviceInventory
from .errors import JanitorError, StepFailed
from .packages import PackageManager, install_arguments
from .phases import Phase
from .processes import ClientControl
from .profiles import ProfileStore
from .resume import ResumePointStore, ScheduledTaskResumeStore

STATUS_OK = "ok"
STATUS_WARNING = "warning"
STATUS_FATAL = "fatal"


@dataclass
class StepOutcome:
    """!
    @brief Result of one remediation step as written to the run log.
    """

    step: str
    status: str
    message: str
    timestamp: datetime.datetime = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )


@dataclass
class RemediationRun:
    """!
    @brief In-memory record of a single phase execution.
    @details Nothing here survives a reboot; the next phase starts a new run.
    """

    phase: Phase
    started_at: datetime.datetime = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )
    log_sink: List[StepOutcome] = field(default_factory=list)
    warnings: int = 0
    active_guid: str | None = None

    def record(self, step: str, status: str, message: str) -> StepOutcome:
        outcome = StepOutcome(step=step, status=status, message=message)
        self.log_sink.append(outcome)
        if status == STATUS_WARNING:
            self.warnings += 1
        return outcome

    @property
    def terminal_state(self) -> str:
        return "degraded-success" if self.warnings else "success"


@dataclass
class RemediationContext:
    """!
    @brief Configuration plus every collaborator the orchestrator drives.
    """

    config: RemediationConfig
    devices: DeviceInventory
    profiles: ProfileStore
    packages: PackageManager
    resume_store: ResumePointStore
    connectivity: ConnectivityProbe
    client: ClientControl
    reboot: Callable[[int], bool] = tasks_services.request_reboot
    trigger_mdm_sync: Callable[[str], bool] = tasks_services.trigger_now
    sleep: Callable[[float], None] = time.sleep
    resume_config_path: pathlib.Path = field(default_factory=default_config_path)

    @classmethod
    def from_config(cls, config: RemediationConfig) -> "RemediationContext":
        """!
        @brief Wire the production collaborators for ``config``.
        """

        devices = DeviceInventory()
        return cls(
            config=config,
            devices=devices,
            profiles=ProfileStore(
                name_pattern=config.profile_name_pattern,
                canonical_name=config.canonical_profile_name,
                adapter_pattern=config.adapter_name_pattern,
                backup_directory=config.backup_directory,
            ),
            packages=PackageManager(name_pattern=config.product_name_pattern),
            resume_store=ScheduledTaskResumeStore(),
            connectivity=ConnectivityProbe(
                devices,
                adapter_pattern=config.adapter_name_pattern,
                probe_host=config.connectivity_probe_host,
                probe_port=config.connectivity_probe_port,
            ),
            client=ClientControl(
                executable=config.client_executable,
                process_names=config.client_processes,
                service_names=config.client_services,
            ),
        )


class RemediationOrchestrator:
    """!
    @brief Execute one phase of the remediation and report an exit code.
    """

    def __init__(self, context: RemediationContext) -> None:
        self.context = context
        self.config = context.config
        self.last_run: RemediationRun | None = None

    def run(self, phase: Phase) -> int:
        human_logger = logging_ext.get_human_logger()
        machine_logger = logging_ext.get_machine_logger()

        run = RemediationRun(phase=phase)
        self.last_run = run
        handlers = {
            Phase.FRESH: self._run_fresh,
            Phase.AFTER_REBOOT_1: self._run_after_reboot_1,
            Phase.AFTER_REBOOT_2: self._run_after_reboot_2,
        }

        human_logger.info("Starting remediation phase %s", phase.value)
        machine_logger.info(
            "phase_start",
            extra={"event": "phase_start", "phase": phase.value, "started_at": run.started_at.isoformat()},
        )

        try:
            handlers[phase](run)
        except StepFailed as exc:
            human_logger.error("Remediation stopped: step '%s' failed: %s", exc.step, exc.message)
            machine_logger.error(
                "phase_failed",
                extra={"event": "phase_failed", "phase": phase.value, "step": exc.step, "error": exc.message},
            )
            if self.config.fatal_pause_seconds > 0:
                self.context.sleep(self.config.fatal_pause_seconds)
            return EXIT_FAILURE

        machine_logger.info(
            "phase_complete",
            extra={
                "event": "phase_complete",
                "phase": phase.value,
                "state": run.terminal_state,
                "warnings": run.warnings,
                "steps": [outcome.step for outcome in run.log_sink],
            },
        )
        if phase is Phase.AFTER_REBOOT_2:
            if run.warnings:
                human_logger.warning(
                    "Remediation finished with %d warning(s); review the log for follow-up.", run.warnings
                )
            else:
                human_logger.info("Remediation finished successfully.")
        return EXIT_SUCCESS

    # ------------------------------------------------------------------
    # Step disciplines
    # ------------------------------------------------------------------

    def _record(self, run: RemediationRun, step: str, status: str, message: str) -> None:
        run.record(step, status, message)
        level = {STATUS_OK: logging.INFO, STATUS_WARNING: logging.WARNING}.get(status, logging.ERROR)
        if status != STATUS_FATAL:
            logging_ext.get_human_logger().log(level, "[%s] %s", step, message)
        logging_ext.get_machine_logger().log(
            level,
            "step_outcome",
            extra=logging_ext.build_event_extra(
                "step_outcome", phase=run.phase.value, step=step, status=status, detail=message
            ),
        )

    def _ok(self, run: RemediationRun, step: str, message: str) -> None:
        self._record(run, step, STATUS_OK, message)

    def _warn(self, run: RemediationRun, step: str, message: str) -> None:
        self._record(run, step, STATUS_WARNING, message)

    def _fail(self, run: RemediationRun, step: str, message: str) -> NoReturn:
        self._record(run, step, STATUS_FATAL, message)
        raise StepFailed(step, message)

    def _checkpoint(self, run: RemediationRun) -> None:
        """!
        @brief Persist the resume point for the following phase and then reboot.
        """

        next_phase = run.phase.next()
        if next_phase is None:
            return
        if not self.context.resume_store.persist_resume_point(next_phase):
            self._fail(run, "persist-resume-point", f"could not register resume task for {next_phase.value}")
        self._ok(run, "persist-resume-point", f"resume task registered for {next_phase.value}")

        if not self.context.reboot(self.config.reboot_delay_seconds):
            self._fail(run, "reboot", "restart request was rejected")
        self._ok(run, "reboot", f"restart scheduled in {self.config.reboot_delay_seconds}s")

    def _consume(self, run: RemediationRun) -> None:
        if self.context.resume_store.consume_resume_point(run.phase):
            self._ok(run, "consume-resume-point", f"resume task for {run.phase.value} removed")
        else:
            self._warn(run, "consume-resume-point", f"resume task for {run.phase.value} could not be removed")

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _run_fresh(self, run: RemediationRun) -> None:
        ctx = self.context
        self._preflight(run)

        # The connection profile is only discoverable while the client is up.
        run.active_guid = ctx.profiles.find_active_guid()
        if run.active_guid:
            self._ok(run, "find-active-profile", f"active profile {run.active_guid}")
        else:
            self._ok(run, "find-active-profile", "no active profile")

        self._stop_client(run)
        self._uninstall(run)

        if not ctx.packages.verify_absence(sleep=ctx.sleep):
            self._fail(run, "verify-uninstall", "package is still registered after uninstall")
        self._ok(run, "verify-uninstall", "package absent")

        try:
            report = run_cleanup(
                ctx.devices,
                ctx.profiles,
                adapter_pattern=self.config.adapter_name_pattern,
                preserve_active=True,
                export_before_delete=self.config.export_profiles_before_delete,
                active_guid=run.active_guid,
            )
        except (JanitorError, OSError, RuntimeError) as exc:
            self._fail(run, "cleanup", str(exc))
        if not report.ok:
            self._fail(run, "cleanup", report.summary())
        self._ok(run, "cleanup", report.summary())

        self._checkpoint(run)

    def _run_after_reboot_1(self, run: RemediationRun) -> None:
        ctx = self.context
        self._consume(run)

        hook = ctx.profiles.export_profile if self.config.export_profiles_before_delete else None
        try:
            batch = ctx.profiles.delete_stale(None, None, preserve_active=False, export_hook=hook)
        except (JanitorError, OSError) as exc:
            self._fail(run, "delete-profiles", str(exc))
        if not batch.ok:
            self._fail(
                run,
                "delete-profiles",
                f"{batch.failed} of {batch.attempted} profiles could not be deleted: {', '.join(batch.failures)}",
            )
        self._ok(run, "delete-profiles", f"{batch.succeeded} profile(s) deleted")

        identity = self.config.target_network_identity.strip()
        if not identity:
            self._fail(run, "install", "targetNetworkIdentity is not configured")

        if ctx.packages.is_installed() and not self.config.force_reinstall:
            if not ctx.packages.apply_network_identity(identity):
                self._fail(run, "apply-network-identity", f"could not record network {identity}")
            self._ok(run, "install", f"package already present; network set to {identity}")
        else:
            self._install(run, identity)

        if not ctx.packages.verify_presence(sleep=ctx.sleep):
            self._fail(run, "verify-install", "package is not registered after install")
        self._ok(run, "verify-install", "package present")

        self._checkpoint(run)

    def _run_after_reboot_2(self, run: RemediationRun) -> None:
        ctx = self.context
        self._consume(run)

        if ctx.trigger_mdm_sync(self.config.mdm_task_namespace):
            self._ok(run, "mdm-sync", "enrollment tasks started")
        else:
            self._warn(run, "mdm-sync", "enrollment tasks could not be started")

        if ctx.client.launch():
            self._ok(run, "launch-client", "client launched")
        else:
            self._warn(run, "launch-client", "client could not be launched")

        self._confirm_connectivity(run)

        try:
            report = run_cleanup(
                ctx.devices,
                ctx.profiles,
                adapter_pattern=self.config.adapter_name_pattern,
                preserve_active=True,
                export_before_delete=self.config.export_profiles_before_delete,
            )
        except (JanitorError, OSError, RuntimeError) as exc:
            self._warn(run, "final-cleanup", str(exc))
        else:
            if report.ok:
                self._ok(run, "final-cleanup", report.summary())
            else:
                self._warn(run, "final-cleanup", report.summary())

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _preflight(self, run: RemediationRun) -> None:
        """!
        @brief Make sure the resumed phases can finish before anything is removed.
        @details Resume tasks carry only the phase flag, so the resumed process
        reads the well-known configuration file. When that file would not
        reproduce this run's configuration it is rewritten here.
        """

        if not self.config.target_network_identity.strip():
            self._fail(run, "preflight", "targetNetworkIdentity is not configured")
        if not self.config.installer_source_url.lower().startswith(("https://", "http://")):
            self._fail(
                run, "preflight", f"installerSourceUrl is not an http(s) URL: {self.config.installer_source_url!r}"
            )

        path = self.context.resume_config_path
        if load_resume_config(path) == self.config:
            self._ok(run, "preflight", f"resumed phases will read {path}")
            return
        try:
            write_config_file(self.config, path)
        except OSError as exc:
            self._fail(run, "preflight", f"could not save configuration to {path}: {exc}")
        self._ok(run, "preflight", f"configuration saved to {path} for the resumed phases")

    def _stop_client(self, run: RemediationRun) -> None:
        try:
            remaining = self.context.client.stop()
        except RuntimeError as exc:
            self._fail(run, "stop-client", f"could not verify client shutdown: {exc}")
        if remaining:
            self._fail(run, "stop-client", f"still running: {', '.join(remaining)}")
        self._ok(run, "stop-client", "client service and processes stopped")

    def _uninstall(self, run: RemediationRun) -> None:
        packages = self.context.packages
        installed = packages.find_all_installed()
        if not installed:
            self._ok(run, "uninstall", "package not installed; nothing to remove")
            return

        # One product can be registered in several uninstall views.
        for package in installed:
            try:
                result = packages.uninstall(
                    package, attempts=self.config.busy_retry_attempts, sleep=self.context.sleep
                )
            except ValueError as exc:
                self._fail(run, "uninstall", str(exc))

            disposition = exec_utils.classify_exit_code(result.returncode)
            if not disposition.succeeded:
                self._fail(
                    run,
                    "uninstall",
                    f"uninstaller for {package.registry_handle} exited with {result.returncode} ({disposition.value})",
                )
            self._ok(run, "uninstall", f"removed {package.display_name} {package.version}".strip())

    def _install(self, run: RemediationRun, identity: str) -> None:
        packages = self.context.packages
        installer = packages.download_installer(self.config.installer_source_url)
        if installer is None:
            self._fail(run, "download-installer", f"could not download {self.config.installer_source_url}")
        self._ok(run, "download-installer", str(installer))

        result = packages.install(
            installer,
            install_arguments(identity),
            attempts=self.config.busy_retry_attempts,
            sleep=self.context.sleep,
        )
        disposition = exec_utils.classify_exit_code(result.returncode)
        if not disposition.succeeded:
            self._fail(run, "install", f"installer exited with {result.returncode} ({disposition.value})")
        if disposition is exec_utils.ExitDisposition.SUCCESS_REBOOT_REQUIRED:
            self._ok(run, "install", f"installed for {identity}; installer requested a restart")
        else:
            self._ok(run, "install", f"installed for {identity}")

    def _confirm_connectivity(self, run: RemediationRun) -> None:
        """!
        @brief Poll for a working connection, restarting the client once.
        """

        ctx = self.context
        attempts = retry.attempts_for(self.config.polling_timeout_seconds, self.config.polling_interval_seconds)
        interval = self.config.polling_interval_seconds

        if ctx.connectivity.wait_until_connected(attempts=attempts, interval=interval):
            self._ok(run, "connectivity", "client connected")
            return

        logging_ext.get_human_logger().info("Restarting the client to force re-authentication")
        if not ctx.client.restart():
            self._warn(run, "reauthenticate", "client could not be relaunched")
        if ctx.connectivity.wait_until_connected(attempts=attempts, interval=interval):
            self._ok(run, "connectivity", "client connected after re-authentication")
        else:
            self._warn(run, "connectivity", "connection could not be confirmed; check the client manually")


__all__ = [
    "RemediationContext",
    "RemediationOrchestrator",
    "RemediationRun",
    "StepOutcome",
]
