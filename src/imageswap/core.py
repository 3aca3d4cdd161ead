import logging
import os
import subprocess
import sys
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

import requests
from rich.console import Console

from .constants import (
    BACKUP_SUFFIX,
    CLEANUP_DELAY_SECONDS,
    COMMAND_TIMEOUT,
    DEFAULT_DATA_PATH,
    DEFAULT_MANIFEST_PATH,
    DEFAULT_OPERATION_LOG,
    DEFAULT_PAGE_SIZE,
    DEFAULT_REGISTRY,
    DEFAULT_REPOSITORY,
    DEFAULT_TIMEOUT,
    DISK_THRESHOLD_PERCENT,
    HEALTH_INTERVAL_SECONDS,
    HEALTH_TIMEOUT_SECONDS,
    PULL_TIMEOUT,
    REGISTRY_ENV_VAR,
    SETTLE_SECONDS,
    VERSION_ENV_VAR,
)
from .errors import EnvironmentNotManagedError, RollbackError, UpdaterError, UpdateFailure
from .errors_catalog import actionable_error
from .models import (
    ContainerIdentity,
    LocalInstallation,
    UpdateResult,
    UpdateSession,
    UpdateState,
    VersionCheck,
    VersionDescriptor,
)
from .services.backup import BackupService
from .services.cleanup import CleanupScheduler
from .services.command_runner import CommandRunner
from .services.docker_runtime import DockerRuntimeService
from .services.environment import EnvironmentDetector
from .services.locking import single_flight
from .services.operation_log import OperationLog
from .services.preflight import PreflightService
from .services.registry import RegistryService
from .services.rollback import RollbackService
from .services.validation import ValidationService
from .services.versioning import LocalVersionService, image_tag, needs_update

console = Console()
logger = logging.getLogger("imageswap")


class ImageUpdater:
    """Checks for a newer published image and swaps the running container to it."""

    def __init__(
        self,
        registry: Optional[str] = None,
        repository: str = DEFAULT_REPOSITORY,
        timeout: float = DEFAULT_TIMEOUT,
        page_size: int = DEFAULT_PAGE_SIZE,
        manifest_path: str = DEFAULT_MANIFEST_PATH,
        data_path: str = DEFAULT_DATA_PATH,
        disk_threshold_percent: float = DISK_THRESHOLD_PERCENT,
        settle_seconds: float = SETTLE_SECONDS,
        health_timeout_seconds: float = HEALTH_TIMEOUT_SECONDS,
        health_interval_seconds: float = HEALTH_INTERVAL_SECONDS,
        cleanup_delay_seconds: float = CLEANUP_DELAY_SECONDS,
        command_timeout: float = COMMAND_TIMEOUT,
        pull_timeout: float = PULL_TIMEOUT,
        operation_log: str = DEFAULT_OPERATION_LOG,
        lock_dir: Optional[str] = None,
        detached_cleanup: bool = False,
        environ: Optional[Mapping[str, str]] = None,
        requests_module=requests,
        subprocess_module=subprocess,
    ):
        self.environ = os.environ if environ is None else environ
        self.registry_url = registry or self.environ.get(REGISTRY_ENV_VAR) or DEFAULT_REGISTRY
        self.repository = repository
        self.cleanup_delay_seconds = cleanup_delay_seconds
        self.command_timeout = command_timeout
        self.lock_dir = lock_dir or os.path.dirname(operation_log) or "."
        self.session: Optional[UpdateSession] = None

        self.operation_log = OperationLog(log_file=operation_log, logger=logger)
        self.command_runner = CommandRunner(
            logger=logger,
            default_timeout=command_timeout,
            subprocess_module=subprocess_module,
        )
        self.docker_runtime_service = DockerRuntimeService(
            logger=logger,
            console=console,
            command_runner=self.command_runner,
            command_timeout=command_timeout,
            pull_timeout=pull_timeout,
        )
        self.registry_service = RegistryService(
            logger=logger,
            registry_url=self.registry_url,
            repository=repository,
            requests_module=requests_module,
            timeout_seconds=timeout,
            page_size=page_size,
        )
        self.environment_detector = EnvironmentDetector(logger=logger, environ=self.environ)
        self.local_version_service = LocalVersionService(
            logger=logger,
            environ=self.environ,
            manifest_path=manifest_path,
        )
        self.preflight_service = PreflightService(
            logger=logger,
            console=console,
            docker_runtime_service=self.docker_runtime_service,
            registry_service=self.registry_service,
            data_path=data_path,
            disk_threshold_percent=disk_threshold_percent,
        )
        self.backup_service = BackupService(
            logger=logger,
            console=console,
            docker_runtime_service=self.docker_runtime_service,
        )
        self.validation_service = ValidationService(
            logger=logger,
            console=console,
            docker_runtime_service=self.docker_runtime_service,
            settle_seconds=settle_seconds,
            timeout_seconds=health_timeout_seconds,
            interval_seconds=health_interval_seconds,
        )
        self.rollback_service = RollbackService(
            logger=logger,
            console=console,
            docker_runtime_service=self.docker_runtime_service,
        )
        self.cleanup_scheduler = CleanupScheduler(
            logger=logger,
            docker_runtime_service=self.docker_runtime_service,
            operation_log=self.operation_log,
            worker_command=self.cleanup_command if detached_cleanup else None,
            popen=subprocess_module.Popen,
        )

    def cleanup_command(self, container_name: str, delay_seconds: float) -> List[str]:
        """argv of a detached ``imageswap cleanup`` run for ``container_name``."""
        return [
            sys.executable,
            "-m",
            "imageswap.cli",
            "--operation-log",
            os.path.abspath(self.operation_log.log_file),
            "--command-timeout",
            str(self.command_timeout),
            "cleanup",
            container_name,
            "--delay",
            str(delay_seconds),
        ]

    def image_ref(self, version: str) -> str:
        return f"{self.repository}:{version}"

    def resolve_identity(self) -> ContainerIdentity:
        if not self.environment_detector.is_managed():
            raise EnvironmentNotManagedError(actionable_error("not_in_container"))
        return self.environment_detector.detect_identity()

    def get_local_installation(self, identity: Optional[ContainerIdentity] = None) -> LocalInstallation:
        lookup = None
        if identity is not None:
            def lookup():
                attrs = self.docker_runtime_service.inspect(identity.container_name)
                config = attrs.get("Config") or {}
                return image_tag(str(config.get("Image") or ""))

        return self.local_version_service.resolve(image_tag_lookup=lookup)

    def _optional_identity(self) -> Optional[ContainerIdentity]:
        try:
            return self.resolve_identity()
        except EnvironmentNotManagedError:
            return None

    def check_version(self) -> VersionCheck:
        remote = self.registry_service.resolve_latest()
        local = self.get_local_installation(self._optional_identity())
        check = VersionCheck(local=local, remote=remote, needs_update=needs_update(local, remote))
        logger.info(
            "Local version %s, remote version %s, update needed: %s",
            local.version if local.exists else "<none>",
            remote.version,
            check.needs_update,
        )
        return check

    def version_history(self, limit: int = 10) -> List[VersionDescriptor]:
        return self.registry_service.list_versions(limit=limit)

    def get_status(self) -> Dict[str, Any]:
        status = self.environment_detector.status()
        status["session_state"] = self.session.state.value if self.session else UpdateState.IDLE.value
        status["pending_cleanups"] = self.cleanup_scheduler.pending()
        return status

    def pull_latest(self) -> VersionDescriptor:
        """Pulls the latest published image without touching the running container."""
        latest = self.registry_service.resolve_latest()
        self.docker_runtime_service.pull(self.image_ref(latest.version))
        self.operation_log.append("pull", f"Pulled {self.image_ref(latest.version)}")
        console.print(f"[green]Image {self.image_ref(latest.version)} is ready to install.[/green]")
        return latest

    def _run_step(self, session: UpdateSession, state: UpdateState, callback, *args, **kwargs):
        session.transition(state)
        self.operation_log.step_started(state.value)
        logger.debug("Entering step %s", state.value)

        try:
            result = callback(*args, **kwargs)
        except Exception as exc:
            self.operation_log.step_finished(state.value, "failed", error=str(exc))
            raise

        self.operation_log.step_finished(state.value, "success")
        return result

    def _compare(self, session: UpdateSession) -> bool:
        session.target = self.registry_service.resolve_latest()
        session.local = self.get_local_installation(session.identity)
        return needs_update(session.local, session.target)

    def _swap_env(self, env, version: str) -> List[str]:
        prefix = f"{VERSION_ENV_VAR}="
        return [f"{prefix}{version}" if entry.startswith(prefix) else entry for entry in env]

    def _stop(self, session: UpdateSession):
        session.swap_started = True
        self.docker_runtime_service.stop(session.identity.container_name)

    def _rename(self, session: UpdateSession):
        name = session.identity.container_name
        backup_name = f"{name}{BACKUP_SUFFIX}{datetime.now().strftime('%Y%m%d%H%M%S')}"
        self.docker_runtime_service.rename(name, backup_name)
        session.backup_container_name = backup_name

    def _recreate(self, session: UpdateSession):
        snapshot = session.snapshot
        # docker run can leave a created container behind even when it fails
        session.recreated = True
        self.docker_runtime_service.run_container(
            session.identity.container_name,
            self.image_ref(session.target.version),
            snapshot,
            env=self._swap_env(snapshot.env, session.target.version),
        )

    def _swap(self, session: UpdateSession):
        name = session.identity.container_name
        version = session.target.version

        self._run_step(session, UpdateState.PULL, self.docker_runtime_service.pull, self.image_ref(version))
        self._run_step(session, UpdateState.STOP, self._stop, session)
        self._run_step(session, UpdateState.RENAME, self._rename, session)
        self._run_step(session, UpdateState.RECREATE, self._recreate, session)
        self._run_step(session, UpdateState.VALIDATE, self.validation_service.validate, name, version)

    def _result(self, session: UpdateSession, **kwargs) -> UpdateResult:
        return UpdateResult(state_history=tuple(state.value for state in session.history), **kwargs)

    def _rollback(self, session: UpdateSession, exc: Exception) -> UpdateResult:
        failed_step = exc.step if isinstance(exc, UpdateFailure) else session.state.value
        error = str(exc)
        previous_version = session.local.version if session.local else None
        logger.error("Update failed during %s: %s", failed_step, error)
        console.print(f"[bold red]Update failed during {failed_step}:[/bold red] {error}")

        try:
            self._run_step(
                session,
                UpdateState.ROLLBACK,
                self.rollback_service.rollback,
                session.snapshot,
                swap_started=session.swap_started,
                backup_container_name=session.backup_container_name,
                recreated=session.recreated,
            )
        except RollbackError as rollback_exc:
            session.transition(UpdateState.FAILED)
            rollback_error = actionable_error(
                "rollback_failed",
                container=session.snapshot.container_name,
                backup=session.backup_container_name or "<none>",
                image=session.snapshot.image,
            )
            logger.critical("%s (%s)", rollback_error, rollback_exc)
            console.print(f"[bold red]{rollback_error}[/bold red]")
            self.operation_log.append(
                "update",
                "Update failed and rollback failed",
                level="critical",
                details={"error": error, "rollback_error": str(rollback_exc)},
            )
            return self._result(
                session,
                success=False,
                outcome="rollback_failed",
                previous_version=previous_version,
                rolled_back=False,
                error=error,
                rollback_error=f"{rollback_exc} {rollback_error}",
                failed_step=failed_step,
            )

        session.transition(UpdateState.FAILED)
        self.operation_log.append(
            "update",
            "Update failed, previous container restored",
            level="error",
            details={"error": error, "failed_step": failed_step},
        )
        return self._result(
            session,
            success=False,
            outcome="rolled_back",
            previous_version=previous_version,
            rolled_back=True,
            error=error,
            failed_step=failed_step,
        )

    def _update_locked(self, session: UpdateSession) -> UpdateResult:
        self._run_step(session, UpdateState.PREFLIGHT, self.preflight_service.run)
        session.snapshot = self._run_step(
            session,
            UpdateState.BACKUP,
            self.backup_service.create_snapshot,
            session.identity,
        )

        if not self._run_step(session, UpdateState.COMPARE, self._compare, session):
            session.transition(UpdateState.DONE)
            console.print(f"[green]Already up to date ({session.local.version}).[/green]")
            self.operation_log.append("update", f"Already up to date at {session.local.version}")
            return self._result(
                session,
                success=True,
                outcome="current",
                applied_version=None,
                previous_version=session.local.version,
            )

        console.print(
            f"[bold blue]Updating {session.identity.container_name}: "
            f"{session.local.version} -> {session.target.version}[/bold blue]"
        )
        try:
            self._swap(session)
        except Exception as exc:
            if not session.requires_rollback:
                raise
            if not isinstance(exc, UpdaterError):
                logger.exception("Unexpected error during %s", session.state.value)
            return self._rollback(session, exc)

        session.transition(UpdateState.DONE)
        if session.backup_container_name:
            self.cleanup_scheduler.schedule(session.backup_container_name, self.cleanup_delay_seconds)

        console.print(f"[bold green]Updated to {session.target.version}.[/bold green]")
        self.operation_log.append(
            "update",
            f"Updated from {session.local.version} to {session.target.version}",
            details={"backup_container": session.backup_container_name},
        )
        return self._result(
            session,
            success=True,
            outcome="updated",
            applied_version=session.target.version,
            previous_version=session.local.version,
        )

    def perform_update(self) -> UpdateResult:
        session = UpdateSession()
        self.session = session
        logger.info("Starting update session...")
        self.operation_log.append("update", "Update session started")

        try:
            session.identity = self._run_step(session, UpdateState.ENVIRONMENT_CHECK, self.resolve_identity)
            with single_flight(session.identity.container_name, self.lock_dir):
                return self._update_locked(session)
        except UpdaterError as exc:
            failed_step = session.state.value
            session.transition(UpdateState.FAILED)
            console.print(f"[bold red]Error:[/bold red] {exc}")
            logger.error(str(exc))
            self.operation_log.append("update", "Update aborted", level="error", details={"error": str(exc)})
            return self._result(
                session,
                success=False,
                outcome="failed",
                previous_version=session.local.version if session.local else None,
                error=str(exc),
                failed_step=failed_step,
            )
        except Exception as exc:
            failed_step = session.state.value
            session.transition(UpdateState.FAILED)
            console.print(f"[bold red]Unexpected error:[/bold red] {exc}")
            logger.exception("Unexpected error")
            self.operation_log.append("update", "Update aborted", level="error", details={"error": str(exc)})
            return self._result(
                session,
                success=False,
                outcome="failed",
                error=str(exc),
                failed_step=failed_step,
            )
