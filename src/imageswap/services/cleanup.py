"""Deferred removal of backup containers after a successful swap."""

import subprocess
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from imageswap.constants import CLEANUP_DELAY_SECONDS, CLEANUP_RETENTION_SECONDS
from imageswap.errors import UpdaterError

_PRIVATE_FIELDS = ("timer", "process")


class CleanupScheduler:
    """Supervised, cancellable jobs that delete backup containers.

    Without ``worker_command`` a job is an in-process ``threading.Timer``,
    which only suits a long-lived embedding. With it, each job is launched
    as a detached process in its own session so the removal outlives a
    short-lived caller such as the CLI. ``worker_command(name, delay)``
    returns the argv of that process.

    Failures are logged and recorded in the operation log; they never reach
    the caller of the update, which has already been answered.
    """

    def __init__(
        self,
        logger,
        docker_runtime_service,
        operation_log=None,
        timer_factory=threading.Timer,
        worker_command: Optional[Callable[[str, float], List[str]]] = None,
        popen=subprocess.Popen,
        retention_seconds: float = CLEANUP_RETENTION_SECONDS,
    ):
        self.logger = logger
        self.docker = docker_runtime_service
        self.operation_log = operation_log
        self.timer_factory = timer_factory
        self.worker_command = worker_command
        self.popen = popen
        self.retention_seconds = retention_seconds
        self._jobs: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    @property
    def detached(self) -> bool:
        return self.worker_command is not None

    def schedule(self, container_name: str, delay_seconds: float = CLEANUP_DELAY_SECONDS) -> Dict[str, Any]:
        with self._lock:
            self._prune()
            existing = self._jobs.pop(container_name, None)
            if existing and existing["status"] == "scheduled":
                self._stop_job(existing)

            due_at = datetime.now(timezone.utc) + timedelta(seconds=delay_seconds)
            job = {
                "container": container_name,
                "due_at": due_at.isoformat(),
                "mode": "detached" if self.detached else "timer",
                "status": "scheduled",
                "error": None,
                "pid": None,
                "finished_at": None,
                "timer": None,
                "process": None,
            }
            self._jobs[container_name] = job

            if self.detached:
                launch_error = self._launch_worker(job, delay_seconds)
            else:
                launch_error = None
                timer = self.timer_factory(delay_seconds, self._run, args=(container_name,))
                timer.daemon = True
                job["timer"] = timer
                timer.start()

        if launch_error:
            self.logger.error("Could not schedule removal of %s: %s", container_name, launch_error)
            self._record("error", f"Cleanup of {container_name} could not be scheduled", error=launch_error)
        else:
            self.logger.info("Backup container %s will be removed in %.0fs", container_name, delay_seconds)
        return self._public(job)

    def cancel(self, container_name: str) -> bool:
        with self._lock:
            job = self._jobs.get(container_name)
            if not job:
                return False
            self._refresh(job)
            if job["status"] != "scheduled":
                return False
            self._stop_job(job)
            self._mark(job, "cancelled", None)

        self.logger.info("Cancelled cleanup of %s", container_name)
        return True

    def cancel_all(self) -> int:
        with self._lock:
            names = [name for name, job in self._jobs.items() if job["status"] == "scheduled"]
        return sum(1 for name in names if self.cancel(name))

    def pending(self) -> List[Dict[str, Any]]:
        with self._lock:
            self._prune()
            for job in self._jobs.values():
                self._refresh(job)
            return [self._public(job) for job in self._jobs.values() if job["status"] == "scheduled"]

    def job(self, container_name: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            job = self._jobs.get(container_name)
            if not job:
                return None
            self._refresh(job)
            return self._public(job)

    def remove_now(self, container_name: str) -> bool:
        """Remove ``container_name`` immediately; returns ``False`` on failure."""
        return self._remove(container_name) is None

    def _remove(self, container_name: str) -> Optional[str]:
        try:
            self.docker.remove(container_name, force=True, missing_ok=True)
        except UpdaterError as exc:
            self._failed(container_name, exc)
            return str(exc)
        except Exception as exc:
            self.logger.exception("Unexpected error while removing backup container %s", container_name)
            self._failed(container_name, exc)
            return str(exc)

        self.logger.info("Removed backup container %s", container_name)
        self._record("info", f"Removed backup container {container_name}")
        return None

    def _run(self, container_name: str):
        with self._lock:
            job = self._jobs.get(container_name)
            if not job or job["status"] != "scheduled":
                return
            job["status"] = "running"

        error = self._remove(container_name)
        with self._lock:
            self._mark(job, "failed" if error else "done", error)

    def _launch_worker(self, job: Dict[str, Any], delay_seconds: float) -> Optional[str]:
        cmd = self.worker_command(job["container"], delay_seconds)
        try:
            process = self.popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                close_fds=True,
                start_new_session=True,
            )
        except OSError as exc:
            self._mark(job, "failed", str(exc))
            return str(exc)

        job["process"] = process
        job["pid"] = process.pid
        self.logger.debug("Cleanup worker for %s started as pid %s", job["container"], process.pid)
        return None

    def _stop_job(self, job: Dict[str, Any]):
        if job["timer"] is not None:
            job["timer"].cancel()
        if job["process"] is not None:
            try:
                job["process"].terminate()
            except OSError as exc:
                self.logger.debug("Cleanup worker %s already gone: %s", job["pid"], exc)

    def _refresh(self, job: Dict[str, Any]):
        process = job["process"]
        if process is None or job["status"] != "scheduled":
            return
        returncode = process.poll()
        if returncode is None:
            return
        if returncode == 0:
            self._mark(job, "done", None)
        else:
            self._mark(job, "failed", f"cleanup worker exited with status {returncode}")

    def _prune(self):
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=self.retention_seconds)
        expired = [
            name
            for name, job in self._jobs.items()
            if job["finished_at"] and datetime.fromisoformat(job["finished_at"]) < cutoff
        ]
        for name in expired:
            del self._jobs[name]

    def _failed(self, container_name: str, exc: Exception):
        self.logger.error("Cleanup of backup container %s failed: %s", container_name, exc)
        self._record("error", f"Cleanup of {container_name} failed", error=str(exc))

    @staticmethod
    def _mark(job: Dict[str, Any], status: str, error: Optional[str]):
        job["status"] = status
        job["error"] = error
        job["finished_at"] = datetime.now(timezone.utc).isoformat()

    def _record(self, level: str, message: str, error: Optional[str] = None):
        if self.operation_log is None:
            return
        details = {"error": error} if error else None
        self.operation_log.append("cleanup", message, level=level, details=details)

    @staticmethod
    def _public(job: Dict[str, Any]) -> Dict[str, Any]:
        return {key: value for key, value in job.items() if key not in _PRIVATE_FIELDS}
