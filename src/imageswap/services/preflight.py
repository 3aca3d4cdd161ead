"""Readiness checks executed before any destructive step."""

import shutil
from typing import Callable, List, Tuple

from imageswap.constants import DEFAULT_DATA_PATH, DISK_THRESHOLD_PERCENT
from imageswap.errors import PreflightFailure, UpdaterError
from imageswap.models import PreflightCheckResult


class PreflightService:
    """Runs named checks in order and stops at the first failure."""

    def __init__(
        self,
        logger,
        console,
        docker_runtime_service,
        registry_service,
        data_path: str = DEFAULT_DATA_PATH,
        disk_threshold_percent: float = DISK_THRESHOLD_PERCENT,
        disk_usage: Callable = shutil.disk_usage,
    ):
        self.logger = logger
        self.console = console
        self.docker = docker_runtime_service
        self.registry = registry_service
        self.data_path = data_path
        self.disk_threshold_percent = disk_threshold_percent
        self.disk_usage = disk_usage

    def checks(self) -> List[Tuple[str, Callable[[], str]]]:
        return [
            ("disk_space", self.check_disk_space),
            ("docker_daemon", self.check_docker_daemon),
            ("registry", self.check_registry),
        ]

    def run(self) -> List[PreflightCheckResult]:
        self.console.print("[blue]Running preflight checks...[/blue]")
        results: List[PreflightCheckResult] = []

        for name, check in self.checks():
            try:
                detail = check()
            except UpdaterError as exc:
                self.logger.error("Preflight check %s failed: %s", name, exc)
                raise PreflightFailure(name, str(exc)) from exc

            self.logger.info("Preflight check %s passed: %s", name, detail)
            results.append(PreflightCheckResult(name=name, passed=True, detail=detail))

        self.console.print("[green]Preflight checks passed.[/green]")
        return results

    def check_disk_space(self) -> str:
        try:
            usage = self.disk_usage(self.data_path)
        except OSError as exc:
            raise UpdaterError(f"Could not read disk usage of {self.data_path}: {exc}") from exc

        used_percent = (usage.used / usage.total * 100.0) if usage.total else 100.0
        if used_percent > self.disk_threshold_percent:
            raise UpdaterError(
                f"Disk usage of {self.data_path} is {used_percent:.1f}%, "
                f"above the {self.disk_threshold_percent:.0f}% limit."
            )
        return f"{used_percent:.1f}% used"

    def check_docker_daemon(self) -> str:
        server_version = self.docker.version()
        return f"Docker {server_version or 'daemon'} reachable"

    def check_registry(self) -> str:
        self.registry.ping()
        return f"{self.registry.registry_url} reachable"
