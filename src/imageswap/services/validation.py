"""Post-swap validation of the recreated container."""

import time
from typing import Any, Dict, Optional

from imageswap.constants import HEALTH_INTERVAL_SECONDS, HEALTH_TIMEOUT_SECONDS, SETTLE_SECONDS
from imageswap.errors import CommandTimeoutError, UpdaterError, ValidationError


class ValidationService:
    """Polls the new container until it runs the expected image and is not unhealthy."""

    def __init__(
        self,
        logger,
        console,
        docker_runtime_service,
        settle_seconds: float = SETTLE_SECONDS,
        timeout_seconds: float = HEALTH_TIMEOUT_SECONDS,
        interval_seconds: float = HEALTH_INTERVAL_SECONDS,
    ):
        self.logger = logger
        self.console = console
        self.docker = docker_runtime_service
        self.settle_seconds = max(0.0, settle_seconds)
        self.timeout_seconds = max(0.0, timeout_seconds)
        self.interval_seconds = max(0.0, interval_seconds)

    def validate(self, container_name: str, expected_version: str):
        self.console.print(f"[yellow]Validating {container_name}...[/yellow]")
        if self.settle_seconds:
            time.sleep(self.settle_seconds)

        deadline = time.monotonic() + self.timeout_seconds
        last_problem = "container was never inspected"

        while True:
            try:
                attrs = self.docker.inspect(container_name)
            except CommandTimeoutError:
                raise
            except UpdaterError as exc:
                attrs = None
                last_problem = f"inspect failed: {exc}"

            still_starting = False
            if attrs is not None:
                image = self._image_reference(attrs)
                if expected_version not in image:
                    raise ValidationError(
                        f"Container {container_name} runs image '{image}', "
                        f"expected version {expected_version}."
                    )

                state = attrs.get("State") if isinstance(attrs.get("State"), dict) else {}
                health = self._health_status(state)
                if health == "unhealthy":
                    raise ValidationError(f"Container {container_name} reports status 'unhealthy'.")

                if not state.get("Running", False):
                    last_problem = f"container is not running (status: {state.get('Status', 'unknown')})"
                elif health in (None, "healthy"):
                    self.console.print("[green]New container is running and healthy.[/green]")
                    self.logger.info("Validation passed for %s (health: %s)", container_name, health or "n/a")
                    return
                else:
                    still_starting = health == "starting"
                    last_problem = f"health status is '{health}'"

            if time.monotonic() >= deadline:
                break
            self.logger.debug("Waiting for %s: %s", container_name, last_problem)
            time.sleep(self.interval_seconds)

        if still_starting:
            self.logger.warning(
                "Container %s is still starting after %.0fs; accepting it as the health check has not failed.",
                container_name,
                self.timeout_seconds,
            )
            return

        raise ValidationError(
            f"Container {container_name} did not become ready within "
            f"{self.timeout_seconds:.0f}s: {last_problem}."
        )

    @staticmethod
    def _image_reference(attrs: Dict[str, Any]) -> str:
        config = attrs.get("Config") if isinstance(attrs.get("Config"), dict) else {}
        return str(config.get("Image") or attrs.get("Image") or "")

    @staticmethod
    def _health_status(state: Dict[str, Any]) -> Optional[str]:
        health = state.get("Health")
        if not isinstance(health, dict):
            return None
        status = health.get("Status")
        return status if isinstance(status, str) and status else None
