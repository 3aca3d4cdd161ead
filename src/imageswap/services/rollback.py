"""Restores the pre-update container after a failed swap."""

from typing import Optional

from imageswap.errors import RollbackError, UpdaterError
from imageswap.models import BackupSnapshot


class RollbackService:
    def __init__(self, logger, console, docker_runtime_service):
        self.logger = logger
        self.console = console
        self.docker = docker_runtime_service

    def rollback(
        self,
        snapshot: Optional[BackupSnapshot],
        swap_started: bool = True,
        backup_container_name: Optional[str] = None,
        recreated: bool = True,
    ):
        """Put the pre-update container back under ``snapshot.container_name``.

        What runs depends on how far the swap got:

        * swap never started: nothing, the original is still running.
        * new container may exist under the original name: stop and remove
          it, then recreate from ``snapshot``.
        * original renamed to ``backup_container_name``: rename it back and
          start it.
        * original never renamed: start it (no-op when still running).
        """
        if snapshot is None:
            raise RollbackError("Refusing to roll back without a backup snapshot.")

        name = snapshot.container_name
        self.console.print(f"[yellow]Rolling back {name} to {snapshot.image}...[/yellow]")

        if not swap_started:
            self.logger.info("Swap of %s never started; original container left in place.", name)
            return

        try:
            if recreated:
                self.docker.stop(name, missing_ok=True)
                self.docker.remove(name, force=True, missing_ok=True)
                self.docker.run_container(name, snapshot.image, snapshot)
            elif backup_container_name:
                self.docker.rename(backup_container_name, name)
                self.docker.start(name)
            else:
                self.docker.start(name)
        except UpdaterError as exc:
            raise RollbackError(f"Rollback of {name} to {snapshot.image} failed: {exc}") from exc

        self.console.print(f"[green]Rollback complete: {name} runs {snapshot.image} again.[/green]")
        self.logger.info("Rolled back %s to %s", name, snapshot.image)
