"""Docker runtime services for imageswap."""

import json
from typing import Any, Dict, List, Optional

from imageswap.constants import COMMAND_TIMEOUT, PULL_TIMEOUT
from imageswap.errors import CommandError, UpdaterError
from imageswap.models import BackupSnapshot

_MISSING_CONTAINER_MARKERS = ("no such container", "no such object")


class DockerRuntimeService:
    """Thin wrapper over the ``docker`` CLI used by every update step."""

    def __init__(
        self,
        logger,
        console,
        command_runner,
        command_timeout: float = COMMAND_TIMEOUT,
        pull_timeout: float = PULL_TIMEOUT,
    ):
        self.logger = logger
        self.console = console
        self.command_runner = command_runner
        self.command_timeout = command_timeout
        self.pull_timeout = pull_timeout

    def _docker(self, args: List[str], timeout: Optional[float] = None, check: bool = True):
        return self.command_runner.run(
            ["docker"] + args,
            check=check,
            capture_output=True,
            timeout=timeout if timeout is not None else self.command_timeout,
        )

    def version(self) -> str:
        result = self._docker(["version", "--format", "{{.Server.Version}}"])
        return (result.stdout or "").strip()

    def inspect(self, name: str) -> Dict[str, Any]:
        result = self._docker(["inspect", name])
        try:
            payload = json.loads(result.stdout or "")
        except json.JSONDecodeError as exc:
            raise UpdaterError(f"Could not parse `docker inspect {name}` output: {exc}") from exc

        if not isinstance(payload, list) or not payload or not isinstance(payload[0], dict):
            raise UpdaterError(f"`docker inspect {name}` returned no container data.")
        return payload[0]

    def pull(self, image: str):
        self.logger.info("Pulling image %s", image)
        with self.console.status(f"[cyan]Pulling {image}...[/cyan]"):
            self._docker(["pull", image], timeout=self.pull_timeout)

    def start(self, name: str):
        self.logger.info("Starting container %s", name)
        self._docker(["start", name])

    def stop(self, name: str, missing_ok: bool = False):
        self.logger.info("Stopping container %s", name)
        self._tolerate_missing(["stop", name], missing_ok)

    def remove(self, name: str, force: bool = False, missing_ok: bool = False):
        self.logger.info("Removing container %s", name)
        args = ["rm", "-f", name] if force else ["rm", name]
        self._tolerate_missing(args, missing_ok)

    def rename(self, old_name: str, new_name: str):
        self.logger.info("Renaming container %s to %s", old_name, new_name)
        self._docker(["rename", old_name, new_name])

    def run_container(self, name: str, image: str, snapshot: BackupSnapshot, env: Optional[List[str]] = None):
        cmd = self.build_run_args(name, image, snapshot, env=env)
        self.logger.info("Starting container %s from %s", name, image)
        result = self._docker(cmd)
        return (result.stdout or "").strip()

    @staticmethod
    def build_run_args(
        name: str,
        image: str,
        snapshot: BackupSnapshot,
        env: Optional[List[str]] = None,
    ) -> List[str]:
        args = ["run", "-d", "--name", name]
        for container_port, host_port in sorted(snapshot.port_bindings.items()):
            args += ["-p", f"{host_port}:{container_port}"]
        for mount in snapshot.volume_mounts:
            args += ["-v", f"{mount.source}:{mount.destination}"]
        for entry in env if env is not None else snapshot.env:
            args += ["-e", entry]
        if snapshot.restart_policy and snapshot.restart_policy != "no":
            args += ["--restart", snapshot.restart_policy]
        args.append(image)
        return args

    def _tolerate_missing(self, args: List[str], missing_ok: bool):
        try:
            self._docker(args)
        except CommandError as exc:
            text = f"{exc} {exc.stderr}".lower()
            if missing_ok and any(marker in text for marker in _MISSING_CONTAINER_MARKERS):
                self.logger.debug("Container already gone: %s", exc)
                return
            raise
