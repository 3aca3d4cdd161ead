"""Snapshot of the live container launch configuration."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from imageswap.errors import BackupError, UpdaterError
from imageswap.models import BackupSnapshot, ContainerIdentity, VolumeMount


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


class BackupService:
    """Builds a ``BackupSnapshot`` from ``docker inspect`` of the running container."""

    def __init__(self, logger, console, docker_runtime_service):
        self.logger = logger
        self.console = console
        self.docker = docker_runtime_service

    def create_snapshot(self, identity: ContainerIdentity) -> BackupSnapshot:
        self.console.print(f"[blue]Backing up configuration of {identity.container_name}...[/blue]")
        try:
            attrs = self.docker.inspect(identity.container_name)
        except UpdaterError as exc:
            raise BackupError(
                f"Could not inspect container {identity.container_name}: {exc}"
            ) from exc

        snapshot = self.snapshot_from_inspect(identity.container_name, attrs)
        self.logger.info(
            "Backup captured for %s: image=%s ports=%s volumes=%s",
            snapshot.container_name,
            snapshot.image,
            len(snapshot.port_bindings),
            len(snapshot.volume_mounts),
        )
        return snapshot

    @staticmethod
    def snapshot_from_inspect(container_name: str, attrs: Dict[str, Any]) -> BackupSnapshot:
        config = _as_dict(attrs.get("Config"))
        host_config = _as_dict(attrs.get("HostConfig"))

        image = config.get("Image")
        if not isinstance(image, str) or not image:
            raise BackupError(f"Container {container_name} has no image reference in its configuration.")

        port_bindings: Dict[str, str] = {}
        for container_port, bindings in _as_dict(host_config.get("PortBindings")).items():
            host_port: Optional[str] = None
            for binding in _as_list(bindings):
                host_port = _as_dict(binding).get("HostPort") or None
                if host_port:
                    break
            if host_port:
                port_bindings[container_port] = host_port

        volume_mounts = []
        for mount in _as_list(attrs.get("Mounts")):
            mount = _as_dict(mount)
            destination = mount.get("Destination")
            source = mount.get("Name") if mount.get("Type") == "volume" else mount.get("Source")
            source = source or mount.get("Source")
            if source and destination:
                volume_mounts.append(VolumeMount(source=source, destination=destination))

        restart_policy = _as_dict(host_config.get("RestartPolicy")).get("Name") or None

        return BackupSnapshot(
            timestamp=datetime.now(timezone.utc).isoformat(),
            container_name=container_name,
            image=image,
            env=tuple(str(entry) for entry in _as_list(config.get("Env"))),
            port_bindings=port_bindings,
            volume_mounts=tuple(volume_mounts),
            restart_policy=restart_policy,
        )
