"""Container environment detection for imageswap."""

import os
from typing import Any, Dict, Mapping, Optional

from imageswap.constants import (
    CONTAINER_ENV_VAR,
    HOSTNAME_ENV_VAR,
    INIT_CGROUP_FILE,
    MARKER_FILE,
    RUNTIME_SIGNATURE,
    SELF_CGROUP_FILE,
    SHORT_ID_LENGTH,
)
from imageswap.errors import EnvironmentNotManagedError
from imageswap.errors_catalog import actionable_error
from imageswap.models import ContainerIdentity

TRUTHY_VALUES = {"1", "true", "yes", "on"}


class EnvironmentDetector:
    """Decides whether the process runs inside a Docker container."""

    def __init__(
        self,
        logger,
        environ: Optional[Mapping[str, str]] = None,
        marker_file: str = MARKER_FILE,
        init_cgroup_file: str = INIT_CGROUP_FILE,
        self_cgroup_file: str = SELF_CGROUP_FILE,
    ):
        self.logger = logger
        self.environ = os.environ if environ is None else environ
        self.marker_file = marker_file
        self.init_cgroup_file = init_cgroup_file
        self.self_cgroup_file = self_cgroup_file

    def is_managed(self) -> bool:
        checks = (
            self._has_marker_file,
            self._init_cgroup_matches,
            self._env_flag_set,
            self._self_cgroup_matches,
        )
        results = [check() for check in checks]
        self.logger.debug("Container detection results: %s", results)
        return any(results)

    def detect_identity(self) -> ContainerIdentity:
        container_id = self._container_id_from_cgroup()
        hostname = (self.environ.get(HOSTNAME_ENV_VAR) or "").strip()
        container_name = hostname or container_id

        if not container_name:
            raise EnvironmentNotManagedError(actionable_error("container_identity_unknown"))

        return ContainerIdentity(container_id=container_id, container_name=container_name)

    def status(self) -> Dict[str, Any]:
        managed = self.is_managed()
        identity: Optional[ContainerIdentity] = None
        if managed:
            try:
                identity = self.detect_identity()
            except EnvironmentNotManagedError as exc:
                self.logger.warning(str(exc))

        return {
            "installed": managed,
            "is_docker_environment": managed,
            "container_id": identity.container_id if identity else None,
            "container_name": identity.container_name if identity else None,
        }

    def _has_marker_file(self) -> bool:
        try:
            return os.path.exists(self.marker_file)
        except OSError:
            return False

    def _init_cgroup_matches(self) -> bool:
        return RUNTIME_SIGNATURE in self._read(self.init_cgroup_file)

    def _self_cgroup_matches(self) -> bool:
        return RUNTIME_SIGNATURE in self._read(self.self_cgroup_file)

    def _env_flag_set(self) -> bool:
        value = (self.environ.get(CONTAINER_ENV_VAR) or "").strip().lower()
        return value in TRUTHY_VALUES

    def _container_id_from_cgroup(self) -> Optional[str]:
        for line in self._read(self.self_cgroup_file).splitlines():
            if RUNTIME_SIGNATURE not in line:
                continue
            segment = line.rstrip("/").split("/")[-1]
            if segment.startswith("docker-"):
                segment = segment[len("docker-"):]
            if segment.endswith(".scope"):
                segment = segment[: -len(".scope")]
            if segment:
                return segment[:SHORT_ID_LENGTH]
        return None

    def _read(self, path: str) -> str:
        try:
            with open(path, "r", encoding="utf-8") as file_obj:
                return file_obj.read()
        except OSError as exc:
            self.logger.debug("Could not read %s: %s", path, exc)
            return ""
