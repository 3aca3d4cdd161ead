"""Shared domain models for imageswap."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class VersionDescriptor:
    """A published image tag resolved from the registry."""

    version: str
    last_updated: str
    registry_url: str


@dataclass(frozen=True)
class LocalInstallation:
    exists: bool
    version: Optional[str] = None
    last_updated: Optional[str] = None
    source: Optional[str] = None


@dataclass(frozen=True)
class ContainerIdentity:
    """Runtime key for every container command issued during a session."""

    container_id: Optional[str]
    container_name: str


@dataclass(frozen=True)
class VolumeMount:
    source: str
    destination: str


@dataclass(frozen=True)
class BackupSnapshot:
    """Launch configuration of the live container, captured before the swap."""

    timestamp: str
    container_name: str
    image: str
    env: Tuple[str, ...]
    port_bindings: Dict[str, str]
    volume_mounts: Tuple[VolumeMount, ...]
    restart_policy: Optional[str] = None


class UpdateState(str, Enum):
    IDLE = "idle"
    ENVIRONMENT_CHECK = "environment_check"
    PREFLIGHT = "preflight"
    BACKUP = "backup"
    COMPARE = "compare"
    PULL = "pull"
    STOP = "stop"
    RENAME = "rename"
    RECREATE = "recreate"
    VALIDATE = "validate"
    DONE = "done"
    ROLLBACK = "rollback"
    FAILED = "failed"


ROLLBACK_STATES = frozenset(
    {
        UpdateState.PULL,
        UpdateState.STOP,
        UpdateState.RENAME,
        UpdateState.RECREATE,
        UpdateState.VALIDATE,
    }
)


@dataclass
class UpdateSession:
    """Ephemeral state threaded through one update call.

    ``swap_started`` is set once the original container may have been
    stopped, ``backup_container_name`` once it was renamed and ``recreated``
    once a new container may exist under the original name.
    """

    identity: Optional[ContainerIdentity] = None
    state: UpdateState = UpdateState.IDLE
    history: List[UpdateState] = field(default_factory=lambda: [UpdateState.IDLE])
    target: Optional[VersionDescriptor] = None
    local: Optional[LocalInstallation] = None
    snapshot: Optional[BackupSnapshot] = None
    backup_container_name: Optional[str] = None
    swap_started: bool = False
    recreated: bool = False

    def transition(self, state: UpdateState):
        self.state = state
        self.history.append(state)

    @property
    def requires_rollback(self) -> bool:
        return self.snapshot is not None and self.state in ROLLBACK_STATES


@dataclass(frozen=True)
class VersionCheck:
    local: LocalInstallation
    remote: VersionDescriptor
    needs_update: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PreflightCheckResult:
    name: str
    passed: bool
    detail: str = ""


@dataclass(frozen=True)
class UpdateResult:
    """Structured outcome of ``ImageUpdater.perform_update``.

    ``outcome`` is one of ``current``, ``updated``, ``rolled_back``,
    ``rollback_failed`` or ``failed`` (failure before any mutation).
    """

    success: bool
    outcome: str
    applied_version: Optional[str] = None
    previous_version: Optional[str] = None
    rolled_back: Optional[bool] = None
    error: Optional[str] = None
    rollback_error: Optional[str] = None
    failed_step: Optional[str] = None
    state_history: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
