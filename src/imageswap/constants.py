"""Default values shared across imageswap services."""

DEFAULT_REGISTRY = "https://hub.docker.com"
DEFAULT_REPOSITORY = "ceru007/tmdb-helper"
DEFAULT_PAGE_SIZE = 25
DEFAULT_TIMEOUT = 10.0
MAX_ATTEMPTS = 3
RETRY_BACKOFF_SECONDS = 1.0

VERSION_ENV_VAR = "CURRENT_DOCKER_VERSION"
REGISTRY_ENV_VAR = "DOCKER_HUB_REGISTRY"
HOSTNAME_ENV_VAR = "HOSTNAME"
CONTAINER_ENV_VAR = "DOCKER_CONTAINER"
DEFAULT_MANIFEST_PATH = "/app/package.json"
SENTINEL_VERSION = "v0.0.0"

MARKER_FILE = "/.dockerenv"
INIT_CGROUP_FILE = "/proc/1/cgroup"
SELF_CGROUP_FILE = "/proc/self/cgroup"
RUNTIME_SIGNATURE = "docker"
SHORT_ID_LENGTH = 12

DEFAULT_DATA_PATH = "/"
DISK_THRESHOLD_PERCENT = 90.0

COMMAND_TIMEOUT = 300.0
PULL_TIMEOUT = 900.0

SETTLE_SECONDS = 5.0
HEALTH_TIMEOUT_SECONDS = 60.0
HEALTH_INTERVAL_SECONDS = 2.0

CLEANUP_DELAY_SECONDS = 300.0
CLEANUP_RETENTION_SECONDS = 3600.0

BACKUP_SUFFIX = "_backup_"
DEFAULT_OPERATION_LOG = "data/logs/update-operations.json"
OPERATION_LOG_MAX_ENTRIES = 200
