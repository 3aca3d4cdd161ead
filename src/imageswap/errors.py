"""Domain errors for imageswap."""

from typing import Optional


class UpdaterError(RuntimeError):
    """Raised when the update cannot continue safely."""


class NetworkError(UpdaterError):
    """Registry could not be reached after the retry budget was spent."""

    def __init__(self, message: str, cause: str = "unreachable"):
        super().__init__(message)
        self.cause = cause


class EnvironmentNotManagedError(UpdaterError):
    """The process is not running inside a managed container."""


class PreflightFailure(UpdaterError):
    def __init__(self, check: str, reason: str):
        super().__init__(f"Preflight check '{check}' failed: {reason}")
        self.check = check
        self.reason = reason


class BackupError(UpdaterError):
    """The live container could not be snapshotted."""


class UpdateFailure(UpdaterError):
    def __init__(self, step: str, message: str):
        super().__init__(message)
        self.step = step


class ValidationError(UpdateFailure):
    def __init__(self, message: str):
        super().__init__("validate", message)


class RollbackError(UpdaterError):
    """Rollback could not restore the previous container."""


class UpdateInProgressError(UpdaterError):
    """Another update session already owns the container."""


class CommandError(UpdaterError):
    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class CommandTimeoutError(CommandError):
    def __init__(self, message: str, timeout: Optional[float] = None):
        super().__init__(message)
        self.timeout = timeout
