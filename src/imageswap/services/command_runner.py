"""Subprocess execution service for imageswap."""

import subprocess
from typing import List, Optional

from imageswap.errors import CommandError, CommandTimeoutError


class CommandRunner:
    """Runs one external command per call with a bounded run time.

    A timeout raises ``CommandTimeoutError``; a non-zero exit raises
    ``CommandError`` carrying the exit code and stderr.
    """

    def __init__(self, logger, default_timeout: Optional[float] = None, subprocess_module=subprocess):
        self.logger = logger
        self.default_timeout = default_timeout
        self.subprocess = subprocess_module

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        cmd_str = " ".join(cmd)
        effective_timeout = timeout if timeout is not None else self.default_timeout
        self.logger.debug("Executing (timeout %ss): %s", effective_timeout, cmd_str)

        try:
            result = self.subprocess.run(
                cmd,
                text=True,
                capture_output=capture_output,
                timeout=effective_timeout,
            )
        except FileNotFoundError as exc:
            raise CommandError(
                f"Required command not found: {cmd[0]}. Please install it and try again."
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise CommandTimeoutError(
                f"Command timed out after {effective_timeout}s: {cmd_str}",
                timeout=effective_timeout,
            ) from exc
        except OSError as exc:
            raise CommandError(f"Failed to execute command: {cmd_str}. {exc}") from exc

        if capture_output and result.stdout:
            self.logger.debug("Command output: %s", result.stdout.strip())

        if result.returncode == 0:
            return result

        stderr = (result.stderr or "").strip() if capture_output else ""
        message = f"Command failed ({result.returncode}): {cmd_str}"
        if stderr:
            message = f"{message}\n{stderr}"

        if check:
            raise CommandError(message, returncode=result.returncode, stderr=stderr)

        self.logger.warning(message)
        return result
