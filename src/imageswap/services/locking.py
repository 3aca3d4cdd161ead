"""Single-flight locks keyed by container name.

The lock is an ``flock`` on a per-container file, so it holds across
threads and across separate ``imageswap`` processes alike.
"""

import fcntl
import os
import re
from contextlib import contextmanager

from imageswap.errors import UpdateInProgressError, UpdaterError
from imageswap.errors_catalog import actionable_error

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def lock_path(container_name: str, lock_dir: str) -> str:
    safe_name = _UNSAFE_CHARS.sub("_", container_name) or "_"
    return os.path.join(lock_dir, f"{safe_name}.update.lock")


@contextmanager
def single_flight(container_name: str, lock_dir: str = "."):
    """Hold the update slot of ``container_name`` or fail immediately."""
    path = lock_path(container_name, lock_dir)
    try:
        os.makedirs(lock_dir or ".", exist_ok=True)
        lock_file = open(path, "a", encoding="utf-8")
    except OSError as exc:
        raise UpdaterError(f"Could not open lock file '{path}': {exc}") from exc

    try:
        try:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as exc:
            raise UpdateInProgressError(
                actionable_error("update_in_progress", container=container_name)
            ) from exc

        try:
            yield path
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
    finally:
        lock_file.close()
