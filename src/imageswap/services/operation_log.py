"""Append-only activity log of update operations."""

import json
import os
import tempfile
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from imageswap.constants import OPERATION_LOG_MAX_ENTRIES


class OperationLog:
    """Keeps the most recent operations in a JSON file.

    Write failures are logged as warnings and never interrupt an update.
    """

    def __init__(self, log_file: str, logger, max_entries: int = OPERATION_LOG_MAX_ENTRIES):
        self.log_file = log_file
        self.logger = logger
        self.max_entries = max_entries
        self._lock = threading.Lock()

    def append(
        self,
        action: str,
        message: str,
        level: str = "info",
        details: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        entry = {
            "timestamp": self._now(),
            "action": action,
            "level": level,
            "message": message,
            "details": details or {},
        }
        with self._lock:
            entries = self.read()
            entries.append(entry)
            self._write(entries[-self.max_entries:])
        return entry

    def step_started(self, step_name: str, details: Optional[Dict[str, Any]] = None):
        self.append(step_name, f"Step {step_name} started", details=details)

    def step_finished(
        self,
        step_name: str,
        status: str,
        details: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ):
        merged = dict(details or {})
        merged["status"] = status
        if error:
            merged["error"] = error
        level = "error" if status == "failed" else "info"
        self.append(step_name, f"Step {step_name} {status}", level=level, details=merged)

    def read(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        if not os.path.exists(self.log_file):
            return []

        try:
            with open(self.log_file, "r", encoding="utf-8") as file_obj:
                data = json.load(file_obj)
        except (OSError, json.JSONDecodeError) as exc:
            self.logger.warning("Could not read operation log '%s': %s", self.log_file, exc)
            return []

        if not isinstance(data, list):
            return []
        return data[-limit:] if limit else data

    def _write(self, entries: List[Dict[str, Any]]):
        directory = os.path.dirname(self.log_file) or "."
        try:
            os.makedirs(directory, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(prefix="update-operations-", suffix=".json", dir=directory)
        except OSError as exc:
            self.logger.warning("Could not write operation log '%s': %s", self.log_file, exc)
            return

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                json.dump(entries, file_obj, indent=2, sort_keys=True)
                file_obj.write("\n")
            os.replace(temp_path, self.log_file)
        except OSError as exc:
            self.logger.warning("Could not write operation log '%s': %s", self.log_file, exc)
            try:
                os.remove(temp_path)
            except OSError:
                pass

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()
