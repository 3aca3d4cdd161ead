"""Configuration loader for imageswap."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from imageswap.errors import UpdaterError


class ConfigLoader:
    """Loads YAML configuration files for CLI defaults."""

    SUPPORTED_KEYS = {
        "registry",
        "repository",
        "timeout",
        "page_size",
        "manifest_path",
        "data_path",
        "disk_threshold_percent",
        "settle_seconds",
        "health_timeout_seconds",
        "health_interval_seconds",
        "cleanup_delay_seconds",
        "command_timeout",
        "pull_timeout",
        "log_file",
        "operation_log",
        "verbose",
    }

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise UpdaterError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise UpdaterError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise UpdaterError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise UpdaterError(f"Unknown configuration keys: {unknown_list}")

        return parsed

    def save_value(self, config_path: str, key: str, value: Any) -> Dict[str, Any]:
        """Set one key in the config file, creating it when missing."""
        if key not in self.SUPPORTED_KEYS:
            raise UpdaterError(f"Unknown configuration key: {key}")

        path = Path(config_path)
        current = self.load(config_path) if path.exists() else {}
        current[key] = value

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(yaml.safe_dump(current, sort_keys=True), encoding="utf-8")
        except OSError as exc:
            raise UpdaterError(f"Could not write config file '{config_path}': {exc}") from exc

        return current
