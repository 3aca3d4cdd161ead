"""Version ordering and local installation lookup."""

import json
import os
import re
from datetime import datetime, timezone
from itertools import zip_longest
from typing import Callable, Mapping, Optional, Tuple

from packaging.version import InvalidVersion, Version

from imageswap.constants import DEFAULT_MANIFEST_PATH, SENTINEL_VERSION, VERSION_ENV_VAR
from imageswap.models import LocalInstallation, VersionDescriptor

SEMVER_TAG = re.compile(r"^v?\d+\.\d+\.\d+")
_LEADING_DIGITS = re.compile(r"^\d+")


def _strip_prefix(value: str) -> str:
    clean = value.strip()
    if clean[:1] in ("v", "V"):
        clean = clean[1:]
    return clean


def release_parts(value: str) -> Tuple[int, ...]:
    clean = _strip_prefix(value)
    try:
        return Version(clean).release
    except InvalidVersion:
        pass

    parts = []
    for component in clean.split("."):
        match = _LEADING_DIGITS.match(component)
        parts.append(int(match.group(0)) if match else 0)
    return tuple(parts)


def compare_versions(left: str, right: str) -> int:
    """Return 1, 0 or -1 as ``left`` is newer, equal or older than ``right``.

    Missing trailing components count as ``0``, so ``v1.2.0`` equals ``1.2``.
    """
    for a, b in zip_longest(release_parts(left), release_parts(right), fillvalue=0):
        if a != b:
            return 1 if a > b else -1
    return 0


def is_release_tag(tag: str) -> bool:
    return tag != "latest" and bool(SEMVER_TAG.match(tag))


def needs_update(local: LocalInstallation, remote: VersionDescriptor) -> bool:
    if not local.exists or not local.version:
        return True
    return compare_versions(remote.version, local.version) > 0


class LocalVersionService:
    """Resolves the version of the running installation.

    Sources are tried in order: environment variable, bundled manifest,
    then the running container's image tag.
    """

    def __init__(
        self,
        logger,
        environ: Optional[Mapping[str, str]] = None,
        manifest_path: str = DEFAULT_MANIFEST_PATH,
    ):
        self.logger = logger
        self.environ = os.environ if environ is None else environ
        self.manifest_path = manifest_path

    def resolve(self, image_tag_lookup: Optional[Callable[[], Optional[str]]] = None) -> LocalInstallation:
        now = datetime.now(timezone.utc).isoformat()

        env_version = (self.environ.get(VERSION_ENV_VAR) or "").strip()
        if env_version:
            return LocalInstallation(exists=True, version=env_version, last_updated=now, source="env")

        manifest_version = self._read_manifest_version()
        if manifest_version:
            return LocalInstallation(
                exists=True,
                version=manifest_version,
                last_updated=self._manifest_mtime() or now,
                source="manifest",
            )

        if image_tag_lookup is not None:
            try:
                tag = image_tag_lookup()
            except Exception as exc:
                self.logger.debug("Image tag lookup failed: %s", exc)
                tag = None
            if tag and tag != "latest":
                return LocalInstallation(exists=True, version=tag, last_updated=now, source="image")

        self.logger.debug("No local version found, using sentinel %s", SENTINEL_VERSION)
        return LocalInstallation(exists=False, version=SENTINEL_VERSION, source="default")

    def _read_manifest_version(self) -> Optional[str]:
        if not self.manifest_path or not os.path.isfile(self.manifest_path):
            return None

        try:
            with open(self.manifest_path, "r", encoding="utf-8") as file_obj:
                data = json.load(file_obj)
        except (OSError, json.JSONDecodeError) as exc:
            self.logger.debug("Could not read manifest %s: %s", self.manifest_path, exc)
            return None

        if not isinstance(data, dict):
            return None
        value = data.get("version")
        if not isinstance(value, str) or not value.strip():
            return None
        return value.strip()

    def _manifest_mtime(self) -> Optional[str]:
        try:
            mtime = os.path.getmtime(self.manifest_path)
        except OSError:
            return None
        return datetime.fromtimestamp(mtime, tz=timezone.utc).isoformat()


def image_tag(image_ref: str) -> Optional[str]:
    """Tag part of ``repo:tag``; ``None`` for untagged or digest references."""
    ref = image_ref.split("@", 1)[0]
    _, sep, tag = ref.rpartition(":")
    if not sep or "/" in tag:
        return None
    return tag or None
