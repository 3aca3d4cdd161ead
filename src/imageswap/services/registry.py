"""Registry tag-listing client and latest-version resolution."""

import time
from datetime import datetime, timezone
from functools import cmp_to_key
from typing import Any, Dict, List, Optional

import requests

from imageswap.constants import (
    DEFAULT_PAGE_SIZE,
    DEFAULT_REGISTRY,
    DEFAULT_REPOSITORY,
    DEFAULT_TIMEOUT,
    MAX_ATTEMPTS,
    RETRY_BACKOFF_SECONDS,
)
from imageswap.errors import NetworkError
from imageswap.errors_catalog import actionable_error
from imageswap.models import VersionDescriptor
from imageswap.services.versioning import compare_versions, is_release_tag

_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo",
    "name resolution",
    "nameresolutionerror",
    "no address associated",
)
_REFUSED_MARKERS = ("connection refused", "econnrefused", "errno 111")


class RegistryService:
    """Queries a Docker Hub compatible tag-listing API."""

    def __init__(
        self,
        logger,
        registry_url: str = DEFAULT_REGISTRY,
        repository: str = DEFAULT_REPOSITORY,
        requests_module=requests,
        timeout_seconds: float = DEFAULT_TIMEOUT,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_attempts: int = MAX_ATTEMPTS,
        retry_backoff_seconds: float = RETRY_BACKOFF_SECONDS,
    ):
        self.logger = logger
        self.registry_url = registry_url.rstrip("/")
        self.repository = repository
        self.requests = requests_module
        self.timeout_seconds = timeout_seconds
        self.page_size = page_size
        self.max_attempts = max(1, max_attempts)
        self.retry_backoff_seconds = max(0.0, retry_backoff_seconds)

    @property
    def tags_url(self) -> str:
        return f"{self.registry_url}/v2/repositories/{self.repository}/tags/"

    def fetch_tags(self, page_size: Optional[int] = None, timeout: Optional[float] = None) -> List[Dict[str, Any]]:
        params = {"page_size": page_size or self.page_size, "page": 1}
        effective_timeout = timeout if timeout is not None else self.timeout_seconds
        request_exception = getattr(self.requests, "RequestException", Exception)

        for attempt in range(1, self.max_attempts + 1):
            self.logger.debug("GET %s (attempt %s/%s)", self.tags_url, attempt, self.max_attempts)
            try:
                response = self.requests.get(self.tags_url, params=params, timeout=effective_timeout)
            except request_exception as exc:
                if not isinstance(exc, self._transient_errors()):
                    self.logger.debug("Registry request rejected: %s", exc)
                    raise NetworkError(
                        actionable_error("registry_request_invalid", registry=self.registry_url, detail=str(exc)),
                        cause="invalid_request",
                    ) from exc
                if attempt < self.max_attempts:
                    self._backoff(attempt, exc)
                    continue
                self.logger.debug("Registry request failed: %s", exc)
                raise self._network_error(exc) from exc

            status_code = response.status_code
            if status_code >= 500 and attempt < self.max_attempts:
                self._backoff(attempt, f"HTTP {status_code}")
                continue
            if status_code >= 400:
                raise NetworkError(
                    actionable_error(
                        "registry_http_error",
                        registry=self.registry_url,
                        status=str(status_code),
                        repository=self.repository,
                    ),
                    cause="http_error",
                )

            return self._parse_results(response)

        raise NetworkError(
            actionable_error("registry_unreachable", registry=self.registry_url),
            cause="unreachable",
        )

    def resolve_latest(self, timeout: Optional[float] = None) -> VersionDescriptor:
        results = self.fetch_tags(timeout=timeout)
        releases = self.sort_releases(results)

        if releases:
            chosen = releases[0]
        elif results:
            chosen = results[0]
        else:
            chosen = {"name": "latest"}

        descriptor = self._descriptor(chosen)
        self.logger.info("Latest published version of %s: %s", self.repository, descriptor.version)
        return descriptor

    def list_versions(self, limit: int = 10) -> List[VersionDescriptor]:
        releases = self.sort_releases(self.fetch_tags())
        return [self._descriptor(tag) for tag in releases[:limit]]

    def ping(self, timeout: Optional[float] = None):
        """Single request with page size 1; raises ``NetworkError`` when unreachable."""
        self.fetch_tags(page_size=1, timeout=timeout)

    @staticmethod
    def sort_releases(results: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        releases = [tag for tag in results if is_release_tag(str(tag.get("name", "")))]
        return sorted(
            releases,
            key=cmp_to_key(lambda a, b: compare_versions(b["name"], a["name"])),
        )

    def _descriptor(self, tag: Dict[str, Any]) -> VersionDescriptor:
        last_updated = tag.get("last_updated") or datetime.now(timezone.utc).isoformat()
        return VersionDescriptor(
            version=str(tag.get("name") or "latest"),
            last_updated=str(last_updated),
            registry_url=self.registry_url,
        )

    def _parse_results(self, response) -> List[Dict[str, Any]]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise self._invalid_response() from exc

        if not isinstance(payload, dict) or not isinstance(payload.get("results"), list):
            raise self._invalid_response()

        return [tag for tag in payload["results"] if isinstance(tag, dict) and tag.get("name")]

    def _invalid_response(self) -> NetworkError:
        return NetworkError(
            actionable_error("registry_invalid_response", registry=self.registry_url),
            cause="invalid_response",
        )

    def _transient_errors(self):
        names = ("ConnectionError", "Timeout", "ChunkedEncodingError")
        return tuple(getattr(self.requests, name) for name in names if hasattr(self.requests, name))

    def _backoff(self, attempt: int, reason):
        delay = attempt * self.retry_backoff_seconds
        self.logger.warning(
            "Registry request failed on attempt %s/%s (%s). Retrying in %.1fs.",
            attempt,
            self.max_attempts,
            reason,
            delay,
        )
        time.sleep(delay)

    def _network_error(self, exc: Exception) -> NetworkError:
        timeout_exception = getattr(self.requests, "Timeout", None)
        text = str(exc).lower()

        if (timeout_exception is not None and isinstance(exc, timeout_exception)) or "timed out" in text:
            cause = "timeout"
        elif any(marker in text for marker in _DNS_MARKERS):
            cause = "dns"
        elif any(marker in text for marker in _REFUSED_MARKERS):
            cause = "connection_refused"
        else:
            cause = "unreachable"

        return NetworkError(
            actionable_error(f"registry_{cause}", registry=self.registry_url),
            cause=cause,
        )
