import pytest
import requests

from fakes import DummyLogger, FakeRequestsModule, FakeResponse, registry_with_tags, tags_payload
from imageswap.errors import NetworkError
from imageswap.services.registry import RegistryService


def _service(requests_module, **kwargs):
    kwargs.setdefault("retry_backoff_seconds", 0)
    return RegistryService(
        logger=DummyLogger(),
        registry_url="https://hub.docker.com/",
        repository="ceru007/tmdb-helper",
        requests_module=requests_module,
        **kwargs,
    )


def test_resolve_latest_picks_highest_release_tag():
    requests_module = registry_with_tags("latest", "v1.2.0", "v1.10.0", "v1.9.3", "nightly")

    latest = _service(requests_module).resolve_latest()

    assert latest.version == "v1.10.0"
    assert latest.last_updated == "2024-01-03T00:00:00Z"
    assert latest.registry_url == "https://hub.docker.com"
    assert requests_module.calls[0]["url"] == "https://hub.docker.com/v2/repositories/ceru007/tmdb-helper/tags/"
    assert requests_module.calls[0]["params"] == {"page_size": 25, "page": 1}


def test_resolve_latest_falls_back_to_first_tag_without_releases():
    latest = _service(registry_with_tags("edge", "latest")).resolve_latest()

    assert latest.version == "edge"


def test_resolve_latest_falls_back_to_latest_on_empty_listing():
    latest = _service(registry_with_tags()).resolve_latest()

    assert latest.version == "latest"
    assert latest.last_updated


def test_server_errors_are_retried():
    requests_module = FakeRequestsModule(
        FakeResponse(502, {"message": "bad gateway"}),
        FakeResponse(503, {"message": "unavailable"}),
        FakeResponse(200, tags_payload("v1.2.0")),
    )

    latest = _service(requests_module).resolve_latest()

    assert latest.version == "v1.2.0"
    assert len(requests_module.calls) == 3


def test_client_errors_fail_without_retry():
    requests_module = FakeRequestsModule(FakeResponse(404, {"message": "object not found"}))

    with pytest.raises(NetworkError) as exc_info:
        _service(requests_module).resolve_latest()

    assert exc_info.value.cause == "http_error"
    assert "HTTP 404" in str(exc_info.value)
    assert len(requests_module.calls) == 1


def test_persistent_server_error_is_reported_after_all_attempts():
    requests_module = FakeRequestsModule(FakeResponse(500, {"message": "boom"}))

    with pytest.raises(NetworkError, match="HTTP 500"):
        _service(requests_module, max_attempts=2).fetch_tags()

    assert len(requests_module.calls) == 2


@pytest.mark.parametrize(
    "exc,cause",
    [
        (requests.Timeout("read timed out"), "timeout"),
        (requests.ConnectionError("Failed to resolve 'hub': Name or service not known"), "dns"),
        (requests.ConnectionError("[Errno 111] Connection refused"), "connection_refused"),
        (requests.ConnectionError("Remote end closed connection"), "unreachable"),
    ],
)
def test_transport_errors_are_classified(exc, cause):
    requests_module = FakeRequestsModule(exc)

    with pytest.raises(NetworkError) as exc_info:
        _service(requests_module).resolve_latest()

    assert exc_info.value.cause == cause
    assert "Suggested action:" in str(exc_info.value)
    assert len(requests_module.calls) == 3


def test_transport_error_then_success():
    requests_module = FakeRequestsModule(
        requests.ConnectionError("Remote end closed connection"),
        FakeResponse(200, tags_payload("v0.3.0")),
    )

    assert _service(requests_module).resolve_latest().version == "v0.3.0"


@pytest.mark.parametrize("payload", [None, {"count": 0}, ["v1.0.0"]])
def test_unexpected_payload_is_invalid_response(payload):
    requests_module = FakeRequestsModule(FakeResponse(200, payload))

    with pytest.raises(NetworkError) as exc_info:
        _service(requests_module).fetch_tags()

    assert exc_info.value.cause == "invalid_response"


def test_list_versions_returns_sorted_releases():
    requests_module = registry_with_tags("latest", "v0.2.0", "v0.10.0", "v0.3.1")

    versions = _service(requests_module).list_versions(limit=2)

    assert [descriptor.version for descriptor in versions] == ["v0.10.0", "v0.3.1"]


def test_ping_requests_a_single_tag():
    requests_module = registry_with_tags("v1.0.0")

    _service(requests_module, timeout_seconds=4).ping()

    assert requests_module.calls[0]["params"]["page_size"] == 1
    assert requests_module.calls[0]["timeout"] == 4


def test_chunked_encoding_error_is_retried():
    requests_module = FakeRequestsModule(
        requests.exceptions.ChunkedEncodingError("Connection broken: IncompleteRead"),
        FakeResponse(200, tags_payload("v1.2.0")),
    )

    assert _service(requests_module).resolve_latest().version == "v1.2.0"
    assert len(requests_module.calls) == 2


@pytest.mark.parametrize(
    "exc",
    [
        requests.exceptions.MissingSchema("Invalid URL 'hub.docker.com/v2': No scheme supplied"),
        requests.exceptions.InvalidURL("Failed to parse: http://"),
    ],
)
def test_configuration_errors_fail_without_retry(exc):
    requests_module = FakeRequestsModule(exc)

    with pytest.raises(NetworkError) as exc_info:
        _service(requests_module).resolve_latest()

    assert exc_info.value.cause == "invalid_request"
    assert "full http(s) URL" in str(exc_info.value)
    assert len(requests_module.calls) == 1
