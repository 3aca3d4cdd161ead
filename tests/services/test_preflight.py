import pytest

from fakes import DiskUsage, DummyConsole, DummyLogger, FakeDocker, FakeRequestsModule, FakeResponse, registry_with_tags
from imageswap.errors import PreflightFailure
from imageswap.services.command_runner import CommandRunner
from imageswap.services.docker_runtime import DockerRuntimeService
from imageswap.services.preflight import PreflightService
from imageswap.services.registry import RegistryService


def _service(docker=None, requests_module=None, used=40, **kwargs):
    docker = docker or FakeDocker()
    runner = CommandRunner(logger=DummyLogger(), subprocess_module=docker)
    runtime = DockerRuntimeService(logger=DummyLogger(), console=DummyConsole(), command_runner=runner)
    registry = RegistryService(
        logger=DummyLogger(),
        requests_module=requests_module or registry_with_tags("v1.0.0"),
        retry_backoff_seconds=0,
    )
    return PreflightService(
        logger=DummyLogger(),
        console=DummyConsole(),
        docker_runtime_service=runtime,
        registry_service=registry,
        disk_usage=lambda _path: DiskUsage(total=100, used=used, free=100 - used),
        **kwargs,
    )


def test_all_checks_pass_in_order():
    results = _service().run()

    assert [result.name for result in results] == ["disk_space", "docker_daemon", "registry"]
    assert all(result.passed for result in results)
    assert results[0].detail == "40.0% used"
    assert results[1].detail == "Docker 24.0.7 reachable"


def test_disk_above_threshold_fails_first():
    docker = FakeDocker()

    with pytest.raises(PreflightFailure) as exc_info:
        _service(docker=docker, used=91).run()

    assert exc_info.value.check == "disk_space"
    assert "91.0%" in exc_info.value.reason
    assert docker.calls == []


def test_custom_threshold_is_respected():
    assert _service(used=95, disk_threshold_percent=97).run()[0].passed


def test_unreadable_disk_usage_fails():
    def broken(_path):
        raise OSError("No such file or directory")

    service = _service()
    service.disk_usage = broken

    with pytest.raises(PreflightFailure, match="disk_space"):
        service.run()


def test_unreachable_daemon_fails():
    docker = FakeDocker()
    docker.fail("version", "Cannot connect to the Docker daemon")

    with pytest.raises(PreflightFailure) as exc_info:
        _service(docker=docker).run()

    assert exc_info.value.check == "docker_daemon"
    assert "Cannot connect" in exc_info.value.reason


def test_unreachable_registry_fails():
    requests_module = FakeRequestsModule(FakeResponse(401, {"message": "unauthorized"}))

    with pytest.raises(PreflightFailure) as exc_info:
        _service(requests_module=requests_module).run()

    assert exc_info.value.check == "registry"
    assert "HTTP 401" in str(exc_info.value)
