import itertools
import json

import pytest

from fakes import DummyLogger
from imageswap.models import LocalInstallation, VersionDescriptor
from imageswap.services.versioning import (
    LocalVersionService,
    compare_versions,
    image_tag,
    is_release_tag,
    needs_update,
)

SAMPLE_VERSIONS = ["v1.2.0", "1.2", "v1.10.0", "v1.9.0", "0.2.0", "v2", "v1.2.3-beta", "1.2.3"]


def _remote(version):
    return VersionDescriptor(version=version, last_updated="2024-01-01T00:00:00Z", registry_url="https://hub")


@pytest.mark.parametrize(
    "left,right,expected",
    [
        ("v1.2.0", "1.2", 0),
        ("v1.10.0", "v1.9.0", 1),
        ("v1.9.9", "v2.0.0", -1),
        ("1.0.0", "1.0.0.0", 0),
        ("V3.0.0", "v2.99.99", 1),
        ("v1.2.3-beta", "1.2.3", 0),
    ],
)
def test_compare_versions_examples(left, right, expected):
    assert compare_versions(left, right) == expected


def test_compare_versions_is_a_total_order():
    for a in SAMPLE_VERSIONS:
        assert compare_versions(a, a) == 0
    for a, b in itertools.product(SAMPLE_VERSIONS, repeat=2):
        assert compare_versions(a, b) == -compare_versions(b, a)
    for a, b, c in itertools.product(SAMPLE_VERSIONS, repeat=3):
        if compare_versions(a, b) > 0 and compare_versions(b, c) > 0:
            assert compare_versions(a, c) > 0


def test_release_tag_filter():
    assert is_release_tag("v1.2.0")
    assert is_release_tag("1.2.0-rc1")
    assert not is_release_tag("latest")
    assert not is_release_tag("v1.2")
    assert not is_release_tag("nightly")


def test_needs_update_when_local_missing():
    assert needs_update(LocalInstallation(exists=False), _remote("v1.0.0")) is True


def test_needs_update_false_when_local_is_newer():
    assert needs_update(LocalInstallation(exists=True, version="v2.0.0"), _remote("v1.9.9")) is False
    assert needs_update(LocalInstallation(exists=True, version="v1.2"), _remote("1.2.0")) is False
    assert needs_update(LocalInstallation(exists=True, version="v1.0.0"), _remote("v1.0.1")) is True


def test_local_version_prefers_environment(tmp_path):
    manifest = tmp_path / "package.json"
    manifest.write_text(json.dumps({"version": "0.9.0"}), encoding="utf-8")
    service = LocalVersionService(
        logger=DummyLogger(),
        environ={"CURRENT_DOCKER_VERSION": "v1.0.0"},
        manifest_path=str(manifest),
    )

    local = service.resolve(image_tag_lookup=lambda: "v0.1.0")

    assert local.exists is True
    assert local.version == "v1.0.0"
    assert local.source == "env"


def test_local_version_falls_back_to_manifest_then_image(tmp_path):
    manifest = tmp_path / "package.json"
    manifest.write_text(json.dumps({"name": "tmdb-helper", "version": "0.9.0"}), encoding="utf-8")
    service = LocalVersionService(logger=DummyLogger(), environ={}, manifest_path=str(manifest))

    assert service.resolve().version == "0.9.0"

    manifest.write_text("{broken", encoding="utf-8")
    local = service.resolve(image_tag_lookup=lambda: "v0.5.0")
    assert local.version == "v0.5.0"
    assert local.source == "image"


def test_local_version_defaults_to_sentinel(tmp_path):
    def failing_lookup():
        raise RuntimeError("docker unavailable")

    service = LocalVersionService(logger=DummyLogger(), environ={}, manifest_path=str(tmp_path / "missing.json"))

    local = service.resolve(image_tag_lookup=failing_lookup)

    assert local.exists is False
    assert local.version == "v0.0.0"
    assert local.source == "default"


@pytest.mark.parametrize(
    "ref,expected",
    [
        ("ceru007/tmdb-helper:v1.2.0", "v1.2.0"),
        ("localhost:5000/app:1.0.0", "1.0.0"),
        ("localhost:5000/app", None),
        ("app@sha256:abc", None),
    ],
)
def test_image_tag(ref, expected):
    assert image_tag(ref) == expected
