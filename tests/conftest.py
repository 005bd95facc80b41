import json

import mock
import pytest

from pubtools.pluggy import pm

from nixlib._oci.config import PushConfig, UploadConfig
from nixlib._oci.models import ManifestDescriptor, PlatformImage


@pytest.fixture
def hookspy():
    # Yields a list which receives a (name, kwargs) tuple
    # every time a hook is invoked.
    hooks = []

    def record_hook(hook_name, _hook_impls, kwargs):
        hooks.append((hook_name, kwargs))

    def do_nothing(*args, **kwargs):
        pass

    undo = pm.add_hookcall_monitoring(before=record_hook, after=do_nothing)
    yield hooks
    undo()


@pytest.fixture
def fake_executor():
    executor = mock.MagicMock()
    executor.__enter__.return_value = executor
    return executor


@pytest.fixture
def image_archives(tmp_path):
    archives = {}
    for platform in ("linux/amd64", "linux/arm64"):
        path = tmp_path / "build" / "{0}.tar.gz".format(platform.replace("/", "_"))
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"archive for " + platform.encode("utf-8"))
        archives[platform] = str(path)
    return archives


@pytest.fixture
def descriptor(image_archives):
    return ManifestDescriptor(
        name="myapp",
        tag="v1",
        images=[
            PlatformImage("linux/amd64", image_archives["linux/amd64"]),
            PlatformImage("linux/arm64", image_archives["linux/arm64"]),
        ],
    )


@pytest.fixture
def manifest_dir(tmp_path):
    # Manifest directory as produced by nixlib-build-manifest
    directory = tmp_path / "manifest"
    (directory / "images").mkdir(parents=True)
    for safe_platform in ("linux-amd64", "linux-arm64"):
        (directory / "images" / "{0}.tar.gz".format(safe_platform)).write_bytes(b"data")
    metadata = {
        "name": "app",
        "tag": "v1",
        "imageCount": 2,
        "platforms": ["linux/amd64", "linux/arm64"],
        "images": {
            "linux/amd64": "images/linux-amd64.tar.gz",
            "linux/arm64": "images/linux-arm64.tar.gz",
        },
    }
    (directory / "metadata.json").write_text(json.dumps(metadata))
    return directory


@pytest.fixture
def push_config(manifest_dir):
    return PushConfig(
        target="registry.example/app:v1",
        manifest_dir=str(manifest_dir),
        registry_token="some-token",
    )


@pytest.fixture
def upload_config():
    return UploadConfig(
        registry_token="some-token",
        target="gcr.io/project/app:v1",
        derivation=".#docker-image",
    )
