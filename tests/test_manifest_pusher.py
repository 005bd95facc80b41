import json
import logging

import mock
import pytest

from nixlib._oci import manifest_pusher
from nixlib._oci.config import PushConfig
from nixlib._oci.exceptions import (
    ArtifactNotFoundError,
    ConfigurationError,
    ManifestCompositionError,
    ManifestValidationError,
    UploadError,
)
from nixlib._oci.manifest_pusher import ManifestPusher, PushState
from .utils.misc import compare_logs


def test_push(push_config, fake_executor, manifest_dir, caplog, hookspy):
    caplog.set_level(logging.INFO)
    pusher = ManifestPusher(push_config, fake_executor)

    report = pusher.push()

    assert pusher.state == PushState.DONE
    assert report.succeeded
    assert report.pushed_refs == [
        "registry.example/app:v1-linux-amd64",
        "registry.example/app:v1-linux-arm64",
    ]
    assert fake_executor.copy_archive.call_args_list == [
        mock.call(
            str(manifest_dir / "images" / "linux-amd64.tar.gz"),
            "registry.example/app:v1-linux-amd64",
            insecure_policy=False,
            oci_format=True,
            dest_compress=True,
        ),
        mock.call(
            str(manifest_dir / "images" / "linux-arm64.tar.gz"),
            "registry.example/app:v1-linux-arm64",
            insecure_policy=False,
            oci_format=True,
            dest_compress=True,
        ),
    ]
    fake_executor.create_manifest_list.assert_called_once_with(
        ["registry.example/app:v1-linux-amd64", "registry.example/app:v1-linux-arm64"],
        "registry.example/app:v1",
    )
    fake_executor.skopeo_login.assert_called_once_with(
        "registry.example", "oauth2accesstoken", "some-token"
    )
    fake_executor.crane_login.assert_called_once_with(
        "registry.example", "oauth2accesstoken", "some-token"
    )

    compare_logs(
        caplog,
        [
            "Validate manifest: Started",
            "Manifest: app:v1",
            "Target: registry.example/app:v1",
            "  - linux/amd64",
            "  - linux/arm64",
            "Validate manifest: Finished",
            "Push platform images: Started",
            "Uploading linux/amd64 image...",
            "linux/amd64 image uploaded successfully",
            "Uploading linux/arm64 image...",
            "linux/arm64 image uploaded successfully",
            "Push platform images: Finished",
            "Compose manifest list: Started",
            "Compose manifest list: Finished",
            "Multi-architecture image uploaded to: registry.example/app:v1",
        ],
    )
    assert hookspy == [
        (
            "oci_platform_image_pushed",
            {"platform": "linux/amd64", "dest_ref": "registry.example/app:v1-linux-amd64"},
        ),
        (
            "oci_platform_image_pushed",
            {"platform": "linux/arm64", "dest_ref": "registry.example/app:v1-linux-arm64"},
        ),
        (
            "oci_manifest_list_pushed",
            {
                "target": "registry.example/app:v1",
                "platform_refs": [
                    "registry.example/app:v1-linux-amd64",
                    "registry.example/app:v1-linux-arm64",
                ],
            },
        ),
    ]


def test_push_without_token(manifest_dir, fake_executor):
    config = PushConfig(target="registry.example/app:v1", manifest_dir=str(manifest_dir))

    ManifestPusher(config, fake_executor).push()

    fake_executor.skopeo_login.assert_not_called()
    fake_executor.crane_login.assert_not_called()
    assert fake_executor.copy_archive.call_count == 2


def test_push_insecure_policy(manifest_dir, fake_executor, caplog):
    config = PushConfig(
        target="registry.example/app:v1", manifest_dir=str(manifest_dir), insecure_policy=True
    )

    ManifestPusher(config, fake_executor).push()

    assert all(
        call.kwargs["insecure_policy"] is True
        for call in fake_executor.copy_archive.call_args_list
    )
    compare_logs(caplog, ["Using insecure policy mode.*"])


def test_push_follows_metadata_order(manifest_dir, push_config, fake_executor):
    metadata_file = manifest_dir / "metadata.json"
    data = json.loads(metadata_file.read_text())
    data["platforms"] = ["linux/arm64", "linux/amd64"]
    metadata_file.write_text(json.dumps(data))

    report = ManifestPusher(push_config, fake_executor).push()

    assert report.pushed_refs == [
        "registry.example/app:v1-linux-arm64",
        "registry.example/app:v1-linux-amd64",
    ]
    fake_executor.create_manifest_list.assert_called_once_with(
        report.pushed_refs, "registry.example/app:v1"
    )


def test_push_second_platform_missing(manifest_dir, push_config, fake_executor, caplog, hookspy):
    # The first platform tag stays in the registry, no manifest list is created
    (manifest_dir / "images" / "linux-arm64.tar.gz").unlink()
    pusher = ManifestPusher(push_config, fake_executor)

    with pytest.raises(UploadError, match="Platform image not found: .*linux-arm64.tar.gz") as e:
        pusher.push()

    assert e.value.exit_code == 3
    assert pusher.state == PushState.FAILED
    assert fake_executor.copy_archive.call_count == 1
    fake_executor.create_manifest_list.assert_not_called()
    assert pusher.report.pushed_refs == ["registry.example/app:v1-linux-amd64"]
    assert pusher.report.failure.platform == "linux/arm64"
    assert pusher.report.failure.reference == "registry.example/app:v1-linux-arm64"
    compare_logs(
        caplog,
        [
            "Platform image not found: .*linux-arm64.tar.gz",
            "The following platform images were already pushed and remain in the registry: "
            "registry.example/app:v1-linux-amd64",
            "Push platform images: Failed",
        ],
    )
    assert [name for name, _ in hookspy] == ["oci_platform_image_pushed"]


def test_push_copy_failure_halts(push_config, fake_executor):
    fake_executor.copy_archive.side_effect = RuntimeError("Failed to copy")
    pusher = ManifestPusher(push_config, fake_executor)

    with pytest.raises(UploadError, match="Failed to upload linux/amd64 image: Failed to copy"):
        pusher.push()

    assert fake_executor.copy_archive.call_count == 1
    fake_executor.create_manifest_list.assert_not_called()
    assert pusher.report.pushed == []


def test_push_manifest_list_failure(push_config, fake_executor, caplog):
    fake_executor.create_manifest_list.side_effect = RuntimeError("crane failed")
    pusher = ManifestPusher(push_config, fake_executor)

    with pytest.raises(ManifestCompositionError, match="Failed to create manifest list.*") as e:
        pusher.push()

    assert e.value.exit_code == 4
    assert pusher.state == PushState.FAILED
    assert fake_executor.copy_archive.call_count == 2
    compare_logs(caplog, ["Platform images remain in the registry: .*linux-amd64.*linux-arm64"])


def test_push_login_failure(push_config, fake_executor):
    fake_executor.skopeo_login.side_effect = RuntimeError("Skopeo login failed")
    pusher = ManifestPusher(push_config, fake_executor)

    with pytest.raises(UploadError, match="Failed to log in to registry.example.*"):
        pusher.push()

    fake_executor.copy_archive.assert_not_called()


def test_push_missing_manifest_dir(tmp_path, fake_executor):
    config = PushConfig(target="registry.example/app:v1", manifest_dir=str(tmp_path / "missing"))
    pusher = ManifestPusher(config, fake_executor)

    with pytest.raises(ArtifactNotFoundError, match="Manifest directory does not exist.*"):
        pusher.push()

    assert pusher.state == PushState.FAILED
    fake_executor.copy_archive.assert_not_called()


def test_push_missing_metadata(manifest_dir, push_config, fake_executor):
    (manifest_dir / "metadata.json").unlink()
    pusher = ManifestPusher(push_config, fake_executor)

    with pytest.raises(ArtifactNotFoundError, match="Manifest metadata not found.*"):
        pusher.push()

    fake_executor.skopeo_login.assert_not_called()
    fake_executor.copy_archive.assert_not_called()


def test_push_no_platforms(manifest_dir, push_config, fake_executor):
    metadata_file = manifest_dir / "metadata.json"
    data = json.loads(metadata_file.read_text())
    data["platforms"] = []
    metadata_file.write_text(json.dumps(data))

    with pytest.raises(ManifestValidationError, match="No platforms found in .*metadata.json"):
        ManifestPusher(push_config, fake_executor).push()

    fake_executor.copy_archive.assert_not_called()
    fake_executor.create_manifest_list.assert_not_called()


def test_push_missing_token(manifest_dir, fake_executor):
    config = PushConfig(
        target="registry.example/app:v1", manifest_dir=str(manifest_dir), require_token=True
    )

    with pytest.raises(ConfigurationError, match=".*GOOGLE_ACCESS_TOKEN is not set or empty.*"):
        ManifestPusher(config, fake_executor).push()


def test_push_digest_target(manifest_dir, fake_executor):
    config = PushConfig(target="registry.example/app@sha256:abcd", manifest_dir=str(manifest_dir))

    with pytest.raises(ConfigurationError, match="Target must be specified via tag, not digest"):
        ManifestPusher(config, fake_executor).push()


def test_push_rerun_overwrites(push_config, fake_executor):
    # Pushing twice is safe, every run pushes all platforms again
    ManifestPusher(push_config, fake_executor).push()
    ManifestPusher(push_config, fake_executor).push()

    assert fake_executor.copy_archive.call_count == 4
    assert fake_executor.create_manifest_list.call_count == 2


def test_required_tools():
    assert manifest_pusher.REQUIRED_TOOLS == ["skopeo", "crane"]


@pytest.mark.parametrize("platforms", [[1], ["linux/amd64", "linux/amd64"]])
def test_push_invalid_metadata_platforms(platforms, manifest_dir, push_config, fake_executor):
    metadata_file = manifest_dir / "metadata.json"
    data = json.loads(metadata_file.read_text())
    data["platforms"] = platforms
    metadata_file.write_text(json.dumps(data))
    pusher = ManifestPusher(push_config, fake_executor)

    with pytest.raises(ManifestValidationError, match="Malformed manifest metadata.*") as e:
        pusher.push()

    assert e.value.exit_code == 1
    assert pusher.state == PushState.FAILED
    fake_executor.copy_archive.assert_not_called()
    fake_executor.create_manifest_list.assert_not_called()
