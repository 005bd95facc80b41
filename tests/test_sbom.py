import logging

import mock
import pytest

from nixlib._oci import sbom
from nixlib._oci.exceptions import ArtifactNotFoundError, SbomError
from .utils.misc import compare_logs


def write_sbom(image_archive, sbom_format, output, cache_dir):
    with open(output, "w") as f:
        f.write(sbom_format)


@pytest.fixture
def image_archive(tmp_path):
    archive = tmp_path / "image.tar"
    archive.write_bytes(b"oci image")
    return str(archive)


def test_generate_sbom(image_archive, fake_executor, tmp_path, caplog, hookspy):
    caplog.set_level(logging.INFO)
    fake_executor.syft_scan.side_effect = write_sbom
    output_dir = tmp_path / "sbom"

    paths = sbom.generate_sbom(image_archive, str(output_dir), executor=fake_executor)

    assert paths == [
        str(output_dir / "sbom.spdx.json"),
        str(output_dir / "sbom.cyclonedx.json"),
    ]
    assert (output_dir / "sbom.cyclonedx.json").read_text() == "cyclonedx-json"
    assert [c[0][:3] for c in fake_executor.syft_scan.call_args_list] == [
        (image_archive, "spdx-json", paths[0]),
        (image_archive, "cyclonedx-json", paths[1]),
    ]
    compare_logs(
        caplog,
        [
            "Generate SBOM: Started",
            "Requested formats: spdx-json cyclonedx-json",
            "Generating spdx-json SBOM...",
            "spdx-json SBOM generated: .*sbom.spdx.json \\(9 bytes\\)",
            "Generating cyclonedx-json SBOM...",
            "SBOM generation complete.*",
            "Generate SBOM: Finished",
        ],
    )
    assert hookspy == [
        ("oci_sbom_generated", {"image_archive": image_archive, "sbom_paths": paths})
    ]


def test_generate_sbom_selected_format(image_archive, fake_executor, tmp_path):
    fake_executor.syft_scan.side_effect = write_sbom

    paths = sbom.generate_sbom(image_archive, str(tmp_path), ["syft-json"], fake_executor)

    assert paths == [str(tmp_path / "sbom.syft.json")]
    assert fake_executor.syft_scan.call_count == 1


@pytest.mark.parametrize(
    "formats, message",
    [
        ([], "No SBOM formats specified. Available formats: spdx-json, cyclonedx-json.*"),
        (["spdx-json", "html"], "Unknown SBOM format 'html'.*"),
    ],
)
def test_generate_sbom_bad_formats(formats, message, image_archive, fake_executor, tmp_path):
    with pytest.raises(SbomError, match=message):
        sbom.generate_sbom(image_archive, str(tmp_path), formats, fake_executor)

    fake_executor.syft_scan.assert_not_called()


def test_generate_sbom_missing_image(fake_executor, tmp_path):
    with pytest.raises(ArtifactNotFoundError, match="Docker image not found: .*missing.tar"):
        sbom.generate_sbom(
            str(tmp_path / "missing.tar"), str(tmp_path / "out"), None, fake_executor
        )

    assert not (tmp_path / "out").exists()


def test_generate_sbom_syft_failure(image_archive, fake_executor, tmp_path, hookspy):
    fake_executor.syft_scan.side_effect = RuntimeError("Failed to generate spdx-json SBOM")

    with pytest.raises(SbomError, match="Failed to generate spdx-json SBOM"):
        sbom.generate_sbom(image_archive, str(tmp_path), executor=fake_executor)

    assert fake_executor.syft_scan.call_count == 1
    assert hookspy == []


def test_generate_sbom_no_output(image_archive, fake_executor, tmp_path):
    with pytest.raises(SbomError, match="Failed to generate spdx-json SBOM at .*sbom.spdx.json"):
        sbom.generate_sbom(image_archive, str(tmp_path), executor=fake_executor)


@mock.patch("nixlib._oci.sbom.LocalExecutor")
def test_sbom_main(mock_local_executor, fake_executor, image_archive, tmp_path):
    mock_local_executor.return_value = fake_executor
    fake_executor.syft_scan.side_effect = write_sbom

    sbom.sbom_main(
        [
            "dummy",
            "--image",
            image_archive,
            "--output-dir",
            str(tmp_path / "out"),
            "--format",
            "cyclonedx-json",
            "--format",
            "syft-json",
        ]
    )

    assert sorted(p.name for p in (tmp_path / "out").iterdir()) == [
        "sbom.cyclonedx.json",
        "sbom.syft.json",
    ]


@mock.patch("nixlib._oci.sbom.LocalExecutor")
def test_sbom_main_unknown_format(mock_local_executor, image_archive, tmp_path):
    with pytest.raises(SystemExit) as system_error:
        sbom.sbom_main(
            ["dummy", "--image", image_archive, "--output-dir", str(tmp_path), "--format", "xml"]
        )

    assert system_error.value.code == 1
    mock_local_executor.assert_not_called()
