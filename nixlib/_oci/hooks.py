import sys
from typing import List

from pubtools.pluggy import pm, hookspec

# Define hooks here for any events which may be of interest to the build
# automation driving the publishing pipelines.


@hookspec
def oci_manifest_built(name: str, tag: str, platforms: List[str], manifest_dir: str) -> None:
    """Invoked after a multi-architecture manifest directory has been built.

    :param name: Name of the manifest.
    :type name: str
    :param tag: Tag of the manifest.
    :type tag: str
    :param platforms: Staged platforms, in input order.
    :type platforms: list[str]
    :param manifest_dir: Path to the built manifest directory.
    :type manifest_dir: str
    """


@hookspec
def oci_platform_image_pushed(platform: str, dest_ref: str) -> None:
    """Invoked after a platform-specific image has been pushed to a registry.

    :param platform: Platform identifier, e.g. linux/amd64.
    :type platform: str
    :param dest_ref: Platform-suffixed reference the image was pushed to.
    :type dest_ref: str
    """


@hookspec
def oci_manifest_list_pushed(target: str, platform_refs: List[str]) -> None:
    """Invoked after a manifest list has been published.

    :param target: Reference of the manifest list.
    :type target: str
    :param platform_refs: Platform-specific references contained in the list, in push order.
    :type platform_refs: list[str]
    """


@hookspec
def oci_image_uploaded(archive: str, dest_ref: str) -> None:
    """Invoked after a single-architecture image has been built and uploaded.

    :param archive: Path of the built image archive.
    :type archive: str
    :param dest_ref: Reference the image was pushed to.
    :type dest_ref: str
    """


@hookspec
def oci_image_scanned(image_ref: str, report_path: str) -> None:
    """Invoked after an image archive has been scanned for vulnerabilities.

    :param image_ref: Name under which the image was reported.
    :type image_ref: str
    :param report_path: Path of the scan report.
    :type report_path: str
    """


@hookspec
def oci_sbom_generated(image_archive: str, sbom_paths: List[str]) -> None:
    """Invoked after SBOMs have been generated for an image archive.

    :param image_archive: Path of the analyzed archive.
    :type image_archive: str
    :param sbom_paths: Paths of the generated SBOM documents.
    :type sbom_paths: list[str]
    """


pm.add_hookspecs(sys.modules[__name__])
