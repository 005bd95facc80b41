import json
import logging
import os

from .exceptions import ArtifactNotFoundError, ManifestValidationError
from .models import ManifestMetadata

LOG = logging.getLogger("nixlib.oci")

METADATA_FILENAME = "metadata.json"


def synthesize_metadata(name, tag, platforms, staged_paths):
    """
    Derive manifest metadata from a manifest description.

    The result depends only on the arguments. Platform order is preserved.

    Args:
        name (str):
            Manifest name.
        tag (str):
            Manifest tag.
        platforms ([str]):
            Platform identifiers, in input order.
        staged_paths ([str]):
            Staged archive path of each platform, relative to the manifest directory.
    Returns (ManifestMetadata):
        Metadata of the manifest.
    """
    if len(platforms) != len(staged_paths):
        raise ValueError(
            "Got {0} platform(s) but {1} staged path(s)".format(len(platforms), len(staged_paths))
        )
    return ManifestMetadata(
        name=name,
        tag=tag,
        platforms=list(platforms),
        images=dict(zip(platforms, staged_paths)),
    )


def write_metadata(metadata, manifest_dir):
    """
    Write metadata.json into a manifest directory.

    Args:
        metadata (ManifestMetadata):
            Metadata to write.
        manifest_dir (str):
            Manifest directory.
    Returns (str):
        Path of the written file.
    """
    path = os.path.join(manifest_dir, METADATA_FILENAME)
    with open(path, "w") as f:
        json.dump(metadata.to_dict(), f, indent=2)
        f.write("\n")
    LOG.debug("Metadata written to {0}".format(path))
    return path


def read_metadata(manifest_dir):
    """
    Read and validate metadata.json of a manifest directory.

    Args:
        manifest_dir (str):
            Manifest directory.
    Returns (ManifestMetadata):
        Metadata of the manifest.
    Raises:
        ArtifactNotFoundError: If the metadata file doesn't exist.
        ManifestValidationError: If the file isn't valid manifest metadata.
    """
    path = os.path.join(manifest_dir, METADATA_FILENAME)
    if not os.path.isfile(path):
        raise ArtifactNotFoundError("Manifest metadata not found: {0}".format(path))

    LOG.debug("Reading manifest metadata from {0}".format(path))
    with open(path) as f:
        try:
            data = json.load(f)
        except ValueError as e:
            raise ManifestValidationError(
                "Manifest metadata {0} is not valid JSON: {1}".format(path, e)
            )
    if not isinstance(data, dict):
        raise ManifestValidationError("Manifest metadata {0} must be a JSON object".format(path))

    return ManifestMetadata.from_dict(data)
