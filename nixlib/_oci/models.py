import dataclasses
import json
from typing import Dict, List, Optional

from .exceptions import ArtifactNotFoundError, ManifestValidationError
from .types import ManifestInput, ManifestMetadataDict
from .utils.misc import validate_platform

DEFAULT_TAG = "latest"


@dataclasses.dataclass(frozen=True)
class PlatformImage:
    """Image archive built for a single platform."""

    platform: str
    path: str


@dataclasses.dataclass(frozen=True)
class ManifestDescriptor:
    """Description of a multi-architecture manifest which should be built."""

    name: str
    images: List[PlatformImage]
    tag: str = DEFAULT_TAG

    @property
    def platforms(self) -> List[str]:
        """Platform identifiers in input order."""
        return [image.platform for image in self.images]

    def validate(self) -> None:
        """
        Verify that the descriptor can be turned into a manifest.

        Raises:
            ManifestValidationError: If name or tag are empty, no images are present, or
                platform identifiers are malformed or repeated.
        """
        if not self.name:
            raise ManifestValidationError("Manifest name must not be empty")
        if not self.tag:
            raise ManifestValidationError("Manifest tag must not be empty")
        if not self.images:
            raise ManifestValidationError(
                "No images found for manifest '{0}'. The 'images' list must contain "
                "at least one image".format(self.name)
            )

        seen = set()
        for image in self.images:
            try:
                validate_platform(image.platform)
            except ValueError as e:
                raise ManifestValidationError(str(e))
            if image.platform in seen:
                raise ManifestValidationError(
                    "Platform '{0}' is specified more than once".format(image.platform)
                )
            seen.add(image.platform)

    @classmethod
    def from_dict(cls, data: ManifestInput) -> "ManifestDescriptor":
        """
        Create a descriptor from a manifest input document.

        Expected format:
            {"name": "myapp", "tag": "latest",
             "images": [{"platform": "linux/amd64", "path": "/path/to/image.tar.gz"}]}
        """
        try:
            images = [PlatformImage(item["platform"], item["path"]) for item in data["images"]]
            return cls(name=data["name"], images=images, tag=data.get("tag") or DEFAULT_TAG)
        except (KeyError, TypeError) as e:
            raise ManifestValidationError("Malformed manifest input, missing key: {0}".format(e))

    @classmethod
    def from_json_file(cls, path: str) -> "ManifestDescriptor":
        """Load a descriptor from a manifest input JSON file."""
        try:
            with open(path) as f:
                data = json.load(f)
        except FileNotFoundError:
            raise ArtifactNotFoundError("Input JSON file not found: {0}".format(path))
        except ValueError as e:
            raise ManifestValidationError("Input JSON file {0} is not valid: {1}".format(path, e))
        return cls.from_dict(data)


@dataclasses.dataclass(frozen=True)
class ManifestMetadata:
    """Metadata of a built manifest directory, stored as metadata.json."""

    name: str
    tag: str
    platforms: List[str]
    images: Dict[str, str]

    @property
    def image_count(self) -> int:
        """Number of platform images in the manifest."""
        return len(self.platforms)

    def to_dict(self) -> ManifestMetadataDict:
        """Return the JSON-serializable form of the metadata."""
        return {
            "name": self.name,
            "tag": self.tag,
            "imageCount": self.image_count,
            "platforms": list(self.platforms),
            "images": dict(self.images),
        }

    @classmethod
    def from_dict(cls, data: ManifestMetadataDict) -> "ManifestMetadata":
        """
        Create metadata from its JSON form.

        Platforms must be well-formed and unique, the same as in a manifest descriptor.
        """
        try:
            platforms = data["platforms"]
            images = data["images"]
            if not isinstance(platforms, list) or not isinstance(images, dict):
                raise TypeError("'platforms' must be a list and 'images' a mapping")
            name, tag = data["name"], data["tag"]
        except (KeyError, TypeError) as e:
            raise ManifestValidationError("Malformed manifest metadata: {0}".format(e))

        seen = set()
        for platform in platforms:
            try:
                validate_platform(platform)
            except ValueError as e:
                raise ManifestValidationError("Malformed manifest metadata: {0}".format(e))
            if platform in seen:
                raise ManifestValidationError(
                    "Malformed manifest metadata: platform '{0}' is listed more than "
                    "once".format(platform)
                )
            seen.add(platform)
        return cls(name=name, tag=tag, platforms=platforms, images=images)


@dataclasses.dataclass(frozen=True)
class PushSuccess:
    """Platform image which was pushed successfully."""

    platform: str
    reference: str


@dataclasses.dataclass(frozen=True)
class PushFailure:
    """Platform image which couldn't be pushed."""

    platform: str
    reference: str
    cause: str


@dataclasses.dataclass
class PushReport:
    """Outcome of pushing the platform images of a manifest."""

    pushed: List[PushSuccess] = dataclasses.field(default_factory=list)
    failure: Optional[PushFailure] = None

    @property
    def succeeded(self) -> bool:
        """Whether all platform images were pushed."""
        return self.failure is None

    @property
    def pushed_refs(self) -> List[str]:
        """References of pushed platform images, in push order."""
        return [result.reference for result in self.pushed]
