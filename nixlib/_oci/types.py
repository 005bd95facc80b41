from typing_extensions import TypedDict
from typing import Dict, List


class InputImage(TypedDict):
    """Typed dict used to store one image entry of a manifest input document."""

    platform: str
    path: str


class ManifestInput(TypedDict):
    """Typed dict used to store a manifest input document."""

    name: str
    tag: str
    images: List[InputImage]


ManifestMetadataDict = TypedDict(
    "ManifestMetadataDict",
    {
        "name": str,
        "tag": str,
        "imageCount": int,
        "platforms": List[str],
        "images": Dict[str, str],
    },
)
