import dataclasses
import os
from typing import Optional

from .exceptions import ConfigurationError

REGISTRY_TOKEN_ENV = "GOOGLE_ACCESS_TOKEN"
IMAGE_TARGET_ENV = "IMAGE_TARGET"
MANIFEST_DIR_ENV = "MANIFEST_DIR"
IMAGE_DERIVATION_ENV = "IMAGE_DERIVATION"
INSECURE_POLICY_ENV = "SKOPEO_INSECURE_POLICY"

# Username accepted by Google registries when authenticating with an access token
DEFAULT_REGISTRY_USER = "oauth2accesstoken"


def _require(value, env_name):
    if not value:
        raise ConfigurationError(
            "Required environment variable {0} is not set or empty. "
            "Set {0} before running this command".format(env_name)
        )


@dataclasses.dataclass(frozen=True)
class PushConfig:
    """Settings of the multi-architecture push pipeline."""

    target: str
    manifest_dir: str
    registry_token: Optional[str] = None
    registry_user: str = DEFAULT_REGISTRY_USER
    insecure_policy: bool = False
    require_token: bool = False

    def validate(self) -> None:
        """
        Verify that all required settings are present.

        Raises:
            ConfigurationError: If a required setting is missing or the target is a digest.
        """
        if self.require_token:
            _require(self.registry_token, REGISTRY_TOKEN_ENV)
        _require(self.target, IMAGE_TARGET_ENV)
        _require(self.manifest_dir, MANIFEST_DIR_ENV)
        if "@" in self.target:
            raise ConfigurationError("Target must be specified via tag, not digest")

    @property
    def metadata_path(self) -> str:
        """Path of the manifest metadata document."""
        return os.path.join(self.manifest_dir, "metadata.json")


@dataclasses.dataclass(frozen=True)
class UploadConfig:
    """Settings of the single-image build and upload."""

    registry_token: Optional[str]
    target: Optional[str]
    derivation: Optional[str]
    registry_user: str = DEFAULT_REGISTRY_USER
    insecure_policy: bool = False

    def validate(self) -> None:
        """
        Verify that the token, target and derivation are all present.

        Raises:
            ConfigurationError: Naming the first missing setting.
        """
        _require(self.registry_token, REGISTRY_TOKEN_ENV)
        _require(self.target, IMAGE_TARGET_ENV)
        _require(self.derivation, IMAGE_DERIVATION_ENV)
