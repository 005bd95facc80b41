import enum
import logging
import os

from pubtools.pluggy import pm

from .exceptions import (
    ArtifactNotFoundError,
    ManifestCompositionError,
    ManifestValidationError,
    UploadError,
)
from .metadata import read_metadata
from .models import PushFailure, PushReport, PushSuccess
from .utils.misc import (
    get_platform_reference,
    get_registry_host,
    get_staged_image_path,
    log_step,
)

LOG = logging.getLogger("nixlib.oci")

REQUIRED_TOOLS = ["skopeo", "crane"]


class PushState(enum.Enum):
    """Stages of the multi-architecture push."""

    VALIDATING = "validating"
    PUSHING_PLATFORMS = "pushing-platforms"
    COMPOSING_MANIFEST = "composing-manifest"
    DONE = "done"
    FAILED = "failed"


class ManifestPusher:
    """
    Push a built multi-architecture manifest directory to a registry.

    Each platform image is pushed under '<target>-<os>-<arch>', then a manifest list
    referencing all of them is published under the target itself. Platforms are pushed
    strictly in metadata order and the first failure stops the push. Nothing is rolled
    back: platform tags pushed before a failure stay in the registry, and re-running the
    push overwrites them.
    """

    def __init__(self, config, executor):
        """
        Initialize.

        Args:
            config (PushConfig):
                Push settings.
            executor (Executor):
                Executor running skopeo and crane.
        """
        self.config = config
        self.executor = executor
        self.state = PushState.VALIDATING
        self.report = None

    def _fail(self, error):
        self.state = PushState.FAILED
        return error

    @log_step("Validate manifest")
    def load_metadata(self):
        """
        Validate the settings and read metadata of the manifest directory.

        Returns (ManifestMetadata):
            Manifest metadata.
        """
        self.state = PushState.VALIDATING
        try:
            self.config.validate()
            if not os.path.isdir(self.config.manifest_dir):
                raise ArtifactNotFoundError(
                    "Manifest directory does not exist: {0}".format(self.config.manifest_dir)
                )
            metadata = read_metadata(self.config.manifest_dir)
            if not metadata.platforms:
                raise ManifestValidationError(
                    "No platforms found in {0}".format(self.config.metadata_path)
                )
        except Exception:
            self.state = PushState.FAILED
            raise

        LOG.info("Manifest: {0}:{1}".format(metadata.name, metadata.tag))
        LOG.info("Target: {0}".format(self.config.target))
        LOG.info("Platforms:")
        for platform in metadata.platforms:
            LOG.info("  - {0}".format(platform))
        return metadata

    def login(self):
        """Log in to the target registry if a token was provided."""
        if not self.config.registry_token:
            LOG.info("No registry token provided, using existing registry credentials")
            return

        host = get_registry_host(self.config.target)
        try:
            self.executor.skopeo_login(host, self.config.registry_user, self.config.registry_token)
            self.executor.crane_login(host, self.config.registry_user, self.config.registry_token)
        except RuntimeError as e:
            raise self._fail(UploadError("Failed to log in to {0}: {1}".format(host, e)))

    def push_platform(self, platform):
        """
        Push the staged archive of a single platform.

        Args:
            platform (str):
                Platform identifier.
        Returns (PushSuccess|PushFailure):
            Outcome of the push.
        """
        reference = get_platform_reference(self.config.target, platform)
        image_file = os.path.join(self.config.manifest_dir, get_staged_image_path(platform))

        LOG.info("Uploading {0} image...".format(platform))
        if not os.path.isfile(image_file):
            return PushFailure(
                platform, reference, "Platform image not found: {0}".format(image_file)
            )

        LOG.info("  Source: {0}".format(image_file))
        LOG.info("  Target: {0}".format(reference))
        try:
            self.executor.copy_archive(
                image_file,
                reference,
                insecure_policy=self.config.insecure_policy,
                oci_format=True,
                dest_compress=True,
            )
        except RuntimeError as e:
            return PushFailure(
                platform, reference, "Failed to upload {0} image: {1}".format(platform, e)
            )

        pm.hook.oci_platform_image_pushed(platform=platform, dest_ref=reference)
        LOG.info("{0} image uploaded successfully".format(platform))
        return PushSuccess(platform, reference)

    @log_step("Push platform images")
    def push_platforms(self, platforms):
        """
        Push platform images in order, stopping at the first failure.

        Args:
            platforms ([str]):
                Platform identifiers, in metadata order.
        Returns (PushReport):
            Successfully pushed images and the failure, if any.
        """
        self.state = PushState.PUSHING_PLATFORMS
        report = PushReport()
        for platform in platforms:
            result = self.push_platform(platform)
            if isinstance(result, PushFailure):
                report.failure = result
                break
            report.pushed.append(result)

        self.report = report
        if not report.succeeded:
            LOG.error(report.failure.cause)
            if report.pushed_refs:
                LOG.warning(
                    "The following platform images were already pushed and remain in the "
                    "registry: {0}".format(", ".join(report.pushed_refs))
                )
            raise self._fail(UploadError(report.failure.cause))
        return report

    @log_step("Compose manifest list")
    def compose_manifest_list(self, platform_refs):
        """
        Publish a manifest list referencing all pushed platform images.

        Args:
            platform_refs ([str]):
                Pushed platform references, in push order.
        """
        self.state = PushState.COMPOSING_MANIFEST
        try:
            self.executor.create_manifest_list(platform_refs, self.config.target)
        except RuntimeError as e:
            LOG.warning(
                "Platform images remain in the registry: {0}".format(", ".join(platform_refs))
            )
            raise self._fail(
                ManifestCompositionError(
                    "Failed to create manifest list {0}: {1}".format(self.config.target, e)
                )
            )
        pm.hook.oci_manifest_list_pushed(
            target=self.config.target, platform_refs=list(platform_refs)
        )

    def push(self):
        """
        Run the whole push.

        Returns (PushReport):
            Pushed platform images.
        """
        if self.config.insecure_policy:
            LOG.warning("Using insecure policy mode (signature verification disabled)")

        metadata = self.load_metadata()
        self.login()
        report = self.push_platforms(metadata.platforms)
        self.compose_manifest_list(report.pushed_refs)
        self.state = PushState.DONE

        LOG.info("Multi-architecture image uploaded to: {0}".format(self.config.target))
        LOG.info("You can now pull this image on any supported platform:")
        LOG.info("  docker pull {0}".format(self.config.target))
        return report
