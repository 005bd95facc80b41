class PublishError(Exception):
    """Base class for errors which end a publishing pipeline."""

    exit_code = 1


class ConfigurationError(PublishError):
    """Occurs when a required input is missing or a command was invoked incorrectly."""

    exit_code = 1


class ManifestValidationError(PublishError):
    """Occurs when a manifest or its metadata hasn't passed its validation checks."""

    exit_code = 1


class ArtifactNotFoundError(PublishError):
    """Occurs when a referenced image archive, manifest directory or metadata file is absent."""

    exit_code = 2


class BuildError(PublishError):
    """Occurs when an image build fails or doesn't produce a usable archive."""

    exit_code = 2


class UploadError(PublishError):
    """Occurs when an image couldn't be copied to the registry."""

    exit_code = 3


class ManifestCompositionError(PublishError):
    """Occurs when the manifest list couldn't be created or pushed."""

    exit_code = 4


class ScanError(PublishError):
    """Occurs when the vulnerability scanner or its database setup fails."""

    exit_code = 1


class SbomError(PublishError):
    """Occurs when SBOM generation fails or is misconfigured."""

    exit_code = 1
