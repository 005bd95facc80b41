import gzip
import logging
import os
import shutil
import tempfile

from pubtools.pluggy import pm, task_context

from .command_executor import LocalExecutor
from .config import (
    DEFAULT_REGISTRY_USER,
    IMAGE_DERIVATION_ENV,
    IMAGE_TARGET_ENV,
    INSECURE_POLICY_ENV,
    REGISTRY_TOKEN_ENV,
    UploadConfig,
)
from .exceptions import BuildError, UploadError
from .utils.misc import (
    add_args_env_variables,
    exit_on_publish_error,
    get_registry_host,
    log_step,
    setup_arg_parser,
)

LOG = logging.getLogger("nixlib.oci")

# Equivalent of 'gzip --fast'
FAST_COMPRESSION = 1

DOCKER_UPLOAD_ARGS = {
    ("--registry-token",): {
        "help": "Access token for registry authentication. "
        "Can be specified by env variable %s." % REGISTRY_TOKEN_ENV,
        "required": False,
        "type": str,
        "env_variable": REGISTRY_TOKEN_ENV,
    },
    ("--registry-user",): {
        "help": "Username used together with the access token. "
        "'%s' by default." % DEFAULT_REGISTRY_USER,
        "required": False,
        "type": str,
        "default": DEFAULT_REGISTRY_USER,
    },
    ("--target",): {
        "help": "Full registry path of the target image, e.g. gcr.io/project/image:tag. "
        "Can be specified by env variable %s." % IMAGE_TARGET_ENV,
        "required": False,
        "type": str,
        "env_variable": IMAGE_TARGET_ENV,
    },
    ("--derivation",): {
        "help": "Nix store path or flake reference of the image to build. "
        "Can be specified by env variable %s." % IMAGE_DERIVATION_ENV,
        "required": False,
        "type": str,
        "env_variable": IMAGE_DERIVATION_ENV,
    },
    ("--insecure-policy",): {
        "help": "Disable signature verification of skopeo. "
        "Can be enabled by setting env variable %s=1." % INSECURE_POLICY_ENV,
        "required": False,
        "type": bool,
        "env_variable": INSECURE_POLICY_ENV,
    },
}


@log_step("Build image")
def build_image(derivation, executor):
    """
    Build an image archive with Nix.

    Args:
        derivation (str):
            Nix store path or flake reference to build.
        executor (Executor):
            Executor running nix.
    Returns (str):
        Path of the built image archive.
    """
    LOG.info("Building Docker image from: {0}".format(derivation))
    try:
        archive = executor.nix_build(derivation)
    except RuntimeError:
        raise BuildError("Failed to build Docker image with Nix: {0}".format(derivation))

    if not archive:
        raise BuildError("Nix build returned empty output path")
    if not os.path.isfile(archive):
        raise BuildError("Built image archive does not exist: {0}".format(archive))

    LOG.info("Docker image built successfully: {0}".format(archive))
    return archive


def compress_archive(archive, dest_dir):
    """
    Compress an image archive with fast gzip compression.

    Args:
        archive (str):
            Path of the image archive.
        dest_dir (str):
            Directory to write the compressed archive to.
    Returns (str):
        Path of the compressed archive.
    """
    compressed = os.path.join(dest_dir, os.path.basename(archive) + ".gz")
    with open(archive, "rb") as src, gzip.open(
        compressed, "wb", compresslevel=FAST_COMPRESSION
    ) as dest:
        shutil.copyfileobj(src, dest)
    return compressed


@log_step("Upload image")
def push_image(archive, config, executor):
    """
    Compress an image archive and push it to the target reference.

    Args:
        archive (str):
            Path of the image archive.
        config (UploadConfig):
            Upload settings.
        executor (Executor):
            Executor running skopeo.
    """
    if config.insecure_policy:
        LOG.warning("Using insecure policy mode (signature verification disabled)")

    LOG.info("Uploading image to registry: {0}".format(config.target))
    try:
        executor.skopeo_login(
            get_registry_host(config.target), config.registry_user, config.registry_token
        )
        with tempfile.TemporaryDirectory(prefix="nixlib-upload-") as tmpdir:
            compressed = compress_archive(archive, tmpdir)
            executor.copy_archive(compressed, config.target, insecure_policy=config.insecure_policy)
    except RuntimeError as e:
        raise UploadError("Failed to upload image to registry {0}: {1}".format(config.target, e))

    LOG.info("Image uploaded successfully to: {0}".format(config.target))


def upload_image(config, executor=None):
    """
    Build an image with Nix and upload it to a registry.

    Args:
        config (UploadConfig):
            Upload settings.
        executor (Executor|None):
            Executor running nix and skopeo. Local executor is used if not specified.
    Returns (str):
        Path of the built image archive.
    """
    config.validate()
    with executor or LocalExecutor() as executor:
        archive = build_image(config.derivation, executor)
        push_image(archive, config, executor)

    pm.hook.oci_image_uploaded(archive=archive, dest_ref=config.target)
    return archive


def construct_config(args):
    """
    Construct upload settings based on the entered command line arguments.

    Args:
        args (argparse.Namespace):
            Parsed command line arguments.
    Returns (UploadConfig):
        Upload settings.
    """
    return UploadConfig(
        registry_token=args.registry_token,
        target=args.target,
        derivation=args.derivation,
        registry_user=args.registry_user,
        insecure_policy=bool(args.insecure_policy),
    )


def setup_args():
    """Set up argparser without extra parameters, this method is used for auto doc generation."""
    return setup_arg_parser(DOCKER_UPLOAD_ARGS, prog="nixlib-docker-upload")


def docker_upload_main(sysargs=None):
    """Entrypoint for building and uploading a single-architecture image."""
    logging.basicConfig(level=logging.INFO)

    parser = setup_args()
    if sysargs:
        args = parser.parse_args(sysargs[1:])
    else:
        args = parser.parse_args()  # pragma: no cover"
    args = add_args_env_variables(args, DOCKER_UPLOAD_ARGS)

    with exit_on_publish_error():
        config = construct_config(args)
        with task_context():
            upload_image(config)
