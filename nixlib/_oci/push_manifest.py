import logging
import os

from pubtools.pluggy import task_context

from .command_executor import LocalExecutor
from .config import (
    DEFAULT_REGISTRY_USER,
    IMAGE_TARGET_ENV,
    INSECURE_POLICY_ENV,
    MANIFEST_DIR_ENV,
    REGISTRY_TOKEN_ENV,
    PushConfig,
)
from .exceptions import ConfigurationError
from .manifest_pusher import REQUIRED_TOOLS, ManifestPusher
from .utils.misc import add_args_env_variables, exit_on_publish_error, setup_arg_parser

LOG = logging.getLogger("nixlib.oci")

COMMON_PUSH_ARGS = {
    ("--registry-token",): {
        "help": "Access token for registry authentication. If not specified, existing "
        "registry credentials are used. Can be specified by env variable %s." % REGISTRY_TOKEN_ENV,
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
    ("--insecure-policy",): {
        "help": "Disable signature verification of skopeo. "
        "Can be enabled by setting env variable %s=1." % INSECURE_POLICY_ENV,
        "required": False,
        "type": bool,
        "env_variable": INSECURE_POLICY_ENV,
    },
}

PUSH_MANIFEST_ARGS = {
    ("target",): {
        "help": "Registry reference to push the manifest list to, e.g. gcr.io/project/app:v1.",
        "type": str,
        "count": "*",
    },
    ("--manifest-dir",): {
        "help": "Manifest directory built by nixlib-build-manifest. Current directory by default. "
        "Can be specified by env variable %s." % MANIFEST_DIR_ENV,
        "required": False,
        "type": str,
        "env_variable": MANIFEST_DIR_ENV,
    },
}
PUSH_MANIFEST_ARGS.update(COMMON_PUSH_ARGS)

MULTI_ARCH_UPLOAD_ARGS = {
    ("--target",): {
        "help": "Full registry path of the target image, e.g. gcr.io/project/image:tag. "
        "Can be specified by env variable %s." % IMAGE_TARGET_ENV,
        "required": False,
        "type": str,
        "env_variable": IMAGE_TARGET_ENV,
    },
    ("--manifest-dir",): {
        "help": "Manifest directory containing images and metadata. "
        "Can be specified by env variable %s." % MANIFEST_DIR_ENV,
        "required": False,
        "type": str,
        "env_variable": MANIFEST_DIR_ENV,
    },
}
MULTI_ARCH_UPLOAD_ARGS.update(COMMON_PUSH_ARGS)


def push_manifest(config, executor=None):
    """
    Push a multi-architecture manifest directory to a registry.

    Args:
        config (PushConfig):
            Push settings.
        executor (Executor|None):
            Executor running skopeo and crane. Local executor is used if not specified.
    Returns (PushReport):
        Pushed platform images.
    """
    config.validate()
    with executor or LocalExecutor() as executor:
        executor.check_tools(REQUIRED_TOOLS)
        return ManifestPusher(config, executor).push()


def construct_push_config(args):
    """
    Construct push settings based on the entered command line arguments of push-manifest.

    Args:
        args (argparse.Namespace):
            Parsed command line arguments.
    Returns (PushConfig):
        Push settings.
    """
    if len(args.target) != 1 or not args.target[0]:
        raise ConfigurationError(
            "Usage: nixlib-push-manifest REGISTRY/IMAGE:TAG "
            "(example: nixlib-push-manifest gcr.io/myproject/myapp:latest)"
        )
    return PushConfig(
        target=args.target[0],
        manifest_dir=args.manifest_dir or os.getcwd(),
        registry_token=args.registry_token,
        registry_user=args.registry_user,
        insecure_policy=bool(args.insecure_policy),
    )


def construct_upload_config(args):
    """
    Construct push settings based on the entered command line arguments of multi-arch-upload.

    Args:
        args (argparse.Namespace):
            Parsed command line arguments.
    Returns (PushConfig):
        Push settings requiring a registry token.
    """
    return PushConfig(
        target=args.target,
        manifest_dir=args.manifest_dir,
        registry_token=args.registry_token,
        registry_user=args.registry_user,
        insecure_policy=bool(args.insecure_policy),
        require_token=True,
    )


def setup_args():
    """Set up argparser without extra parameters, this method is used for auto doc generation."""
    return setup_arg_parser(PUSH_MANIFEST_ARGS, prog="nixlib-push-manifest")


def setup_upload_args():
    """Set up argparser without extra parameters, this method is used for auto doc generation."""
    return setup_arg_parser(MULTI_ARCH_UPLOAD_ARGS, prog="nixlib-multi-arch-upload")


def push_manifest_main(sysargs=None):
    """Entrypoint for pushing a manifest directory to the registry given as argument."""
    logging.basicConfig(level=logging.INFO)

    parser = setup_args()
    if sysargs:
        args = parser.parse_args(sysargs[1:])
    else:
        args = parser.parse_args()  # pragma: no cover"
    args = add_args_env_variables(args, PUSH_MANIFEST_ARGS)

    with exit_on_publish_error():
        config = construct_push_config(args)
        with task_context():
            push_manifest(config)


def multi_arch_upload_main(sysargs=None):
    """Entrypoint for uploading a manifest directory configured by environment variables."""
    logging.basicConfig(level=logging.INFO)

    parser = setup_upload_args()
    if sysargs:
        args = parser.parse_args(sysargs[1:])
    else:
        args = parser.parse_args()  # pragma: no cover"
    args = add_args_env_variables(args, MULTI_ARCH_UPLOAD_ARGS)

    with exit_on_publish_error():
        config = construct_upload_config(args)
        with task_context():
            push_manifest(config)
