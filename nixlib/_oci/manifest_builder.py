import logging
import os
import shutil
import stat

from pubtools.pluggy import pm, task_context

from .exceptions import ArtifactNotFoundError, ConfigurationError
from .metadata import synthesize_metadata, write_metadata
from .models import DEFAULT_TAG, ManifestDescriptor, PlatformImage
from .utils.misc import (
    add_args_env_variables,
    exit_on_publish_error,
    get_staged_image_path,
    log_step,
    setup_arg_parser,
)

LOG = logging.getLogger("nixlib.oci")

PUSH_SCRIPT_NAME = "push-manifest.sh"
DEFAULT_PUSH_SCRIPT = os.path.join(os.path.dirname(__file__), "data", PUSH_SCRIPT_NAME)

BUILD_MANIFEST_ARGS = {
    ("--output-dir",): {
        "help": "Directory where the manifest will be created.",
        "required": True,
        "type": str,
    },
    ("--input-json",): {
        "help": "JSON file with the manifest configuration: "
        '{"name": ..., "tag": ..., "images": [{"platform": ..., "path": ...}]}. '
        "Mutually exclusive with --name/--tag/--image.",
        "required": False,
        "type": str,
    },
    ("--name",): {
        "help": "Name of the manifest.",
        "required": False,
        "type": str,
    },
    ("--tag",): {
        "help": "Tag of the manifest. 'latest' by default.",
        "required": False,
        "type": str,
    },
    ("--image",): {
        "help": "Platform image in the form PLATFORM=PATH, e.g. linux/amd64=/path/image.tar.gz. "
        "Multiple can be specified, order is preserved.",
        "required": False,
        "type": str,
        "action": "append",
    },
    ("--push-script",): {
        "help": "Push helper to copy into the manifest. Bundled helper by default.",
        "required": False,
        "type": str,
        "env_variable": "NIXLIB_PUSH_SCRIPT",
    },
}


class ManifestBuilder:
    """
    Stage platform image archives into a multi-architecture manifest directory.

    The resulting directory contains:
        images/<os>-<arch>.tar.gz  staged archive of each platform
        metadata.json              manifest metadata, read by the push pipeline
        push-manifest.sh           helper which pushes the directory to a registry

    Staging is not atomic. If an archive is missing, platforms before it remain staged.
    """

    def __init__(self, descriptor, output_dir, push_script=None):
        """
        Initialize.

        Args:
            descriptor (ManifestDescriptor):
                Manifest to build.
            output_dir (str):
                Directory where the manifest will be created.
            push_script (str|None):
                Push helper to copy. Bundled helper is used if not specified.
        """
        self.descriptor = descriptor
        self.output_dir = output_dir
        self.push_script = push_script or DEFAULT_PUSH_SCRIPT

    @property
    def images_dir(self):
        """Directory holding the staged archives."""
        return os.path.join(self.output_dir, "images")

    def stage_image(self, image):
        """
        Copy a platform image archive into the manifest.

        Args:
            image (PlatformImage):
                Platform image to stage.
        Returns (str):
            Staged path, relative to the output directory.
        """
        LOG.info("Processing {0} image...".format(image.platform))
        LOG.info("  Source: {0}".format(image.path))

        if not os.path.isfile(image.path):
            raise ArtifactNotFoundError("Image file not found: {0}".format(image.path))

        staged_path = get_staged_image_path(image.platform)
        shutil.copyfile(image.path, os.path.join(self.output_dir, staged_path))
        LOG.info("  Copied to: {0}".format(staged_path))
        return staged_path

    def install_push_script(self):
        """Copy the push helper into the manifest and make it executable."""
        if not os.path.isfile(self.push_script):
            raise ArtifactNotFoundError("Push script not found: {0}".format(self.push_script))

        dest = os.path.join(self.output_dir, PUSH_SCRIPT_NAME)
        shutil.copyfile(self.push_script, dest)
        mode = os.stat(dest).st_mode
        os.chmod(dest, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return dest

    @log_step("Build manifest")
    def build(self):
        """
        Build the manifest directory.

        Returns (ManifestMetadata):
            Metadata written to the manifest directory.
        """
        self.descriptor.validate()

        LOG.info(
            "Creating multi-architecture manifest for {0}:{1}".format(
                self.descriptor.name, self.descriptor.tag
            )
        )
        os.makedirs(self.images_dir, exist_ok=True)

        staged_paths = [self.stage_image(image) for image in self.descriptor.images]

        LOG.info("All images processed. Creating manifest metadata...")
        metadata = synthesize_metadata(
            self.descriptor.name, self.descriptor.tag, self.descriptor.platforms, staged_paths
        )
        write_metadata(metadata, self.output_dir)
        self.install_push_script()

        LOG.info("Multi-architecture manifest created in {0}".format(self.output_dir))
        LOG.info("To push to a registry:")
        LOG.info("  {0} REGISTRY/IMAGE:TAG".format(os.path.join(self.output_dir, PUSH_SCRIPT_NAME)))

        pm.hook.oci_manifest_built(
            name=metadata.name,
            tag=metadata.tag,
            platforms=list(metadata.platforms),
            manifest_dir=self.output_dir,
        )
        return metadata


def build_manifest(descriptor, output_dir, push_script=None):
    """
    Build a multi-architecture manifest directory.

    Args:
        descriptor (ManifestDescriptor):
            Manifest to build.
        output_dir (str):
            Directory where the manifest will be created.
        push_script (str|None):
            Push helper to copy. Bundled helper is used if not specified.
    Returns (ManifestMetadata):
        Metadata of the built manifest.
    """
    return ManifestBuilder(descriptor, output_dir, push_script).build()


def parse_image_arg(value):
    """
    Parse a PLATFORM=PATH command line value.

    Args:
        value (str):
            Value of an --image argument.
    Returns (PlatformImage):
        Parsed platform image.
    """
    platform, sep, path = value.partition("=")
    if not sep or not platform or not path:
        raise ConfigurationError(
            "Image should be specified as PLATFORM=PATH, got '{0}'".format(value)
        )
    return PlatformImage(platform, path)


def construct_descriptor(args):
    """
    Construct a manifest descriptor based on the entered command line arguments.

    Args:
        args (argparse.Namespace):
            Parsed command line arguments.
    Returns (ManifestDescriptor):
        Manifest to build.
    """
    if args.input_json:
        if args.name or args.image:
            raise ConfigurationError("--input-json can't be combined with --name or --image")
        return ManifestDescriptor.from_json_file(args.input_json)

    if not args.name:
        raise ConfigurationError("Either --input-json or --name must be specified")

    images = [parse_image_arg(value) for value in args.image or []]
    return ManifestDescriptor(name=args.name, images=images, tag=args.tag or DEFAULT_TAG)


def setup_args():
    """Set up argparser without extra parameters, this method is used for auto doc generation."""
    return setup_arg_parser(BUILD_MANIFEST_ARGS, prog="nixlib-build-manifest")


def build_manifest_main(sysargs=None):
    """Entrypoint for building a multi-architecture manifest."""
    logging.basicConfig(level=logging.INFO)

    parser = setup_args()
    if sysargs:
        args = parser.parse_args(sysargs[1:])
    else:
        args = parser.parse_args()  # pragma: no cover"
    args = add_args_env_variables(args, BUILD_MANIFEST_ARGS)

    with exit_on_publish_error():
        descriptor = construct_descriptor(args)
        with task_context():
            build_manifest(descriptor, args.output_dir, args.push_script)
