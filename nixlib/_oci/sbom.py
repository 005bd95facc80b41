import logging
import os
import tempfile

from pubtools.pluggy import pm, task_context

from .command_executor import LocalExecutor
from .exceptions import ArtifactNotFoundError, SbomError
from .utils.misc import exit_on_publish_error, log_step, setup_arg_parser

LOG = logging.getLogger("nixlib.oci")

# syft output format -> file name of the generated document
SBOM_FILENAMES = {
    "spdx-json": "sbom.spdx.json",
    "cyclonedx-json": "sbom.cyclonedx.json",
    "syft-json": "sbom.syft.json",
}
DEFAULT_FORMATS = ["spdx-json", "cyclonedx-json"]

SBOM_ARGS = {
    ("--image",): {
        "help": "Path to the OCI image archive to analyze.",
        "required": True,
        "type": str,
    },
    ("--output-dir",): {
        "help": "Directory to write the SBOM documents to.",
        "required": True,
        "type": str,
    },
    ("--format",): {
        "help": "SBOM format: %s. Multiple can be specified. "
        "spdx-json and cyclonedx-json by default." % ", ".join(SBOM_FILENAMES),
        "required": False,
        "type": str,
        "action": "append",
    },
}


def validate_formats(formats):
    """
    Check that at least one known SBOM format was requested.

    Args:
        formats ([str]):
            Requested syft output formats.
    Raises:
        SbomError: If the list is empty or contains an unknown format.
    """
    available = ", ".join(SBOM_FILENAMES)
    if not formats:
        raise SbomError("No SBOM formats specified. Available formats: {0}".format(available))
    for sbom_format in formats:
        if sbom_format not in SBOM_FILENAMES:
            raise SbomError(
                "Unknown SBOM format '{0}'. Available formats: {1}".format(sbom_format, available)
            )


@log_step("Generate SBOM")
def generate_sbom(image_archive, output_dir, formats=None, executor=None):
    """
    Generate Software Bill of Materials documents for an image archive.

    Args:
        image_archive (str):
            Path to the OCI image archive.
        output_dir (str):
            Directory to write the documents to.
        formats ([str]|None):
            Syft output formats. spdx-json and cyclonedx-json are generated if not specified.
        executor (Executor|None):
            Executor running syft. Local executor is used if not specified.
    Returns ([str]):
        Paths of the generated documents, in requested order.
    """
    formats = DEFAULT_FORMATS if formats is None else formats
    validate_formats(formats)
    if not os.path.isfile(image_archive):
        raise ArtifactNotFoundError("Docker image not found: {0}".format(image_archive))

    LOG.info("Loading Docker image for SBOM generation: {0}".format(image_archive))
    LOG.info("Requested formats: {0}".format(" ".join(formats)))
    os.makedirs(output_dir, exist_ok=True)

    sbom_paths = []
    with executor or LocalExecutor() as executor:
        with tempfile.TemporaryDirectory(prefix="syft-cache-") as cache_dir:
            for sbom_format in formats:
                output = os.path.join(output_dir, SBOM_FILENAMES[sbom_format])
                LOG.info("Generating {0} SBOM...".format(sbom_format))
                try:
                    executor.syft_scan(image_archive, sbom_format, output, cache_dir)
                except RuntimeError as e:
                    raise SbomError(str(e))

                if not os.path.isfile(output):
                    raise SbomError(
                        "Failed to generate {0} SBOM at {1}".format(sbom_format, output)
                    )
                LOG.info(
                    "{0} SBOM generated: {1} ({2} bytes)".format(
                        sbom_format, output, os.path.getsize(output)
                    )
                )
                sbom_paths.append(output)

    LOG.info("SBOM generation complete. Artifacts available in: {0}".format(output_dir))
    pm.hook.oci_sbom_generated(image_archive=image_archive, sbom_paths=list(sbom_paths))
    return sbom_paths


def setup_args():
    """Set up argparser without extra parameters, this method is used for auto doc generation."""
    return setup_arg_parser(SBOM_ARGS, prog="nixlib-sbom")


def sbom_main(sysargs=None):
    """Entrypoint for SBOM generation."""
    logging.basicConfig(level=logging.INFO)

    parser = setup_args()
    if sysargs:
        args = parser.parse_args(sysargs[1:])
    else:
        args = parser.parse_args()  # pragma: no cover"

    with exit_on_publish_error():
        with task_context():
            generate_sbom(args.image, args.output_dir, args.format)
