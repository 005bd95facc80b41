import dataclasses
import logging
import os
import shutil
import stat
import tempfile
from typing import Optional

from pubtools.pluggy import pm, task_context

from .command_executor import LocalExecutor
from .exceptions import ArtifactNotFoundError, ScanError
from .utils.misc import add_args_env_variables, exit_on_publish_error, log_step, setup_arg_parser

LOG = logging.getLogger("nixlib.oci")

DEFAULT_SEVERITY = "UNKNOWN,LOW,MEDIUM,HIGH,CRITICAL"
DB_FILENAME = "trivy.db"
DB_METADATA_FILENAME = "metadata.json"
SUMMARY_FILENAME = "scan-summary.txt"

TRIVY_SCAN_ARGS = {
    ("--image",): {
        "help": "Path to the image archive to scan.",
        "required": True,
        "type": str,
    },
    ("--image-ref",): {
        "help": "Name under which the image is reported, e.g. myapp:latest.",
        "required": True,
        "type": str,
    },
    ("--output-dir",): {
        "help": "Directory to write scan reports to.",
        "required": True,
        "type": str,
    },
    ("--severity",): {
        "help": "Comma-separated severity levels to report. All levels by default.",
        "required": False,
        "type": str,
        "default": DEFAULT_SEVERITY,
    },
    ("--format",): {
        "help": "Report format: json, table, sarif, cyclonedx, spdx, etc. 'json' by default.",
        "required": False,
        "type": str,
        "default": "json",
    },
    ("--vuln-type",): {
        "help": "Vulnerability types to scan. 'os,library' by default.",
        "required": False,
        "type": str,
        "default": "os,library",
    },
    ("--exit-code",): {
        "help": "Exit code of trivy when vulnerabilities are found. 0 (don't fail) by default.",
        "required": False,
        "type": int,
        "default": 0,
    },
    ("--timeout",): {
        "help": "Scan timeout. '5m' by default.",
        "required": False,
        "type": str,
        "default": "5m",
    },
    ("--ignore-unfixed",): {
        "help": "Ignore vulnerabilities without fixes.",
        "required": False,
        "type": bool,
    },
    ("--database-dir",): {
        "help": "Pre-fetched Trivy database created by nixlib-download-trivy-db. "
        "Can be specified by env variable TRIVY_DATABASE_DIR.",
        "required": False,
        "type": str,
        "env_variable": "TRIVY_DATABASE_DIR",
    },
}

DOWNLOAD_TRIVY_DB_ARGS = {
    ("--output-dir",): {
        "help": "Directory to package the database into. Files are written to <output-dir>/db.",
        "required": True,
        "type": str,
    },
}


@dataclasses.dataclass(frozen=True)
class ScanOptions:
    """Settings of a vulnerability scan."""

    severity: str = DEFAULT_SEVERITY
    format: str = "json"
    vuln_type: str = "os,library"
    exit_code: int = 0
    timeout: str = "5m"
    ignore_unfixed: bool = False
    database_dir: Optional[str] = None


def _make_writable(path):
    for root, dirs, files in os.walk(path):
        for name in dirs + files:
            full_path = os.path.join(root, name)
            os.chmod(full_path, os.stat(full_path).st_mode | stat.S_IWUSR)


class TrivyScanner:
    """Scan image archives for vulnerabilities with trivy, without network access."""

    def __init__(self, executor):
        """
        Initialize.

        Args:
            executor (Executor):
                Executor running trivy.
        """
        self.executor = executor

    def prepare_cache(self, cache_dir, database_dir):
        """
        Copy a pre-fetched database into a writable cache directory.

        Trivy opens the database for writing, so a read-only copy can't be used directly.

        Args:
            cache_dir (str):
                Cache directory which will be used by trivy.
            database_dir (str):
                Directory containing the pre-fetched 'db' directory.
        """
        source = os.path.join(database_dir, "db")
        if not os.path.isdir(source):
            raise ArtifactNotFoundError("Trivy database not found: {0}".format(source))

        LOG.info("Using pre-fetched Trivy database from: {0}".format(database_dir))
        shutil.copytree(source, os.path.join(cache_dir, "db"))
        _make_writable(cache_dir)

    @log_step("Scan image")
    def scan(self, image_archive, image_ref, output_dir, options=None):
        """
        Scan an image archive and write the reports to the output directory.

        Args:
            image_archive (str):
                Path to the image archive.
            image_ref (str):
                Name under which the image is reported.
            output_dir (str):
                Directory to write the reports to.
            options (ScanOptions|None):
                Scan settings. Defaults are used if not specified.
        Returns (str):
            Path of the scan report.
        """
        options = options or ScanOptions()
        if not os.path.isfile(image_archive):
            raise ArtifactNotFoundError("Docker image not found: {0}".format(image_archive))

        os.makedirs(output_dir, exist_ok=True)
        report = os.path.join(output_dir, "scan-report.{0}".format(options.format))
        summary = os.path.join(output_dir, SUMMARY_FILENAME)
        scan_kwargs = {
            "severity": options.severity,
            "vuln_type": options.vuln_type,
            "ignore_unfixed": options.ignore_unfixed,
        }

        with tempfile.TemporaryDirectory(prefix="trivy-cache-") as cache_dir:
            if options.database_dir:
                self.prepare_cache(cache_dir, options.database_dir)

            LOG.info("Scanning image: {0}".format(image_archive))
            try:
                self.executor.trivy_scan(
                    image_archive,
                    image_ref,
                    report,
                    options.format,
                    dict(scan_kwargs, exit_code=options.exit_code, timeout=options.timeout),
                    cache_dir,
                )
            except RuntimeError as e:
                raise ScanError("Trivy scan of {0} failed: {1}".format(image_ref, e))
            LOG.info("Trivy scan complete. Report saved to {0}".format(report))

            # Human-readable summary, failures here don't affect the result
            self.executor.trivy_scan(
                image_archive,
                image_ref,
                summary,
                "table",
                scan_kwargs,
                cache_dir,
                tolerate_err=True,
            )

        LOG.info("Scan results available in: {0}".format(output_dir))
        pm.hook.oci_image_scanned(image_ref=image_ref, report_path=report)
        return report


def validate_trivy_db(cache_dir):
    """
    Check that a downloaded trivy database is complete.

    Args:
        cache_dir (str):
            Trivy cache directory.
    Raises:
        ScanError: If the database directory or any of its files is missing or empty.
    """
    db_dir = os.path.join(cache_dir, "db")
    db_file = os.path.join(db_dir, DB_FILENAME)
    metadata_file = os.path.join(db_dir, DB_METADATA_FILENAME)

    if not os.path.isdir(db_dir):
        raise ScanError("Database directory not created: {0}".format(db_dir))
    if not os.path.isfile(db_file):
        raise ScanError("Database file not found: {0}".format(db_file))
    if os.path.getsize(db_file) == 0:
        raise ScanError("Database file is empty: {0}".format(db_file))
    if not os.path.isfile(metadata_file):
        raise ScanError("Database metadata not found: {0}".format(metadata_file))


@log_step("Download Trivy database")
def download_trivy_db(output_dir, executor=None):
    """
    Download the trivy vulnerability database for offline scans.

    Args:
        output_dir (str):
            Directory to package the database into. Files are written to <output_dir>/db.
        executor (Executor|None):
            Executor running trivy. Local executor is used if not specified.
    Returns (str):
        Path of the packaged database directory.
    """
    dest = os.path.join(output_dir, "db")
    with executor or LocalExecutor() as executor:
        with tempfile.TemporaryDirectory(prefix="trivy-cache-") as cache_dir:
            LOG.info("Downloading Trivy vulnerability database...")
            try:
                executor.trivy_download_db(cache_dir)
            except RuntimeError as e:
                raise ScanError("Failed to download Trivy database: {0}".format(e))

            validate_trivy_db(cache_dir)
            LOG.info("Database downloaded and validated successfully")
            shutil.copytree(os.path.join(cache_dir, "db"), dest, dirs_exist_ok=True)

    LOG.info("Database files packaged:")
    for name in sorted(os.listdir(dest)):
        LOG.info("  {0} ({1} bytes)".format(name, os.path.getsize(os.path.join(dest, name))))
    with open(os.path.join(dest, DB_METADATA_FILENAME)) as f:
        LOG.info("Database metadata: {0}".format(f.read().strip()))
    return dest


def scan_image(image_archive, image_ref, output_dir, options=None, executor=None):
    """
    Scan an image archive for vulnerabilities.

    Args:
        image_archive (str):
            Path to the image archive.
        image_ref (str):
            Name under which the image is reported.
        output_dir (str):
            Directory to write the reports to.
        options (ScanOptions|None):
            Scan settings.
        executor (Executor|None):
            Executor running trivy. Local executor is used if not specified.
    Returns (str):
        Path of the scan report.
    """
    with executor or LocalExecutor() as executor:
        return TrivyScanner(executor).scan(image_archive, image_ref, output_dir, options)


def setup_args():
    """Set up argparser without extra parameters, this method is used for auto doc generation."""
    return setup_arg_parser(TRIVY_SCAN_ARGS, prog="nixlib-trivy-scan")


def setup_download_args():
    """Set up argparser without extra parameters, this method is used for auto doc generation."""
    return setup_arg_parser(DOWNLOAD_TRIVY_DB_ARGS, prog="nixlib-download-trivy-db")


def trivy_scan_main(sysargs=None):
    """Entrypoint for scanning an image archive."""
    logging.basicConfig(level=logging.INFO)

    parser = setup_args()
    if sysargs:
        args = parser.parse_args(sysargs[1:])
    else:
        args = parser.parse_args()  # pragma: no cover"
    args = add_args_env_variables(args, TRIVY_SCAN_ARGS)

    options = ScanOptions(
        severity=args.severity,
        format=args.format,
        vuln_type=args.vuln_type,
        exit_code=args.exit_code,
        timeout=args.timeout,
        ignore_unfixed=bool(args.ignore_unfixed),
        database_dir=args.database_dir,
    )
    with exit_on_publish_error():
        with task_context():
            scan_image(args.image, args.image_ref, args.output_dir, options)


def download_trivy_db_main(sysargs=None):
    """Entrypoint for downloading the trivy database."""
    logging.basicConfig(level=logging.INFO)

    parser = setup_download_args()
    if sysargs:
        args = parser.parse_args(sysargs[1:])
    else:
        args = parser.parse_args()  # pragma: no cover"

    with exit_on_publish_error():
        with task_context():
            download_trivy_db(args.output_dir)
