import logging
import os
import shlex
import shutil
import subprocess
import textwrap
from shlex import quote
from types import TracebackType
from typing import Any, Dict, List, Optional, Tuple, Type

from typing_extensions import Self

from .exceptions import ConfigurationError

LOG = logging.getLogger("nixlib.oci")


class Executor(object):
    """
    Base executor class.

    Implementation of command execution should be done in
    descendant classes. Common pre- and post-processing should be
    implemented in this class.
    """

    def __enter__(self) -> Self:
        """Use the class as context manager. Returns instance upon invocation."""
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_value: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        """Cleanup when used as context manager. No-op by default."""
        pass

    def _run_cmd(
        self,
        cmd: str,
        err_msg: Optional[str] = None,
        tolerate_err: bool = False,
        stdin: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> Tuple[str, str]:
        """Run a shell command."""
        raise NotImplementedError  # pragma: no cover"

    def check_tools(self, tools: List[str]) -> None:
        """
        Verify that the required tools are available.

        Args:
            tools ([str]):
                Names of executables which must be present in PATH.
        Raises:
            ConfigurationError: Naming the first missing tool.
        """
        for tool in tools:
            if shutil.which(tool) is None:
                raise ConfigurationError("Required tool '{0}' not found in PATH".format(tool))

    def skopeo_login(self, host: str, username: str, password: Optional[str]) -> None:
        """
        Log in to a registry with skopeo.

        The password is sent on standard input so that it never appears in a command line.

        Args:
            host (str):
                Registry host, e.g. 'gcr.io'.
            username (str):
                Username for login.
            password (str):
                Password or access token for login.
        """
        if not password:
            raise ConfigurationError(
                "Registry credentials are not present. An access token must be provided."
            )
        LOG.info("Logging in to {0} with skopeo".format(host))

        cmd_login = "skopeo login -u {0} --password-stdin {1}".format(quote(username), quote(host))
        out, err = self._run_cmd(cmd_login, stdin=password, err_msg="Skopeo login failed")

        if "Login Succeeded" in out:
            LOG.info("Login successful")
        else:
            raise RuntimeError(
                "Login command didn't generate expected output. "
                "STDOUT: '{0}', STDERR: '{1}'".format(out, err)
            )

    def crane_login(self, host: str, username: str, password: Optional[str]) -> None:
        """
        Log in to a registry with crane.

        Args:
            host (str):
                Registry host, e.g. 'gcr.io'.
            username (str):
                Username for login.
            password (str):
                Password or access token for login.
        """
        if not password:
            raise ConfigurationError(
                "Registry credentials are not present. An access token must be provided."
            )
        LOG.info("Logging in to {0} with crane".format(host))
        cmd_login = "crane auth login {0} -u {1} --password-stdin".format(
            quote(host), quote(username)
        )
        self._run_cmd(cmd_login, stdin=password, err_msg="Crane login failed")

    def copy_archive(
        self,
        archive_path: str,
        dest_ref: str,
        insecure_policy: bool = False,
        oci_format: bool = False,
        dest_compress: bool = False,
    ) -> None:
        """
        Copy a local image archive to a registry using skopeo.

        Layers and config are taken from the metadata embedded in the archive.

        Args:
            archive_path (str):
                Path to a (possibly compressed) docker-archive.
            dest_ref (str):
                Reference to copy the image to.
            insecure_policy (bool):
                Whether to disable signature policy verification.
            oci_format (bool):
                Whether to convert the manifest to OCI format.
            dest_compress (bool):
                Whether to compress layers written to the destination.
        """
        cmd = "skopeo"
        if insecure_policy:
            cmd += " --insecure-policy"
        cmd += " copy"
        if oci_format:
            cmd += " --format=oci"
        if dest_compress:
            cmd += " --dest-compress"
        cmd += " {0} {1}".format(
            quote("docker-archive:{0}".format(archive_path)), quote("docker://{0}".format(dest_ref))
        )

        LOG.info("Copying archive '{0}' to destination '{1}'".format(archive_path, dest_ref))
        self._run_cmd(cmd, err_msg="Failed to copy {0} to {1}".format(archive_path, dest_ref))
        LOG.info("Destination image {0} has been pushed.".format(dest_ref))

    def create_manifest_list(self, refs: List[str], target: str) -> None:
        """
        Create a manifest list referencing the given images and push it under a tag.

        Args:
            refs ([str]):
                References of platform-specific images.
            target (str):
                Reference the manifest list will be published as.
        """
        cmd = "crane index append"
        for ref in refs:
            cmd += " -m {0}".format(quote(ref))
        cmd += " -t {0}".format(quote(target))

        LOG.info("Creating manifest list {0} from {1} image(s)".format(target, len(refs)))
        self._run_cmd(cmd, err_msg="Failed to create manifest list {0}".format(target))

    def nix_build(self, installable: str) -> str:
        """
        Build a Nix installable and return its output path.

        Args:
            installable (str):
                Store path or flake reference to build.
        Returns (str):
            Output path printed by the build. Empty if nothing was printed.
        """
        cmd = "nix build --no-link --print-out-paths {0}".format(quote(installable))
        out, _ = self._run_cmd(cmd, err_msg="Failed to build {0} with Nix".format(installable))
        return out.strip()

    def trivy_download_db(self, cache_dir: str) -> None:
        """Download only the trivy vulnerability database into a cache directory."""
        cmd = "trivy --cache-dir {0} image --download-db-only".format(quote(cache_dir))
        self._run_cmd(
            cmd,
            err_msg="Failed to download Trivy database",
            env={"TRIVY_CACHE_DIR": cache_dir},
        )

    def trivy_scan(
        self,
        image_archive: str,
        image_ref: str,
        output: str,
        report_format: str,
        options: Dict[str, Any],
        cache_dir: str,
        tolerate_err: bool = False,
    ) -> None:
        """
        Scan an image archive with trivy without updating its database.

        Args:
            image_archive (str):
                Path to the image archive.
            image_ref (str):
                Name under which the image is reported.
            output (str):
                Path of the report file.
            report_format (str):
                Trivy report format, e.g. 'json' or 'table'.
            options (dict):
                Values for 'severity', 'vuln_type', 'exit_code', 'timeout' and
                'ignore_unfixed'. Missing keys aren't passed to trivy.
            cache_dir (str):
                Writable cache directory holding the database.
            tolerate_err (bool):
                Whether to tolerate a failed scan.
        """
        cmd = "trivy image --input {0} --format {1}".format(
            quote(image_archive), quote(report_format)
        )
        for option, flag in (
            ("severity", "--severity"),
            ("vuln_type", "--vuln-type"),
            ("exit_code", "--exit-code"),
            ("timeout", "--timeout"),
        ):
            if options.get(option) is not None:
                cmd += " {0} {1}".format(flag, quote(str(options[option])))
        cmd += " --skip-db-update --skip-java-db-update"
        if options.get("ignore_unfixed"):
            cmd += " --ignore-unfixed"
        cmd += " --output {0} {1}".format(quote(output), quote(image_ref))

        self._run_cmd(
            cmd,
            err_msg="Trivy scan of {0} failed".format(image_ref),
            tolerate_err=tolerate_err,
            env={
                "TRIVY_CACHE_DIR": cache_dir,
                "TRIVY_SKIP_DB_UPDATE": "true",
                "TRIVY_SKIP_JAVA_DB_UPDATE": "true",
            },
        )

    def syft_scan(self, image_archive: str, sbom_format: str, output: str, cache_dir: str) -> None:
        """
        Generate an SBOM of an OCI archive with syft.

        Args:
            image_archive (str):
                Path to the OCI image archive.
            sbom_format (str):
                Syft output format, e.g. 'spdx-json'.
            output (str):
                Path of the SBOM file.
            cache_dir (str):
                Writable cache directory for syft.
        """
        cmd = "syft scan {0} --output {1}".format(
            quote("oci-archive:{0}".format(image_archive)),
            quote("{0}={1}".format(sbom_format, output)),
        )
        self._run_cmd(
            cmd,
            err_msg="Failed to generate {0} SBOM".format(sbom_format),
            env={"SYFT_CACHE_DIR": cache_dir},
        )


class LocalExecutor(Executor):
    """Run commands locally."""

    def __init__(self, params: Optional[Dict[str, Any]] = None) -> None:
        """
        Initialize.

        Args:
            params (dict):
                Custom parameters to be applied when running the shell commands.
        """
        self.params = dict(params or {})
        self.params.setdefault("universal_newlines", True)
        self.params.setdefault("stderr", subprocess.PIPE)
        self.params.setdefault("stdout", subprocess.PIPE)
        self.params.setdefault("stdin", subprocess.PIPE)

    def _run_cmd(
        self,
        cmd: str,
        err_msg: Optional[str] = None,
        tolerate_err: bool = False,
        stdin: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> Tuple[str, str]:
        """
        Run a command locally.

        Args:
            cmd (str):
                Shell command to be executed.
            err_msg (str):
                Error message written when the command fails.
            tolerate_err (bool):
                Whether to tolerate a failed command.
            stdin (str):
                String to send to standard input for a command.
            env (dict):
                Extra environment variables for the command.

        Returns (str, str):
            Tuple of stdout and stderr generated by the command.
        """
        err_msg = err_msg or "An error has occured when executing a command."

        params = self.params
        if env:
            params = dict(self.params, env=dict(os.environ, **env))

        p = subprocess.Popen(shlex.split(cmd), **params)
        out, err = p.communicate(input=stdin)

        if p.returncode != 0 and not tolerate_err:
            LOG.error("Command {0} failed with the following error:".format(cmd))
            for line in textwrap.wrap(err or "", 200):
                LOG.error(f"    {line}")
            raise RuntimeError(err_msg)

        return out, err
