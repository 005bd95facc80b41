import argparse
import contextlib
import functools
import logging
import os
import re
import sys

from ..exceptions import PublishError

LOG = logging.getLogger("nixlib.oci")

PLATFORM_DELIMITER = "/"
SAFE_PLATFORM_DELIMITER = "-"
PLATFORM_REGEX = re.compile(r"^[a-z0-9_.]+/[a-z0-9_.]+(/[a-z0-9_.]+)?$")
TRUTHY_VALUES = ("1", "true", "yes")


class UsageErrorParser(argparse.ArgumentParser):
    """ArgumentParser reporting usage errors with exit code 1 instead of 2."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, "%s: error: %s\n" % (self.prog, message))


def setup_arg_parser(args, prog=None):
    """
    Set up ArgumentParser with the provided arguments.

    Args:
        args (dict)
            Dictionary of argument aliases and options to be consumed by ArgumentParser.
        prog (str)
            Program name shown in usage messages.
    Returns:
        (ArgumentParser) Configured instance of ArgumentParser.
    """
    parser = UsageErrorParser(prog=prog)
    arg_groups = {}
    for aliases, arg_data in args.items():
        holder = parser
        if "group" in arg_data:
            arg_groups.setdefault(arg_data["group"], parser.add_argument_group(arg_data["group"]))
            holder = arg_groups[arg_data["group"]]
        action = arg_data.get("action")
        if not action and arg_data["type"] == bool:
            action = "store_true"
        kwargs = {
            "help": arg_data.get("help"),
            "default": arg_data.get("default"),
        }
        # argparse rejects 'required' for positional arguments
        if aliases[0].startswith("-"):
            kwargs["required"] = arg_data.get("required", False)
        if action:
            kwargs["action"] = action
        else:
            kwargs["type"] = arg_data.get("type", str)
            kwargs["nargs"] = arg_data.get("count")

        holder.add_argument(*aliases, **kwargs)

    return parser


def add_args_env_variables(parsed_args, args):
    """
    Add argument values from environment variables.

    Boolean arguments are enabled when the variable holds a truthy value ("1", "true", "yes").

    Args:
        parsed_args ():
            Parsed arguments object.
        args (dict):
            Argument definition.
    Returns:
        Modified parsed arguments object.
    """
    for aliases, arg_data in args.items():
        named_aliases = [x.lstrip("-").replace("-", "_") for x in aliases if x.startswith("--")]
        if not named_aliases or not arg_data.get("env_variable"):
            continue
        named_alias = named_aliases[0]
        env_value = os.environ.get(arg_data["env_variable"])
        if getattr(parsed_args, named_alias) or not env_value:
            continue
        if arg_data["type"] == bool:
            setattr(parsed_args, named_alias, env_value.lower() in TRUTHY_VALUES)
        else:
            setattr(parsed_args, named_alias, env_value)
    return parsed_args


def validate_platform(platform):
    """
    Check that a platform identifier has the form '<os>/<arch>[/<variant>]'.

    Args:
        platform (str):
            Platform identifier, e.g. 'linux/amd64'.
    Raises:
        ValueError: If the identifier is malformed.
    """
    if not isinstance(platform, str) or not PLATFORM_REGEX.match(platform):
        raise ValueError(
            "Platform identifier should have the format '<os>/<arch>', got '{0}'".format(platform)
        )


def get_safe_platform(platform):
    """
    Transform a platform identifier to a form usable in file names and tags.

    Expected input format: <os>/<arch>
    Generated output format: <os>-<arch>

    Args:
        platform (str):
            Platform identifier.
    Returns:
        Filesystem-safe platform name.
    """
    return platform.replace(PLATFORM_DELIMITER, SAFE_PLATFORM_DELIMITER)


def get_staged_image_path(platform):
    """Return path of a platform's staged archive, relative to the manifest directory."""
    return "images/{0}.tar.gz".format(get_safe_platform(platform))


def get_platform_reference(target, platform):
    """
    Construct a platform-specific image reference.

    Args:
        target (str):
            Fully qualified target reference, e.g. 'gcr.io/project/app:v1'.
        platform (str):
            Platform identifier.
    Returns:
        Reference of the form '<target>-<os>-<arch>'.
    """
    return "{0}-{1}".format(target, get_safe_platform(platform))


def get_registry_host(reference):
    """Return the registry host part of an image reference."""
    return reference.split("/", 1)[0]


def task_status(event):
    """Helper function. Expand as necessary."""  # noqa: D401
    return dict(event={"type": event})


def log_step(step_name):
    """
    Log status for methods which constitute an entire task step.

    Args:
        step_name (str):
            Name of the task step, e.g., "Push platform images".
    """
    event_name = step_name.lower().replace(" ", "-")

    def decorate(fn):
        @functools.wraps(fn)
        def fn_wrapper(*args, **kwargs):
            try:
                LOG.info("%s: Started", step_name, extra=task_status("%s-start" % event_name))
                ret = fn(*args, **kwargs)
                LOG.info("%s: Finished", step_name, extra=task_status("%s-end" % event_name))
                return ret
            except Exception:
                LOG.error("%s: Failed", step_name, extra=task_status("%s-error" % event_name))
                raise

        return fn_wrapper

    return decorate


@contextlib.contextmanager
def exit_on_publish_error():
    """
    Turn publishing errors into a logged message and the process exit code of their category.

    Exit codes: 1 usage or configuration, 2 build or artifact, 3 upload, 4 manifest list.
    """
    try:
        yield
    except PublishError as e:
        LOG.error("ERROR: %s", e)
        sys.exit(e.exit_code)
