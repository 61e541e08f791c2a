"""Command line interface for uberjar."""

import argparse
import logging
import pathlib
import sys

from uberjar.builder import BuildConfig, UberResult, resolve_build_config, uber
from uberjar.edn import EdnError
from uberjar.explode import AssemblyError, Conflict
from uberjar.libs import LibraryGraph, LibraryGraphError, load_basis
from uberjar.manifest import ManifestError
from uberjar.platform_info import PlatformResolutionError


def _configure_logging(*, verbose: int, quiet: int) -> logging.Logger:
    """Configure the uberjar logger.

    :param verbose: Verbosity count (0+).
    :param quiet: Quietness count (0+).
    :returns: Configured logger.
    """

    level: int = logging.INFO
    if quiet >= 2:
        level = logging.ERROR
    elif quiet >= 1:
        level = logging.WARNING
    elif verbose >= 1:
        level = logging.DEBUG

    logger: logging.Logger = logging.getLogger("uberjar")
    logger.setLevel(level)
    logger.propagate = False

    handler: logging.Handler = logging.StreamHandler(stream=sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger.handlers.clear()
    logger.addHandler(handler)
    return logger


def _parse_manifest_attr(text: str) -> tuple[str, str]:
    """Parse a ``NAME=VALUE`` manifest argument.

    :param text: Raw argument.
    :returns: ``(name, value)``.
    :raises argparse.ArgumentTypeError: If there is no ``=``.
    """

    name, sep, value = text.partition("=")
    if len(sep) == 0 or len(name) == 0:
        raise argparse.ArgumentTypeError(f"Expected NAME=VALUE, got {text!r}")
    return name, value


def _conflict_reporter(logger: logging.Logger):
    def report(conflict: Conflict) -> None:
        logger.warning(
            f"uberjar: conflict on {conflict.relpath} from {conflict.source} ({conflict.resolution})"
        )

    return report


def main(argv: list[str] | None = None) -> int:
    """Run the uberjar CLI.

    :param argv: Optional argv list (excluding program name).
    :returns: Exit code.
    """

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        prog="uberjar",
        description="Merge resolved libraries and compiled classes into one executable jar.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_build = subparsers.add_parser(
        "build",
        help="Build an uber jar.",
    )
    p_build.add_argument(
        "--basis",
        type=pathlib.Path,
        required=True,
        help="Resolved library map (.edn or .json) with a 'libs' key.",
    )
    p_build.add_argument(
        "-o",
        "--uber-file",
        type=pathlib.Path,
        required=True,
        help="Output jar path (relative paths resolve against --project-root).",
    )
    p_build.add_argument(
        "--class-dir",
        type=pathlib.Path,
        default=None,
        help="Compiled classes directory, merged last (default: target/classes).",
    )
    p_build.add_argument(
        "--project-root",
        type=pathlib.Path,
        default=None,
        help="Directory that relative paths resolve against (default: cwd).",
    )
    p_build.add_argument(
        "--main",
        type=str,
        default=None,
        help="Main namespace, e.g. my-app.core (stored as Main-Class my_app.core).",
    )
    p_build.add_argument(
        "--manifest",
        type=_parse_manifest_attr,
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Extra manifest attribute; overrides built-in attributes. Repeatable.",
    )
    p_build.add_argument(
        "--compresslevel",
        type=int,
        default=None,
        help="Deflate compression level 0-9 (default: 6).",
    )
    p_build.add_argument(
        "--build-jdk-spec",
        type=str,
        default=None,
        help="Override the Build-Jdk-Spec manifest value (default: detect from JAVA_HOME/java).",
    )
    p_build.add_argument(
        "--report-conflicts",
        action="store_true",
        help="Log a warning for every path provided by more than one source.",
    )
    p_build.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable verbose logging.",
    )
    p_build.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=0,
        help="Reduce logging. Pass multiple times to suppress more output.",
    )

    ns = parser.parse_args(argv)
    if ns.command == "build":
        logger: logging.Logger = _configure_logging(verbose=ns.verbose, quiet=ns.quiet)
        try:
            libs: LibraryGraph = load_basis(ns.basis)
            config: BuildConfig = resolve_build_config(
                {
                    "project_root": ns.project_root,
                    "class_dir": ns.class_dir,
                    "uber_file": ns.uber_file,
                    "main": ns.main,
                    "manifest": dict(ns.manifest),
                    "compresslevel": ns.compresslevel,
                    "build_jdk_spec": ns.build_jdk_spec,
                }
            )
            result: UberResult = uber(
                libs=libs,
                config=config,
                observer=_conflict_reporter(logger) if ns.report_conflicts is True else None,
                logger=logger,
            )
        except (
            AssemblyError,
            EdnError,
            LibraryGraphError,
            ManifestError,
            PlatformResolutionError,
            OSError,
        ) as e:
            logger.error(f"uberjar: {e}")
            return 1

        if logger.isEnabledFor(logging.DEBUG) is True:
            logger.debug(f"uberjar: manifest={result.manifest}")
        return 0

    raise AssertionError(f"Unhandled command: {ns.command}")
