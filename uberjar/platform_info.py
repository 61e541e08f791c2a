"""Build platform resolution.

The uber jar manifest records the Java specification version of the build
platform (``Build-Jdk-Spec``). This module is intentionally small and
"pragmatic":

- An explicit version always wins.
- Otherwise ``$JAVA_HOME/release`` is read, then ``java`` on ``PATH`` is asked.
- If neither is available the version is ``unknown``; the jar is still valid.
"""

import logging
import os
import pathlib
import re
import shutil
import subprocess


class PlatformResolutionError(ValueError):
    """Raised when an explicit platform version is not a valid version string."""


UNKNOWN_SPEC_VERSION: str = "unknown"

_SPEC_RE: re.Pattern[str] = re.compile(r"^(?P<maj>\d+)(\.(?P<min>\d+))?$")
_RELEASE_RE: re.Pattern[str] = re.compile(r'^JAVA_VERSION="?(?P<ver>[^"\s]+)"?\s*$', re.MULTILINE)
_PROPERTY_RE: re.Pattern[str] = re.compile(
    r"^\s*java\.specification\.version\s*=\s*(?P<ver>\S+)\s*$", re.MULTILINE
)


def resolve_build_jdk_spec(
    *,
    override: str | None = None,
    environ: dict[str, str] | None = None,
    logger: logging.Logger | None = None,
) -> str:
    """Resolve the ``Build-Jdk-Spec`` manifest value.

    :param override: Optional explicit version (``MAJOR`` or ``MAJOR.MINOR``).
    :param environ: Environment to read ``JAVA_HOME`` from (defaults to ``os.environ``).
    :param logger: Optional logger.
    :returns: Specification version, or ``unknown``.
    :raises PlatformResolutionError: If ``override`` is malformed.
    """

    if logger is None:
        logger = logging.getLogger("uberjar")

    if override is not None:
        if _SPEC_RE.match(override) is None:
            raise PlatformResolutionError(
                f"Invalid build JDK spec {override!r}; expected 'MAJOR' or 'MAJOR.MINOR'."
            )
        return override

    env: dict[str, str] = dict(os.environ) if environ is None else environ

    java_home: str | None = env.get("JAVA_HOME")
    if java_home:
        from_release: str | None = _spec_from_release_file(pathlib.Path(java_home) / "release")
        if from_release is not None:
            return from_release

    java_bin: str | None = shutil.which("java", path=env.get("PATH"))
    if java_bin is not None:
        from_java: str | None = _spec_from_java(java_bin, logger=logger)
        if from_java is not None:
            return from_java

    logger.warning("uberjar: could not determine the Java specification version; using 'unknown'")
    return UNKNOWN_SPEC_VERSION


def spec_version_from_java_version(java_version: str) -> str | None:
    """Reduce a full Java version to its specification version.

    ``1.8.0_292`` becomes ``1.8``; ``17.0.2`` becomes ``17``.

    :param java_version: Version string as found in a ``release`` file.
    :returns: Specification version, or ``None`` if unrecognized.
    """

    m = re.match(r"^(?P<maj>\d+)(\.(?P<min>\d+))?", java_version)
    if m is None:
        return None
    maj: int = int(m.group("maj"))
    if maj == 1 and m.group("min") is not None:
        return f"1.{int(m.group('min'))}"
    return str(maj)


def _spec_from_release_file(release: pathlib.Path) -> str | None:
    """Read ``JAVA_VERSION`` from a JDK ``release`` file.

    :param release: Path to ``$JAVA_HOME/release``.
    :returns: Specification version, or ``None``.
    """

    try:
        text: str = release.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    m = _RELEASE_RE.search(text)
    if m is None:
        return None
    return spec_version_from_java_version(m.group("ver"))


def _spec_from_java(java_bin: str, *, logger: logging.Logger) -> str | None:
    """Ask a ``java`` executable for ``java.specification.version``.

    :param java_bin: Path to the ``java`` launcher.
    :param logger: Logger for debug output.
    :returns: Specification version, or ``None`` if the launcher fails.
    """

    cmd: list[str] = [java_bin, "-XshowSettings:properties", "-version"]
    if logger.isEnabledFor(logging.DEBUG) is True:
        logger.debug(f"uberjar: running java: {' '.join(cmd)}")
    try:
        proc = subprocess.run(cmd, check=False, capture_output=True, text=True, timeout=30)
    except (OSError, subprocess.TimeoutExpired):
        return None
    if proc.returncode != 0:
        return None
    # The JVM prints settings on stderr.
    m = _PROPERTY_RE.search(proc.stderr + proc.stdout)
    if m is None:
        return None
    return m.group("ver")
