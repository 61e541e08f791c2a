"""Uber jar builder.

This module implements the "uber" task:

- It prunes optional libraries from the resolved library graph.
- It explodes every library path, then the compiled classes directory, into
  one temporary working directory (see :mod:`uberjar.explode`).
- It writes the working directory and a synthesized manifest to a single jar.

The working directory is always removed, whether the build succeeds or fails.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
import logging
import os
import pathlib
import tempfile
import time
import zipfile

from uberjar.explode import AssemblyError, ConflictObserver, ExplodeStats, explode
from uberjar.libs import LibraryGraph, remove_optional
from uberjar.manifest import MANIFEST_PATH, build_manifest, render_manifest
from uberjar.platform_info import resolve_build_jdk_spec

__all__: list[str] = [
    "AssemblyError",
    "BuildConfig",
    "DEFAULT_CONFIG",
    "UberResult",
    "resolve_build_config",
    "resolve_path",
    "uber",
]


@dataclass(frozen=True, slots=True)
class BuildConfig:
    """Build parameters for one ``uber`` call.

    :ivar project_root: Directory that relative paths resolve against.
    :ivar class_dir: Compiled classes directory, merged last.
    :ivar uber_file: Destination jar path.
    :ivar main: Optional main namespace for ``Main-Class``.
    :ivar manifest: Extra manifest attributes (override everything else).
    :ivar compresslevel: Deflate compression level (0-9).
    :ivar build_jdk_spec: Optional explicit ``Build-Jdk-Spec`` value.
    """

    project_root: pathlib.Path = pathlib.Path(".")
    class_dir: pathlib.Path = pathlib.Path("target/classes")
    uber_file: pathlib.Path | None = None
    main: str | None = None
    manifest: Mapping[object, object] = field(default_factory=dict)
    compresslevel: int = 6
    build_jdk_spec: str | None = None


DEFAULT_CONFIG: BuildConfig = BuildConfig()

_PATH_FIELDS: frozenset[str] = frozenset({"project_root", "class_dir", "uber_file"})


@dataclass(frozen=True, slots=True)
class UberResult:
    """Outcome of a successful ``uber`` call.

    :ivar uber_file: Written jar path.
    :ivar sources: Number of library/class paths merged.
    :ivar files_written: Number of file entries in the jar (manifest excluded).
    :ivar manifest: Manifest attributes written to the jar.
    """

    uber_file: pathlib.Path
    sources: int
    files_written: int
    manifest: dict[str, str]


def resolve_build_config(
    overrides: Mapping[str, object] | None = None,
    *,
    defaults: BuildConfig = DEFAULT_CONFIG,
) -> BuildConfig:
    """Merge caller overrides into the build defaults.

    :param overrides: ``field name -> value``; ``None`` values are ignored.
    :param defaults: Base configuration.
    :returns: Resolved configuration.
    :raises AssemblyError: On unknown keys, a missing ``uber_file`` or an
        invalid compression level.
    """

    known: set[str] = {f.name for f in fields(BuildConfig)}
    changes: dict[str, object] = {}
    for key, value in (overrides or {}).items():
        if key not in known:
            raise AssemblyError(f"Unknown build parameter: {key!r}")
        if value is None:
            continue
        if key in _PATH_FIELDS:
            value = pathlib.Path(value)
        changes[key] = value

    config: BuildConfig = replace(defaults, **changes)
    if config.uber_file is None:
        raise AssemblyError("Missing required build parameter: uber_file")
    _validate_compresslevel(config.compresslevel)
    return config


def resolve_path(path: pathlib.Path, project_root: pathlib.Path) -> pathlib.Path:
    """Resolve ``path`` against the project root unless it is absolute.

    :param path: Absolute or project-relative path.
    :param project_root: Project root directory.
    :returns: Absolute path.
    """

    if path.is_absolute() is True:
        return path
    return (project_root / path).absolute()


def _validate_compresslevel(compresslevel: int) -> None:
    """Validate a zip compression level.

    :param compresslevel: Compression level (0-9).
    :raises AssemblyError: If the level is out of range.
    """

    if compresslevel < 0 or compresslevel > 9:
        raise AssemblyError(f"Invalid compresslevel={compresslevel}; expected 0-9.")


def _source_paths(
    *,
    libs: LibraryGraph,
    class_dir: pathlib.Path,
    project_root: pathlib.Path,
    logger: logging.Logger,
) -> list[pathlib.Path]:
    """Order the paths to explode: kept library paths, then the class dir.

    :param libs: Full library graph.
    :param class_dir: Compiled classes directory.
    :param project_root: Project root for relative library paths.
    :param logger: Logger for progress output.
    :returns: Absolute source paths.
    """

    kept: LibraryGraph = remove_optional(libs, logger=logger)
    if len(kept) != len(libs):
        logger.info(f"uberjar: dropped {len(libs) - len(kept)} optional libs")

    paths: list[pathlib.Path] = [resolve_path(p, project_root) for p in kept.content_paths()]
    paths.append(resolve_path(class_dir, project_root))
    return paths


def _write_uber_jar(
    *,
    working_dir: pathlib.Path,
    out_path: pathlib.Path,
    manifest_bytes: bytes,
    compresslevel: int,
) -> int:
    """Write the manifest and the working directory to a jar.

    The manifest is the first entry. Directories and files follow in sorted
    order, keeping their modification times.

    :param working_dir: Merged uber working directory.
    :param out_path: Destination jar path.
    :param manifest_bytes: Rendered manifest.
    :param compresslevel: Deflate compression level.
    :returns: Number of file entries written (manifest excluded).
    """

    files_written: int = 0
    with zipfile.ZipFile(
        out_path,
        "w",
        compression=zipfile.ZIP_DEFLATED,
        compresslevel=compresslevel,
        strict_timestamps=False,
    ) as zf:
        zf.writestr("META-INF/", b"")
        zf.writestr(MANIFEST_PATH, manifest_bytes)

        for p in sorted(working_dir.rglob("*")):
            arcname: str = str(p.relative_to(working_dir)).replace(os.sep, "/")
            if arcname == "META-INF" or arcname == MANIFEST_PATH:
                continue
            if p.is_dir() is True:
                info: zipfile.ZipInfo = zipfile.ZipInfo.from_file(
                    p, arcname=arcname, strict_timestamps=False
                )
                zf.writestr(info, b"")
                continue
            zf.write(p, arcname=arcname)
            files_written += 1
    return files_written


def uber(
    *,
    libs: LibraryGraph,
    config: BuildConfig,
    observer: ConflictObserver | None = None,
    logger: logging.Logger | None = None,
) -> UberResult:
    """Build an uber jar.

    :param libs: Resolved library graph (optional libs are pruned here).
    :param config: Resolved build configuration (see :func:`resolve_build_config`).
    :param observer: Optional callback notified of every merge conflict.
    :param logger: Optional logger for progress output.
    :returns: Build result.
    :raises AssemblyError: If a source cannot be read or the jar cannot be written.
    :raises uberjar.edn.EdnError: If a reader descriptor cannot be merged.
    :raises uberjar.manifest.ManifestError: If a manifest attribute is invalid; the
        destination is left untouched.
    """

    if logger is None:
        logger = logging.getLogger("uberjar")

    if config.uber_file is None:
        raise AssemblyError("Missing required build parameter: uber_file")
    _validate_compresslevel(config.compresslevel)

    project_root: pathlib.Path = config.project_root.absolute()
    uber_file: pathlib.Path = resolve_path(config.uber_file, project_root)

    t_total0: float = time.perf_counter()
    logger.info(f"uberjar: uber_file={uber_file}")

    with tempfile.TemporaryDirectory(prefix="uber") as td:
        working_dir: pathlib.Path = pathlib.Path(td)
        if logger.isEnabledFor(logging.DEBUG) is True:
            logger.debug(f"uberjar: working_dir={working_dir}")

        sources: list[pathlib.Path] = _source_paths(
            libs=libs,
            class_dir=config.class_dir,
            project_root=project_root,
            logger=logger,
        )
        uber_file.parent.mkdir(parents=True, exist_ok=True)

        t_explode0: float = time.perf_counter()
        for source in sources:
            stats: ExplodeStats = explode(
                source=source,
                working_dir=working_dir,
                observer=observer,
                logger=logger,
            )
            if logger.isEnabledFor(logging.DEBUG) is True:
                logger.debug(
                    f"uberjar: exploded {source} (written={stats.files_written} "
                    f"merged={stats.files_merged} kept_existing={stats.files_kept_existing} "
                    f"excluded={stats.files_excluded})"
                )
        t_explode1: float = time.perf_counter()
        logger.info(f"uberjar: merged {len(sources)} sources in {t_explode1 - t_explode0:.2f}s")

        build_jdk_spec: str = resolve_build_jdk_spec(override=config.build_jdk_spec, logger=logger)
        manifest: dict[str, str] = build_manifest(
            working_dir=working_dir,
            build_jdk_spec=build_jdk_spec,
            main=config.main,
            overrides=config.manifest,
        )
        # Validated before the destination is opened.
        manifest_bytes: bytes = render_manifest(manifest)

        try:
            files_written: int = _write_uber_jar(
                working_dir=working_dir,
                out_path=uber_file,
                manifest_bytes=manifest_bytes,
                compresslevel=config.compresslevel,
            )
        except OSError as e:
            raise AssemblyError(f"Failed to write {uber_file}: {e}") from e

    out_size: int = uber_file.stat().st_size
    t_total1: float = time.perf_counter()
    logger.info(
        f"uberjar: wrote {uber_file} ({files_written} files, {out_size / (1024 * 1024):.1f} MiB) "
        f"in {t_total1 - t_total0:.2f}s"
    )
    return UberResult(
        uber_file=uber_file,
        sources=len(sources),
        files_written=files_written,
        manifest=manifest,
    )
