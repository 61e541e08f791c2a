"""Source extraction into the uber working directory.

Every library path (a ``.jar`` or an exploded directory) and the compiled
classes directory is "exploded" into one shared working directory. Entries are
streamed one at a time and placed according to these rules:

- Signing artifacts, nested manifests and ``project.clj`` are dropped.
- The first source to provide a path wins; later copies are discarded.
- ``data_readers.clj``/``data_readers.cljc`` are the exception: later copies
  are merged into the existing file, key by key.
"""

from collections.abc import Callable, Iterator
from dataclasses import dataclass
import contextlib
import logging
import os
import pathlib
import re
import time
from typing import BinaryIO
import zipfile

from uberjar import edn


class AssemblyError(RuntimeError):
    """Raised when a source cannot be read or the uber jar cannot be assembled."""


@dataclass(frozen=True, slots=True)
class Conflict:
    """A path provided by more than one source.

    :ivar relpath: Entry path relative to the working directory (POSIX).
    :ivar source: Source whose copy arrived second.
    :ivar resolution: ``merged`` or ``kept-existing``.
    """

    relpath: str
    source: pathlib.Path
    resolution: str


ConflictObserver = Callable[[Conflict], None]


@dataclass(frozen=True, slots=True)
class ExplodeStats:
    """Counts collected while exploding one source.

    :ivar files_written: Entries copied to a fresh path.
    :ivar files_merged: Reader descriptors merged into an existing file.
    :ivar files_kept_existing: Conflicting entries discarded.
    :ivar files_excluded: Entries dropped by the exclusion rules.
    """

    files_written: int
    files_merged: int
    files_kept_existing: int
    files_excluded: int


_UBER_EXCLUSIONS: tuple[re.Pattern[str], ...] = (
    re.compile(r"project.clj"),
    re.compile(r"META-INF/.*\.(?:SF|RSA|DSA|MF)"),
)

_MERGEABLE_NAMES: frozenset[str] = frozenset({"data_readers.clj", "data_readers.cljc"})

_ARCHIVE_SUFFIXES: frozenset[str] = frozenset({".jar", ".zip"})

_BUFFER_SIZE: int = 64 * 1024


def exclude_from_uber(relpath: str) -> bool:
    """Check if an entry path must never reach the uber jar.

    :param relpath: Entry path (POSIX, relative).
    :returns: ``True`` if any exclusion pattern matches the whole path.
    """

    for pattern in _UBER_EXCLUSIONS:
        if pattern.fullmatch(relpath) is not None:
            return True
    return False


def is_mergeable_descriptor(relpath: str) -> bool:
    """Check if a conflicting entry is a reader descriptor to merge.

    :param relpath: Entry path (POSIX, relative).
    :returns: ``True`` for ``data_readers.clj`` and ``data_readers.cljc``.
    """

    return pathlib.PurePosixPath(relpath).name in _MERGEABLE_NAMES


def is_archive(path: pathlib.Path) -> bool:
    """Check if a source path should be read as a zip/jar archive.

    :param path: Source path.
    :returns: ``True`` for regular files with a jar/zip suffix or zip content.
    """

    if path.is_file() is False:
        return False
    if path.suffix.lower() in _ARCHIVE_SUFFIXES:
        return True
    return zipfile.is_zipfile(path)


@dataclass(frozen=True, slots=True)
class _Entry:
    """One file or directory read from a source."""

    relpath: str
    is_dir: bool
    mtime: float | None
    open: Callable[[], contextlib.AbstractContextManager[BinaryIO]]


def _copy_stream(src: BinaryIO, dst: BinaryIO, buffer: bytearray) -> int:
    """Copy ``src`` to ``dst`` through a caller-owned buffer.

    :param src: Readable binary stream, consumed to EOF.
    :param dst: Writable binary stream.
    :param buffer: Reusable buffer; its size bounds each read.
    :returns: Number of bytes copied.
    """

    view: memoryview = memoryview(buffer)
    total: int = 0
    while True:
        n: int | None = src.readinto(buffer)
        if not n:
            break
        dst.write(view[:n])
        total += n
    return total


def _check_relpath(relpath: str, *, source: pathlib.Path) -> None:
    """Reject entry names that would escape the working directory.

    :raises AssemblyError: For absolute paths or ``..`` segments.
    """

    pure: pathlib.PurePosixPath = pathlib.PurePosixPath(relpath)
    if pure.is_absolute() is True or ".." in pure.parts:
        raise AssemblyError(f"Unsafe entry path {relpath!r} in {source}")


def _iter_archive_entries(zf: zipfile.ZipFile, *, source: pathlib.Path) -> Iterator[_Entry]:
    """Yield entries of an open archive in stored order."""

    for info in zf.infolist():
        relpath: str = info.filename.rstrip("/")
        if len(relpath) == 0:
            continue
        _check_relpath(relpath, source=source)
        mtime: float = time.mktime(info.date_time + (0, 0, -1))
        yield _Entry(
            relpath=relpath,
            is_dir=info.is_dir(),
            mtime=mtime,
            open=lambda info=info: zf.open(info, "r"),
        )


def _raise_walk_error(e: OSError) -> None:
    raise AssemblyError(f"Cannot read {e.filename}: {e}") from e


def _iter_dir_entries(root: pathlib.Path) -> Iterator[_Entry]:
    """Yield every directory and file below ``root`` in sorted order.

    :raises AssemblyError: If any directory below ``root`` cannot be listed.
    """

    for root_str, dirs, files in os.walk(root, topdown=True, onerror=_raise_walk_error):
        dirs.sort()
        root_path: pathlib.Path = pathlib.Path(root_str)
        for d in dirs:
            yield _Entry(
                relpath=(root_path / d).relative_to(root).as_posix(),
                is_dir=True,
                mtime=None,
                open=contextlib.nullcontext,
            )
        for name in sorted(files):
            src_path: pathlib.Path = root_path / name
            yield _Entry(
                relpath=src_path.relative_to(root).as_posix(),
                is_dir=False,
                mtime=src_path.stat().st_mtime,
                open=lambda src_path=src_path: open(src_path, "rb"),
            )


def _ensure_dir(path: pathlib.Path) -> bool:
    """Create ``path`` and its parents.

    :returns: ``False`` if a file already sits at ``path`` or one of its parents.
    """

    try:
        path.mkdir(parents=True, exist_ok=True)
    except (FileExistsError, NotADirectoryError):
        return False
    return True


class _Exploder:
    """Places the entries of one source into the working directory."""

    def __init__(
        self,
        *,
        source: pathlib.Path,
        working_dir: pathlib.Path,
        observer: ConflictObserver | None,
        logger: logging.Logger,
    ) -> None:
        self.source = source
        self.working_dir = working_dir
        self.observer = observer
        self.logger = logger
        self.buffer = bytearray(_BUFFER_SIZE)
        self.written = 0
        self.merged = 0
        self.kept_existing = 0
        self.excluded = 0

    def place(self, entry: _Entry) -> None:
        out_path: pathlib.Path = self.working_dir / entry.relpath
        if entry.is_dir is True:
            if _ensure_dir(out_path) is False and self.logger.isEnabledFor(logging.DEBUG) is True:
                self.logger.debug(f"uberjar: {entry.relpath} from {self.source} is already a file")
            return

        parent_ok: bool = _ensure_dir(out_path.parent)
        if exclude_from_uber(entry.relpath) is True:
            self.excluded += 1
            if self.logger.isEnabledFor(logging.DEBUG) is True:
                self.logger.debug(f"uberjar: excluded {entry.relpath} from {self.source}")
            return

        # A file placed earlier occupies part of the path: first writer wins.
        if parent_ok is False:
            self.kept_existing += 1
            self._notify(
                Conflict(relpath=entry.relpath, source=self.source, resolution="kept-existing")
            )
            return

        if out_path.exists() is False:
            with entry.open() as src, open(out_path, "wb") as dst:
                _copy_stream(src, dst, self.buffer)
            if entry.mtime is not None:
                os.utime(out_path, (entry.mtime, entry.mtime))
            self.written += 1
            return

        if is_mergeable_descriptor(entry.relpath) is True:
            self._merge_descriptor(entry, out_path)
            self.merged += 1
            self._notify(Conflict(relpath=entry.relpath, source=self.source, resolution="merged"))
            return

        self.kept_existing += 1
        self._notify(
            Conflict(relpath=entry.relpath, source=self.source, resolution="kept-existing")
        )

    def _merge_descriptor(self, entry: _Entry, out_path: pathlib.Path) -> None:
        existing: object = edn.read_string(out_path.read_text(encoding="utf-8"))
        with entry.open() as src:
            chunks: list[bytes] = []
            view: memoryview = memoryview(self.buffer)
            while True:
                n: int | None = src.readinto(self.buffer)
                if not n:
                    break
                chunks.append(bytes(view[:n]))
        incoming: object = edn.read_string(b"".join(chunks).decode("utf-8"))
        merged: dict = edn.merge_maps(existing, incoming)
        out_path.write_text(edn.write_string(merged) + "\n", encoding="utf-8")
        if self.logger.isEnabledFor(logging.DEBUG) is True:
            self.logger.debug(f"uberjar: merged {entry.relpath} from {self.source}")

    def _notify(self, conflict: Conflict) -> None:
        if self.observer is not None:
            self.observer(conflict)

    def stats(self) -> ExplodeStats:
        return ExplodeStats(
            files_written=self.written,
            files_merged=self.merged,
            files_kept_existing=self.kept_existing,
            files_excluded=self.excluded,
        )


def explode(
    *,
    source: pathlib.Path,
    working_dir: pathlib.Path,
    observer: ConflictObserver | None = None,
    logger: logging.Logger | None = None,
) -> ExplodeStats:
    """Merge one source (archive or directory) into the working directory.

    :param source: Library jar/zip or directory to merge.
    :param working_dir: Shared uber working directory.
    :param observer: Optional callback notified of every conflict.
    :param logger: Optional logger for debug output.
    :returns: Extraction counts for this source.
    :raises AssemblyError: If the source is missing, unsupported or corrupt.
    :raises uberjar.edn.EdnError: If a reader descriptor cannot be merged.
    """

    if logger is None:
        logger = logging.getLogger("uberjar")

    exploder: _Exploder = _Exploder(
        source=source,
        working_dir=working_dir,
        observer=observer,
        logger=logger,
    )

    if source.is_dir() is True:
        for entry in _iter_dir_entries(source):
            exploder.place(entry)
        return exploder.stats()

    if source.exists() is False:
        raise AssemblyError(f"Source path does not exist: {source}")
    if is_archive(source) is False:
        raise AssemblyError(f"Unsupported source (expected directory or jar): {source}")

    try:
        with zipfile.ZipFile(source, "r") as zf:
            for entry in _iter_archive_entries(zf, source=source):
                exploder.place(entry)
    except zipfile.BadZipFile as e:
        raise AssemblyError(f"Bad archive: {source}") from e

    return exploder.stats()
