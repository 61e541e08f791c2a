import pathlib
import zipfile

import pytest


@pytest.fixture
def make_jar():
    """Return a helper that writes a jar from ``{name: content}``."""

    def _make(
        path: pathlib.Path,
        entries: dict[str, bytes | str],
        *,
        date_time: tuple[int, int, int, int, int, int] = (2020, 1, 2, 3, 4, 6),
    ) -> pathlib.Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for name, content in entries.items():
                info: zipfile.ZipInfo = zipfile.ZipInfo(name, date_time=date_time)
                data: bytes = content.encode("utf-8") if isinstance(content, str) else content
                zf.writestr(info, data)
        return path

    return _make


@pytest.fixture
def make_tree():
    """Return a helper that writes a directory tree from ``{relpath: content}``."""

    def _make(root: pathlib.Path, files: dict[str, str]) -> pathlib.Path:
        root.mkdir(parents=True, exist_ok=True)
        for rel, content in files.items():
            p: pathlib.Path = root / rel
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text(content, encoding="utf-8")
        return root

    return _make


@pytest.fixture
def isolated_tmp(tmp_path, monkeypatch) -> pathlib.Path:
    """Point :mod:`tempfile` at an empty directory so leftovers are visible."""

    import tempfile

    root: pathlib.Path = tmp_path / "system-tmp"
    root.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(root))
    return root
