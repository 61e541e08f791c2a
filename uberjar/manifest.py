"""Uber jar manifest synthesis and serialization."""

from collections.abc import Mapping
import pathlib
import re

MANIFEST_PATH: str = "META-INF/MANIFEST.MF"

CREATED_BY: str = "uberjar"

_MAX_LINE_BYTES: int = 72

_NAME_RE: re.Pattern[str] = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,69}$")


class ManifestError(ValueError):
    """Raised when a manifest attribute cannot be written."""


def normalize_main_class(main: object) -> str:
    """Convert a namespace-style main (``my-app.core``) to a class name (``my_app.core``).

    :param main: Main namespace or class identifier.
    :returns: Identifier with ``-`` replaced by ``_``.
    """

    return str(main).replace("-", "_")


def is_multi_release(working_dir: pathlib.Path) -> bool:
    """Check if the merged tree carries versioned (multi-release) classes.

    :param working_dir: Uber working directory.
    :returns: ``True`` if ``META-INF/versions`` is a directory.
    """

    return (working_dir / "META-INF" / "versions").is_dir()


def attribute_text(value: object) -> str:
    """Coerce an override value to manifest text.

    Booleans print lower-case and ``None`` prints as an empty string.
    """

    if value is True:
        return "true"
    if value is False:
        return "false"
    if value is None:
        return ""
    return str(value)


def build_manifest(
    *,
    working_dir: pathlib.Path,
    build_jdk_spec: str,
    main: object | None = None,
    overrides: Mapping[object, object] | None = None,
) -> dict[str, str]:
    """Build the ordered attribute set of the uber jar manifest.

    Built-in attributes come first, then ``Main-Class``/``Multi-Release`` when
    they apply, then caller overrides, which replace any earlier value.

    :param working_dir: Fully merged uber working directory.
    :param build_jdk_spec: Value for ``Build-Jdk-Spec``.
    :param main: Optional main namespace; stored as ``Main-Class``.
    :param overrides: Optional ``name -> value`` attributes (coerced to text).
    :returns: Attribute mapping in write order.
    """

    attrs: dict[str, str] = {
        "Manifest-Version": "1.0",
        "Created-By": CREATED_BY,
        "Build-Jdk-Spec": build_jdk_spec,
    }
    if main is not None:
        attrs["Main-Class"] = normalize_main_class(main)
    if is_multi_release(working_dir) is True:
        attrs["Multi-Release"] = "true"

    if overrides is not None:
        for k, v in overrides.items():
            attrs[attribute_text(k)] = attribute_text(v)
    return attrs


def _wrap_line(line: str) -> list[bytes]:
    """Split one ``name: value`` line into 72-byte manifest lines.

    Continuation lines start with a single space. Multi-byte characters are
    never split.
    """

    out: list[bytes] = []
    current: bytearray = bytearray()
    for ch in line:
        encoded: bytes = ch.encode("utf-8")
        if len(current) + len(encoded) > _MAX_LINE_BYTES:
            out.append(bytes(current))
            current = bytearray(b" ")
        current.extend(encoded)
    out.append(bytes(current))
    return out


def render_manifest(attrs: Mapping[str, str]) -> bytes:
    """Serialize manifest attributes in the JAR manifest format.

    ``Manifest-Version`` is written first; the rest keep their order.

    :param attrs: Attribute mapping.
    :returns: Manifest bytes (CRLF line endings, trailing blank line).
    :raises ManifestError: On an invalid name or a value containing line breaks.
    """

    ordered: list[tuple[str, str]] = []
    if "Manifest-Version" in attrs:
        ordered.append(("Manifest-Version", attrs["Manifest-Version"]))
    for name, value in attrs.items():
        if name != "Manifest-Version":
            ordered.append((name, value))

    buf: bytearray = bytearray()
    for name, value in ordered:
        if _NAME_RE.match(name) is None:
            raise ManifestError(f"Invalid manifest attribute name: {name!r}")
        if any(c in value for c in ("\r", "\n", "\0")):
            raise ManifestError(f"Manifest attribute {name} contains a line break or NUL")
        for chunk in _wrap_line(f"{name}: {value}"):
            buf.extend(chunk)
            buf.extend(b"\r\n")
    buf.extend(b"\r\n")
    return bytes(buf)


def parse_manifest(data: bytes) -> dict[str, str]:
    """Parse the main section of a manifest (continuation lines joined).

    :param data: Manifest bytes.
    :returns: Attribute mapping in file order.
    :raises ManifestError: On a line without a ``name: value`` separator.
    """

    attrs: dict[str, str] = {}
    last: str | None = None
    for raw in data.decode("utf-8").replace("\r\n", "\n").split("\n"):
        if len(raw) == 0:
            break
        if raw.startswith(" ") is True and last is not None:
            attrs[last] += raw[1:]
            continue
        name, sep, value = raw.partition(": ")
        if len(sep) == 0:
            raise ManifestError(f"Malformed manifest line: {raw!r}")
        attrs[name] = value
        last = name
    return attrs
