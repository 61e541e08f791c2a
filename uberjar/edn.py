"""EDN reading and printing.

Reader-descriptor files (``data_readers.clj``/``data_readers.cljc``) and basis
files are EDN. This module covers the subset of EDN those files use in
practice, plus the rest of the scalar and collection syntax so that arbitrary
descriptor content round-trips:

- Parsing is a ``lark`` LALR grammar. Tokens carry explicit priorities so that
  numbers win over symbols (``-1`` is a number, ``-`` and ``-foo`` are symbols).
- Printing mirrors ``clojure.pprint`` for maps: ``{k v, k v}`` on one line when
  it fits, otherwise one entry per line.
"""

from dataclasses import dataclass
import re

from lark import Lark, Token, Transformer, v_args
from lark.exceptions import UnexpectedInput, VisitError


class EdnError(ValueError):
    """Raised when EDN text cannot be read or a value cannot be printed."""


@dataclass(frozen=True, slots=True)
class Symbol:
    """An EDN symbol such as ``my.ns/reader-fn``.

    :ivar name: Full symbol text, including any namespace prefix.
    """

    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True, slots=True)
class Keyword:
    """An EDN keyword. ``name`` excludes the leading colon.

    :ivar name: Keyword text without the ``:`` prefix.
    """

    name: str

    def __str__(self) -> str:
        return f":{self.name}"


@dataclass(frozen=True, slots=True)
class Char:
    """An EDN character literal.

    :ivar value: Single-character string.
    """

    value: str


@dataclass(frozen=True, slots=True)
class TaggedLiteral:
    """An EDN tagged element (``#inst "..."``) kept unevaluated.

    :ivar tag: Tag symbol text without the ``#``.
    :ivar value: Tagged value.
    """

    tag: str
    value: object


class EdnList(tuple):
    """An EDN list ``(a b c)``; plain tuples are vectors."""

    __slots__ = ()


_GRAMMAR: str = r"""
start: _item*

_item: form
     | discard

?form: STRING -> string
     | CHAR -> char
     | INT -> integer
     | FLOAT -> decimal
     | KEYWORD -> keyword
     | SYMBOL -> symbol
     | "(" _item* ")" -> edn_list
     | "[" _item* "]" -> edn_vector
     | "{" _item* "}" -> edn_map
     | "#{" _item* "}" -> edn_set
     | TAG form -> tagged

discard: "#_" form

STRING: /"(\\.|[^"\\])*"/s
CHAR: /\\(newline|space|tab|return|formfeed|backspace|u[0-9a-fA-F]{4}|\S)/
FLOAT.3: /[+-]?\d+(\.\d*([eE][+-]?\d+)?|[eE][+-]?\d+)M?|[+-]?\d+M/
INT.2: /[+-]?\d+N?/
KEYWORD: /:[a-zA-Z0-9*!_?$%&=<>.+\-\/#:'|]+/
SYMBOL: /[a-zA-Z*!_?$%&=<>.+\-\/|][a-zA-Z0-9*!_?$%&=<>.+\-\/#:'|]*/
TAG: /#[a-zA-Z][a-zA-Z0-9*!_?$%&=<>.+\-\/#:'|]*/
COMMENT: /;[^\n]*/

%ignore /[\s,]+/
%ignore COMMENT
"""

_PARSER: Lark = Lark(
    _GRAMMAR,
    parser="lalr",
    lexer="basic",
    start="start",
    maybe_placeholders=False,
)

_DISCARD: object = object()

_NAMED_CHARS: dict[str, str] = {
    "newline": "\n",
    "space": " ",
    "tab": "\t",
    "return": "\r",
    "formfeed": "\f",
    "backspace": "\b",
}

_STRING_ESCAPES: dict[str, str] = {
    "t": "\t",
    "r": "\r",
    "n": "\n",
    "b": "\b",
    "f": "\f",
    "\\": "\\",
    '"': '"',
}

_STRING_ESCAPE_RE: re.Pattern[str] = re.compile(r"\\(u[0-9a-fA-F]{4}|.)", re.DOTALL)


def _unescape_string(body: str) -> str:
    """Resolve EDN string escapes.

    :param body: String literal contents without the surrounding quotes.
    :returns: Decoded string.
    :raises EdnError: On an unsupported escape.
    """

    def repl(m: re.Match[str]) -> str:
        esc: str = m.group(1)
        if esc.startswith("u") is True and len(esc) == 5:
            return chr(int(esc[1:], 16))
        decoded: str | None = _STRING_ESCAPES.get(esc)
        if decoded is None:
            raise EdnError(f"Unsupported escape character: \\{esc}")
        return decoded

    return _STRING_ESCAPE_RE.sub(repl, body)


def _items(args: list[object]) -> list[object]:
    return [a for a in args if a is not _DISCARD]


class _EdnTransformer(Transformer):
    """Turns the parse tree into Python values."""

    def start(self, args: list[object]) -> list[object]:
        return _items(args)

    def discard(self, args: list[object]) -> object:
        return _DISCARD

    @v_args(inline=True)
    def string(self, tok: Token) -> str:
        return _unescape_string(tok.value[1:-1])

    @v_args(inline=True)
    def char(self, tok: Token) -> Char:
        body: str = tok.value[1:]
        named: str | None = _NAMED_CHARS.get(body)
        if named is not None:
            return Char(named)
        if len(body) == 5 and body.startswith("u") is True:
            return Char(chr(int(body[1:], 16)))
        return Char(body)

    @v_args(inline=True)
    def integer(self, tok: Token) -> int:
        return int(tok.value.rstrip("N"))

    @v_args(inline=True)
    def decimal(self, tok: Token) -> float:
        return float(tok.value.rstrip("M"))

    @v_args(inline=True)
    def keyword(self, tok: Token) -> Keyword:
        return Keyword(tok.value[1:])

    @v_args(inline=True)
    def symbol(self, tok: Token) -> object:
        if tok.value == "nil":
            return None
        if tok.value == "true":
            return True
        if tok.value == "false":
            return False
        return Symbol(tok.value)

    def edn_list(self, args: list[object]) -> EdnList:
        return EdnList(_items(args))

    def edn_vector(self, args: list[object]) -> tuple:
        return tuple(_items(args))

    def edn_map(self, args: list[object]) -> dict:
        items: list[object] = _items(args)
        if len(items) % 2 != 0:
            raise EdnError("Map literal must contain an even number of forms")
        out: dict = {}
        # Python equates 1, 1.0 and true; EDN does not.
        typed: set[tuple[type, object]] = set()
        for i in range(0, len(items), 2):
            key: object = items[i]
            try:
                if (type(key), key) in typed:
                    raise EdnError(f"Duplicate key: {write_string(key)}")
                if key in out:
                    other: object = next(k for k in out if k == key)
                    raise EdnError(
                        f"Map keys {write_string(other)} and {write_string(key)} "
                        "cannot both be held in one map"
                    )
            except TypeError as e:
                raise EdnError(f"Unhashable map key: {write_string(key)}") from e
            typed.add((type(key), key))
            out[key] = items[i + 1]
        return out

    def edn_set(self, args: list[object]) -> frozenset:
        items: list[object] = _items(args)
        try:
            out: frozenset = frozenset(items)
        except TypeError as e:
            raise EdnError("Unhashable set element") from e
        if len(out) != len(items):
            raise EdnError("Duplicate set element")
        return out

    @v_args(inline=True)
    def tagged(self, tok: Token, value: object) -> TaggedLiteral:
        return TaggedLiteral(tag=tok.value[1:], value=value)


def read_all(text: str) -> list[object]:
    """Read every top-level form in ``text``.

    :param text: EDN source text.
    :returns: Top-level values, in order.
    :raises EdnError: If the text is not valid EDN.
    """

    try:
        tree = _PARSER.parse(text)
    except UnexpectedInput as e:
        line: object = getattr(e, "line", "?")
        column: object = getattr(e, "column", "?")
        raise EdnError(f"Invalid EDN at line {line}, column {column}") from e

    try:
        return _EdnTransformer().transform(tree)
    except VisitError as e:
        if isinstance(e.orig_exc, EdnError):
            raise e.orig_exc from None
        raise


def read_string(text: str) -> object:
    """Read the first form in ``text``.

    Mirrors ``clojure.edn/read-string``: blank input (or input made only of
    comments and discarded forms) reads as ``None``.

    :param text: EDN source text.
    :returns: The first value, or ``None``.
    :raises EdnError: If the text is not valid EDN.
    """

    forms: list[object] = read_all(text)
    if len(forms) == 0:
        return None
    return forms[0]


_PPRINT_WIDTH: int = 72

_CHAR_NAMES: dict[str, str] = {v: k for k, v in _NAMED_CHARS.items()}


def _write_str(value: str) -> str:
    out: list[str] = ['"']
    for ch in value:
        if ch == '"':
            out.append('\\"')
        elif ch == "\\":
            out.append("\\\\")
        elif ch == "\n":
            out.append("\\n")
        elif ch == "\t":
            out.append("\\t")
        elif ch == "\r":
            out.append("\\r")
        else:
            out.append(ch)
    out.append('"')
    return "".join(out)


def _write_float(value: float) -> str:
    if value != value:
        return "##NaN"
    if value == float("inf"):
        return "##Inf"
    if value == float("-inf"):
        return "##-Inf"
    return repr(value)


def _write_map(value: dict) -> str:
    entries: list[str] = [f"{write_string(k)} {write_string(v)}" for k, v in value.items()]
    one_line: str = "{" + ", ".join(entries) + "}"
    if len(one_line) <= _PPRINT_WIDTH:
        return one_line
    return "{" + ",\n ".join(entries) + "}"


def write_string(value: object) -> str:
    """Print a Python value as EDN text.

    :param value: Value built from the types :func:`read_string` produces.
    :returns: EDN text.
    :raises EdnError: If the value has no EDN representation.
    """

    if value is None:
        return "nil"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _write_float(value)
    if isinstance(value, str):
        return _write_str(value)
    if isinstance(value, (Symbol, Keyword)):
        return str(value)
    if isinstance(value, Char):
        name: str | None = _CHAR_NAMES.get(value.value)
        if name is not None:
            return f"\\{name}"
        return f"\\{value.value}"
    if isinstance(value, TaggedLiteral):
        return f"#{value.tag} {write_string(value.value)}"
    if isinstance(value, EdnList):
        return "(" + " ".join(write_string(v) for v in value) + ")"
    if isinstance(value, tuple):
        return "[" + " ".join(write_string(v) for v in value) + "]"
    if isinstance(value, (set, frozenset)):
        return "#{" + " ".join(sorted(write_string(v) for v in value)) + "}"
    if isinstance(value, dict):
        return _write_map(value)
    raise EdnError(f"Cannot print value of type {type(value).__name__} as EDN")


def merge_maps(existing: object, incoming: object) -> dict:
    """Merge two EDN maps, ``incoming`` winning on key collisions.

    ``None`` on either side is treated as an empty map, matching
    ``clojure.core/merge``. Keys already in ``existing`` keep their position.

    :param existing: Previously read map (or ``None``).
    :param incoming: Newly read map (or ``None``).
    :returns: Merged map.
    :raises EdnError: If either value is not a map.
    """

    merged: dict = {}
    for side in (existing, incoming):
        if side is None:
            continue
        if isinstance(side, dict) is False:
            raise EdnError(f"Expected an EDN map, got {write_string(side)}")
        merged.update(side)
    return merged
