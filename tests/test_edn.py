import pytest

from uberjar import edn
from uberjar.edn import Char, EdnError, EdnList, Keyword, Symbol, TaggedLiteral


def test_reads_reader_descriptor_map() -> None:
    value = edn.read_string("{my/inst my.readers/read-inst\n ;; comment\n my/uuid my.readers/read-uuid}")
    assert value == {
        Symbol("my/inst"): Symbol("my.readers/read-inst"),
        Symbol("my/uuid"): Symbol("my.readers/read-uuid"),
    }


def test_blank_input_reads_as_nil() -> None:
    assert edn.read_string("") is None
    assert edn.read_string("  ; only a comment\n") is None
    assert edn.read_string("#_{a b}") is None


def test_scalars() -> None:
    assert edn.read_string("nil") is None
    assert edn.read_string("true") is True
    assert edn.read_string("false") is False
    assert edn.read_string("42") == 42
    assert edn.read_string("-7") == -7
    assert edn.read_string("42N") == 42
    assert edn.read_string("1.5") == 1.5
    assert edn.read_string("2e3") == 2000.0
    assert edn.read_string(":mvn/version") == Keyword("mvn/version")
    assert edn.read_string('"a\\nb \\"q\\" \\u0041"') == 'a\nb "q" A'
    assert edn.read_string("\\newline") == Char("\n")
    assert edn.read_string("\\x") == Char("x")


def test_dash_and_plus_are_symbols() -> None:
    assert edn.read_string("-") == Symbol("-")
    assert edn.read_string("-foo") == Symbol("-foo")
    assert edn.read_string("+") == Symbol("+")


def test_collections() -> None:
    assert edn.read_string("[1 2, 3]") == (1, 2, 3)
    lst = edn.read_string("(a b)")
    assert isinstance(lst, EdnList)
    assert tuple(lst) == (Symbol("a"), Symbol("b"))
    assert edn.read_string("#{1 2}") == frozenset({1, 2})
    assert edn.read_string("[1 #_2 3]") == (1, 3)
    assert edn.read_string('#inst "2020-01-01"') == TaggedLiteral(tag="inst", value="2020-01-01")


def test_read_all_returns_every_form() -> None:
    assert edn.read_all("a 1 [b]") == [Symbol("a"), 1, (Symbol("b"),)]


@pytest.mark.parametrize(
    "text",
    [
        "{a}",
        "{",
        "[1 2",
        "{a 1 a 2}",
        "#{1 1}",
        '"unterminated',
    ],
)
def test_malformed_input_raises(text: str) -> None:
    with pytest.raises(EdnError):
        edn.read_string(text)


def test_duplicate_map_keys_compare_by_type() -> None:
    with pytest.raises(EdnError, match="Duplicate key: 1"):
        edn.read_string("{1 a, 1 b}")
    with pytest.raises(EdnError, match="Map keys 1 and true"):
        edn.read_string("{1 a, true b}")
    with pytest.raises(EdnError, match=r"Map keys 1 and 1\.0"):
        edn.read_string("{1 a, 1.0 b}")


def test_write_short_map_on_one_line() -> None:
    value = {Symbol("x"): Symbol("y"), Symbol("z"): Symbol("w")}
    assert edn.write_string(value) == "{x y, z w}"


def test_write_long_map_one_entry_per_line() -> None:
    value = {
        Symbol("my.company/inst"): Symbol("my.company.readers/read-instant-date"),
        Symbol("my.company/uuid"): Symbol("my.company.readers/read-uuid-value"),
    }
    assert edn.write_string(value) == (
        "{my.company/inst my.company.readers/read-instant-date,\n"
        " my.company/uuid my.company.readers/read-uuid-value}"
    )


def test_write_scalars_and_collections() -> None:
    assert edn.write_string(None) == "nil"
    assert edn.write_string(True) == "true"
    assert edn.write_string(3) == "3"
    assert edn.write_string('say "hi"\n') == '"say \\"hi\\"\\n"'
    assert edn.write_string(Keyword("a/b")) == ":a/b"
    assert edn.write_string((1, Symbol("s"))) == "[1 s]"
    assert edn.write_string(EdnList((Symbol("f"), 1))) == "(f 1)"
    assert edn.write_string(frozenset({2, 1})) == "#{1 2}"
    assert edn.write_string(Char(" ")) == "\\space"
    assert edn.write_string(TaggedLiteral(tag="inst", value="x")) == '#inst "x"'


def test_write_rejects_unknown_types() -> None:
    with pytest.raises(EdnError):
        edn.write_string(object())


def test_written_text_reads_back() -> None:
    value = {Keyword("k"): (1, "two", Symbol("three")), Symbol("s"): frozenset({Keyword("x")})}
    assert edn.read_string(edn.write_string(value)) == value


def test_merge_maps_incoming_wins_and_keeps_order() -> None:
    existing = {Symbol("a"): 1, Symbol("b"): 2}
    incoming = {Symbol("b"): 3, Symbol("c"): 4}
    merged = edn.merge_maps(existing, incoming)
    assert merged == {Symbol("a"): 1, Symbol("b"): 3, Symbol("c"): 4}
    assert list(merged) == [Symbol("a"), Symbol("b"), Symbol("c")]


def test_merge_maps_treats_nil_as_empty() -> None:
    assert edn.merge_maps(None, {Symbol("a"): 1}) == {Symbol("a"): 1}
    assert edn.merge_maps({Symbol("a"): 1}, None) == {Symbol("a"): 1}


def test_merge_maps_rejects_non_maps() -> None:
    with pytest.raises(EdnError):
        edn.merge_maps({Symbol("a"): 1}, (1, 2))
