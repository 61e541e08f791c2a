import json
import pathlib

import pytest

from uberjar.libs import LibraryGraph, LibraryGraphError, LibraryNode, load_basis, remove_optional


def _graph(*nodes: LibraryNode) -> LibraryGraph:
    return LibraryGraph(nodes)


def test_nothing_optional_returns_input_unchanged() -> None:
    graph = _graph(
        LibraryNode("a"),
        LibraryNode("b", dependents=frozenset({"a"})),
    )
    assert remove_optional(graph) is graph


def test_optional_and_its_exclusive_deps_are_pruned() -> None:
    graph = _graph(
        LibraryNode("a"),
        LibraryNode("b", optional=True, dependents=frozenset({"a"})),
        LibraryNode("c", dependents=frozenset({"b"})),
    )
    assert remove_optional(graph).coordinates() == ["a"]


def test_dep_with_a_required_dependent_is_kept() -> None:
    graph = _graph(
        LibraryNode("a"),
        LibraryNode("b", optional=True, dependents=frozenset({"a"})),
        LibraryNode("d"),
        LibraryNode("c", dependents=frozenset({"b", "d"})),
    )
    assert remove_optional(graph).coordinates() == ["a", "d", "c"]


def test_pruning_is_transitive() -> None:
    graph = _graph(
        LibraryNode("root"),
        LibraryNode("opt", optional=True, dependents=frozenset({"root"})),
        LibraryNode("x", dependents=frozenset({"opt"})),
        LibraryNode("y", dependents=frozenset({"x"})),
        LibraryNode("z", dependents=frozenset({"y", "opt"})),
    )
    assert remove_optional(graph).coordinates() == ["root"]


def test_roots_are_never_pruned() -> None:
    graph = _graph(
        LibraryNode("root"),
        LibraryNode("opt", optional=True),
    )
    assert remove_optional(graph).coordinates() == ["root"]


def test_directly_optional_is_pruned_even_with_required_dependents() -> None:
    graph = _graph(
        LibraryNode("a"),
        LibraryNode("b", optional=True, dependents=frozenset({"a"})),
    )
    assert remove_optional(graph).coordinates() == ["a"]


def test_dependents_outside_the_graph_keep_a_node() -> None:
    graph = _graph(
        LibraryNode("opt", optional=True),
        LibraryNode("c", dependents=frozenset({"opt", "my/project"})),
    )
    assert remove_optional(graph).coordinates() == ["c"]


def test_self_dependency_is_rejected() -> None:
    with pytest.raises(LibraryGraphError, match="itself"):
        _graph(LibraryNode("a", dependents=frozenset({"a"})))


def test_cycles_are_rejected() -> None:
    with pytest.raises(LibraryGraphError, match="cycle"):
        _graph(
            LibraryNode("a", dependents=frozenset({"c"})),
            LibraryNode("b", dependents=frozenset({"a"})),
            LibraryNode("c", dependents=frozenset({"b"})),
        )


def test_duplicate_coordinates_are_rejected() -> None:
    with pytest.raises(LibraryGraphError, match="Duplicate"):
        _graph(LibraryNode("a"), LibraryNode("a"))


def test_content_paths_flatten_in_order() -> None:
    graph = LibraryGraph.from_mapping(
        {
            "a": {"paths": ["/m2/a.jar"]},
            "b": {"paths": ["/m2/b.jar", "/src/b"], "dependents": ["a"]},
        }
    )
    assert graph.content_paths() == [
        pathlib.Path("/m2/a.jar"),
        pathlib.Path("/m2/b.jar"),
        pathlib.Path("/src/b"),
    ]


def test_from_mapping_rejects_bad_records() -> None:
    with pytest.raises(LibraryGraphError):
        LibraryGraph.from_mapping({"a": {"paths": "/m2/a.jar"}})
    with pytest.raises(LibraryGraphError):
        LibraryGraph.from_mapping({"a": {"optional": "yes"}})
    with pytest.raises(LibraryGraphError):
        LibraryGraph.from_mapping({"a": ["not", "a", "map"]})


def test_load_edn_basis(tmp_path: pathlib.Path) -> None:
    basis = tmp_path / "basis.edn"
    basis.write_text(
        """
        {:paths ["src"]
         :libs {org.clojure/clojure {:mvn/version "1.11.1"
                                     :paths ["/m2/clojure.jar"]}
                org.clojure/spec.alpha {:mvn/version "0.3.218"
                                        :paths ["/m2/spec.jar"]
                                        :dependents [org.clojure/clojure]}
                cheshire/cheshire {:paths ["/m2/cheshire.jar"] :optional true}}}
        """,
        encoding="utf-8",
    )

    graph = load_basis(basis)

    assert graph.coordinates() == [
        "org.clojure/clojure",
        "org.clojure/spec.alpha",
        "cheshire/cheshire",
    ]
    spec = graph.nodes[1]
    assert spec.paths == (pathlib.Path("/m2/spec.jar"),)
    assert spec.dependents == frozenset({"org.clojure/clojure"})
    assert graph.nodes[2].optional is True


def test_load_json_basis(tmp_path: pathlib.Path) -> None:
    basis = tmp_path / "basis.json"
    basis.write_text(
        json.dumps(
            {
                "libs": {
                    "a/a": {"paths": ["/m2/a.jar"]},
                    "b/b": {"paths": ["/m2/b.jar"], "optional": True, "dependents": ["a/a"]},
                }
            }
        ),
        encoding="utf-8",
    )

    graph = load_basis(basis)

    assert "a/a" in graph
    assert remove_optional(graph).coordinates() == ["a/a"]


def test_load_basis_requires_a_map(tmp_path: pathlib.Path) -> None:
    basis = tmp_path / "basis.json"
    basis.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(LibraryGraphError):
        load_basis(basis)
