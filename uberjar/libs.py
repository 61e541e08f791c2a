"""Resolved library graph and optional-dependency pruning.

The library map comes from an external resolver (a "basis"). Each library
names the libraries that pulled it in (its *dependents*). Optional libraries,
and libraries reachable only through optional ones, are left out of the uber
jar.

The graph is stored as an arena: nodes live in a tuple and dependents are
referenced by index, so pruning works on integer sets.
"""

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
import json
import logging
import pathlib

from uberjar import edn


class LibraryGraphError(ValueError):
    """Raised when a library graph or basis file is malformed."""


@dataclass(frozen=True, slots=True)
class LibraryNode:
    """One resolved library.

    :ivar coordinate: Library identifier (e.g. ``org.clojure/clojure``).
    :ivar paths: Jars and/or directories contributing content, in order.
    :ivar optional: ``True`` if only optional consumers need this library.
    :ivar dependents: Coordinates of libraries that depend on this one directly.
    """

    coordinate: str
    paths: tuple[pathlib.Path, ...] = ()
    optional: bool = False
    dependents: frozenset[str] = frozenset()


class LibraryGraph:
    """An ordered, validated set of :class:`LibraryNode`.

    :raises LibraryGraphError: On duplicate coordinates, self-dependencies or
        dependency cycles.
    """

    def __init__(self, nodes: Iterable[LibraryNode]) -> None:
        self.nodes: tuple[LibraryNode, ...] = tuple(nodes)

        index: dict[str, int] = {}
        for i, node in enumerate(self.nodes):
            if node.coordinate in index:
                raise LibraryGraphError(f"Duplicate library coordinate: {node.coordinate}")
            if node.coordinate in node.dependents:
                raise LibraryGraphError(f"Library lists itself as a dependent: {node.coordinate}")
            index[node.coordinate] = i
        self._index: dict[str, int] = index

        # Dependents outside the graph (e.g. the project itself) are never optional.
        dependent_ids: list[frozenset[int]] = []
        external: list[bool] = []
        for node in self.nodes:
            ids: set[int] = set()
            has_external: bool = False
            for coord in node.dependents:
                dep_id: int | None = index.get(coord)
                if dep_id is None:
                    has_external = True
                else:
                    ids.add(dep_id)
            dependent_ids.append(frozenset(ids))
            external.append(has_external)
        self.dependent_ids: tuple[frozenset[int], ...] = tuple(dependent_ids)
        self.has_external_dependent: tuple[bool, ...] = tuple(external)

        self._check_acyclic()

    @classmethod
    def from_mapping(cls, libs: Mapping[object, Mapping[object, object]]) -> "LibraryGraph":
        """Build a graph from a resolver's ``coordinate -> record`` mapping.

        Record keys may be strings or EDN keywords: ``paths``, ``optional``
        and ``dependents``. Other keys are ignored.

        :param libs: Library map.
        :returns: Graph in mapping order.
        :raises LibraryGraphError: If a record has the wrong shape.
        """

        nodes: list[LibraryNode] = []
        for coord, record in libs.items():
            nodes.append(_node_from_record(_coord_text(coord), record))
        return cls(nodes)

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[LibraryNode]:
        return iter(self.nodes)

    def __contains__(self, coordinate: object) -> bool:
        return coordinate in self._index

    def coordinates(self) -> list[str]:
        return [n.coordinate for n in self.nodes]

    def subset(self, ids: Iterable[int]) -> "LibraryGraph":
        """Return a graph of the given node ids, keeping graph order."""

        keep: set[int] = set(ids)
        return LibraryGraph(n for i, n in enumerate(self.nodes) if i in keep)

    def content_paths(self) -> list[pathlib.Path]:
        """Flatten every node's paths, in graph order."""

        out: list[pathlib.Path] = []
        for node in self.nodes:
            out.extend(node.paths)
        return out

    def _check_acyclic(self) -> None:
        """Depth-first walk over dependent edges.

        :raises LibraryGraphError: If a cycle is found.
        """

        unvisited, in_progress, done = 0, 1, 2
        state: list[int] = [unvisited] * len(self.nodes)
        for start in range(len(self.nodes)):
            if state[start] != unvisited:
                continue
            stack: list[tuple[int, Iterator[int]]] = [(start, iter(sorted(self.dependent_ids[start])))]
            state[start] = in_progress
            while len(stack) > 0:
                node_id, it = stack[-1]
                nxt: int | None = next(it, None)
                if nxt is None:
                    state[node_id] = done
                    stack.pop()
                    continue
                if state[nxt] == in_progress:
                    cycle: list[str] = [self.nodes[i].coordinate for i, _ in stack]
                    raise LibraryGraphError(
                        f"Dependency cycle through {self.nodes[nxt].coordinate}: {' <- '.join(cycle)}"
                    )
                if state[nxt] == unvisited:
                    state[nxt] = in_progress
                    stack.append((nxt, iter(sorted(self.dependent_ids[nxt]))))


def remove_optional(
    graph: LibraryGraph,
    *,
    logger: logging.Logger | None = None,
) -> LibraryGraph:
    """Drop optional libraries and libraries only reachable through them.

    A required library moves to the optional set once all of its dependents
    are optional; this repeats until a pass moves nothing. Libraries with no
    dependents (top-level deps) always stay.

    :param graph: Full library graph.
    :param logger: Optional logger for debug output.
    :returns: The kept libraries, in input order (``graph`` itself if nothing
        is optional).
    """

    if logger is None:
        logger = logging.getLogger("uberjar")

    optional: set[int] = {i for i, n in enumerate(graph.nodes) if n.optional is True}
    if len(optional) == 0:
        return graph

    required: list[int] = [i for i, n in enumerate(graph.nodes) if n.optional is False]
    passes: int = 0
    while True:
        passes += 1
        moved: set[int] = set()
        for i in required:
            deps: frozenset[int] = graph.dependent_ids[i]
            if len(deps) == 0 or graph.has_external_dependent[i] is True:
                continue
            if deps <= optional:
                moved.add(i)
        if len(moved) == 0:
            break
        optional |= moved
        required = [i for i in required if i not in moved]

    if logger.isEnabledFor(logging.DEBUG) is True:
        dropped: list[str] = sorted(graph.nodes[i].coordinate for i in optional)
        logger.debug(f"uberjar: pruned optional libs after {passes} passes: {dropped}")
    return graph.subset(required)


def _coord_text(coord: object) -> str:
    if isinstance(coord, (str, edn.Symbol, edn.Keyword)):
        return str(coord)
    raise LibraryGraphError(f"Unsupported library coordinate: {coord!r}")


def _record_get(record: Mapping[object, object], key: str) -> object:
    """Look up ``key`` as a string or as an EDN keyword."""

    if key in record:
        return record[key]
    return record.get(edn.Keyword(key))


def _node_from_record(coordinate: str, record: Mapping[object, object]) -> LibraryNode:
    """Convert one resolver record into a :class:`LibraryNode`.

    :raises LibraryGraphError: If a field has the wrong type.
    """

    if isinstance(record, Mapping) is False:
        raise LibraryGraphError(f"Library record for {coordinate} is not a map")

    raw_paths: object = _record_get(record, "paths")
    if raw_paths is None:
        raw_paths = ()
    if isinstance(raw_paths, (list, tuple)) is False:
        raise LibraryGraphError(f"Library {coordinate}: paths must be a list")
    paths: list[pathlib.Path] = []
    for p in raw_paths:
        if isinstance(p, str) is False:
            raise LibraryGraphError(f"Library {coordinate}: path entries must be strings")
        paths.append(pathlib.Path(p))

    optional: object = _record_get(record, "optional")
    if optional is None:
        optional = False
    if isinstance(optional, bool) is False:
        raise LibraryGraphError(f"Library {coordinate}: optional must be a boolean")

    raw_deps: object = _record_get(record, "dependents")
    if raw_deps is None:
        raw_deps = ()
    if isinstance(raw_deps, (list, tuple, set, frozenset)) is False:
        raise LibraryGraphError(f"Library {coordinate}: dependents must be a list")

    return LibraryNode(
        coordinate=coordinate,
        paths=tuple(paths),
        optional=optional,
        dependents=frozenset(_coord_text(d) for d in raw_deps),
    )


def load_basis(path: pathlib.Path) -> LibraryGraph:
    """Load the resolved library map from a basis file.

    ``.edn`` files are read as EDN (``{:libs {lib {:paths [...] ...}}}``); any
    other file is read as JSON (``{"libs": {"lib": {"paths": [...]}}}``).

    :param path: Basis file.
    :returns: Library graph.
    :raises LibraryGraphError: If the file does not contain a library map.
    :raises uberjar.edn.EdnError: If an EDN basis cannot be parsed.
    """

    text: str = path.read_text(encoding="utf-8")
    data: object
    if path.suffix == ".edn":
        data = edn.read_string(text)
    else:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise LibraryGraphError(f"Invalid JSON basis {path}: {e}") from e

    if isinstance(data, Mapping) is False:
        raise LibraryGraphError(f"Basis {path} is not a map")
    libs: object = _record_get(data, "libs")
    if libs is None:
        libs = {}
    if isinstance(libs, Mapping) is False:
        raise LibraryGraphError(f"Basis {path}: libs must be a map")
    return LibraryGraph.from_mapping(libs)
