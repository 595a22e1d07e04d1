"""Lineage engine - snapshot lifecycle and the host query surface."""

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from .config import EngineConfig
from .errors import InvalidArgumentError, LineageError, NoSnapshotError
from .graph_builder import LineageGraphBuilder
from .models import LineageGraph, NodeKind, WarningKind, RELATION_KINDS
from .name_index import RelationIndex
from ..analyzers.base_analyzer import UNLIMITED
from ..analyzers.column_lineage import ColumnLineageTracker
from ..analyzers.flow_analyzer import DOWNSTREAM, UPSTREAM, FlowAnalyzer
from ..analyzers.impact_analyzer import ImpactAnalyzer, ImpactTarget
from ..utils.logging_config import get_logger
from ..utils.validation import (
    validate_change_type,
    validate_depth,
    validate_direction,
    validate_name,
    validate_target_type,
)


@dataclass(frozen=True)
class QueryError:
    kind: str
    message: str
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "suggestions": list(self.suggestions)}


@dataclass(frozen=True)
class QueryResponse:
    """Result of one host command: either ``data`` or ``error`` is set."""
    command: str
    data: Optional[Dict[str, Any]] = None
    error: Optional[QueryError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"command": self.command, "success": self.ok}
        if self.error is not None:
            result["error"] = self.error.to_dict()
        else:
            result["data"] = self.data
        return result


class LineageSession:
    """One snapshot together with the query objects built over it."""

    def __init__(self, graph: LineageGraph, config: EngineConfig):
        self.graph = graph
        self.relation_index = RelationIndex(graph.relations())
        self.flow = FlowAnalyzer(graph, config, self.relation_index)
        self.columns = ColumnLineageTracker(graph, config, self.relation_index)
        self.impact = ImpactAnalyzer(graph, config, self.relation_index, flow=self.flow, columns=self.columns)


def _merge_unique(groups: List[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    seen = set()
    merged = []
    for group in groups:
        for item in group:
            if item["id"] not in seen:
                seen.add(item["id"])
                merged.append(item)
    return merged


class LineageEngine:
    """
    Owns the current lineage snapshot and answers host queries against it.

    ``rebuild`` constructs a complete snapshot and its query objects before
    publishing them with a single reference swap, so a query always sees one
    consistent session. Queries never raise: failures come back as a
    QueryResponse carrying a QueryError.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.logger = get_logger('engine')
        self.config = config or EngineConfig()
        self.builder = LineageGraphBuilder(self.config)
        self._session: Optional[LineageSession] = None
        self._generation = 0
        self._write_lock = threading.Lock()

    @property
    def graph(self) -> Optional[LineageGraph]:
        session = self._session
        return session.graph if session else None

    @property
    def session(self) -> LineageSession:
        session = self._session
        if session is None:
            raise NoSnapshotError()
        return session

    def rebuild(self, facts: Mapping[str, Any]) -> LineageGraph:
        """
        Build a new snapshot from workspace facts and make it current.

        Args:
            facts: Mapping of file path to per-file facts

        Returns:
            The newly published LineageGraph
        """
        with self._write_lock:
            generation = self._generation + 1
            graph = self.builder.build(facts, generation)
            session = LineageSession(graph, self.config)
            self._session = session
            self._generation = generation
        self.logger.info(f"Published lineage snapshot generation {generation}")
        return graph

    def _run(self, command: str, query: Callable[[LineageSession], Dict[str, Any]]) -> QueryResponse:
        try:
            session = self.session
            return QueryResponse(command, data=query(session))
        except LineageError as e:
            self.logger.warning(f"{command} failed ({e.kind}): {e}")
            return QueryResponse(
                command,
                error=QueryError(e.kind, str(e), list(getattr(e, "suggestions", []))),
            )

    @staticmethod
    def _check(error: Optional[str]) -> None:
        if error:
            raise InvalidArgumentError(error)

    def get_lineage(self, node_id: str, direction: str = "both", depth: Optional[int] = None) -> QueryResponse:
        """
        Upstream and/or downstream lineage of a node.

        Args:
            node_id: Stable node id, e.g. ``table:orders``
            direction: upstream, downstream or both
            depth: Hops to follow; None/0 for immediate neighbours, negative for unlimited
        """
        def query(session: LineageSession) -> Dict[str, Any]:
            self._check(validate_direction(direction))
            self._check(validate_depth(depth))
            wanted = direction.lower()
            start = session.flow.require_node(node_id)

            data: Dict[str, Any] = {"node": start.to_dict(), "direction": wanted}
            results = []
            if wanted in (UPSTREAM, "both"):
                results.append(session.flow.upstream(start.id, depth))
            if wanted in (DOWNSTREAM, "both"):
                results.append(session.flow.downstream(start.id, depth))
            for result in results:
                data[result.direction] = result.to_dict()

            data["nodes"] = [start.to_dict()] + _merge_unique([result.to_dict()["nodes"] for result in results])
            data["edges"] = _merge_unique([[edge.to_dict() for edge in result.edges] for result in results])
            data["total_discovered"] = len(data["nodes"]) - 1
            data["cycle_members"] = sorted(set().union(*(result.cycle_members for result in results)))
            return data

        return self._run("getLineage", query)

    def get_column_lineage(self, table_name: str, column_name: str,
                           depth: Optional[int] = UNLIMITED) -> QueryResponse:
        """Transformation chain of a column back to its source columns."""
        def query(session: LineageSession) -> Dict[str, Any]:
            self._check(validate_depth(depth))
            return session.columns.trace(table_name, column_name, depth).to_dict()

        return self._run("getColumnLineage", query)

    def analyze_impact(self, type: str, name: str, table_name: Optional[str] = None,
                       change_type: str = "modify") -> QueryResponse:
        """
        Impact of a hypothetical change.

        Args:
            type: ``table`` or ``column``
            name: Table name, or column name when ``type`` is column
            table_name: Owning table of the column; ``name`` may also be ``table.column``
            change_type: modify, rename or drop
        """
        def query(session: LineageSession) -> Dict[str, Any]:
            self._check(validate_target_type(type))
            self._check(validate_change_type(change_type))
            self._check(validate_name(name, "Name"))
            if type.lower() == "table":
                target = ImpactTarget(name.strip())
            elif table_name:
                target = ImpactTarget(table_name.strip(), name.strip())
            elif "." in name.strip():
                table, column = name.strip().rsplit(".", 1)
                target = ImpactTarget(table, column)
            else:
                raise InvalidArgumentError("Table name is required for column impact analysis")
            return session.impact.analyze(target, change_type.lower()).to_dict()

        return self._run("analyzeImpact", query)

    def get_stats(self) -> QueryResponse:
        """Node, edge and warning counts of the current snapshot."""
        return self._run("getStats", lambda session: session.graph.stats())

    def explore_table(self, table_name: str) -> QueryResponse:
        """A relation with its columns and its one-hop upstream and downstream neighbours."""
        def query(session: LineageSession) -> Dict[str, Any]:
            node = session.flow.resolve_relation(table_name)
            upstream = session.flow.upstream(node.id, 1)
            downstream = session.flow.downstream(node.id, 1)
            return {
                "node": node.to_dict(),
                "columns": [column.to_dict() for column in session.graph.columns_of(node.id)],
                "upstream": [
                    dict(n.to_dict(), via=[e.to_dict() for e in upstream.edges_by_node[n.id]])
                    for n in upstream.nodes
                ],
                "downstream": [
                    dict(n.to_dict(), via=[e.to_dict() for e in downstream.edges_by_node[n.id]])
                    for n in downstream.nodes
                ],
                "in_cycle": node.id in session.flow.cyclic_nodes(),
            }

        return self._run("exploreTable", query)

    def search_tables(self, query_text: str, kind: Optional[str] = None,
                      limit: Optional[int] = None) -> QueryResponse:
        """Relations whose name contains ``query_text``; exact matches first, then by name."""
        def query(session: LineageSession) -> Dict[str, Any]:
            self._check(validate_name(query_text, "Search query"))
            kinds = RELATION_KINDS
            if kind is not None:
                try:
                    kinds = (NodeKind(kind.lower()),)
                except ValueError:
                    raise InvalidArgumentError(f"Unsupported kind '{kind}'")
                if kinds[0] not in RELATION_KINDS:
                    raise InvalidArgumentError(f"Unsupported kind '{kind}'")
            if limit is not None and limit < 1:
                raise InvalidArgumentError("Limit must be at least 1")

            needle = query_text.strip().lower()
            matches = [
                node for node in session.graph.relations()
                if node.kind in kinds and needle in node.qualified_name
            ]

            def is_exact(node) -> bool:
                return needle in (node.qualified_name, node.qualified_name.rsplit(".", 1)[-1])

            matches.sort(key=lambda n: (not is_exact(n), n.qualified_name))
            capped = matches[:limit or self.config.search_limit]
            return {
                "query": query_text,
                "total_matches": len(matches),
                "results": [node.to_dict() for node in capped],
            }

        return self._run("searchTables", query)

    def get_warnings(self, kind: Optional[str] = None) -> QueryResponse:
        """Build warnings attached to the current snapshot, optionally of one kind."""
        def query(session: LineageSession) -> Dict[str, Any]:
            wanted = None
            if kind is not None:
                try:
                    wanted = WarningKind(kind.upper())
                except ValueError:
                    raise InvalidArgumentError(
                        f"Unsupported warning kind '{kind}'. Supported: {', '.join(w.value for w in WarningKind)}"
                    )
            warnings = [w for w in session.graph.warnings if wanted is None or w.kind == wanted]
            return {"count": len(warnings), "warnings": [w.to_dict() for w in warnings]}

        return self._run("getWarnings", query)
