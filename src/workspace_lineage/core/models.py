"""Data models for the workspace lineage graph."""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union


class NodeKind(str, Enum):
    """Node kind enumeration."""
    TABLE = "table"
    VIEW = "view"
    CTE = "cte"
    COLUMN = "column"


RELATION_KINDS = (NodeKind.TABLE, NodeKind.VIEW, NodeKind.CTE)


class EdgeFamily(str, Enum):
    """Edge family enumeration."""
    REFERENCE = "reference"
    TRANSFORMATION = "transformation"


class ReferenceKind(str, Enum):
    """Table/view level reference kinds."""
    FOREIGN_KEY = "foreign_key"
    JOIN = "join"
    SELECT_SOURCE = "select_source"
    INSERT_TARGET = "insert_target"
    VIEW_SOURCE = "view_source"


class TransformationKind(str, Enum):
    """Column level transformation kinds."""
    DIRECT = "direct"
    AGGREGATE = "aggregate"
    ARITHMETIC = "arithmetic"
    CONCATENATION = "concatenation"
    CASE_EXPRESSION = "case_expression"
    WINDOW_FUNCTION = "window_function"
    SUBQUERY_DERIVED = "subquery_derived"
    CAST = "cast"
    UNKNOWN = "unknown"


EdgeKind = Union[ReferenceKind, TransformationKind]


class WarningKind(str, Enum):
    """Kinds of build-time warnings attached to a snapshot."""
    UNRESOLVED_REFERENCE = "UNRESOLVED_REFERENCE"
    MALFORMED_FACTS = "MALFORMED_FACTS"
    DUPLICATE_DEFINITION = "DUPLICATE_DEFINITION"
    AMBIGUOUS_REFERENCE = "AMBIGUOUS_REFERENCE"


class ChangeType(str, Enum):
    """Hypothetical schema change types for impact analysis."""
    MODIFY = "modify"
    RENAME = "rename"
    DROP = "drop"


class Severity(str, Enum):
    """Impact severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class Node:
    """A table, view, CTE or column in the lineage graph."""
    id: str
    kind: NodeKind
    name: str
    qualified_name: str
    file_path: Optional[str] = None
    line: int = 0
    parent_id: Optional[str] = None
    data_type: Optional[str] = None
    nullable: bool = True
    primary_key: bool = False

    @property
    def is_column(self) -> bool:
        return self.kind == NodeKind.COLUMN

    def to_dict(self) -> Dict[str, object]:
        result = {
            "id": self.id,
            "kind": self.kind.value,
            "name": self.name,
            "qualified_name": self.qualified_name,
            "file_path": self.file_path,
            "line": self.line,
        }
        if self.is_column:
            result.update({
                "parent_id": self.parent_id,
                "data_type": self.data_type,
                "nullable": self.nullable,
                "primary_key": self.primary_key,
            })
        return result


@dataclass(frozen=True)
class Edge:
    """A directed, typed edge. Direction is data flow: source is upstream of target."""
    source_id: str
    target_id: str
    family: EdgeFamily
    kind: EdgeKind
    file_path: Optional[str] = None
    line: int = 0
    expression: Optional[str] = None
    mandatory: bool = True
    columns: Tuple[str, ...] = ()

    @property
    def id(self) -> str:
        return f"{self.source_id}->{self.target_id}:{self.kind.value}"

    @property
    def provenance(self) -> Tuple[str, int]:
        return (self.file_path or "", self.line)

    def to_dict(self) -> Dict[str, object]:
        result = {
            "id": self.id,
            "source_id": self.source_id,
            "target_id": self.target_id,
            "family": self.family.value,
            "kind": self.kind.value,
            "file_path": self.file_path,
            "line": self.line,
        }
        if self.family == EdgeFamily.TRANSFORMATION:
            result["expression"] = self.expression
        else:
            result["mandatory"] = self.mandatory
            result["columns"] = list(self.columns)
        return result


@dataclass(frozen=True)
class BuildWarning:
    """A non-fatal problem found while building a snapshot."""
    kind: WarningKind
    message: str
    file_path: Optional[str] = None
    line: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "file_path": self.file_path,
            "line": self.line,
        }


def _freeze_adjacency(index: Dict[str, List[Edge]]) -> Mapping[str, Tuple[Edge, ...]]:
    return MappingProxyType({node_id: tuple(edges) for node_id, edges in index.items()})


def _find_cycles(node_ids: Iterable[str], forward: Mapping[str, Tuple[Edge, ...]]) -> Tuple[Tuple[str, ...], ...]:
    """
    Strongly connected components of one edge family that form a cycle.

    Iterative Tarjan. Components with more than one node and self-referencing
    nodes are returned, each sorted, in sorted order.
    """
    index_of: Dict[str, int] = {}
    low: Dict[str, int] = {}
    on_stack = set()
    stack: List[str] = []
    components: List[Tuple[str, ...]] = []
    counter = 0

    for root in sorted(node_ids):
        if root in index_of:
            continue
        # each frame is (node, iterator over successors)
        work = [(root, iter(forward.get(root, ())))]
        index_of[root] = low[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)
        while work:
            node, successors = work[-1]
            advanced = False
            for edge in successors:
                nxt = edge.target_id
                if nxt not in index_of:
                    index_of[nxt] = low[nxt] = counter
                    counter += 1
                    stack.append(nxt)
                    on_stack.add(nxt)
                    work.append((nxt, iter(forward.get(nxt, ()))))
                    advanced = True
                    break
                if nxt in on_stack:
                    low[node] = min(low[node], index_of[nxt])
            if advanced:
                continue
            work.pop()
            if work:
                parent = work[-1][0]
                low[parent] = min(low[parent], low[node])
            if low[node] == index_of[node]:
                component = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == node:
                        break
                self_loop = any(e.target_id == node for e in forward.get(node, ()))
                if len(component) > 1 or self_loop:
                    components.append(tuple(sorted(component)))

    return tuple(sorted(components))


class LineageGraph:
    """
    Immutable snapshot of the workspace lineage graph.

    Holds the node table, the sorted edge list and forward/reverse adjacency per
    edge family so both traversal directions cost O(1) per hop. Snapshots are
    never mutated; a rebuild produces a new one.
    """

    __slots__ = ("_nodes", "_edges", "_forward", "_reverse", "_columns", "_cycles", "_cycle_members",
                 "_warnings", "_generation")

    def __init__(
        self,
        nodes: Mapping[str, Node],
        edges: Iterable[Edge],
        warnings: Iterable[BuildWarning] = (),
        generation: int = 0,
    ):
        self._nodes = MappingProxyType(dict(nodes))
        self._edges = tuple(sorted(edges, key=lambda e: e.id))
        self._warnings = tuple(warnings)
        self._generation = generation

        forward: Dict[EdgeFamily, Dict[str, List[Edge]]] = {family: {} for family in EdgeFamily}
        reverse: Dict[EdgeFamily, Dict[str, List[Edge]]] = {family: {} for family in EdgeFamily}
        for edge in self._edges:
            if edge.source_id not in self._nodes or edge.target_id not in self._nodes:
                raise ValueError(f"Edge {edge.id} references a node missing from the snapshot")
            forward[edge.family].setdefault(edge.source_id, []).append(edge)
            reverse[edge.family].setdefault(edge.target_id, []).append(edge)
        self._forward = MappingProxyType({f: _freeze_adjacency(idx) for f, idx in forward.items()})
        self._reverse = MappingProxyType({f: _freeze_adjacency(idx) for f, idx in reverse.items()})
        self._cycles = MappingProxyType({
            family: _find_cycles(self._nodes, self._forward[family]) for family in EdgeFamily
        })
        self._cycle_members = MappingProxyType({
            family: frozenset(node_id for component in cycles for node_id in component)
            for family, cycles in self._cycles.items()
        })

        columns: Dict[str, List[Node]] = {}
        for node in self._nodes.values():
            if node.is_column:
                if node.parent_id not in self._nodes:
                    raise ValueError(f"Column {node.id} has no owning relation in the snapshot")
                columns.setdefault(node.parent_id, []).append(node)
        self._columns = MappingProxyType({
            parent: tuple(sorted(cols, key=lambda c: c.id)) for parent, cols in columns.items()
        })

    @property
    def nodes(self) -> Mapping[str, Node]:
        return self._nodes

    @property
    def edges(self) -> Tuple[Edge, ...]:
        return self._edges

    @property
    def warnings(self) -> Tuple[BuildWarning, ...]:
        return self._warnings

    @property
    def generation(self) -> int:
        return self._generation

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def get_node(self, node_id: str) -> Optional[Node]:
        return self._nodes.get(node_id)

    def outgoing(self, node_id: str, family: EdgeFamily = EdgeFamily.REFERENCE) -> Tuple[Edge, ...]:
        return self._forward[family].get(node_id, ())

    def incoming(self, node_id: str, family: EdgeFamily = EdgeFamily.REFERENCE) -> Tuple[Edge, ...]:
        return self._reverse[family].get(node_id, ())

    def columns_of(self, relation_id: str) -> Tuple[Node, ...]:
        return self._columns.get(relation_id, ())

    def cycles(self, family: EdgeFamily = EdgeFamily.REFERENCE) -> Tuple[Tuple[str, ...], ...]:
        """Circular dependencies of one edge family, each a sorted tuple of node ids."""
        return self._cycles[family]

    def cycle_members(self, family: EdgeFamily = EdgeFamily.REFERENCE) -> FrozenSet[str]:
        """Ids of nodes lying on at least one cycle of the given edge family."""
        return self._cycle_members[family]

    def relations(self) -> List[Node]:
        """All table, view and CTE nodes sorted by id."""
        return sorted(
            (node for node in self._nodes.values() if node.kind in RELATION_KINDS),
            key=lambda n: n.id,
        )

    def edges_of_family(self, family: EdgeFamily) -> List[Edge]:
        return [edge for edge in self._edges if edge.family == family]

    def signature(self) -> Tuple[FrozenSet[Node], FrozenSet[Edge]]:
        """Order independent view of the snapshot content, for equality checks."""
        return frozenset(self._nodes.values()), frozenset(self._edges)

    def stats(self) -> Dict[str, int]:
        counts = {kind: 0 for kind in NodeKind}
        for node in self._nodes.values():
            counts[node.kind] += 1
        reference_edges = sum(1 for e in self._edges if e.family == EdgeFamily.REFERENCE)
        return {
            "table_count": counts[NodeKind.TABLE],
            "view_count": counts[NodeKind.VIEW],
            "cte_count": counts[NodeKind.CTE],
            "column_count": counts[NodeKind.COLUMN],
            "edge_count": len(self._edges),
            "reference_edge_count": reference_edges,
            "transformation_edge_count": len(self._edges) - reference_edges,
            "warning_count": len(self._warnings),
            "generation": self._generation,
        }

    def __len__(self) -> int:
        return len(self._nodes)

    def __repr__(self) -> str:
        return (f"LineageGraph(generation={self._generation}, nodes={len(self._nodes)}, "
                f"edges={len(self._edges)}, warnings={len(self._warnings)})")
