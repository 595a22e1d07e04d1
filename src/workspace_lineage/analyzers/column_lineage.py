"""
Column lineage tracker.

Walks transformation edges backward from a target column and rebuilds how its
value is derived. Fan-in (several input columns feeding one output) produces a
branching tree instead of a flat list, so every source path is reported.
Columns reached along several paths share one subtree.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set, Tuple, Union

from .base_analyzer import UNLIMITED, BaseAnalyzer, normalize_depth
from ..core.models import Edge, EdgeFamily, Node, TransformationKind
from ..utils.logging_config import get_logger

logger = get_logger('column_lineage')

@dataclass(frozen=True)
class TraceStep:
    """One transformation hop: ``target`` is derived from ``source``."""
    source_table: str
    source_column: str
    kind: TransformationKind
    expression: Optional[str]
    target_table: str
    target_column: str
    file_path: Optional[str] = None
    line: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "source_table": self.source_table,
            "source_column": self.source_column,
            "kind": self.kind.value,
            "expression": self.expression,
            "target_table": self.target_table,
            "target_column": self.target_column,
            "file_path": self.file_path,
            "line": self.line,
        }


@dataclass(frozen=True)
class SourceColumn:
    """A column with no incoming transformations: the chain ends here successfully."""
    table: str
    column: str
    node_id: str

    def to_dict(self) -> Dict[str, object]:
        return {"type": "source", "table": self.table, "column": self.column, "node_id": self.node_id}


@dataclass(frozen=True)
class CyclicLineage:
    """The column already occurs on the current path; the branch stops to avoid looping."""
    table: str
    column: str
    node_id: str

    def to_dict(self) -> Dict[str, object]:
        return {"type": "cycle", "table": self.table, "column": self.column, "node_id": self.node_id}


@dataclass(frozen=True)
class DepthLimitReached:
    """The hop budget ran out while the column still has inputs."""
    table: str
    column: str
    node_id: str

    def to_dict(self) -> Dict[str, object]:
        return {"type": "depth_limit", "table": self.table, "column": self.column, "node_id": self.node_id}


@dataclass(frozen=True, eq=False)
class Derived:
    """A column derived through exactly one step from the ``upstream`` chain."""
    step: TraceStep
    upstream: "ChainNode"


@dataclass(frozen=True, eq=False)
class Branch:
    """A column fed by several inputs; one derived sub-chain per incoming edge."""
    table: str
    column: str
    kind: TransformationKind
    branches: Tuple[Derived, ...]


ChainNode = Union[SourceColumn, Derived, Branch, CyclicLineage, DepthLimitReached]
Terminal = Union[SourceColumn, CyclicLineage, DepthLimitReached]


def _children(node: ChainNode) -> Tuple[ChainNode, ...]:
    if isinstance(node, Derived):
        return (node.upstream,)
    if isinstance(node, Branch):
        return node.branches
    return ()


def _walk(node: ChainNode) -> Iterator[ChainNode]:
    """Pre-order traversal of a chain tree, visiting a shared subtree once."""
    seen: Set[int] = set()
    stack = [node]
    while stack:
        current = stack.pop()
        if id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        stack.extend(reversed(_children(current)))


@dataclass(frozen=True)
class TransformationChain:
    """Result of tracing one column back to its sources."""
    target_table: str
    target_column: str
    target_id: str
    root: ChainNode
    max_depth: Optional[int]

    @property
    def steps(self) -> Tuple[TraceStep, ...]:
        """Distinct steps in pre-order; the plain linear chain when nothing fans in."""
        return tuple(dict.fromkeys(node.step for node in _walk(self.root) if isinstance(node, Derived)))

    def paths(self) -> List[Tuple[Tuple[TraceStep, ...], Terminal]]:
        """
        Every path from the target back to a terminal, as (steps, terminal).

        Shared subtrees are expanded once per path, so the result grows with the
        number of distinct routes through the lineage.
        """
        result = []
        pending: List[Tuple[ChainNode, Tuple[TraceStep, ...]]] = [(self.root, ())]
        while pending:
            node, prefix = pending.pop()
            if isinstance(node, Derived):
                pending.append((node.upstream, prefix + (node.step,)))
            elif isinstance(node, Branch):
                pending.extend((branch, prefix) for branch in reversed(node.branches))
            else:
                result.append((prefix, node))
        return result

    def sources(self) -> List[SourceColumn]:
        """Distinct base columns reached, sorted by node id."""
        found = {node.node_id: node for node in _walk(self.root) if isinstance(node, SourceColumn)}
        return [found[node_id] for node_id in sorted(found)]

    @property
    def is_branched(self) -> bool:
        return any(isinstance(node, Branch) for node in _walk(self.root))

    @property
    def has_cycle(self) -> bool:
        return any(isinstance(node, CyclicLineage) for node in _walk(self.root))

    @property
    def truncated(self) -> bool:
        return any(isinstance(node, DepthLimitReached) for node in _walk(self.root))

    def __len__(self) -> int:
        return len(self.steps)

    def tree_to_dict(self) -> Dict[str, object]:
        """
        The chain tree as a flat node table.

        Each entry has an integer ``id``; derived entries point at their
        ``upstream`` entry and branch entries list their ``branches``. A shared
        subtree appears once and is referenced from every parent.
        """
        nodes = list(_walk(self.root))
        index = {id(node): position for position, node in enumerate(nodes)}
        entries = []
        for position, node in enumerate(nodes):
            if isinstance(node, Derived):
                entry = {"type": "derived", "step": node.step.to_dict(), "upstream": index[id(node.upstream)]}
            elif isinstance(node, Branch):
                entry = {
                    "type": "branch",
                    "table": node.table,
                    "column": node.column,
                    "kind": node.kind.value,
                    "branches": [index[id(branch)] for branch in node.branches],
                }
            else:
                entry = node.to_dict()
            entries.append(dict(entry, id=position))
        return {"root": 0, "nodes": entries}

    def to_dict(self) -> Dict[str, object]:
        steps = self.steps
        return {
            "target_table": self.target_table,
            "target_column": self.target_column,
            "target_id": self.target_id,
            "max_depth": self.max_depth,
            "step_count": len(steps),
            "is_branched": self.is_branched,
            "has_cycle": self.has_cycle,
            "truncated": self.truncated,
            "steps": [step.to_dict() for step in steps],
            "sources": [source.to_dict() for source in self.sources()],
            "tree": self.tree_to_dict(),
        }


@dataclass
class _Frame:
    """A column being expanded: its incoming edges and the sub-chains finished so far."""
    node: Node
    remaining: Optional[int]
    edges: Tuple[Edge, ...]
    memo_key: Optional[Tuple[str, Optional[int]]]
    derived: List[Derived] = field(default_factory=list)
    position: int = 0


class ColumnLineageTracker(BaseAnalyzer):
    """Column-level lineage over the transformation edges of one snapshot."""

    def trace(self, table: str, column: str, max_depth: Optional[int] = UNLIMITED) -> TransformationChain:
        """
        Trace a column back to its root source columns.

        Args:
            table: Table, view or CTE name (or node id) owning the column
            column: Column name
            max_depth: Maximum hops from the target (negative for unlimited)

        Returns:
            TransformationChain whose tree ends every branch in a SourceColumn,
            CyclicLineage or DepthLimitReached marker
        """
        return self.trace_node(self.resolve_column(table, column), max_depth)

    def trace_node(self, node: Node, max_depth: Optional[int] = UNLIMITED) -> TransformationChain:
        limit = normalize_depth(max_depth)
        root = self._trace(node, limit)
        table, column = self._names(node)
        chain = TransformationChain(table, column, node.id, root, limit)
        logger.debug(f"Traced {node.id}: {len(chain)} steps, branched={chain.is_branched}, "
                     f"cycle={chain.has_cycle}, truncated={chain.truncated}")
        return chain

    def _trace(self, start: Node, limit: Optional[int]) -> ChainNode:
        """
        Build the chain tree with an explicit stack of frames.

        A column outside every transformation cycle expands the same way
        whichever path reaches it, so its subtree is built once per remaining
        depth and shared. Columns on a cycle are expanded per path, and an input
        already on the current path becomes a CyclicLineage marker.
        """
        cyclic = self.graph.cycle_members(EdgeFamily.TRANSFORMATION)
        memo: Dict[Tuple[str, Optional[int]], ChainNode] = {}
        on_path: Set[str] = set()
        frames: List[_Frame] = []

        def enter(node: Node, remaining: Optional[int]) -> Optional[ChainNode]:
            """The finished chain of ``node``, or None after pushing a frame to expand it."""
            edges = self.graph.incoming(node.id, EdgeFamily.TRANSFORMATION)
            if not edges:
                return SourceColumn(*self._names(node), node.id)
            if remaining == 0:
                return DepthLimitReached(*self._names(node), node.id)
            key = None if node.id in cyclic else (node.id, remaining)
            if key is not None and key in memo:
                return memo[key]
            frames.append(_Frame(node, remaining, edges, key))
            on_path.add(node.id)
            return None

        root = enter(start, limit)
        while frames:
            frame = frames[-1]
            if frame.position < len(frame.edges):
                edge = frame.edges[frame.position]
                frame.position += 1
                source = self.graph.nodes[edge.source_id]
                if source.id in on_path:
                    upstream: Optional[ChainNode] = CyclicLineage(*self._names(source), source.id)
                else:
                    upstream = enter(source, None if frame.remaining is None else frame.remaining - 1)
                    if upstream is None:
                        continue
                frame.derived.append(Derived(self._step(edge), upstream))
                continue

            frames.pop()
            on_path.discard(frame.node.id)
            finished = self._close(frame)
            if frame.memo_key is not None:
                memo[frame.memo_key] = finished
            if frames:
                parent = frames[-1]
                parent.derived.append(Derived(self._step(parent.edges[parent.position - 1]), finished))
            else:
                root = finished
        return root

    def _close(self, frame: _Frame) -> ChainNode:
        if len(frame.derived) == 1:
            return frame.derived[0]
        table, column = self._names(frame.node)
        kinds = {edge.kind for edge in frame.edges}
        kind = kinds.pop() if len(kinds) == 1 else TransformationKind.UNKNOWN
        return Branch(table, column, kind, tuple(frame.derived))

    def _names(self, column: Node) -> Tuple[str, str]:
        return self.relation_of(column).name, column.name

    def _step(self, edge: Edge) -> TraceStep:
        source_table, source_column = self._names(self.graph.nodes[edge.source_id])
        target_table, target_column = self._names(self.graph.nodes[edge.target_id])
        return TraceStep(
            source_table=source_table,
            source_column=source_column,
            kind=edge.kind,
            expression=edge.expression,
            target_table=target_table,
            target_column=target_column,
            file_path=edge.file_path,
            line=edge.line,
        )

    def dependents(self, table: str, column: str, max_depth: Optional[int] = UNLIMITED) -> Dict[str, int]:
        """Columns derived (directly or transitively) from a column, mapped to their hop distance."""
        return self.dependents_of(self.resolve_column(table, column), max_depth)

    def dependents_of(self, node: Node, max_depth: Optional[int] = UNLIMITED) -> Dict[str, int]:
        limit = normalize_depth(max_depth)
        depths: Dict[str, int] = {}
        queue = deque([(node.id, 0)])
        seen = {node.id}
        while queue:
            current, depth = queue.popleft()
            if limit is not None and depth >= limit:
                continue
            for edge in self.graph.outgoing(current, EdgeFamily.TRANSFORMATION):
                if edge.target_id in seen:
                    continue
                seen.add(edge.target_id)
                depths[edge.target_id] = depth + 1
                queue.append((edge.target_id, depth + 1))
        return depths

    def dependent_relations(self, table: str, column: str) -> List[str]:
        """Ids of the other relations owning columns derived from a column."""
        node = self.resolve_column(table, column)
        return self.dependent_relations_of(node)

    def dependent_relations_of(self, node: Node) -> List[str]:
        owners = {self.graph.nodes[column_id].parent_id for column_id in self.dependents_of(node, UNLIMITED)}
        owners.discard(node.parent_id)
        return sorted(owners)
