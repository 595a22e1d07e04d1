"""Flow analyzer - depth-bounded, cycle-safe upstream/downstream traversal."""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Tuple

from .base_analyzer import BaseAnalyzer, normalize_depth
from ..core.models import Edge, EdgeFamily, Node, NodeKind
from ..utils.logging_config import get_logger

logger = get_logger('flow_analyzer')

UPSTREAM = "upstream"
DOWNSTREAM = "downstream"

MAX_PATHS = 100


@dataclass(frozen=True)
class FlowResult:
    """Nodes reachable from a start node in one direction, leveled by shortest depth."""
    start: Node
    direction: str
    max_depth: Optional[int]
    levels: Dict[str, int]
    edges_by_node: Dict[str, Tuple[Edge, ...]]
    nodes: Tuple[Node, ...]
    cycle_members: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def node_ids(self) -> FrozenSet[str]:
        """Discovered node ids, excluding the start node."""
        return frozenset(node.id for node in self.nodes)

    @property
    def discovered_count(self) -> int:
        return len(self.nodes)

    @property
    def depth(self) -> int:
        """Deepest level reached (0 when nothing was discovered)."""
        return max(self.levels.values(), default=0)

    @property
    def edges(self) -> List[Edge]:
        """Every edge used to reach a discovered node, in discovery order."""
        return [edge for node in self.nodes for edge in self.edges_by_node[node.id]]

    def at_depth(self, depth: int) -> List[Node]:
        return [node for node in self.nodes if self.levels[node.id] == depth]

    def to_dict(self) -> Dict[str, object]:
        return {
            "start_id": self.start.id,
            "direction": self.direction,
            "max_depth": self.max_depth,
            "depth": self.depth,
            "discovered_count": self.discovered_count,
            "levels": dict(self.levels),
            "nodes": [
                dict(node.to_dict(), depth=self.levels[node.id],
                     via=[edge.id for edge in self.edges_by_node[node.id]],
                     in_cycle=node.id in self.cycle_members)
                for node in self.nodes
            ],
            "edges": [edge.to_dict() for edge in self.edges],
            "cycle_members": sorted(self.cycle_members),
        }


@dataclass(frozen=True)
class FullFlowResult:
    """Upstream and downstream results computed independently from one start node."""
    upstream: FlowResult
    downstream: FlowResult

    @property
    def total_discovered(self) -> int:
        """Distinct nodes found in either direction; the start node is never counted."""
        return len(self.upstream.node_ids | self.downstream.node_ids)

    def to_dict(self) -> Dict[str, object]:
        return {
            "start_id": self.upstream.start.id,
            "total_discovered": self.total_discovered,
            "upstream": self.upstream.to_dict(),
            "downstream": self.downstream.to_dict(),
        }


class FlowAnalyzer(BaseAnalyzer):
    """
    Breadth-first upstream/downstream traversal over one snapshot.

    Tables, views and CTEs are traversed over reference edges; column nodes
    over transformation edges. Each node is leveled at the smallest depth it is
    reached at and never revisited, so traversal terminates in
    O(nodes + edges) on cyclic graphs too.
    """

    def upstream(self, node_id: str, max_depth: Optional[int] = None) -> FlowResult:
        """Data sources the node depends on."""
        return self._traverse(self.require_node(node_id), UPSTREAM, max_depth)

    def downstream(self, node_id: str, max_depth: Optional[int] = None) -> FlowResult:
        """Consumers that depend on the node."""
        return self._traverse(self.require_node(node_id), DOWNSTREAM, max_depth)

    def full(self, node_id: str, max_depth: Optional[int] = None) -> FullFlowResult:
        start = self.require_node(node_id)
        return FullFlowResult(
            upstream=self._traverse(start, UPSTREAM, max_depth),
            downstream=self._traverse(start, DOWNSTREAM, max_depth),
        )

    @staticmethod
    def family_for(node: Node) -> EdgeFamily:
        return EdgeFamily.TRANSFORMATION if node.kind == NodeKind.COLUMN else EdgeFamily.REFERENCE

    def _traverse(self, start: Node, direction: str, max_depth: Optional[int]) -> FlowResult:
        limit = normalize_depth(max_depth)
        family = self.family_for(start)
        upstream = direction == UPSTREAM

        levels: Dict[str, int] = {start.id: 0}
        reached_by: Dict[str, List[Edge]] = {}
        order: List[str] = []
        frontier = [start.id]
        depth = 0

        while frontier and (limit is None or depth < limit):
            depth += 1
            next_frontier = []
            for current in frontier:
                edges = self.graph.incoming(current, family) if upstream else self.graph.outgoing(current, family)
                for edge in edges:
                    neighbour = edge.source_id if upstream else edge.target_id
                    if neighbour in levels:
                        if levels[neighbour] == depth and neighbour in reached_by:
                            reached_by[neighbour].append(edge)
                        continue
                    levels[neighbour] = depth
                    reached_by[neighbour] = [edge]
                    order.append(neighbour)
                    next_frontier.append(neighbour)
            frontier = next_frontier

        cyclic = self.graph.cycle_members(family)
        logger.debug(f"{direction} from {start.id} (max_depth={limit}): {len(order)} nodes, depth {depth}")
        return FlowResult(
            start=start,
            direction=direction,
            max_depth=limit,
            levels=levels,
            edges_by_node={node_id: tuple(edges) for node_id, edges in reached_by.items()},
            nodes=tuple(self.graph.nodes[node_id] for node_id in order),
            cycle_members=frozenset(node_id for node_id in levels if node_id in cyclic),
        )

    def cyclic_nodes(self, family: EdgeFamily = EdgeFamily.REFERENCE) -> FrozenSet[str]:
        """Ids of nodes lying on at least one cycle of the given edge family."""
        return self.graph.cycle_members(family)

    def detect_cycles(self, family: EdgeFamily = EdgeFamily.REFERENCE) -> List[List[str]]:
        """
        Find circular dependencies.

        Returns:
            Strongly connected components with more than one node, plus
            self-referencing nodes, each as a sorted list of node ids
        """
        components = [list(component) for component in self.graph.cycles(family)]
        if components:
            logger.info(f"Detected {len(components)} {family.value} cycles")
        return components

    def find_root_sources(self) -> List[Node]:
        """Relations that depend on nothing else in the workspace."""
        return [node for node in self.graph.relations() if not self.graph.incoming(node.id)]

    def find_terminal_nodes(self) -> List[Node]:
        """Relations that nothing else in the workspace depends on."""
        return [node for node in self.graph.relations() if not self.graph.outgoing(node.id)]

    def paths_between(self, source_id: str, target_id: str, max_depth: Optional[int] = None) -> List[List[Edge]]:
        """
        Simple downstream paths from ``source_id`` to ``target_id``.

        Args:
            source_id: Upstream node id
            target_id: Downstream node id
            max_depth: Maximum path length in hops (negative for unlimited, default 10)

        Returns:
            Up to MAX_PATHS paths, each a list of edges, shortest first
        """
        source = self.require_node(source_id)
        target = self.require_node(target_id)
        limit = normalize_depth(max_depth if max_depth is not None else 10)
        family = self.family_for(source)

        paths: List[List[Edge]] = []
        on_path = {source.id}
        current: List[Edge] = []
        # one iterator over outgoing edges per node on the current path
        work = [iter(self.graph.outgoing(source.id, family))]
        while work and len(paths) < MAX_PATHS:
            edge = next(work[-1], None)
            if edge is None:
                work.pop()
                if current:
                    on_path.discard(current.pop().target_id)
                continue
            if edge.target_id == target.id:
                paths.append(current + [edge])
                continue
            if edge.target_id in on_path or (limit is not None and len(current) + 1 >= limit):
                continue
            on_path.add(edge.target_id)
            current.append(edge)
            work.append(iter(self.graph.outgoing(edge.target_id, family)))

        paths.sort(key=len)
        return paths
