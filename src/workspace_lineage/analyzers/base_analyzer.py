"""Base analyzer class shared by the snapshot query objects."""

import difflib
from typing import List, Optional

from ..core.config import EngineConfig
from ..core.errors import InvalidArgumentError, NodeNotFoundError
from ..core.models import RELATION_KINDS, LineageGraph, Node, NodeKind
from ..core.name_index import RelationIndex
from ..utils.identifiers import column_node_id, parse_node_id, parse_qualified_name
from ..utils.validation import validate_name, validate_node_id

UNLIMITED = -1


def normalize_depth(max_depth: Optional[int]) -> Optional[int]:
    """
    Normalize a caller supplied depth.

    ``None`` and ``0`` mean immediate neighbours only (one hop), negative values
    mean unlimited (returned as ``None``), positive values are hop counts.
    """
    if max_depth is None or max_depth == 0:
        return 1
    if max_depth < 0:
        return None
    return max_depth


class BaseAnalyzer:
    """
    Stateless query object over exactly one LineageGraph snapshot.

    Analyzers hold a reference to their snapshot and never modify it; when the
    workspace is rebuilt new analyzers are created over the new snapshot.
    """

    def __init__(self, graph: LineageGraph, config: Optional[EngineConfig] = None,
                 relation_index: Optional[RelationIndex] = None):
        self.graph = graph
        self.config = config or EngineConfig()
        self.relation_index = relation_index or RelationIndex(graph.relations())

    def require_node(self, node_id: str) -> Node:
        """Look up a node by its stable id, raising InvalidArgument/NotFound errors."""
        error = validate_node_id(node_id)
        if error:
            raise InvalidArgumentError(error)
        kind, qualified = parse_node_id(node_id)
        canonical = f"{kind.value}:{qualified}"
        node = self.graph.get_node(canonical)
        if node is None:
            raise NodeNotFoundError(node_id, self.similar_names(qualified))
        return node

    def resolve_relation(self, name: str) -> Node:
        """
        Resolve a table/view/CTE given either its node id or its (qualified) name.

        Raises:
            InvalidArgumentError: If the name is empty or unreadable
            NodeNotFoundError: If no relation matches
        """
        error = validate_name(name, "Table name")
        if error:
            raise InvalidArgumentError(error)
        text = name.strip()
        if ":" in text:
            node = self.require_node(text)
            if node.kind not in RELATION_KINDS:
                raise InvalidArgumentError(f"'{name}' is not a table, view or CTE")
            return node

        qualified = parse_qualified_name(text, dialect=self.config.identifier_dialect)
        node, _ = self.relation_index.resolve(qualified)
        if node is None:
            raise NodeNotFoundError(text, self.similar_names(qualified.key))
        return node

    def resolve_column(self, table: str, column: str) -> Node:
        """Resolve a column of a relation; raises NodeNotFoundError if either is unknown."""
        error = validate_name(column, "Column name")
        if error:
            raise InvalidArgumentError(error)
        relation = self.resolve_relation(table)
        node = self.graph.get_node(column_node_id(relation.qualified_name, column))
        if node is None:
            known = [c.name for c in self.graph.columns_of(relation.id)]
            suggestions = difflib.get_close_matches(column.lower(), known, n=3, cutoff=0.6)
            raise NodeNotFoundError(f"{relation.qualified_name}.{column}", suggestions)
        return node

    def relation_of(self, node: Node) -> Node:
        """The owning relation of a column node, or the node itself."""
        if node.kind == NodeKind.COLUMN:
            return self.graph.nodes[node.parent_id]
        return node

    def similar_names(self, name: str) -> List[str]:
        """Relation names close to ``name``, for "did you mean" hints."""
        keys = self.relation_index.keys()
        bare = {key.rsplit(".", 1)[-1]: key for key in keys}
        matches = difflib.get_close_matches(name.lower(), keys, n=3, cutoff=0.6)
        for match in difflib.get_close_matches(name.lower().rsplit(".", 1)[-1], list(bare), n=3, cutoff=0.6):
            if bare[match] not in matches:
                matches.append(bare[match])
        return matches[:3]
