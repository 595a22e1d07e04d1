"""Workspace Lineage - cross-file lineage graph engine for SQL workspaces."""

from .core.engine import LineageEngine, QueryResponse
from .core.graph_builder import LineageGraphBuilder
from .core.models import LineageGraph, Node, Edge

__version__ = "1.0.0"
__all__ = ["LineageEngine", "QueryResponse", "LineageGraphBuilder", "LineageGraph", "Node", "Edge"]
