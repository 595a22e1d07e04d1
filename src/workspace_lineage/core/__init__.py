"""Core lineage graph components."""

from .engine import LineageEngine, LineageSession, QueryResponse, QueryError
from .graph_builder import LineageGraphBuilder
from .models import LineageGraph, Node, Edge, BuildWarning
from .facts import FileFacts, load_workspace_facts

__all__ = [
    "LineageEngine",
    "LineageSession",
    "QueryResponse",
    "QueryError",
    "LineageGraphBuilder",
    "LineageGraph",
    "Node",
    "Edge",
    "BuildWarning",
    "FileFacts",
    "load_workspace_facts"
]
