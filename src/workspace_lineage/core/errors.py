"""Exceptions raised by the lineage engine."""

from typing import List, Optional


class LineageError(Exception):
    """Base class for lineage engine errors."""

    kind = "LINEAGE_ERROR"


class NodeNotFoundError(LineageError):
    """Raised when a node or column does not exist in the current snapshot."""

    kind = "NOT_FOUND"

    def __init__(self, identifier: str, suggestions: Optional[List[str]] = None):
        self.identifier = identifier
        self.suggestions = list(suggestions or [])
        message = f"'{identifier}' not found in the lineage graph"
        if self.suggestions:
            message += f". Did you mean: {', '.join(repr(s) for s in self.suggestions)}?"
        super().__init__(message)


class InvalidArgumentError(LineageError, ValueError):
    """Raised for malformed identifiers or options, before any traversal begins."""

    kind = "INVALID_ARGUMENT"


class MalformedFactsError(LineageError, ValueError):
    """Raised when a file's extracted facts do not have the expected shape."""

    kind = "MALFORMED_FACTS"

    def __init__(self, file_path: str, reason: str):
        self.file_path = file_path
        self.reason = reason
        super().__init__(f"Malformed facts for '{file_path}': {reason}")


class NoSnapshotError(LineageError):
    """Raised when a query arrives before any graph snapshot has been built."""

    kind = "NO_SNAPSHOT"

    def __init__(self):
        super().__init__("No lineage graph available. Build the workspace index first.")
