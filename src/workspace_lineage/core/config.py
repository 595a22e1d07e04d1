"""Engine configuration."""

import os
from dataclasses import dataclass
from typing import Optional

from .errors import InvalidArgumentError

DEFAULT_MANY_DEPENDENTS_THRESHOLD = 5
DEFAULT_SEARCH_LIMIT = 15


def _int_from_env(variable: str, default: int) -> int:
    raw = os.getenv(variable)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidArgumentError(f"Environment variable {variable} must be an integer, got '{raw}'")


@dataclass(frozen=True)
class EngineConfig:
    """
    Tunables for graph building and queries.

    Attributes:
        many_dependents_threshold: Direct impact count at or above which a
            modify/drop is classified HIGH
        search_limit: Maximum number of results from table search and
            "did you mean" suggestions
        identifier_dialect: sqlglot dialect used to read quoted identifiers
    """
    many_dependents_threshold: int = DEFAULT_MANY_DEPENDENTS_THRESHOLD
    search_limit: int = DEFAULT_SEARCH_LIMIT
    identifier_dialect: Optional[str] = None

    def __post_init__(self):
        if self.many_dependents_threshold < 1:
            raise InvalidArgumentError("many_dependents_threshold must be at least 1")
        if self.search_limit < 1:
            raise InvalidArgumentError("search_limit must be at least 1")

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Build a configuration from WORKSPACE_LINEAGE_* environment variables."""
        return cls(
            many_dependents_threshold=_int_from_env(
                'WORKSPACE_LINEAGE_MANY_THRESHOLD', DEFAULT_MANY_DEPENDENTS_THRESHOLD
            ),
            search_limit=_int_from_env('WORKSPACE_LINEAGE_SEARCH_LIMIT', DEFAULT_SEARCH_LIMIT),
            identifier_dialect=os.getenv('WORKSPACE_LINEAGE_DIALECT') or None,
        )
