"""Qualified name handling and stable node identifiers."""

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple

import sqlglot.expressions as exp
from sqlglot.errors import SqlglotError

from ..core.errors import InvalidArgumentError
from ..core.models import NodeKind

_QUOTE_PAIRS = (('"', '"'), ('`', '`'), ('[', ']'))


@dataclass(frozen=True)
class QualifiedName:
    """A relation name split into catalog, schema and object name (all lowercased)."""
    name: str
    schema: Optional[str] = None
    catalog: Optional[str] = None

    @property
    def key(self) -> str:
        return ".".join(part for part in (self.catalog, self.schema, self.name) if part)

    @property
    def bare_key(self) -> str:
        return self.name

    @property
    def is_qualified(self) -> bool:
        return bool(self.schema or self.catalog)


@lru_cache(maxsize=4096)
def _parse_table(text: str, dialect: Optional[str]) -> Tuple[str, str, str]:
    table = exp.to_table(text, dialect=dialect)
    return table.catalog, table.db, table.name


def parse_qualified_name(name: str, schema: Optional[str] = None, dialect: Optional[str] = None) -> QualifiedName:
    """
    Parse a possibly quoted, dotted relation name.

    Args:
        name: Relation name such as ``orders``, ``sales.orders`` or ``"Sales"."Orders"``
        schema: Schema supplied separately by the extractor, used when ``name`` has none
        dialect: sqlglot dialect used to read quoted identifiers

    Returns:
        QualifiedName with lowercased parts

    Raises:
        InvalidArgumentError: If the name cannot be read as a table identifier
    """
    if not isinstance(name, str) or not name.strip():
        raise InvalidArgumentError("Relation name cannot be empty")
    try:
        catalog, db, table = _parse_table(name.strip(), dialect)
    except SqlglotError as e:
        raise InvalidArgumentError(f"Invalid relation name '{name}': {e}") from e
    if not table:
        raise InvalidArgumentError(f"Invalid relation name '{name}'")
    if not db and schema:
        db = strip_quotes(schema)
    return QualifiedName(
        name=table.lower(),
        schema=db.lower() if db else None,
        catalog=catalog.lower() if catalog else None,
    )


def strip_quotes(identifier: str) -> str:
    """Remove one level of identifier quoting."""
    text = identifier.strip()
    for opening, closing in _QUOTE_PAIRS:
        if len(text) >= 2 and text.startswith(opening) and text.endswith(closing):
            return text[1:-1]
    return text


def normalize_column_name(column: str) -> str:
    if not isinstance(column, str) or not column.strip():
        raise InvalidArgumentError("Column name cannot be empty")
    return strip_quotes(column).lower()


def relation_node_id(kind: NodeKind, qualified_key: str) -> str:
    return f"{kind.value}:{qualified_key.lower()}"


def column_node_id(relation_key: str, column: str) -> str:
    return f"column:{relation_key.lower()}.{normalize_column_name(column)}"


def parse_node_id(node_id: str) -> Tuple[NodeKind, str]:
    """
    Split a stable node identifier into its kind and qualified name.

    Raises:
        InvalidArgumentError: If the identifier is not ``<kind>:<qualified-name>``
    """
    if not isinstance(node_id, str) or ":" not in node_id:
        raise InvalidArgumentError(f"Malformed node identifier '{node_id}': expected '<kind>:<name>'")
    kind_text, _, qualified = node_id.partition(":")
    try:
        kind = NodeKind(kind_text.lower())
    except ValueError:
        valid = ", ".join(k.value for k in NodeKind)
        raise InvalidArgumentError(f"Unknown node kind '{kind_text}' in '{node_id}'. Valid kinds: {valid}")
    if not qualified.strip():
        raise InvalidArgumentError(f"Malformed node identifier '{node_id}': empty name")
    return kind, qualified.strip().lower()
