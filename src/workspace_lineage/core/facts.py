"""
Typed facts produced by the external SQL fact extractor.

The extractor hands over a mapping of file path to a loosely shaped dictionary.
Each file is converted into a closed set of frozen fact records here; anything
that does not fit raises MalformedFactsError so the graph builder can skip the
offending file and carry on with the rest of the workspace.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Type, TypeVar

from .errors import MalformedFactsError
from .models import NodeKind, ReferenceKind, TransformationKind

E = TypeVar("E", ReferenceKind, TransformationKind)

REFERENCE_KIND_ALIASES = {
    "fk": ReferenceKind.FOREIGN_KEY,
    "foreign": ReferenceKind.FOREIGN_KEY,
    "select": ReferenceKind.SELECT_SOURCE,
    "from": ReferenceKind.SELECT_SOURCE,
    "subquery": ReferenceKind.SELECT_SOURCE,
    "insert": ReferenceKind.INSERT_TARGET,
    "update": ReferenceKind.INSERT_TARGET,
    "merge": ReferenceKind.INSERT_TARGET,
    "view": ReferenceKind.VIEW_SOURCE,
}

TRANSFORMATION_KIND_ALIASES = {
    "alias": TransformationKind.DIRECT,
    "rename": TransformationKind.DIRECT,
    "aggregation": TransformationKind.AGGREGATE,
    "concat": TransformationKind.CONCATENATION,
    "case": TransformationKind.CASE_EXPRESSION,
    "window": TransformationKind.WINDOW_FUNCTION,
    "subquery": TransformationKind.SUBQUERY_DERIVED,
}

OPTIONAL_JOIN_TYPES = {"left", "right", "full", "outer", "left outer", "right outer", "full outer"}

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def _normalize_kind_text(text: str) -> str:
    text = _CAMEL_BOUNDARY.sub("_", text.strip())
    return re.sub(r"[\s\-]+", "_", text).lower()


def _parse_kind(raw: Any, enum_type: Type[E], aliases: Mapping[str, E], file_path: str) -> E:
    if isinstance(raw, enum_type):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        raise MalformedFactsError(file_path, f"missing or non-string {enum_type.__name__}: {raw!r}")
    text = _normalize_kind_text(raw)
    if text in aliases:
        return aliases[text]
    try:
        return enum_type(text)
    except ValueError:
        raise MalformedFactsError(file_path, f"unknown {enum_type.__name__} '{raw}'")


def _require_str(entry: Mapping[str, Any], key: str, file_path: str, where: str) -> str:
    value = entry.get(key)
    if not isinstance(value, str) or not value.strip():
        raise MalformedFactsError(file_path, f"{where}: '{key}' must be a non-empty string")
    return value.strip()


def _optional_str(entry: Mapping[str, Any], key: str, file_path: str, where: str) -> Optional[str]:
    value = entry.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise MalformedFactsError(file_path, f"{where}: '{key}' must be a string")
    return value.strip() or None


def _line(entry: Mapping[str, Any], file_path: str, where: str) -> int:
    value = entry.get("line", entry.get("line_number", 0))
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise MalformedFactsError(file_path, f"{where}: 'line' must be a non-negative integer")
    return value


def _bool(entry: Mapping[str, Any], key: str, default: bool, file_path: str, where: str) -> bool:
    value = entry.get(key, default)
    if not isinstance(value, bool):
        raise MalformedFactsError(file_path, f"{where}: '{key}' must be a boolean")
    return value


def _entries(raw: Mapping[str, Any], key: str, file_path: str) -> List[Mapping[str, Any]]:
    value = raw.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise MalformedFactsError(file_path, f"'{key}' must be a list")
    for index, entry in enumerate(value):
        if not isinstance(entry, Mapping):
            raise MalformedFactsError(file_path, f"{key}[{index}] must be an object")
    return value


@dataclass(frozen=True)
class ColumnRef:
    """A (relation, column) pair as written by the extractor."""
    table: str
    column: str

    @classmethod
    def from_dict(cls, raw: Any, file_path: str, where: str) -> "ColumnRef":
        if not isinstance(raw, Mapping):
            raise MalformedFactsError(file_path, f"{where}: column reference must be an object")
        return cls(
            table=_require_str(raw, "table", file_path, where),
            column=_require_str(raw, "column", file_path, where),
        )


@dataclass(frozen=True)
class ColumnDef:
    """A column declared by a table, view or CTE."""
    table: str
    name: str
    data_type: Optional[str] = None
    line: int = 0
    nullable: bool = True
    primary_key: bool = False
    foreign_key: Optional[ColumnRef] = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any], file_path: str, table: Optional[str] = None) -> "ColumnDef":
        where = f"column {raw.get('name')!r}"
        foreign_key = raw.get("foreign_key")
        return cls(
            table=table or _require_str(raw, "table", file_path, where),
            name=_require_str(raw, "name", file_path, where),
            data_type=_optional_str(raw, "data_type", file_path, where),
            line=_line(raw, file_path, where),
            nullable=_bool(raw, "nullable", True, file_path, where),
            primary_key=_bool(raw, "primary_key", False, file_path, where),
            foreign_key=ColumnRef.from_dict(foreign_key, file_path, where) if foreign_key is not None else None,
        )


@dataclass(frozen=True)
class RelationDef:
    """A table, view or CTE definition."""
    kind: NodeKind
    name: str
    schema: Optional[str] = None
    line: int = 0
    columns: Tuple[ColumnDef, ...] = ()

    @classmethod
    def from_dict(cls, kind: NodeKind, raw: Mapping[str, Any], file_path: str) -> "RelationDef":
        where = f"{kind.value} {raw.get('name')!r}"
        name = _require_str(raw, "name", file_path, where)
        columns_raw = raw.get("columns") or []
        if not isinstance(columns_raw, list):
            raise MalformedFactsError(file_path, f"{where}: 'columns' must be a list")
        columns = []
        for column in columns_raw:
            if isinstance(column, str):
                if not column.strip():
                    raise MalformedFactsError(file_path, f"{where}: column names must be non-empty")
                columns.append(ColumnDef(table=name, name=column.strip()))
            elif isinstance(column, Mapping):
                columns.append(ColumnDef.from_dict(column, file_path, table=name))
            else:
                raise MalformedFactsError(file_path, f"{where}: column entries must be strings or objects")
        return cls(
            kind=kind,
            name=name,
            schema=_optional_str(raw, "schema", file_path, where),
            line=_line(raw, file_path, where),
            columns=tuple(columns),
        )


@dataclass(frozen=True)
class ReferenceFact:
    """A table-level reference; data flows from ``source`` into ``target``."""
    kind: ReferenceKind
    source: str
    target: str
    line: int = 0
    mandatory: bool = True
    columns: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any], file_path: str) -> "ReferenceFact":
        where = f"reference {raw.get('source')!r} -> {raw.get('target')!r}"
        kind = _parse_kind(raw.get("kind"), ReferenceKind, REFERENCE_KIND_ALIASES, file_path)

        mandatory = True
        join_type = raw.get("join_type")
        if join_type is not None:
            if not isinstance(join_type, str):
                raise MalformedFactsError(file_path, f"{where}: 'join_type' must be a string")
            mandatory = join_type.strip().lower() not in OPTIONAL_JOIN_TYPES
        mandatory = _bool(raw, "mandatory", mandatory, file_path, where)
        if kind == ReferenceKind.FOREIGN_KEY:
            mandatory = True

        columns = raw.get("columns") or []
        if not isinstance(columns, list) or not all(isinstance(c, str) for c in columns):
            raise MalformedFactsError(file_path, f"{where}: 'columns' must be a list of strings")

        return cls(
            kind=kind,
            source=_require_str(raw, "source", file_path, where),
            target=_require_str(raw, "target", file_path, where),
            line=_line(raw, file_path, where),
            mandatory=mandatory,
            columns=tuple(c.strip() for c in columns if c.strip()),
        )


@dataclass(frozen=True)
class ColumnTransformationFact:
    """How a target column is derived from one or more source columns."""
    target_table: str
    target_column: str
    sources: Tuple[ColumnRef, ...]
    kind: Optional[TransformationKind] = None
    expression: Optional[str] = None
    line: int = 0

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any], file_path: str) -> "ColumnTransformationFact":
        where = f"transformation {raw.get('target_table')!r}.{raw.get('target_column')!r}"
        sources_raw = raw.get("sources")
        if not isinstance(sources_raw, list) or not sources_raw:
            raise MalformedFactsError(file_path, f"{where}: 'sources' must be a non-empty list")
        kind_raw = raw.get("kind")
        return cls(
            target_table=_require_str(raw, "target_table", file_path, where),
            target_column=_require_str(raw, "target_column", file_path, where),
            sources=tuple(ColumnRef.from_dict(s, file_path, where) for s in sources_raw),
            kind=None if kind_raw is None else _parse_kind(
                kind_raw, TransformationKind, TRANSFORMATION_KIND_ALIASES, file_path
            ),
            expression=_optional_str(raw, "expression", file_path, where),
            line=_line(raw, file_path, where),
        )


@dataclass(frozen=True)
class FileFacts:
    """All facts extracted from one SQL file."""
    file_path: str
    relations: Tuple[RelationDef, ...] = ()
    columns: Tuple[ColumnDef, ...] = ()
    references: Tuple[ReferenceFact, ...] = ()
    transformations: Tuple[ColumnTransformationFact, ...] = ()

    @classmethod
    def from_dict(cls, file_path: str, raw: Any) -> "FileFacts":
        """
        Convert the extractor's dictionary for one file.

        Args:
            file_path: Workspace path of the SQL file
            raw: Dictionary with optional ``tables``, ``views``, ``ctes``,
                ``columns``, ``references`` and ``transformations`` lists

        Raises:
            MalformedFactsError: If any entry does not have the expected shape
        """
        if isinstance(raw, FileFacts):
            return raw
        if not isinstance(raw, Mapping):
            raise MalformedFactsError(file_path, "file facts must be an object")

        relations: List[RelationDef] = []
        for key, kind in (("tables", NodeKind.TABLE), ("views", NodeKind.VIEW), ("ctes", NodeKind.CTE)):
            relations.extend(RelationDef.from_dict(kind, entry, file_path) for entry in _entries(raw, key, file_path))

        return cls(
            file_path=file_path,
            relations=tuple(relations),
            columns=tuple(ColumnDef.from_dict(e, file_path) for e in _entries(raw, "columns", file_path)),
            references=tuple(ReferenceFact.from_dict(e, file_path) for e in _entries(raw, "references", file_path)),
            transformations=tuple(
                ColumnTransformationFact.from_dict(e, file_path) for e in _entries(raw, "transformations", file_path)
            ),
        )

    def all_columns(self) -> Iterable[ColumnDef]:
        for relation in self.relations:
            yield from relation.columns
        yield from self.columns


def load_workspace_facts(file_path: str) -> Dict[str, Any]:
    """
    Load a workspace facts document from JSON.

    The document is either the file mapping itself or an object with a
    ``files`` key holding it. Per-file entries are left unconverted so that the
    graph builder can isolate malformed files.
    """
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            document = json.load(f)
    except json.JSONDecodeError as e:
        raise MalformedFactsError(file_path, f"invalid JSON: {e}") from e

    if isinstance(document, dict) and isinstance(document.get("files"), dict):
        document = document["files"]
    if not isinstance(document, dict):
        raise MalformedFactsError(file_path, "expected an object mapping file paths to facts")
    return document
