"""Lineage graph builder - folds per-file facts into one immutable snapshot."""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .config import EngineConfig
from .errors import InvalidArgumentError, MalformedFactsError
from .facts import ColumnDef, ColumnTransformationFact, FileFacts, ReferenceFact, RelationDef
from .name_index import RelationIndex
from .models import (
    BuildWarning,
    Edge,
    EdgeFamily,
    LineageGraph,
    Node,
    NodeKind,
    ReferenceKind,
    TransformationKind,
    WarningKind,
)
from ..utils.expression_classifier import classify_expression
from ..utils.identifiers import (
    QualifiedName,
    column_node_id,
    normalize_column_name,
    parse_qualified_name,
    relation_node_id,
    strip_quotes,
)
from ..utils.logging_config import get_logger, log_performance

logger = get_logger('graph_builder')

# Tables and views shadow CTEs of the same name; CTEs are query-local helpers.
KIND_PRECEDENCE = {NodeKind.CTE: 0, NodeKind.TABLE: 1, NodeKind.VIEW: 1}


@dataclass
class _PreparedFile:
    """One file's facts with every name already parsed."""
    facts: FileFacts
    relations: List[Tuple[RelationDef, QualifiedName]] = field(default_factory=list)
    # (column, owning relation name, foreign key target, index of the inline definition or None)
    columns: List[Tuple[ColumnDef, QualifiedName, Optional[QualifiedName], Optional[int]]] = field(
        default_factory=list
    )
    references: List[Tuple[ReferenceFact, QualifiedName, QualifiedName]] = field(default_factory=list)
    transformations: List[
        Tuple[ColumnTransformationFact, QualifiedName, List[Tuple[QualifiedName, str]]]
    ] = field(default_factory=list)


@dataclass
class _Definition:
    relation: RelationDef
    name: QualifiedName
    file_path: str
    order: int

    @property
    def rank(self) -> Tuple[int, str, int]:
        return KIND_PRECEDENCE[self.relation.kind], self.file_path, self.order


class _BuildContext:
    """Mutable state of a single build; discarded once the snapshot is frozen."""

    def __init__(self):
        self.nodes: Dict[str, Node] = {}
        self.edges: Dict[str, Edge] = {}
        self.warnings: List[BuildWarning] = []
        self.relations = RelationIndex()
        self.column_rank: Dict[str, Tuple[str, int]] = {}
        self.winners: Dict[str, Tuple[str, int]] = {}

    def warn(self, kind: WarningKind, message: str, file_path: Optional[str] = None, line: int = 0) -> None:
        logger.debug(f"{kind.value}: {message}")
        self.warnings.append(BuildWarning(kind, message, file_path, line))


class LineageGraphBuilder:
    """
    Builds a LineageGraph snapshot from the facts of every file in a workspace.

    The result does not depend on the order files are supplied in: files are
    processed sorted by path, duplicate definitions resolve last-write-wins by
    (file path, declaration order) and duplicate edges keep the provenance with
    the smallest (file path, line).
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()

    @log_performance(logger)
    def build(self, facts: Mapping[str, Any], generation: int = 0) -> LineageGraph:
        """
        Build a snapshot.

        Args:
            facts: Mapping of file path to FileFacts or the extractor's raw dictionary
            generation: Index generation number recorded on the snapshot

        Returns:
            A fully constructed, immutable LineageGraph
        """
        if not isinstance(facts, Mapping):
            raise InvalidArgumentError("Workspace facts must be a mapping of file path to facts")

        logger.info(f"Building lineage graph from {len(facts)} files (generation {generation})")
        context = _BuildContext()

        prepared = []
        for file_path in sorted(facts, key=str):
            prepared_file = self._prepare_file(str(file_path), facts[file_path], context)
            if prepared_file is not None:
                prepared.append(prepared_file)

        self._register_relations(prepared, context)
        self._register_columns(prepared, context)
        for prepared_file in prepared:
            self._add_reference_edges(prepared_file, context)
            self._add_transformation_edges(prepared_file, context)

        graph = LineageGraph(context.nodes, context.edges.values(), context.warnings, generation)
        logger.info(f"Lineage graph built: {graph}")
        if context.warnings:
            logger.warning(f"Lineage graph built with {len(context.warnings)} warnings")
        return graph

    def _prepare_file(self, file_path: str, raw: Any, context: _BuildContext) -> Optional[_PreparedFile]:
        """Convert and name-check one file; a malformed file is skipped as a whole."""
        dialect = self.config.identifier_dialect
        try:
            file_facts = FileFacts.from_dict(file_path, raw)
            prepared = _PreparedFile(file_facts)
            for relation in file_facts.relations:
                prepared.relations.append(
                    (relation, parse_qualified_name(relation.name, relation.schema, dialect))
                )
            for index, (relation, name) in enumerate(prepared.relations):
                for column in relation.columns:
                    prepared.columns.append((column, name, self._foreign_key_name(column, dialect), index))
            for column in file_facts.columns:
                table_name = parse_qualified_name(column.table, dialect=dialect)
                prepared.columns.append((column, table_name, self._foreign_key_name(column, dialect), None))
            for reference in file_facts.references:
                prepared.references.append((
                    reference,
                    parse_qualified_name(reference.source, dialect=dialect),
                    parse_qualified_name(reference.target, dialect=dialect),
                ))
            for transformation in file_facts.transformations:
                normalize_column_name(transformation.target_column)
                sources = [
                    (parse_qualified_name(source.table, dialect=dialect), normalize_column_name(source.column))
                    for source in transformation.sources
                ]
                prepared.transformations.append(
                    (transformation, parse_qualified_name(transformation.target_table, dialect=dialect), sources)
                )
        except (MalformedFactsError, InvalidArgumentError) as e:
            logger.warning(f"Skipping file {file_path}: {e}")
            context.warn(WarningKind.MALFORMED_FACTS, str(e), file_path)
            return None
        return prepared

    @staticmethod
    def _foreign_key_name(column: ColumnDef, dialect: Optional[str]) -> Optional[QualifiedName]:
        if column.foreign_key is None:
            return None
        normalize_column_name(column.foreign_key.column)
        return parse_qualified_name(column.foreign_key.table, dialect=dialect)

    def _register_relations(self, prepared: List[_PreparedFile], context: _BuildContext) -> None:
        definitions: Dict[str, List[_Definition]] = {}
        for prepared_file in prepared:
            for order, (relation, name) in enumerate(prepared_file.relations):
                definitions.setdefault(name.key, []).append(
                    _Definition(relation, name, prepared_file.facts.file_path, order)
                )

        for key in sorted(definitions):
            candidates = sorted(definitions[key], key=lambda d: d.rank)
            winner = candidates[-1]
            for loser in candidates[:-1]:
                context.warn(
                    WarningKind.DUPLICATE_DEFINITION,
                    f"{loser.relation.kind.value} '{key}' defined at {loser.file_path}:{loser.relation.line} "
                    f"is overridden by the {winner.relation.kind.value} at "
                    f"{winner.file_path}:{winner.relation.line}",
                    loser.file_path,
                    loser.relation.line,
                )

            relation = winner.relation
            display_name = relation.name
            if relation.schema and "." not in display_name:
                display_name = f"{relation.schema}.{display_name}"
            node = Node(
                id=relation_node_id(relation.kind, key),
                kind=relation.kind,
                name=display_name,
                qualified_name=key,
                file_path=winner.file_path,
                line=relation.line,
            )
            context.nodes[node.id] = node
            context.relations.add(node)
            context.winners[key] = (winner.file_path, winner.order)

        logger.debug(f"Registered {len(context.relations)} relations")

    def _resolve(self, name: QualifiedName, context: _BuildContext,
                 file_path: str, line: int) -> Optional[Node]:
        node, candidates = context.relations.resolve(name)
        if candidates:
            context.warn(
                WarningKind.AMBIGUOUS_REFERENCE,
                f"'{name.key}' matches {', '.join(candidates)}; using '{node.qualified_name}'",
                file_path,
                line,
            )
        return node

    def _add_column(self, relation: Node, column: ColumnDef, file_path: str,
                    order: int, context: _BuildContext) -> None:
        node_id = column_node_id(relation.qualified_name, column.name)
        rank = (file_path, order)
        if node_id in context.column_rank and context.column_rank[node_id] > rank:
            return
        context.column_rank[node_id] = rank
        column_name = normalize_column_name(column.name)
        context.nodes[node_id] = Node(
            id=node_id,
            kind=NodeKind.COLUMN,
            name=strip_quotes(column.name),
            qualified_name=f"{relation.qualified_name}.{column_name}",
            file_path=file_path,
            line=column.line or relation.line,
            parent_id=relation.id,
            data_type=column.data_type,
            nullable=column.nullable,
            primary_key=column.primary_key,
        )

    def _ensure_column(self, relation: Node, column: str, context: _BuildContext) -> str:
        """Column id of a resolved relation's column, creating the node if it was never declared."""
        node_id = column_node_id(relation.qualified_name, column)
        if node_id not in context.nodes:
            column_name = normalize_column_name(column)
            context.nodes[node_id] = Node(
                id=node_id,
                kind=NodeKind.COLUMN,
                name=strip_quotes(column),
                qualified_name=f"{relation.qualified_name}.{column_name}",
                file_path=relation.file_path,
                line=relation.line,
                parent_id=relation.id,
            )
        return node_id

    def _register_columns(self, prepared: List[_PreparedFile], context: _BuildContext) -> None:
        for prepared_file in prepared:
            file_path = prepared_file.facts.file_path
            for order, (column, table_name, _, definition_index) in enumerate(prepared_file.columns):
                if definition_index is not None:
                    # inline columns count only when their own definition won
                    if context.winners.get(table_name.key) != (file_path, definition_index):
                        continue
                    relation_node = context.relations.get(table_name.key)
                else:
                    relation_node = self._resolve(table_name, context, file_path, column.line)
                if relation_node is None:
                    context.warn(
                        WarningKind.UNRESOLVED_REFERENCE,
                        f"Column '{column.name}' belongs to unknown relation '{column.table}'",
                        file_path,
                        column.line,
                    )
                    continue
                self._add_column(relation_node, column, file_path, order, context)

    def _add_edge(self, edge: Edge, context: _BuildContext) -> None:
        existing = context.edges.get(edge.id)
        if existing is None:
            context.edges[edge.id] = edge
            return
        first = min(existing, edge, key=lambda e: (e.provenance, e.expression or ""))
        context.edges[edge.id] = replace(
            first,
            mandatory=existing.mandatory or edge.mandatory,
            columns=tuple(sorted(set(existing.columns) | set(edge.columns))),
        )

    def _add_reference_edges(self, prepared_file: _PreparedFile, context: _BuildContext) -> None:
        file_path = prepared_file.facts.file_path

        references = list(prepared_file.references)
        for column, table_name, fk_table, _ in prepared_file.columns:
            if fk_table is not None:
                fact = ReferenceFact(
                    kind=ReferenceKind.FOREIGN_KEY,
                    source=column.foreign_key.table,
                    target=column.table,
                    line=column.line,
                    columns=(column.foreign_key.column,),
                )
                references.append((fact, fk_table, table_name))

        for fact, source_name, target_name in references:
            source = self._resolve(source_name, context, file_path, fact.line)
            target = self._resolve(target_name, context, file_path, fact.line)
            if source is None or target is None:
                missing = [n for n, node in ((fact.source, source), (fact.target, target)) if node is None]
                context.warn(
                    WarningKind.UNRESOLVED_REFERENCE,
                    f"{fact.kind.value} reference {fact.source} -> {fact.target}: "
                    f"unknown relation {', '.join(repr(m) for m in missing)}",
                    file_path,
                    fact.line,
                )
                continue
            self._add_edge(Edge(
                source_id=source.id,
                target_id=target.id,
                family=EdgeFamily.REFERENCE,
                kind=fact.kind,
                file_path=file_path,
                line=fact.line,
                mandatory=fact.mandatory,
                columns=tuple(sorted({normalize_column_name(c) for c in fact.columns})),
            ), context)

    def _transformation_kind(self, fact: ColumnTransformationFact) -> TransformationKind:
        if fact.kind is not None:
            return fact.kind
        if not fact.expression:
            return TransformationKind.DIRECT
        return classify_expression(fact.expression, self.config.identifier_dialect)

    def _add_transformation_edges(self, prepared_file: _PreparedFile, context: _BuildContext) -> None:
        file_path = prepared_file.facts.file_path
        for fact, target_name, sources in prepared_file.transformations:
            target_relation = self._resolve(target_name, context, file_path, fact.line)
            if target_relation is None:
                context.warn(
                    WarningKind.UNRESOLVED_REFERENCE,
                    f"Transformation target '{fact.target_table}.{fact.target_column}' "
                    f"belongs to unknown relation '{fact.target_table}'",
                    file_path,
                    fact.line,
                )
                continue

            kind = self._transformation_kind(fact)
            target_id = self._ensure_column(target_relation, fact.target_column, context)
            for (source_name, source_column), raw_source in zip(sources, fact.sources):
                source_relation = self._resolve(source_name, context, file_path, fact.line)
                if source_relation is None:
                    context.warn(
                        WarningKind.UNRESOLVED_REFERENCE,
                        f"Transformation source '{raw_source.table}.{raw_source.column}' of "
                        f"'{fact.target_table}.{fact.target_column}' belongs to unknown relation",
                        file_path,
                        fact.line,
                    )
                    continue
                source_id = self._ensure_column(source_relation, source_column, context)
                self._add_edge(Edge(
                    source_id=source_id,
                    target_id=target_id,
                    family=EdgeFamily.TRANSFORMATION,
                    kind=kind,
                    file_path=file_path,
                    line=fact.line,
                    expression=fact.expression,
                ), context)
