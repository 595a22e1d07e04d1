"""
Impact analyzer - predicts the blast radius of a table or column change.

Severity comes from an ordered decision table and suggestions from a fixed
lookup table keyed by (change type, severity), so every outcome is reviewable
and exhaustively testable.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set, Tuple

from .base_analyzer import UNLIMITED, BaseAnalyzer
from .column_lineage import ColumnLineageTracker
from .flow_analyzer import FlowAnalyzer, FlowResult
from ..core.errors import InvalidArgumentError
from ..core.models import ChangeType, Edge, EdgeFamily, Node, NodeKind, ReferenceKind, Severity
from ..utils.identifiers import normalize_column_name
from ..utils.logging_config import get_logger

logger = get_logger('impact_analyzer')

DIRECT = "direct"
TRANSITIVE = "transitive"


@dataclass(frozen=True)
class ImpactTarget:
    """The entity being changed: a whole relation, or one of its columns."""
    table: str
    column: Optional[str] = None

    @property
    def is_column(self) -> bool:
        return self.column is not None

    def __str__(self) -> str:
        return f"{self.table}.{self.column}" if self.column else self.table


@dataclass(frozen=True)
class ImpactItem:
    """One affected relation."""
    node: Node
    impact_type: str
    depth: int
    reason: str
    via: Tuple[Edge, ...] = ()
    file_path: Optional[str] = None
    line: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "node": self.node.to_dict(),
            "impact_type": self.impact_type,
            "depth": self.depth,
            "reason": self.reason,
            "via": [edge.id for edge in self.via],
            "file_path": self.file_path,
            "line": self.line,
        }


@dataclass(frozen=True)
class ImpactSummary:
    total_affected: int
    tables_affected: int
    views_affected: int
    ctes_affected: int
    files_affected: int

    @classmethod
    def from_items(cls, items: List[ImpactItem]) -> "ImpactSummary":
        kinds = [item.node.kind for item in items]
        return cls(
            total_affected=len(items),
            tables_affected=kinds.count(NodeKind.TABLE),
            views_affected=kinds.count(NodeKind.VIEW),
            ctes_affected=kinds.count(NodeKind.CTE),
            files_affected=len({item.file_path for item in items if item.file_path}),
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            "total_affected": self.total_affected,
            "tables_affected": self.tables_affected,
            "views_affected": self.views_affected,
            "ctes_affected": self.ctes_affected,
            "files_affected": self.files_affected,
        }


@dataclass(frozen=True)
class ImpactReport:
    target: ImpactTarget
    change_type: ChangeType
    severity: Severity
    direct_impacts: Tuple[ImpactItem, ...]
    transitive_impacts: Tuple[ImpactItem, ...]
    suggestions: Tuple[str, ...]
    summary: ImpactSummary
    rule: str
    diagnostics: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, object]:
        return {
            "target": {"table": self.target.table, "column": self.target.column},
            "change_type": self.change_type.value,
            "severity": self.severity.value,
            "rule": self.rule,
            "direct_impacts": [item.to_dict() for item in self.direct_impacts],
            "transitive_impacts": [item.to_dict() for item in self.transitive_impacts],
            "suggestions": list(self.suggestions),
            "summary": self.summary.to_dict(),
            "diagnostics": list(self.diagnostics),
        }


@dataclass(frozen=True)
class SeverityInput:
    """Everything the severity decision table looks at."""
    change_type: ChangeType
    direct_count: int
    total_count: int
    hard_dependency: bool
    threshold: int


@dataclass(frozen=True)
class SeverityRule:
    name: str
    severity: Severity
    applies: Callable[[SeverityInput], bool]


# Evaluated top to bottom; the first rule that applies wins.
SEVERITY_RULES: Tuple[SeverityRule, ...] = (
    SeverityRule(
        "drop_with_hard_dependency", Severity.CRITICAL,
        lambda i: i.change_type == ChangeType.DROP and i.hard_dependency,
    ),
    SeverityRule(
        "drop_unused", Severity.LOW,
        lambda i: i.change_type == ChangeType.DROP and i.total_count == 0,
    ),
    SeverityRule(
        "many_dependents", Severity.HIGH,
        lambda i: i.change_type in (ChangeType.MODIFY, ChangeType.DROP) and i.direct_count >= i.threshold,
    ),
    SeverityRule(
        "rename", Severity.MEDIUM,
        lambda i: i.change_type == ChangeType.RENAME,
    ),
    SeverityRule(
        "modify_few_dependents", Severity.LOW,
        lambda i: i.change_type == ChangeType.MODIFY and i.direct_count < i.threshold,
    ),
)

FALLBACK_RULE = "unclassified"

SUGGESTIONS: Dict[Tuple[ChangeType, Severity], Tuple[str, ...]] = {
    (ChangeType.MODIFY, Severity.LOW): (
        "Verify the dependent queries still produce the expected results",
    ),
    (ChangeType.MODIFY, Severity.MEDIUM): (
        "Review every dependent query for type and semantic compatibility",
        "Test the change against the dependent views before deploying",
    ),
    (ChangeType.MODIFY, Severity.HIGH): (
        "High impact: schedule this change during a maintenance window",
        "Create a rollback plan in case of issues",
        "Notify the teams that own the dependent objects",
    ),
    (ChangeType.MODIFY, Severity.CRITICAL): (
        "Review foreign key constraints that reference this object",
        "Schedule this change during a maintenance window",
        "Create a rollback plan in case of issues",
    ),
    (ChangeType.RENAME, Severity.LOW): (
        "Update the remaining references to the old name",
    ),
    (ChangeType.RENAME, Severity.MEDIUM): (
        "Use refactoring tooling to update all references before renaming",
        "Consider creating a synonym or alias for backward compatibility",
    ),
    (ChangeType.RENAME, Severity.HIGH): (
        "Use refactoring tooling to update all references before renaming",
        "Keep a compatibility view under the old name until consumers migrate",
        "Notify the teams that own the dependent objects",
    ),
    (ChangeType.RENAME, Severity.CRITICAL): (
        "Update foreign key constraints to the new name in the same migration",
        "Use refactoring tooling to update all references before renaming",
        "Keep a compatibility view under the old name until consumers migrate",
    ),
    (ChangeType.DROP, Severity.LOW): (
        "No dependents found; the object appears safe to remove",
        "Confirm nothing outside the workspace still uses it",
    ),
    (ChangeType.DROP, Severity.MEDIUM): (
        "Consider marking the object as deprecated instead of dropping immediately",
        "Notify the affected teams about this change",
    ),
    (ChangeType.DROP, Severity.HIGH): (
        "Consider marking the object as deprecated instead of dropping immediately",
        "Migrate the dependent objects before dropping",
        "Create a rollback plan in case of issues",
    ),
    (ChangeType.DROP, Severity.CRITICAL): (
        "Review foreign key constraints that reference this object",
        "Drop or repoint dependent foreign keys and mandatory joins first",
        "Notify all users about this change",
    ),
}


def classify_severity(facts: SeverityInput) -> Tuple[Severity, str]:
    """Return (severity, rule name) from the decision table, MEDIUM when nothing applies."""
    for rule in SEVERITY_RULES:
        if rule.applies(facts):
            return rule.severity, rule.name
    return Severity.MEDIUM, FALLBACK_RULE


class ImpactAnalyzer(BaseAnalyzer):
    """Classifies the downstream blast radius of a hypothetical change."""

    def __init__(self, graph, config=None, relation_index=None,
                 flow: Optional[FlowAnalyzer] = None, columns: Optional[ColumnLineageTracker] = None):
        super().__init__(graph, config, relation_index)
        self.flow = flow or FlowAnalyzer(graph, self.config, self.relation_index)
        self.columns = columns or ColumnLineageTracker(graph, self.config, self.relation_index)

    def analyze(self, target: ImpactTarget, change_type: ChangeType) -> ImpactReport:
        """
        Analyze the impact of changing a table or column.

        Args:
            target: Relation (and optionally column) being changed
            change_type: MODIFY, RENAME or DROP

        Returns:
            ImpactReport with severity, direct/transitive impacts and suggestions
        """
        change_type = self._change_type(change_type)
        relation = self.resolve_relation(target.table)
        column_node = self.resolve_column(relation.id, target.column) if target.is_column else None
        logger.info(f"Analyzing {change_type.value} impact of {target}")

        flow = self.flow.downstream(relation.id, UNLIMITED)
        items = self._flow_items(flow, relation, column_node)
        if column_node is not None:
            items = self._column_items(items, relation, column_node)

        items.sort(key=lambda item: (item.depth, item.node.id))
        direct = tuple(item for item in items if item.impact_type == DIRECT)
        transitive = tuple(item for item in items if item.impact_type == TRANSITIVE)

        column = normalize_column_name(column_node.name) if column_node is not None else None
        severity_input = SeverityInput(
            change_type=change_type,
            direct_count=len(direct),
            total_count=len(items),
            hard_dependency=any(self._is_hard(edge, column) for item in direct for edge in item.via),
            threshold=self.config.many_dependents_threshold,
        )
        severity, rule = classify_severity(severity_input)
        diagnostics = []
        if rule == FALLBACK_RULE:
            diagnostics.append(
                f"No severity rule matched {change_type.value} with {len(direct)} direct and "
                f"{len(transitive)} transitive impacts; defaulting to {severity.value}"
            )
            logger.warning(diagnostics[-1])
        if flow.cycle_members:
            diagnostics.append(f"Circular dependency among: {', '.join(sorted(flow.cycle_members))}")

        report = ImpactReport(
            target=target,
            change_type=change_type,
            severity=severity,
            direct_impacts=direct,
            transitive_impacts=transitive,
            suggestions=SUGGESTIONS[(change_type, severity)],
            summary=ImpactSummary.from_items(items),
            rule=rule,
            diagnostics=tuple(diagnostics),
        )
        logger.info(f"Impact of {change_type.value} {target}: {severity.value} "
                    f"({len(direct)} direct, {len(transitive)} transitive)")
        return report

    @staticmethod
    def _change_type(change_type) -> ChangeType:
        try:
            return ChangeType(change_type)
        except ValueError:
            raise InvalidArgumentError(
                f"Invalid change type '{change_type}'. Must be one of: "
                f"{', '.join(c.value for c in ChangeType)}"
            )

    @staticmethod
    def _is_hard(edge: Edge, column: Optional[str]) -> bool:
        """Foreign keys and mandatory joins break outright when their source disappears."""
        if edge.family != EdgeFamily.REFERENCE:
            return False
        if edge.kind == ReferenceKind.FOREIGN_KEY or (edge.kind == ReferenceKind.JOIN and edge.mandatory):
            return column is None or column in edge.columns
        return False

    def _item(self, node: Node, depth: int, via: Tuple[Edge, ...], reason: str) -> ImpactItem:
        located = min(via, key=lambda e: e.provenance) if via else None
        return ImpactItem(
            node=node,
            impact_type=DIRECT if depth == 1 else TRANSITIVE,
            depth=depth,
            reason=reason,
            via=via,
            file_path=located.file_path if located else node.file_path,
            line=located.line if located else node.line,
        )

    def _flow_items(self, flow: FlowResult, relation: Node, column_node: Optional[Node]) -> List[ImpactItem]:
        items = []
        for node in flow.nodes:
            via = flow.edges_by_node[node.id]
            depth = flow.levels[node.id]
            if column_node is not None:
                reason = f"Uses column '{relation.name}.{column_node.name}'"
            elif depth == 1:
                reason = f"Depends on {relation.kind.value} '{relation.name}' ({via[0].kind.value})"
            else:
                through = self.graph.nodes[via[0].source_id]
                reason = f"Depends on {relation.kind.value} '{relation.name}' through '{through.name}'"
            items.append(self._item(node, depth, via, reason))
        return items

    def _column_items(self, items: List[ImpactItem], relation: Node, column_node: Node) -> List[ImpactItem]:
        """Keep the relations that really use the column; add those only linked through column lineage."""
        column = normalize_column_name(column_node.name)
        dependents = self.columns.dependents_of(column_node, UNLIMITED)

        users: Dict[str, int] = {}
        for column_id, depth in dependents.items():
            owner = self.graph.nodes[column_id].parent_id
            if owner != relation.id:
                users[owner] = min(depth, users.get(owner, depth))
        for edge in self.graph.outgoing(relation.id):
            if column in edge.columns and edge.target_id != relation.id:
                users[edge.target_id] = 1

        kept = [item for item in items if item.node.id in users]
        known: Set[str] = {item.node.id for item in kept}
        reason = f"Uses column '{relation.name}.{column_node.name}'"
        sources = set(dependents) | {column_node.id}
        for owner_id in sorted(set(users) - known):
            via = tuple(
                edge
                for owned in self.graph.columns_of(owner_id)
                for edge in self.graph.incoming(owned.id, EdgeFamily.TRANSFORMATION)
                if edge.source_id in sources
            )
            kept.append(self._item(self.graph.nodes[owner_id], users[owner_id], via, reason))
        return kept
