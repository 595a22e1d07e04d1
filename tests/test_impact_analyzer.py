"""Tests for change impact analysis."""

import itertools

import pytest
from workspace_lineage.analyzers import ImpactAnalyzer, ImpactTarget
from workspace_lineage.analyzers.impact_analyzer import (
    FALLBACK_RULE,
    SEVERITY_RULES,
    SUGGESTIONS,
    SeverityInput,
    classify_severity,
)
from workspace_lineage.core.config import EngineConfig
from workspace_lineage.core.errors import InvalidArgumentError, NodeNotFoundError
from workspace_lineage.core.models import ChangeType, Severity


def _ids(items):
    return [item.node.id for item in items]


@pytest.fixture
def impact(ecommerce_graph):
    return ImpactAnalyzer(ecommerce_graph)


def _hub_graph(builder, consumers):
    """One table read by ``consumers`` views."""
    return builder.build({
        "hub.sql": {
            "tables": [{"name": "hub", "columns": ["id"]}],
            "views": [{"name": f"consumer_{i}"} for i in range(consumers)],
            "references": [
                {"kind": "select_source", "source": "hub", "target": f"consumer_{i}", "line": i + 1}
                for i in range(consumers)
            ],
        }
    })


class TestSeverityTable:

    @staticmethod
    def _expected(change_type, hard, direct, total, threshold):
        if change_type == ChangeType.DROP and hard:
            return Severity.CRITICAL
        if change_type == ChangeType.DROP and total == 0:
            return Severity.LOW
        if change_type in (ChangeType.MODIFY, ChangeType.DROP) and direct >= threshold:
            return Severity.HIGH
        if change_type == ChangeType.RENAME:
            return Severity.MEDIUM
        if change_type == ChangeType.MODIFY:
            return Severity.LOW
        return Severity.MEDIUM

    def test_every_combination_is_classified(self):
        """Each (change type, dependency shape) maps to exactly one severity."""
        threshold = 5
        for change_type, hard, direct, transitive in itertools.product(
            ChangeType, (False, True), (0, 1, threshold - 1, threshold, threshold + 3), (0, 2)
        ):
            if direct == 0 and (hard or transitive):
                continue
            facts = SeverityInput(change_type, direct, direct + transitive, hard, threshold)
            severity, rule = classify_severity(facts)
            assert severity == self._expected(change_type, hard, direct, direct + transitive, threshold)
            matching = [r for r in SEVERITY_RULES if r.applies(facts)]
            assert rule == (matching[0].name if matching else FALLBACK_RULE)

    def test_fallback_is_medium(self):
        severity, rule = classify_severity(SeverityInput(ChangeType.DROP, 1, 1, False, 5))
        assert (severity, rule) == (Severity.MEDIUM, FALLBACK_RULE)

    def test_suggestions_cover_every_pair(self):
        assert set(SUGGESTIONS) == set(itertools.product(ChangeType, Severity))
        assert all(SUGGESTIONS[key] and all(isinstance(s, str) for s in SUGGESTIONS[key]) for key in SUGGESTIONS)


class TestTableImpact:

    def test_drop_with_foreign_key_dependent(self, impact):
        """Dropping a table referenced by a foreign key is critical."""
        report = impact.analyze(ImpactTarget("products"), ChangeType.DROP)
        assert report.severity == Severity.CRITICAL
        assert report.rule == "drop_with_hard_dependency"
        assert _ids(report.direct_impacts) == ["table:order_items"]
        assert _ids(report.transitive_impacts) == ["table:orders", "view:order_analytics"]
        assert report.suggestions == SUGGESTIONS[(ChangeType.DROP, Severity.CRITICAL)]

        direct = report.direct_impacts[0]
        assert direct.impact_type == "direct"
        assert direct.depth == 1
        assert (direct.file_path, direct.line) == ("schema/orders.sql", 13)
        assert "foreign_key" in direct.reason

    def test_summary(self, impact):
        summary = impact.analyze(ImpactTarget("products"), ChangeType.DROP).summary
        assert summary.total_affected == 3
        assert summary.tables_affected == 2
        assert summary.views_affected == 1
        assert summary.ctes_affected == 0
        assert summary.files_affected == 2

    def test_drop_with_mandatory_join_dependent(self, impact):
        report = impact.analyze(ImpactTarget("order_items"), ChangeType.DROP)
        assert report.severity == Severity.CRITICAL
        assert _ids(report.direct_impacts) == ["table:orders"]

    def test_drop_unused(self, impact):
        report = impact.analyze(ImpactTarget("daily_sales"), ChangeType.DROP)
        assert report.severity == Severity.LOW
        assert report.direct_impacts == ()
        assert report.transitive_impacts == ()

    def test_drop_soft_dependent_falls_back(self, impact):
        report = impact.analyze(ImpactTarget("raw_sales"), ChangeType.DROP)
        assert report.severity == Severity.MEDIUM
        assert report.rule == FALLBACK_RULE
        assert len(report.diagnostics) == 1

    def test_drop_optional_join_is_not_critical(self, fan_in_graph):
        report = ImpactAnalyzer(fan_in_graph).analyze(ImpactTarget("payments"), ChangeType.DROP)
        assert report.severity == Severity.MEDIUM

    def test_rename_is_medium(self, impact):
        for table in ("products", "daily_sales", "orders"):
            assert impact.analyze(ImpactTarget(table), ChangeType.RENAME).severity == Severity.MEDIUM

    def test_modify_few_dependents(self, impact):
        report = impact.analyze(ImpactTarget("orders"), ChangeType.MODIFY)
        assert report.severity == Severity.LOW
        assert _ids(report.direct_impacts) == ["view:order_analytics"]

    def test_many_dependents(self, builder):
        graph = _hub_graph(builder, 5)
        report = ImpactAnalyzer(graph).analyze(ImpactTarget("hub"), ChangeType.MODIFY)
        assert report.severity == Severity.HIGH
        assert len(report.direct_impacts) == 5
        assert ImpactAnalyzer(graph).analyze(ImpactTarget("hub"), ChangeType.DROP).severity == Severity.HIGH

    def test_below_threshold(self, builder):
        report = ImpactAnalyzer(_hub_graph(builder, 4)).analyze(ImpactTarget("hub"), ChangeType.MODIFY)
        assert report.severity == Severity.LOW

    def test_configured_threshold(self, builder):
        graph = _hub_graph(builder, 2)
        analyzer = ImpactAnalyzer(graph, EngineConfig(many_dependents_threshold=2))
        assert analyzer.analyze(ImpactTarget("hub"), ChangeType.MODIFY).severity == Severity.HIGH

    def test_change_type_string(self, impact):
        assert impact.analyze(ImpactTarget("orders"), "rename").change_type == ChangeType.RENAME

    def test_cycle_is_reported(self, cyclic_graph):
        report = ImpactAnalyzer(cyclic_graph).analyze(ImpactTarget("view_a"), ChangeType.MODIFY)
        assert _ids(report.direct_impacts) == ["view:view_b"]
        assert any("Circular" in d for d in report.diagnostics)


class TestColumnImpact:

    def test_drop_foreign_key_column(self, impact):
        report = impact.analyze(ImpactTarget("products", "id"), ChangeType.DROP)
        assert report.severity == Severity.CRITICAL
        assert _ids(report.direct_impacts) == ["table:order_items"]
        assert report.transitive_impacts == ()

    def test_unused_column(self, impact):
        report = impact.analyze(ImpactTarget("products", "price"), ChangeType.DROP)
        assert report.severity == Severity.LOW
        assert report.summary.total_affected == 0

    def test_filters_to_column_users(self, impact):
        used = impact.analyze(ImpactTarget("orders", "id"), ChangeType.MODIFY)
        assert _ids(used.direct_impacts) == ["view:order_analytics"]
        assert used.direct_impacts[0].reason == "Uses column 'orders.id'"

        unused = impact.analyze(ImpactTarget("orders", "customer_id"), ChangeType.MODIFY)
        assert unused.direct_impacts == ()

    def test_transitive_column_user(self, impact):
        report = impact.analyze(ImpactTarget("order_items", "quantity"), ChangeType.DROP)
        assert report.direct_impacts == ()
        assert _ids(report.transitive_impacts) == ["view:order_analytics"]
        assert report.severity == Severity.MEDIUM

    def test_column_lineage_without_reference(self, builder):
        graph = builder.build({
            "a.sql": {
                "tables": [{"name": "src", "columns": ["a"]}, {"name": "dst", "columns": ["b"]}],
                "transformations": [
                    {"target_table": "dst", "target_column": "b", "sources": [{"table": "src", "column": "a"}]}
                ],
            }
        })
        report = ImpactAnalyzer(graph).analyze(ImpactTarget("src", "a"), ChangeType.MODIFY)
        assert _ids(report.direct_impacts) == ["table:dst"]
        assert [e.id for e in report.direct_impacts[0].via] == ["column:src.a->column:dst.b:direct"]


class TestErrors:

    def test_unknown_table(self, impact):
        with pytest.raises(NodeNotFoundError):
            impact.analyze(ImpactTarget("nonexistent"), ChangeType.DROP)

    def test_unknown_column(self, impact):
        with pytest.raises(NodeNotFoundError):
            impact.analyze(ImpactTarget("products", "colour"), ChangeType.DROP)

    def test_invalid_change_type(self, impact):
        with pytest.raises(InvalidArgumentError):
            impact.analyze(ImpactTarget("products"), "truncate")
