"""Tests for fact conversion and loading."""

import json

import pytest
from workspace_lineage.core.errors import MalformedFactsError
from workspace_lineage.core.facts import (
    ColumnTransformationFact,
    FileFacts,
    ReferenceFact,
    load_workspace_facts,
)
from workspace_lineage.core.models import NodeKind, ReferenceKind, TransformationKind


class TestReferenceFact:

    @pytest.mark.parametrize("raw_kind, expected", [
        ("foreign_key", ReferenceKind.FOREIGN_KEY),
        ("ForeignKey", ReferenceKind.FOREIGN_KEY),
        ("fk", ReferenceKind.FOREIGN_KEY),
        ("JOIN", ReferenceKind.JOIN),
        ("select-source", ReferenceKind.SELECT_SOURCE),
        ("from", ReferenceKind.SELECT_SOURCE),
        ("insertTarget", ReferenceKind.INSERT_TARGET),
        ("view_source", ReferenceKind.VIEW_SOURCE),
    ])
    def test_kind_spellings(self, raw_kind, expected):
        fact = ReferenceFact.from_dict({"kind": raw_kind, "source": "a", "target": "b"}, "x.sql")
        assert fact.kind == expected

    def test_outer_join_is_optional(self):
        fact = ReferenceFact.from_dict(
            {"kind": "join", "source": "a", "target": "b", "join_type": "LEFT"}, "x.sql"
        )
        assert fact.mandatory is False

    def test_inner_join_is_mandatory(self):
        fact = ReferenceFact.from_dict(
            {"kind": "join", "source": "a", "target": "b", "join_type": "inner"}, "x.sql"
        )
        assert fact.mandatory is True

    def test_foreign_key_always_mandatory(self):
        fact = ReferenceFact.from_dict(
            {"kind": "foreign_key", "source": "a", "target": "b", "mandatory": False}, "x.sql"
        )
        assert fact.mandatory is True

    def test_missing_target(self):
        with pytest.raises(MalformedFactsError) as exc_info:
            ReferenceFact.from_dict({"kind": "join", "source": "a"}, "x.sql")
        assert exc_info.value.file_path == "x.sql"
        assert "target" in str(exc_info.value)

    def test_columns_must_be_strings(self):
        with pytest.raises(MalformedFactsError):
            ReferenceFact.from_dict({"kind": "join", "source": "a", "target": "b", "columns": [1]}, "x.sql")


class TestTransformationFact:

    def test_optional_kind(self):
        fact = ColumnTransformationFact.from_dict(
            {"target_table": "t", "target_column": "c", "sources": [{"table": "s", "column": "c"}]},
            "x.sql",
        )
        assert fact.kind is None
        assert fact.sources[0].table == "s"

    def test_kind_alias(self):
        fact = ColumnTransformationFact.from_dict(
            {
                "target_table": "t",
                "target_column": "c",
                "sources": [{"table": "s", "column": "c"}],
                "kind": "CaseExpression",
            },
            "x.sql",
        )
        assert fact.kind == TransformationKind.CASE_EXPRESSION

    def test_sources_required(self):
        with pytest.raises(MalformedFactsError):
            ColumnTransformationFact.from_dict(
                {"target_table": "t", "target_column": "c", "sources": []}, "x.sql"
            )


class TestFileFacts:

    def test_from_dict(self):
        facts = FileFacts.from_dict("x.sql", {
            "tables": [{"name": "orders", "line": 3, "columns": ["id", {"name": "total", "data_type": "INT"}]}],
            "views": [{"name": "v_orders"}],
            "ctes": [{"name": "recent"}],
            "columns": [{"table": "orders", "name": "status"}],
        })
        assert [(r.kind, r.name) for r in facts.relations] == [
            (NodeKind.TABLE, "orders"),
            (NodeKind.VIEW, "v_orders"),
            (NodeKind.CTE, "recent"),
        ]
        assert [c.name for c in facts.all_columns()] == ["id", "total", "status"]
        assert facts.relations[0].columns[1].data_type == "INT"

    def test_empty_dict(self):
        facts = FileFacts.from_dict("x.sql", {})
        assert facts.relations == ()
        assert facts.references == ()

    @pytest.mark.parametrize("raw", [
        None,
        "tables",
        {"tables": "orders"},
        {"tables": ["orders"]},
        {"tables": [{"name": "t", "line": -1}]},
        {"tables": [{"name": "t", "columns": [{"name": "c", "nullable": "yes"}]}]},
        {"tables": [{"name": "t", "columns": ["   "]}]},
    ])
    def test_malformed(self, raw):
        with pytest.raises(MalformedFactsError):
            FileFacts.from_dict("x.sql", raw)


class TestLoadWorkspaceFacts:

    def test_plain_mapping(self, tmp_path, ecommerce_facts):
        path = tmp_path / "facts.json"
        path.write_text(json.dumps(ecommerce_facts), encoding="utf-8")
        assert load_workspace_facts(str(path)) == ecommerce_facts

    def test_files_wrapper(self, tmp_path, ecommerce_facts):
        path = tmp_path / "facts.json"
        path.write_text(json.dumps({"version": 1, "files": ecommerce_facts}), encoding="utf-8")
        assert load_workspace_facts(str(path)) == ecommerce_facts

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "facts.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(MalformedFactsError):
            load_workspace_facts(str(path))

    def test_not_an_object(self, tmp_path):
        path = tmp_path / "facts.json"
        path.write_text("[1, 2, 3]", encoding="utf-8")
        with pytest.raises(MalformedFactsError):
            load_workspace_facts(str(path))
