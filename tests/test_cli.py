"""Tests for the command-line interface and output formatters."""

import io
import json

import pytest
from click.testing import CliRunner
from rich.console import Console

from workspace_lineage import LineageEngine
from workspace_lineage.cli import cli
from workspace_lineage.formatters import ConsoleFormatter, JSONFormatter


@pytest.fixture
def facts_file(tmp_path, ecommerce_facts):
    path = tmp_path / "facts.json"
    path.write_text(json.dumps(ecommerce_facts), encoding="utf-8")
    return str(path)


@pytest.fixture
def runner():
    return CliRunner()


def _run_json(runner, tmp_path, args):
    """Run a command with JSON output written to a file and return the parsed payload."""
    output = tmp_path / "out.json"
    result = runner.invoke(cli, args + ["-o", "json", "-F", str(output)])
    return result, json.loads(output.read_text(encoding="utf-8"))


class TestCommands:

    def test_stats(self, runner, tmp_path, facts_file):
        result, payload = _run_json(runner, tmp_path, ["stats", "-f", facts_file])
        assert result.exit_code == 0
        assert payload["command"] == "getStats"
        assert payload["data"]["table_count"] == 4
        assert payload["data"]["view_count"] == 2

    def test_lineage(self, runner, tmp_path, facts_file):
        result, payload = _run_json(
            runner, tmp_path, ["lineage", "view:order_analytics", "-d", "upstream", "-D", "-1", "-f", facts_file]
        )
        assert result.exit_code == 0
        assert payload["data"]["upstream"]["levels"]["table:products"] == 3

    def test_lineage_not_found_exits_nonzero(self, runner, tmp_path, facts_file):
        result, payload = _run_json(
            runner, tmp_path, ["lineage", "table:nonexistent", "-d", "upstream", "-D", "2", "-f", facts_file]
        )
        assert result.exit_code == 1
        assert payload["success"] is False
        assert payload["error"]["kind"] == "NOT_FOUND"

    def test_column_lineage(self, runner, tmp_path, facts_file):
        result, payload = _run_json(
            runner, tmp_path, ["column-lineage", "daily_sales", "total_revenue", "-f", facts_file]
        )
        assert result.exit_code == 0
        assert payload["data"]["steps"][0]["kind"] == "aggregate"

    def test_impact(self, runner, tmp_path, facts_file):
        result, payload = _run_json(runner, tmp_path, ["impact", "products", "-c", "drop", "-f", facts_file])
        assert result.exit_code == 0
        assert payload["data"]["severity"] == "critical"

    def test_column_impact(self, runner, tmp_path, facts_file):
        result, payload = _run_json(
            runner, tmp_path, ["impact", "price", "-t", "column", "-T", "products", "-c", "drop", "-f", facts_file]
        )
        assert result.exit_code == 0
        assert payload["data"]["severity"] == "low"

    def test_search(self, runner, tmp_path, facts_file):
        result, payload = _run_json(runner, tmp_path, ["search", "sales", "-k", "view", "-f", facts_file])
        assert result.exit_code == 0
        assert [r["id"] for r in payload["data"]["results"]] == ["view:daily_sales"]

    def test_warnings(self, runner, tmp_path, facts_file):
        result, payload = _run_json(runner, tmp_path, ["warnings", "-f", facts_file])
        assert result.exit_code == 0
        assert payload["data"]["count"] == 0

    def test_console_output(self, runner, facts_file):
        result = runner.invoke(cli, ["impact", "products", "-c", "drop", "-f", facts_file])
        assert result.exit_code == 0
        assert "CRITICAL" in result.output
        assert "Suggestions" in result.output

    def test_console_error(self, runner, facts_file):
        result = runner.invoke(cli, ["explore", "order", "-f", facts_file])
        assert result.exit_code == 1
        assert "NOT_FOUND" in result.output

    def test_missing_facts_file(self, runner, tmp_path):
        result = runner.invoke(cli, ["stats", "-f", str(tmp_path / "missing.json")])
        assert result.exit_code != 0

    def test_invalid_facts_file(self, runner, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("[1, 2, 3]", encoding="utf-8")
        result = runner.invoke(cli, ["stats", "-f", str(path)])
        assert result.exit_code == 1


class TestFormatters:

    def test_json_formatter(self, engine):
        payload = json.loads(JSONFormatter().format(engine.get_stats()))
        assert payload["success"] is True
        assert payload["data"]["column_count"] == 19

    def test_json_formatter_data_only(self, engine):
        assert json.loads(JSONFormatter(indent=None).format_data_only(engine.explore_table("nope")))["kind"] == "NOT_FOUND"

    @pytest.mark.parametrize("call, expected", [
        (lambda e: e.get_stats(), "Lineage Graph Statistics"),
        (lambda e: e.get_lineage("table:orders", "both", -1), "Upstream"),
        (lambda e: e.get_column_lineage("order_analytics", "revenue"), "order_items.quantity"),
        (lambda e: e.analyze_impact("table", "orders", change_type="rename"), "MEDIUM"),
        (lambda e: e.explore_table("orders"), "Table Explorer"),
        (lambda e: e.search_tables("order"), "order_items"),
        (lambda e: e.get_warnings(), "No build warnings"),
        (lambda e: e.get_lineage("table:nonexistent"), "NOT_FOUND"),
    ])
    def test_console_formatter(self, engine, call, expected):
        buffer = io.StringIO()
        ConsoleFormatter(Console(file=buffer, width=200, color_system=None)).format(call(engine))
        assert expected in buffer.getvalue()

    def test_console_formatter_draws_shared_lineage_once(self):
        engine = LineageEngine()
        engine.rebuild({
            "layers.sql": {
                "tables": [{"name": f"l{i}", "columns": ["a", "b"]} for i in range(4)],
                "transformations": [
                    {
                        "target_table": f"l{i}",
                        "target_column": column,
                        "sources": [{"table": f"l{i - 1}", "column": "a"}, {"table": f"l{i - 1}", "column": "b"}],
                    }
                    for i in range(1, 4)
                    for column in ("a", "b")
                ],
            }
        })
        buffer = io.StringIO()
        ConsoleFormatter(Console(file=buffer, width=200, color_system=None)).format(
            engine.get_column_lineage("l3", "a")
        )
        output = buffer.getvalue()
        assert "lineage of l1.a shown above" in output
        assert "lineage of l1.b shown above" in output
        assert output.count("source column") == 4

    def test_console_formatter_without_snapshot(self):
        buffer = io.StringIO()
        ConsoleFormatter(Console(file=buffer, width=200, color_system=None)).format(LineageEngine().get_stats())
        assert "NO_SNAPSHOT" in buffer.getvalue()
