"""Rich console output formatter."""

from typing import Any, Dict, List, Optional
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.text import Text
from rich.tree import Tree

from ..core.engine import QueryResponse

SEVERITY_STYLES = {
    "low": "green",
    "medium": "yellow",
    "high": "red",
    "critical": "bold white on red",
}

KIND_STYLES = {
    "table": "green",
    "view": "cyan",
    "cte": "magenta",
    "column": "yellow",
}


def _styled(node: Dict[str, Any]) -> str:
    style = KIND_STYLES.get(node.get("kind"), "white")
    return f"[{style}]{node.get('name')}[/{style}] [dim]({node.get('kind')})[/dim]"


class ConsoleFormatter:
    """Formats query responses for rich console output."""

    def __init__(self, console: Optional[Console] = None):
        """
        Initialize console formatter.

        Args:
            console: Rich console instance (creates new one if None)
        """
        self.console = console or Console()

    def format(self, response: QueryResponse) -> None:
        """
        Format and print a query response to the console.

        Args:
            response: QueryResponse to format
        """
        self.console.print()
        if not response.ok:
            self._print_error(response)
            return

        printer = {
            "getStats": self._print_stats,
            "getLineage": self._print_lineage,
            "getColumnLineage": self._print_column_lineage,
            "analyzeImpact": self._print_impact,
            "exploreTable": self._print_explore,
            "searchTables": self._print_search,
            "getWarnings": self._print_warnings,
        }.get(response.command)
        if printer is None:
            self.console.print(response.data)
            return
        printer(response.data)

    def _print_error(self, response: QueryResponse) -> None:
        """Print a failed query."""
        error = response.error
        text = f"[bold]{error.kind}[/bold]: {error.message}"
        if error.suggestions:
            text += "\n\n[bold]Did you mean:[/bold]\n" + "\n".join(f"• {s}" for s in error.suggestions)
        self.console.print(Panel(text, title=f"[red]{response.command} failed[/red]", border_style="red"))

    def _print_stats(self, data: Dict[str, Any]) -> None:
        table = Table(title="[bold blue]Lineage Graph Statistics[/bold blue]", show_header=True)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="white", justify="right")
        for key, value in data.items():
            table.add_row(key.replace("_", " ").title(), f"{value:,}")
        self.console.print(table)

    def _leveled_tree(self, label: str, result: Dict[str, Any], arrow: str) -> Tree:
        tree = Tree(label)
        levels: Dict[int, List[Dict[str, Any]]] = {}
        for node in result["nodes"]:
            levels.setdefault(node["depth"], []).append(node)
        if not levels:
            tree.add("[dim]Nothing found[/dim]")
        for depth in sorted(levels):
            level = tree.add(f"[bold]Depth {depth}[/bold]")
            for node in levels[depth]:
                marker = " [red]↻ cycle[/red]" if node.get("in_cycle") else ""
                level.add(f"{arrow} {_styled(node)}{marker}")
        return tree

    def _print_lineage(self, data: Dict[str, Any]) -> None:
        """Print upstream/downstream lineage grouped by depth."""
        node = data["node"]
        self.console.print(Panel.fit(
            f"[bold]Node:[/bold] {_styled(node)}\n"
            f"[bold]Direction:[/bold] {data['direction']}\n"
            f"[bold]Discovered:[/bold] {data['total_discovered']}",
            title=Text("Lineage", style="bold blue"),
            border_style="blue",
        ))
        if "upstream" in data:
            self.console.print(self._leveled_tree("⬆ Upstream (sources)", data["upstream"], "←"))
        if "downstream" in data:
            self.console.print(self._leveled_tree("⬇ Downstream (consumers)", data["downstream"], "→"))
        if data.get("cycle_members"):
            self.console.print(f"[yellow]Circular dependency among:[/yellow] {', '.join(data['cycle_members'])}")

    def _add_chain(self, parent: Tree, tree: Dict[str, Any]) -> None:
        """Attach a flattened chain tree to ``parent``; a shared subtree is drawn once."""
        entries = {entry["id"]: entry for entry in tree["nodes"]}
        drawn = set()
        pending = [(parent, tree["root"])]
        while pending:
            branch, entry_id = pending.pop()
            entry = entries[entry_id]
            kind = entry["type"]
            if kind == "derived":
                step = entry["step"]
                if entry_id in drawn:
                    branch.add(f"[dim]↺ lineage of {step['target_table']}.{step['target_column']} shown above[/dim]")
                    continue
                expression = f" [dim]{step['expression']}[/dim]" if step.get("expression") else ""
                line = branch.add(
                    f"← [blue]{step['source_table']}.{step['source_column']}[/blue] "
                    f"[magenta]{step['kind']}[/magenta]{expression}"
                )
                pending.append((line, entry["upstream"]))
            elif kind == "branch":
                if entry_id in drawn:
                    branch.add(f"[dim]↺ lineage of {entry['table']}.{entry['column']} shown above[/dim]")
                    continue
                fan_in = branch.add(f"[bold]fan-in ({entry['kind']})[/bold]")
                pending.extend((fan_in, sub_id) for sub_id in reversed(entry["branches"]))
            elif kind == "cycle":
                branch.add(f"[red]↻ cycle at {entry['table']}.{entry['column']}[/red]")
            elif kind == "depth_limit":
                branch.add(f"[yellow]… depth limit reached at {entry['table']}.{entry['column']}[/yellow]")
            else:
                branch.add("[green]✓ source column[/green]")
            drawn.add(entry_id)

    def _print_column_lineage(self, data: Dict[str, Any]) -> None:
        """Print a transformation chain as a tree."""
        tree = Tree(f"🎯 [yellow]{data['target_table']}.{data['target_column']}[/yellow] "
                    f"[dim]({data['step_count']} steps)[/dim]")
        self._add_chain(tree, data["tree"])
        self.console.print(tree)

        if data["sources"]:
            sources = ", ".join(f"{s['table']}.{s['column']}" for s in data["sources"])
            self.console.print(f"[bold]Source columns:[/bold] {sources}")
        if data["has_cycle"]:
            self.console.print("[red]Lineage contains a cycle[/red]")
        if data["truncated"]:
            self.console.print("[yellow]Trace truncated by the depth limit[/yellow]")

    def _print_impact(self, data: Dict[str, Any]) -> None:
        """Print an impact report."""
        target = data["target"]
        name = f"{target['table']}.{target['column']}" if target["column"] else target["table"]
        severity = data["severity"]
        style = SEVERITY_STYLES.get(severity, "white")
        summary = data["summary"]
        self.console.print(Panel.fit(
            f"[bold]Target:[/bold] {name}\n"
            f"[bold]Change:[/bold] {data['change_type']}\n"
            f"[bold]Severity:[/bold] [{style}]{severity.upper()}[/{style}] [dim]({data['rule']})[/dim]\n"
            f"[bold]Affected:[/bold] {summary['total_affected']} "
            f"({summary['tables_affected']} tables, {summary['views_affected']} views, "
            f"{summary['ctes_affected']} CTEs in {summary['files_affected']} files)",
            title=Text("Impact Analysis", style="bold blue"),
            border_style=style if severity in ("high", "critical") else "blue",
        ))

        items = data["direct_impacts"] + data["transitive_impacts"]
        if items:
            table = Table(show_header=True)
            table.add_column("Object")
            table.add_column("Impact", style="cyan")
            table.add_column("Depth", justify="right")
            table.add_column("Reason", style="white")
            table.add_column("Location", style="dim")
            for item in items:
                location = f"{item['file_path']}:{item['line']}" if item["file_path"] else ""
                table.add_row(_styled(item["node"]), item["impact_type"], str(item["depth"]),
                              item["reason"], location)
            self.console.print(table)
        else:
            self.console.print("  [dim]No dependent objects found[/dim]")

        self.console.print("\n[bold]Suggestions:[/bold]")
        for suggestion in data["suggestions"]:
            self.console.print(f"  • {suggestion}")
        for diagnostic in data["diagnostics"]:
            self.console.print(f"  [yellow]! {diagnostic}[/yellow]")

    def _print_explore(self, data: Dict[str, Any]) -> None:
        """Print a single relation with its neighbours."""
        node = data["node"]
        location = f"{node['file_path']}:{node['line']}" if node.get("file_path") else "N/A"
        self.console.print(Panel.fit(
            f"[bold]Name:[/bold] {_styled(node)}\n"
            f"[bold]Id:[/bold] {node['id']}\n"
            f"[bold]Defined in:[/bold] {location}"
            + ("\n[red]Part of a circular dependency[/red]" if data["in_cycle"] else ""),
            title=Text("Table Explorer", style="bold blue"),
            border_style="blue",
        ))

        if data["columns"]:
            col_table = Table(title="Columns", show_header=True)
            col_table.add_column("Name", style="yellow")
            col_table.add_column("Type", style="blue")
            col_table.add_column("Nullable", style="green")
            col_table.add_column("Key", style="red")
            for column in data["columns"]:
                col_table.add_row(
                    column["name"],
                    column.get("data_type") or "",
                    "Yes" if column.get("nullable", True) else "No",
                    "PK" if column.get("primary_key") else "",
                )
            self.console.print(col_table)

        tree = Tree("🔗 Neighbours")
        upstream = tree.add("[bold]Upstream[/bold]")
        for neighbour in data["upstream"] or []:
            kinds = ", ".join(sorted({edge["kind"] for edge in neighbour["via"]}))
            upstream.add(f"← {_styled(neighbour)} [dim]{kinds}[/dim]")
        downstream = tree.add("[bold]Downstream[/bold]")
        for neighbour in data["downstream"] or []:
            kinds = ", ".join(sorted({edge["kind"] for edge in neighbour["via"]}))
            downstream.add(f"→ {_styled(neighbour)} [dim]{kinds}[/dim]")
        self.console.print(tree)

    def _print_search(self, data: Dict[str, Any]) -> None:
        table = Table(title=f"Search results for '{data['query']}' ({data['total_matches']} matches)")
        table.add_column("Id", style="cyan")
        table.add_column("Kind")
        table.add_column("Location", style="dim")
        for node in data["results"]:
            location = f"{node['file_path']}:{node['line']}" if node.get("file_path") else ""
            table.add_row(node["id"], node["kind"], location)
        self.console.print(table)

    def _print_warnings(self, data: Dict[str, Any]) -> None:
        """Print build warnings."""
        if not data["warnings"]:
            self.console.print("[green]No build warnings[/green]")
            return
        warning_text = "\n".join(
            f"• [bold]{w['kind']}[/bold] {w['message']}"
            + (f" [dim]({w['file_path']}:{w['line']})[/dim]" if w.get("file_path") else "")
            for w in data["warnings"]
        )
        self.console.print(Panel(
            warning_text,
            title=f"[yellow]Warnings ({data['count']})[/yellow]",
            border_style="yellow"
        ))
