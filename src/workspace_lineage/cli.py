"""Command-line interface for the workspace lineage engine."""

import sys
from functools import wraps
from typing import Optional

import click
from rich.console import Console

from .core.config import EngineConfig
from .core.engine import LineageEngine, QueryResponse
from .core.errors import LineageError
from .core.facts import load_workspace_facts
from .formatters.json_formatter import JSONFormatter
from .formatters.console_formatter import ConsoleFormatter
from .utils.logging_config import get_logger


def workspace_options(command):
    """Options shared by every query command: the facts file and the output format."""
    @click.option(
        '--facts', '-f', 'facts_path',
        required=True,
        type=click.Path(exists=True, dir_okay=False, readable=True),
        help='Path to the workspace facts JSON produced by the SQL fact extractor'
    )
    @click.option(
        '--output-format', '-o',
        type=click.Choice(['console', 'json']),
        default='console',
        help='Output format (default: console)'
    )
    @click.option(
        '--output-file', '-F',
        type=click.Path(),
        help='Output file path (only for json format)'
    )
    @wraps(command)
    def wrapper(*args, **kwargs):
        return command(*args, **kwargs)
    return wrapper


def _load_engine(facts_path: str, console: Console) -> LineageEngine:
    logger = get_logger('cli')
    try:
        engine = LineageEngine(EngineConfig.from_env())
        engine.rebuild(load_workspace_facts(facts_path))
    except LineageError as e:
        logger.error(f"Failed to load workspace facts from {facts_path}: {e}")
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except (OSError, UnicodeDecodeError) as e:
        logger.error(f"Failed to read {facts_path}: {e}")
        console.print(f"[red]Error:[/red] Failed to read facts file: {e}")
        sys.exit(1)
    return engine


def _emit(response: QueryResponse, output_format: str, output_file: Optional[str], console: Console) -> None:
    """Print a response and exit with status 1 when the query failed."""
    logger = get_logger('cli')
    if output_format == 'json':
        formatter = JSONFormatter()
        if output_file:
            try:
                formatter.format_to_file(response, output_file)
                logger.info(f"Results written to file: {output_file}")
                console.print(f"[green]Results written to:[/green] {output_file}")
            except OSError as e:
                logger.error(f"Failed to write output file {output_file}: {e}")
                console.print(f"[red]Error:[/red] Failed to write output file: {e}")
                sys.exit(1)
        else:
            click.echo(formatter.format(response))
    else:
        ConsoleFormatter(console).format(response)

    if not response.ok:
        logger.warning(f"{response.command} failed: {response.error.message}")
        sys.exit(1)


@click.group()
@click.version_option(version="1.0.0", prog_name="workspace-lineage")
def cli():
    """Workspace Lineage - upstream lineage, impact analysis and column lineage for SQL workspaces."""
    logger = get_logger('cli')
    logger.debug("Workspace Lineage CLI started")


@cli.command()
@workspace_options
def stats(facts_path: str, output_format: str, output_file: Optional[str]):
    """Show node and edge counts of the workspace graph."""
    console = Console()
    engine = _load_engine(facts_path, console)
    _emit(engine.get_stats(), output_format, output_file, console)


@cli.command()
@click.argument('node_id')
@click.option(
    '--direction', '-d',
    type=click.Choice(['upstream', 'downstream', 'both']),
    default='both',
    help='Traversal direction (default: both)'
)
@click.option(
    '--depth', '-D',
    type=int,
    default=None,
    help='Hops to follow; omit or 0 for direct neighbours, negative for unlimited'
)
@workspace_options
def lineage(node_id: str, direction: str, depth: Optional[int],
            facts_path: str, output_format: str, output_file: Optional[str]):
    """Show upstream/downstream lineage of NODE_ID (e.g. table:orders)."""
    console = Console()
    engine = _load_engine(facts_path, console)
    _emit(engine.get_lineage(node_id, direction, depth), output_format, output_file, console)


@cli.command('column-lineage')
@click.argument('table')
@click.argument('column')
@click.option(
    '--depth', '-D',
    type=int,
    default=-1,
    help='Maximum hops to trace back (default: unlimited)'
)
@workspace_options
def column_lineage(table: str, column: str, depth: int,
                   facts_path: str, output_format: str, output_file: Optional[str]):
    """Trace how TABLE.COLUMN is derived from its source columns."""
    console = Console()
    engine = _load_engine(facts_path, console)
    _emit(engine.get_column_lineage(table, column, depth), output_format, output_file, console)


@cli.command()
@click.argument('name')
@click.option(
    '--type', '-t', 'target_type',
    type=click.Choice(['table', 'column']),
    default='table',
    help='What NAME refers to (default: table)'
)
@click.option(
    '--table', '-T', 'table_name',
    help='Owning table when analyzing a column'
)
@click.option(
    '--change', '-c', 'change_type',
    type=click.Choice(['modify', 'rename', 'drop']),
    default='modify',
    help='Hypothetical change (default: modify)'
)
@workspace_options
def impact(name: str, target_type: str, table_name: Optional[str], change_type: str,
           facts_path: str, output_format: str, output_file: Optional[str]):
    """Analyze the impact of changing table or column NAME."""
    console = Console()
    engine = _load_engine(facts_path, console)
    response = engine.analyze_impact(target_type, name, table_name=table_name, change_type=change_type)
    _emit(response, output_format, output_file, console)


@cli.command()
@click.argument('table')
@workspace_options
def explore(table: str, facts_path: str, output_format: str, output_file: Optional[str]):
    """Show TABLE with its columns and direct neighbours."""
    console = Console()
    engine = _load_engine(facts_path, console)
    _emit(engine.explore_table(table), output_format, output_file, console)


@cli.command()
@click.argument('query')
@click.option(
    '--kind', '-k',
    type=click.Choice(['table', 'view', 'cte']),
    default=None,
    help='Only return relations of this kind'
)
@click.option(
    '--limit', '-l',
    type=int,
    default=None,
    help='Maximum number of results'
)
@workspace_options
def search(query: str, kind: Optional[str], limit: Optional[int],
           facts_path: str, output_format: str, output_file: Optional[str]):
    """Search tables, views and CTEs by name."""
    console = Console()
    engine = _load_engine(facts_path, console)
    _emit(engine.search_tables(query, kind=kind, limit=limit), output_format, output_file, console)


@cli.command()
@click.option(
    '--kind', '-k',
    type=click.Choice(['UNRESOLVED_REFERENCE', 'MALFORMED_FACTS', 'DUPLICATE_DEFINITION', 'AMBIGUOUS_REFERENCE'],
                      case_sensitive=False),
    default=None,
    help='Only show warnings of this kind'
)
@workspace_options
def warnings(kind: Optional[str], facts_path: str, output_format: str, output_file: Optional[str]):
    """List the warnings recorded while building the workspace graph."""
    console = Console()
    engine = _load_engine(facts_path, console)
    _emit(engine.get_warnings(kind), output_format, output_file, console)


def main():
    """Main entry point."""
    logger = get_logger('main')
    try:
        cli()
    except Exception as e:
        logger.error(f"Unexpected error in main: {str(e)}", exc_info=True)
        raise


if __name__ == '__main__':
    main()
