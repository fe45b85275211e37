"""
Command-line interface for ledger / bank statement reconciliation.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional
import logging
import sys

import click
import yaml
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .config import ReconConfig, generate_default_config, load_config
from .facade import ReconciliationFacade
from .models.match import MatchStatus
from .models.session import Pagination, PassResult, SessionSummary
from .sources.loaders import load_ledger_csv, load_statement_csv
from .sources.memory import InMemoryLedger, InMemoryStatementSource
from .storage.database import Database
from .utils.exceptions import ReconciliationError
from .utils.logging_config import level_from_name, setup_logging

console = Console()

DATE_FORMATS = ["%Y-%m-%d"]

config_option = click.option(
    "-c",
    "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file (YAML)",
)
database_option = click.option("--database-url", default=None, help="Override storage.database_url")
verbose_option = click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")


@click.group()
@click.version_option(version=__version__)
def main():
    """Bank statement to ledger reconciliation tool."""
    pass


def _load(config: Optional[Path], database_url: Optional[str], verbose: bool) -> ReconConfig:
    recon_config = load_config(config)
    log_config = recon_config.logging
    setup_logging(
        logging.DEBUG if verbose else level_from_name(log_config.level),
        log_file=Path(log_config.file) if log_config.file else None,
        log_format=log_config.format,
        sql_echo=recon_config.storage.echo,
    )
    if database_url:
        recon_config.storage.database_url = database_url
    return recon_config


def _facade(
    recon_config: ReconConfig,
    ledger: Optional[InMemoryLedger] = None,
    statements: Optional[InMemoryStatementSource] = None,
) -> ReconciliationFacade:
    return ReconciliationFacade.from_config(
        recon_config,
        ledger or InMemoryLedger(),
        statements or InMemoryStatementSource(),
    )


def _facade_with_data(
    recon_config: ReconConfig,
    session_id: str,
    ledger_file: Optional[Path],
    statement_file: Optional[Path],
) -> ReconciliationFacade:
    """Facade whose sources hold the CSV data for one session."""
    ledger = InMemoryLedger()
    statements = InMemoryStatementSource()
    facade = _facade(recon_config, ledger, statements)
    account_id = facade.sessions.get(session_id).account_id

    if ledger_file:
        ledger.add(*load_ledger_csv(ledger_file, account_id=account_id))
    if statement_file:
        statements.add(session_id, *load_statement_csv(statement_file, account_id=account_id))
    return facade


def _fail(e: Exception, verbose: bool) -> None:
    console.print(f"[red]Error: {e}[/red]")
    if verbose:
        console.print_exception()
    sys.exit(1)


@main.command("init-config")
@click.option(
    "-o", "--output", type=click.Path(path_type=Path), default=Path("config.yaml")
)
def init_config(output: Path):
    """Generate a sample configuration file."""
    generate_default_config(output)
    console.print(f"[green]Configuration file generated: {output}[/green]")


@main.command("init-db")
@config_option
@database_option
@verbose_option
def init_db(config: Optional[Path], database_url: Optional[str], verbose: bool):
    """Create the database schema."""
    try:
        recon_config = _load(config, database_url, verbose)
        db = Database.from_config(recon_config.storage)
        db.create_all()
        console.print(f"[green]Database ready: {recon_config.storage.database_url}[/green]")
    except ReconciliationError as e:
        _fail(e, verbose)


@main.command("create-session")
@click.argument("account_id")
@click.argument("period_start", type=click.DateTime(formats=DATE_FORMATS))
@click.argument("period_end", type=click.DateTime(formats=DATE_FORMATS))
@click.option("-n", "--name", default=None, help="Session name")
@config_option
@database_option
@verbose_option
def create_session(
    account_id: str,
    period_start: datetime,
    period_end: datetime,
    name: Optional[str],
    config: Optional[Path],
    database_url: Optional[str],
    verbose: bool,
):
    """
    Create a reconciliation session.

    ACCOUNT_ID: Ledger account to reconcile
    PERIOD_START / PERIOD_END: Inclusive period, YYYY-MM-DD
    """
    try:
        facade = _facade(_load(config, database_url, verbose))
        session = facade.create_session(
            account_id, period_start.date(), period_end.date(), name=name
        )
        console.print(f"[green]Session created: {session.id}[/green]")
    except ReconciliationError as e:
        _fail(e, verbose)


@main.command("add-rule")
@click.argument("account_id")
@click.argument("rule_file", type=click.Path(exists=True, path_type=Path))
@config_option
@database_option
@verbose_option
def add_rule(
    account_id: str,
    rule_file: Path,
    config: Optional[Path],
    database_url: Optional[str],
    verbose: bool,
):
    """
    Add matching rules from a YAML file.

    RULE_FILE: YAML mapping for one rule, or a list of them
    """
    try:
        facade = _facade(_load(config, database_url, verbose))
        with open(rule_file, "r") as f:
            payload = yaml.safe_load(f) or []
        rule_inputs = payload if isinstance(payload, list) else [payload]

        for rule_input in rule_inputs:
            rule = facade.create_rule(account_id, rule_input)
            console.print(f"[green]Rule created: {rule.id} ({rule.name or 'unnamed'})[/green]")
    except (ReconciliationError, yaml.YAMLError) as e:
        _fail(e, verbose)


@main.command("list-rules")
@click.argument("account_id")
@config_option
@database_option
@verbose_option
def list_rules(account_id: str, config: Optional[Path], database_url: Optional[str], verbose: bool):
    """List an account's rules in evaluation order."""
    try:
        facade = _facade(_load(config, database_url, verbose))
        rules = facade.list_rules(account_id)
    except ReconciliationError as e:
        _fail(e, verbose)
        return

    table = Table(title=f"Rules: {account_id}")
    table.add_column("Priority", justify="right")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Conditions")
    table.add_column("Auto Match")
    table.add_column("Confidence", justify="right")
    table.add_column("Enabled")
    table.add_column("Version", justify="right")

    for rule in rules:
        conditions = ", ".join(
            f"{c.field}.{c.operator}={c.value}" if c.value is not None else f"{c.field}.{c.operator}"
            for c in rule.conditions
        )
        table.add_row(
            str(rule.priority),
            rule.id,
            rule.name or "-",
            conditions,
            "yes" if rule.actions.auto_match else "no",
            f"{rule.actions.confidence:.2f}",
            "yes" if rule.enabled else "no",
            str(rule.version),
        )

    console.print(table)


@main.command()
@click.argument("session_id")
@click.option(
    "--ledger",
    "ledger_file",
    type=click.Path(exists=True, path_type=Path),
    required=True,
    help="Ledger transactions CSV",
)
@click.option(
    "--statements",
    "statement_file",
    type=click.Path(exists=True, path_type=Path),
    required=True,
    help="Statement transactions CSV",
)
@config_option
@database_option
@verbose_option
def run(
    session_id: str,
    ledger_file: Path,
    statement_file: Path,
    config: Optional[Path],
    database_url: Optional[str],
    verbose: bool,
):
    """
    Run a matching pass on a session.

    SESSION_ID: Session to match
    """
    try:
        recon_config = _load(config, database_url, verbose)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task("Loading transactions...", total=None)
            facade = _facade_with_data(recon_config, session_id, ledger_file, statement_file)
            progress.update(task, completed=True)

            task = progress.add_task("Running matching pass...", total=None)
            result = facade.run_matching_pass(session_id)
            progress.update(task, completed=True)

        _display_pass_result(result)
    except ReconciliationError as e:
        _fail(e, verbose)


@main.command()
@click.argument("session_id")
@click.option("--page", type=int, default=1, help="Page number")
@click.option("--page-size", type=int, default=None, help="Matches per page")
@click.option(
    "--status",
    type=click.Choice([s.value for s in MatchStatus]),
    default=None,
    help="Only show matches with this status",
)
@config_option
@database_option
@verbose_option
def show(
    session_id: str,
    page: int,
    page_size: Optional[int],
    status: Optional[str],
    config: Optional[Path],
    database_url: Optional[str],
    verbose: bool,
):
    """Show a session and one page of its matches."""
    try:
        recon_config = _load(config, database_url, verbose)
        facade = _facade(recon_config)
        pagination = Pagination(
            page=page,
            page_size=page_size or recon_config.session.default_page_size,
            status=MatchStatus(status) if status else None,
        )
        session_page = facade.get_session(session_id, pagination)
    except ReconciliationError as e:
        _fail(e, verbose)
        return

    session = session_page.session
    info = Table(title=f"Session {session.id}")
    info.add_column("Field", style="cyan")
    info.add_column("Value")
    info.add_row("Name", session.name or "-")
    info.add_row("Account", session.account_id)
    info.add_row("Period", f"{session.period_start} to {session.period_end}")
    info.add_row("Status", session.status.value)
    info.add_row("Passes", str(session.pass_count))
    info.add_row("Checkpoint", str(session.checkpoint))
    info.add_row("Partial Failures", str(session.error_summary.count))
    console.print(info)

    table = Table(title=f"Matches (page {session_page.page} of {max(session_page.total_pages, 1)})")
    table.add_column("ID")
    table.add_column("Status")
    table.add_column("Source")
    table.add_column("Confidence", justify="right")
    table.add_column("Statement")
    table.add_column("Ledger")
    table.add_column("Reason")

    for match in session_page.matches:
        table.add_row(
            match.id,
            match.status.value,
            match.source.label(),
            f"{match.confidence:.2f}",
            match.statement_txn_id,
            match.ledger_txn_id,
            match.reason[:50] + "..." if len(match.reason) > 50 else match.reason,
        )

    console.print(table)
    console.print(f"\nTotal matches: {session_page.total}")


def _resolve_command(action: str):
    @click.argument("match_id")
    @click.option("--by", "resolved_by", default=None, help="Reviewer name")
    @config_option
    @database_option
    @verbose_option
    def command(
        match_id: str,
        resolved_by: Optional[str],
        config: Optional[Path],
        database_url: Optional[str],
        verbose: bool,
    ):
        try:
            facade = _facade(_load(config, database_url, verbose))
            if action == "confirm":
                match = facade.confirm_match(match_id, resolved_by)
            else:
                match = facade.reject_match(match_id, resolved_by)
            console.print(f"[green]Match {match.id} {match.status.value}[/green]")
        except ReconciliationError as e:
            _fail(e, verbose)

    command.__doc__ = f"{action.capitalize()} a suggested match."
    return command


main.command("confirm")(_resolve_command("confirm"))
main.command("reject")(_resolve_command("reject"))


@main.command()
@click.argument("session_id")
@config_option
@database_option
@verbose_option
def cancel(session_id: str, config: Optional[Path], database_url: Optional[str], verbose: bool):
    """Cancel a session."""
    try:
        facade = _facade(_load(config, database_url, verbose))
        session = facade.cancel_session(session_id)
        console.print(f"[yellow]Session {session.id} {session.status.value}[/yellow]")
    except ReconciliationError as e:
        _fail(e, verbose)


@main.command()
@click.argument("session_id")
@click.option("--ledger", "ledger_file", type=click.Path(exists=True, path_type=Path))
@click.option("--statements", "statement_file", type=click.Path(exists=True, path_type=Path))
@click.option("-o", "--output", type=click.Path(path_type=Path), help="Output Excel file path")
@config_option
@database_option
@verbose_option
def export(
    session_id: str,
    ledger_file: Optional[Path],
    statement_file: Optional[Path],
    output: Optional[Path],
    config: Optional[Path],
    database_url: Optional[str],
    verbose: bool,
):
    """
    Export a session report to Excel.

    Without the transaction files the unresolved sheets are empty.
    """
    try:
        recon_config = _load(config, database_url, verbose)
        facade = _facade_with_data(recon_config, session_id, ledger_file, statement_file)
        _display_summary(facade.session_summary(session_id))
        report_path = facade.export_report(session_id, output)
        console.print(f"\n[green]Report generated: {report_path}[/green]")
    except ReconciliationError as e:
        _fail(e, verbose)


def _display_pass_result(result: PassResult) -> None:
    """Display matching pass results in console."""
    table = Table(title="Matching Pass")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Session", result.session_id)
    table.add_row("Batches Processed", str(result.batches_processed))
    table.add_row("Matches Created", str(result.matches_created))
    table.add_row("Unresolved", str(result.unresolved_count))
    table.add_row("Partial Failures", str(len(result.errors)))
    table.add_row("Status", result.status.value)
    if result.stopped:
        table.add_row("Stopped", "yes")

    console.print(table)

    for failure in result.errors[:10]:
        console.print(f"[yellow]{failure.kind.value} (batch {failure.batch}): {failure.message}[/yellow]")


def _display_summary(summary: SessionSummary) -> None:
    """Display session summary in console."""
    table = Table(title="Session Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Statement Transactions", str(summary.statement_total))
    table.add_row("Ledger Transactions", str(summary.ledger_total))
    for status, count in summary.matches_by_status.items():
        table.add_row(f"Matches ({status})", str(count))
    table.add_row("Unresolved Statement", str(len(summary.unresolved_statement_ids)))
    table.add_row("Unresolved Ledger", str(len(summary.unresolved_ledger_ids)))
    table.add_row("Match Rate", f"{summary.match_rate:.1f}%")
    table.add_row("Confidence", f"{summary.confidence:.2f}")

    console.print(table)


if __name__ == "__main__":
    main()
