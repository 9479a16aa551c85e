"""Click CLI interface for ffmerge."""

import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ffmerge import __version__
from ffmerge.config import ConfigError, config_manager, get_config, parse_value
from ffmerge.models import ExitCode, MergeConfig, MergeOutcome, OutcomeKind, PullRequestRef
from ffmerge.utils.logger import enable_verbose_logging, get_logger
from ffmerge.workflows.merge import merge_pull_request

logger = get_logger(__name__)
console = Console(soft_wrap=True)


def _print_step(message: str) -> None:
    console.print(f"[blue]→[/blue] {escape(message)}")


def _print_outcome(outcome: MergeOutcome) -> None:
    """Print commit summary, warnings and the final outcome line."""
    if outcome.commits:
        signed = sum(1 for commit in outcome.commits if commit.is_signed)
        console.print(f"  {len(outcome.commits)} commit(s) added to {outcome.trunk}, {signed} signed")

    for warning in outcome.warnings:
        console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")

    summary = escape(outcome.summary())
    if outcome.kind == OutcomeKind.FAST_FORWARDED:
        console.print(f"[green]✓[/green] {summary}")
    elif outcome.kind == OutcomeKind.REJECTED:
        console.print(f"[yellow]✗[/yellow] {summary}")
    else:
        console.print(f"[red]✗[/red] {summary}")


def _load_merge_config(overrides: Dict[str, Any], directory: Optional[Path] = None):
    """Load configuration for the checkout and apply command line overrides to the merge section."""
    try:
        config = get_config(directory)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(ExitCode.CONFIG_ERROR)

    try:
        merge_config = MergeConfig.model_validate({**config.merge.model_dump(), **overrides})
    except ValidationError as e:
        console.print(f"[red]Error:[/red] Invalid option: {escape(str(e))}")
        sys.exit(ExitCode.USAGE)

    return config.model_copy(update={"merge": merge_config})


@click.command("merge")
@click.argument("pull_request", required=False)
@click.option("--repo", "-R", help="Repository as OWNER/NAME (detected from the checkout by default)")
@click.option("--trunk", "-t", help="Trunk branch (default: merge.trunk_branch or the repository default)")
@click.option("--remote", help="Git remote holding the trunk (default: merge.remote)")
@click.option("--ignore-ci", is_flag=True, help="Ignore CI status checks and merge straightaway")
@click.option(
    "--mark-merged/--no-mark-merged", default=None,
    help="Make sure GitHub shows the PR as merged after the push",
)
@click.option(
    "--push-retry-interval", type=float, default=None,
    help="Retry a rejected push once after this many seconds",
)
@click.option(
    "--directory", "-C", type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Local checkout to merge in (default: current directory)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def merge(
    pull_request: Optional[str],
    repo: Optional[str],
    trunk: Optional[str],
    remote: Optional[str],
    ignore_ci: bool,
    mark_merged: Optional[bool],
    push_retry_interval: Optional[float],
    directory: Optional[Path],
    verbose: bool,
) -> None:
    """Merge a pull request into trunk by fast-forward.

    PULL_REQUEST is a PR number (42, #42), OWNER/NAME#42, a PR URL, or a head
    branch name. Defaults to the PR of the current branch.

    The PR head is fast-forwarded onto trunk and pushed without force, so
    history stays linear and commit signatures stay valid. If trunk has moved
    past the PR's base, the merge is refused and the PR must be rebased.

    Exit codes: 0 merged or already merged, 3 rejected, 4 not a fast-forward,
    5 tool missing, 6 lookup/auth failure, 7 sync failure, 8 push rejected,
    9 configuration error.
    """
    if verbose:
        enable_verbose_logging()

    try:
        ref = PullRequestRef.parse(pull_request) if pull_request else None
    except ValueError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(ExitCode.USAGE)

    overrides: Dict[str, Any] = {}
    if trunk:
        overrides["trunk_branch"] = trunk
    if remote:
        overrides["remote"] = remote
    if ignore_ci:
        overrides["ignore_ci"] = True
    if mark_merged is not None:
        overrides["mark_merged"] = mark_merged
    if push_retry_interval is not None:
        overrides["push_retry_interval"] = push_retry_interval

    config = _load_merge_config(overrides, directory)

    outcome = merge_pull_request(
        ref,
        config,
        path=directory,
        repository=repo,
        progress=_print_step,
    )
    _print_outcome(outcome)
    sys.exit(int(outcome.exit_code))


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version and exit")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, version: bool, verbose: bool) -> None:
    """ffmerge - fast-forward merge button for GitHub pull requests.

    Merges a pull request with a local fast-forward and a plain push,
    preserving linear history and commit signatures.
    """
    if version:
        click.echo(f"ffmerge version {__version__}")
        sys.exit(0)

    if verbose:
        enable_verbose_logging()

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


cli.add_command(merge)


@cli.command()
def init() -> None:
    """Initialize ffmerge configuration for the current project."""
    try:
        user_config_path = config_manager.list_config_files()["user"]
        if user_config_path is None:
            user_config_path = config_manager.create_default_config(user_level=True)
            console.print(f"[green]✓[/green] User configuration created: {user_config_path}")

        project_config_path = config_manager.create_default_config(user_level=False)
        console.print(f"[green]✓[/green] Project configuration initialized: {project_config_path}")

        console.print("\n[bold]Next steps:[/bold]")
        console.print("1. Set up GitHub CLI: [cyan]gh auth login[/cyan]")
        console.print("2. Pin the trunk if needed: [cyan]ffmerge config set merge.trunk_branch main --project[/cyan]")
        console.print("3. Merge a pull request: [cyan]ffmerge merge 42[/cyan]")

    except ConfigError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(ExitCode.CONFIG_ERROR)


@cli.group()
def config() -> None:
    """Configuration management."""
    pass


@config.command("get")
@click.argument("key")
def config_get(key: str) -> None:
    """Get configuration value by key.

    KEY: Dot-separated configuration key (e.g., 'merge.trunk_branch')
    """
    try:
        value = config_manager.get_config_value(key)
        console.print(f"{key}: {escape(str(value))}")

    except ConfigError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(ExitCode.CONFIG_ERROR)


@config.command("set")
@click.argument("key")
@click.argument("value")
@click.option(
    "--project", "-p", is_flag=True,
    help="Set in project config instead of user config"
)
def config_set(key: str, value: str, project: bool) -> None:
    """Set configuration value.

    KEY: Dot-separated configuration key (e.g., 'merge.remote')
    VALUE: Value to set ('null' clears optional settings)
    """
    try:
        parsed_value = parse_value(value)
        config_manager.set_config_value(key, parsed_value, user_level=not project)

        config_type = "project" if project else "user"
        console.print(f"[green]✓[/green] {config_type.title()} config updated: {key} = {parsed_value}")

    except ConfigError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(ExitCode.CONFIG_ERROR)


@config.command("list")
def config_list() -> None:
    """List all configuration files and their status."""
    config_files = config_manager.list_config_files()

    table = Table(title="Configuration Files")
    table.add_column("Type", style="cyan")
    table.add_column("Path")
    table.add_column("Status", style="green")

    for config_type, path in config_files.items():
        if path and path.exists():
            status = "✓ Exists"
            path_str = str(path)
        else:
            status = "✗ Not found"
            path_str = "N/A" if path is None else str(path)

        table.add_row(config_type.title(), path_str, status)

    console.print(table)


@config.command("show")
@click.option(
    "--format", "-f", "output_format", type=click.Choice(["table", "yaml", "json"]),
    default="table", help="Output format (default: table)",
)
def config_show(output_format: str) -> None:
    """Show current configuration values."""
    try:
        config_dict = config_manager.get_config().model_dump(mode="json")
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(ExitCode.CONFIG_ERROR)

    if output_format == "yaml":
        click.echo(yaml.safe_dump(config_dict, default_flow_style=False, sort_keys=True))
        return
    if output_format == "json":
        click.echo(json.dumps(config_dict, indent=2))
        return

    table = Table(title="Configuration")
    table.add_column("Key", style="cyan")
    table.add_column("Value")

    for section, values in config_dict.items():
        if isinstance(values, dict):
            for key, value in values.items():
                table.add_row(f"{section}.{key}", escape(str(value)))
        else:
            table.add_row(section, escape(str(values)))

    console.print(table)


if __name__ == "__main__":
    cli()
