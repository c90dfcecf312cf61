"""
Buildforce CLI - upgrade Buildforce projects in place

Usage:
    buildforce upgrade
    buildforce upgrade --ai claude --ai cursor
    buildforce upgrade --dry-run
    buildforce upgrade --local .genreleases
"""

import logging
import os
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.align import Align
from rich.live import Live
from rich.logging import RichHandler
from rich.panel import Panel
from rich.traceback import Traceback
from typer.core import TyperGroup

from .config import configured_agents, read_buildforce_config, validate_upgrade_prerequisites
from .constants import AI_CHOICES, DEFAULT_LOCAL_ARTIFACTS_DIR, SCRIPT_TYPE_CHOICES
from .github import ArtifactError, GitHubArtifactFetcher, LocalArtifactFetcher, build_client
from .ui import StepTracker, console, select_with_arrows, show_banner
from .upgrade import UpgradeError, UpgradeOrchestrator, UpgradeSession

logger = logging.getLogger(__name__)


class BannerGroup(TyperGroup):
    """Custom group that shows banner before help."""

    def format_help(self, ctx, formatter):
        show_banner()
        super().format_help(ctx, formatter)


app = typer.Typer(
    name="buildforce",
    help="Upgrade tool for Buildforce spec-driven development projects",
    add_completion=False,
    invoke_without_command=True,
    cls=BannerGroup,
)


@app.callback()
def callback(ctx: typer.Context):
    """Show banner when no subcommand is provided."""
    if ctx.invoked_subcommand is None and "--help" not in sys.argv and "-h" not in sys.argv:
        show_banner()
        console.print(Align.center("[dim]Run 'buildforce --help' for usage information[/dim]"))
        console.print()


def configure_logging(debug: bool) -> None:
    if debug:
        handlers = [RichHandler(console=console, show_path=False, rich_tracebacks=True)]
    else:
        # Warnings reach the user through the session summary instead
        handlers = [logging.NullHandler()]
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        handlers=handlers,
        force=True,
    )


def _invalid_choice(kind: str, value: str, choices: dict) -> None:
    console.print(f"[red]Invalid {kind}:[/red] {value}")
    console.print(f"[yellow]Valid options:[/yellow] {', '.join(choices)}")
    raise typer.Exit(1)


def resolve_agents(ai: Optional[list[str]], config: dict) -> list[str]:
    """``--ai`` (repeatable or comma separated) wins over the configured agents."""
    requested = [a.strip() for value in (ai or []) for a in value.split(",") if a.strip()]
    if requested:
        for agent in requested:
            if agent not in AI_CHOICES:
                _invalid_choice("AI assistant", agent, AI_CHOICES)
        console.print(f"[cyan]AI assistants (override):[/cyan] {', '.join(AI_CHOICES[a] for a in requested)}")
        return list(dict.fromkeys(requested))

    agents = [a for a in configured_agents(config) if a in AI_CHOICES]
    if agents:
        console.print(f"[cyan]AI assistants (detected):[/cyan] {', '.join(AI_CHOICES[a] for a in agents)}")
        return agents

    if not sys.stdin.isatty():
        console.print("[red]Error:[/red] No AI assistant found in buildforce.json. Pass one with --ai.")
        raise typer.Exit(1)
    console.print("[yellow]No AI assistant found in buildforce.json. Please select one:[/yellow]")
    return [select_with_arrows(AI_CHOICES, "Choose your AI assistant:", "copilot")]


def resolve_script_type(script: Optional[str], config: dict) -> str:
    if script:
        if script not in SCRIPT_TYPE_CHOICES:
            _invalid_choice("script type", script, SCRIPT_TYPE_CHOICES)
        console.print(f"[cyan]Script type (override):[/cyan] {SCRIPT_TYPE_CHOICES[script]}")
        return script

    configured = config.get("scriptType")
    if configured in SCRIPT_TYPE_CHOICES:
        console.print(f"[cyan]Script type (detected):[/cyan] {SCRIPT_TYPE_CHOICES[configured]}")
        return configured

    default_script = "ps" if os.name == "nt" else "sh"
    if not sys.stdin.isatty():
        console.print(f"[yellow]No script type found in buildforce.json, using {default_script}[/yellow]")
        return default_script
    console.print("[yellow]No script type found in buildforce.json. Please select one:[/yellow]")
    return select_with_arrows(SCRIPT_TYPE_CHOICES, "Choose script type:", default_script)


def _failure_title(exc: Exception) -> str:
    if isinstance(exc, (UpgradeError, ArtifactError)):
        return "Fetch Failure"
    return "Upgrade Failure"


def render_summary(session: UpgradeSession) -> None:
    lines = []
    if session.release:
        lines.append(f"{'Release':<12} [green]{session.release}[/green]")
    if session.successful_agents:
        lines.append(f"{'Upgraded':<12} {', '.join(session.successful_agents)}")
    if session.failed_agents:
        lines.append(f"{'Skipped':<12} [yellow]{', '.join(session.failed_agents)}[/yellow]")
    migration = session.migration
    if migration is not None:
        if migration.no_repository:
            lines.append(f"{'Context':<12} [dim]no context repository[/dim]")
        elif migration.already_latest:
            lines.append(f"{'Context':<12} already at {migration.from_version}")
        else:
            lines.append(f"{'Context':<12} {migration.from_version} -> {migration.to_version}")
            lines.extend(f"  {action}" for action in migration.actions)
    if lines:
        console.print(Panel("\n".join(lines), title="Upgrade Summary", border_style="cyan", padding=(1, 2)))

    if session.warnings:
        console.print(Panel("\n".join(session.warnings), title="[yellow]Warnings[/yellow]", border_style="yellow"))
    if migration is not None and migration.halted:
        console.print(
            "[yellow]Context migration stopped early. Files were upgraded; "
            "re-run 'buildforce upgrade' to retry the remaining migrations.[/yellow]"
        )


@app.command("upgrade")
def upgrade_command(
    ai: Optional[list[str]] = typer.Option(None, "--ai", help="AI assistant(s) to upgrade, repeatable or comma separated: " + ", ".join(AI_CHOICES)),
    script_type: str = typer.Option(None, "--script", help="Script type to use: sh or ps"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would change without touching any files"),
    debug: bool = typer.Option(False, "--debug", help="Show verbose diagnostic output and tracebacks"),
    github_token: str = typer.Option(None, "--github-token", help="GitHub token to use for API requests (or set GH_TOKEN or GITHUB_TOKEN environment variable)"),
    skip_tls: bool = typer.Option(False, "--skip-tls", help="Skip SSL/TLS verification (not recommended)"),
    local: Optional[str] = typer.Option(None, "--local", help=f"Use release artifacts from a local folder (e.g. {DEFAULT_LOCAL_ARTIFACTS_DIR}) instead of GitHub"),
):
    """
    Upgrade the current Buildforce project to the latest release.

    Replaces slash commands, templates, scripts and Buildforce skills, merges
    Claude hooks, and migrates the context repository to the latest schema.
    Your context files and specs are kept.

    Examples:
        buildforce upgrade
        buildforce upgrade --ai claude --ai gemini
        buildforce upgrade --dry-run
        buildforce upgrade --local .genreleases
    """
    show_banner()
    configure_logging(debug)

    project_path = Path.cwd()
    validation = validate_upgrade_prerequisites(project_path)
    if not validation.valid:
        body = f"{validation.error}"
        if validation.suggestion:
            body += f"\n\n[yellow]Suggestion:[/yellow] {validation.suggestion}"
        console.print(Panel(body, title="[red]Upgrade failed[/red]", border_style="red", padding=(1, 2)))
        raise typer.Exit(1)

    config = read_buildforce_config(project_path)
    agents = resolve_agents(ai, config)
    selected_script = resolve_script_type(script_type, config)
    console.print()

    if local:
        fetcher = LocalArtifactFetcher(local)
    else:
        fetcher = GitHubArtifactFetcher(build_client(skip_tls), token=github_token, debug=debug)
    logger.debug("Fetching artifacts from %s", fetcher.describe())

    tracker = StepTracker("Preview Upgrade (Dry Run)" if dry_run else "Upgrade Buildforce Project")
    tracker.add("validate", "Validate prerequisites")
    tracker.complete("validate", "ok")
    tracker.add("ai-select", "Select AI assistants")
    tracker.complete("ai-select", ", ".join(agents))
    tracker.add("script-select", "Select script type")
    tracker.complete("script-select", selected_script)

    orchestrator = UpgradeOrchestrator(project_path, fetcher, tracker=tracker)
    failure: Exception | None = None

    # Use transient so live tree is replaced by the final static render
    with Live(tracker.render(), console=console, refresh_per_second=8, transient=True) as live:
        tracker.attach_refresh(lambda: live.update(tracker.render()))
        try:
            orchestrator.run(agents, selected_script, dry_run=dry_run)
        except Exception as e:
            failure = e

    console.print(tracker.render())
    session = orchestrator.session

    if failure is not None:
        if session is not None and session.warnings:
            console.print(Panel("\n".join(session.warnings), title="[yellow]Warnings[/yellow]", border_style="yellow"))
        console.print(Panel(f"Upgrade failed: {failure}", title=_failure_title(failure), border_style="red"))
        if debug:
            console.print(Traceback.from_exception(type(failure), failure, failure.__traceback__))
        raise typer.Exit(1)

    render_summary(session)
    if dry_run:
        console.print("\n[bold green]Preview complete.[/bold green] No files were changed.")
    else:
        console.print("\n[bold green]Upgrade complete![/bold green]")


def main():
    app()


if __name__ == "__main__":
    main()
