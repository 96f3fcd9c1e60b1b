"""CLI entry point for oc-export."""

import logging
from datetime import timezone
from pathlib import Path

import click

from . import __version__
from .export import FORMATS, write_export
from .loader import LoadResult, StorageNotFoundError, load_storage
from .resolver import MatchStatus, resolve


@click.group()
@click.version_option(__version__, prog_name="oc-export")
def main():
    """Export OpenCode conversation histories to readable Markdown."""
    pass


storage_option = click.option(
    "--storage",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Path to the opencode storage directory (auto-detected by default).",
)


def _load(storage: Path | None, verbose: bool = False) -> LoadResult:
    try:
        result = load_storage(storage)
    except StorageNotFoundError as e:
        raise click.ClickException(f"{e}\nSpecify with --storage <path>")

    if result.warnings:
        click.echo(f"  {len(result.warnings)} unreadable records skipped", err=True)
        if verbose:
            for warning in result.warnings:
                click.echo(f"  warn: {warning}", err=True)
    return result


@main.command("list")
@storage_option
def list_projects(storage: Path | None):
    """List available projects."""
    index = _load(storage).index

    click.echo(f"{'NAME':<12}  {'WORKTREE':<40}  SESSIONS")
    click.echo("-" * 80)
    for project in index.projects:
        count = len(index.sessions_by_project.get(project.id, []))
        click.echo(f"{project.display_name:<12}  {project.worktree:<40}  {count}")


@main.command()
@storage_option
@click.option("--all", "export_all", is_flag=True, help="Export all projects and sessions.")
@click.option("--project", default=None, help="Project worktree path, ID prefix, or name.")
@click.option("--session", default=None, help="Export a single session by ID.")
@click.option(
    "--since",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Only export sessions created on or after this date (YYYY-MM-DD, UTC).",
)
@click.option(
    "--output", "-o",
    type=click.Path(path_type=Path, file_okay=False),
    default=Path("./opencode-export"),
    show_default=True,
    help="Output directory.",
)
@click.option("--format", "fmt", type=click.Choice(FORMATS), default="md", show_default=True)
@click.option("--verbose", "-v", is_flag=True, help="Show each skipped record and debug logging.")
def export(storage, export_all, project, session, since, output, fmt, verbose):
    """Export sessions to one file per session."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not export_all and project is None and session is None:
        raise click.UsageError(
            "Specify --all, --project <name>, or --session <id>.\n"
            "Use 'oc-export list' to see available projects."
        )

    result = _load(storage, verbose)
    index = result.index
    click.echo(f"  {len(index.projects)} projects, {len(index.sessions)} sessions loaded", err=True)

    since_ms = None
    if since is not None:
        since_ms = int(since.replace(tzinfo=timezone.utc).timestamp() * 1000)

    resolution = resolve(index, project_filter=project, session_filter=session, since_ms=since_ms)
    if project is not None and resolution.status is MatchStatus.NO_PROJECT_MATCHED:
        raise click.ClickException(f"No project matches '{project}'.")
    if resolution.nothing_matched:
        raise click.ClickException("No matching sessions found.")

    total = resolution.session_count
    click.echo(f"Exporting {total} sessions ...", err=True)

    written = 0
    progress = click.progressbar(
        write_export(resolution, output, fmt),
        length=total,
        label="  ",
        file=click.get_text_stream("stderr"),
    )
    with progress as paths:
        for _ in paths:
            written += 1

    click.echo(f"Wrote {written} files to {output}", err=True)
