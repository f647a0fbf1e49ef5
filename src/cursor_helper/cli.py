"""CLI entry point for cursor-helper."""

import functools
import logging
import os
import sys
from pathlib import Path

import click
import uvicorn

from . import __version__, migrate
from .config import CursorPaths
from .errors import CursorHelperError, NotFound
from .export import build_export, parse_format, render, write_split
from .identity import clean_path
from .locator import filter_workspaces, find_workspace_dir, list_workspaces, sort_workspaces
from .store import ExportOptions


def _configure_logging(verbose: bool) -> None:
    pkg_logger = logging.getLogger("cursor_helper")
    for handler in list(pkg_logger.handlers):
        pkg_logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    pkg_logger.addHandler(handler)
    pkg_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


def _handle_errors(func):
    """Report CursorHelperError as a normal CLI failure (exit status 1)."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except CursorHelperError as e:
            raise click.ClickException(str(e)) from e

    return wrapper


def _print_report(report: migrate.MigrationReport) -> None:
    if report.dry_run:
        click.secho("(DRY-RUN MODE - no changes will be made)", fg="blue")
    click.echo(f"Old path: {report.old_path}")
    click.echo(f"New path: {report.new_path}")
    click.echo(f"  folder id:      {report.old_slug_id} -> {report.new_slug_id}")
    click.echo(f"  workspace hash: {report.old_content_hash} -> "
               f"{report.new_content_hash or '<computed after copy>'}")
    for step in report.steps:
        click.echo(f"  - {step}")


@click.group()
@click.version_option(__version__, prog_name="cursor-helper")
@click.option("--verbose", is_flag=True, help="Log debug output to stderr.")
@click.pass_context
def main(ctx: click.Context, verbose: bool):
    """CLI helper for Cursor IDE project metadata and chat history."""
    _configure_logging(verbose)
    ctx.obj = CursorPaths.detect()


@main.command("list")
@click.option("--with-hash", is_flag=True, help="Show the workspace hash of each project.")
@click.option("--sort", "-s", type=click.Choice(["modified", "name", "chats"]),
              default="modified", show_default=True, help="Sort order.")
@click.option("--reverse", "-r", is_flag=True, help="Reverse sort order.")
@click.option("--filter", "-f", "pattern", default=None,
              help="local, remote, or a substring of the path.")
@click.option("--limit", "-n", type=int, default=None, help="Limit number of results.")
@click.pass_obj
@_handle_errors
def list_projects(paths: CursorPaths, with_hash: bool, sort: str, reverse: bool,
                  pattern: str | None, limit: int | None):
    """List all Cursor projects."""
    records = list_workspaces(paths.workspace_storage)
    records = sort_workspaces(filter_workspaces(records, pattern), sort, reverse)
    total = len(records)
    if limit is not None:
        records = records[:limit]

    if not records:
        click.echo("No Cursor projects found.")
        return

    for r in records:
        modified = r.last_modified.strftime("%Y-%m-%d %H:%M") if r.last_modified else "-"
        row = f"{r.path}  [{r.location.describe_remote()}]  chats: {r.chat_count}  modified: {modified}"
        if with_hash:
            row += f"  hash: {r.storage_id}"
        click.echo(row)

    if len(records) < total:
        click.echo(f"\nShowing {len(records)} of {total} projects")
    else:
        click.echo(f"\nTotal: {total} projects")


@main.command()
@click.argument("project_path", required=False)
@click.pass_obj
@_handle_errors
def stats(paths: CursorPaths, project_path: str | None):
    """Show usage statistics for a project."""
    if project_path is None:
        project_path = click.prompt("Project path")
    click.echo(migrate.format_stats(migrate.stats(paths, project_path)))


@main.command("export-chat")
@click.argument("project_path")
@click.option("--format", "-f", "fmt_name", default="md", show_default=True,
              help="Output format: md or json.")
@click.option("--output", "-o", type=click.Path(path_type=Path), default=None,
              help="Output file, or directory with --split (stdout if omitted).")
@click.option("--split", is_flag=True, help="Write one file per session into --output.")
@click.option("--with-thinking", is_flag=True, help="Include thinking/reasoning blocks.")
@click.option("--with-tools", is_flag=True, help="Include tool calls.")
@click.option("--with-stats", is_flag=True, help="Include model info and token counts.")
@click.option("--verbose", "-v", "all_extras", is_flag=True,
              help="Include thinking, tools and stats.")
@click.option("--include-archived", is_flag=True, help="Include archived chat sessions.")
@click.option("--exclude-blank", is_flag=True, help="Skip sessions with no messages.")
@click.pass_obj
@_handle_errors
def export_chat(paths: CursorPaths, project_path: str, fmt_name: str, output: Path | None,
                split: bool, with_thinking: bool, with_tools: bool, with_stats: bool,
                all_extras: bool, include_archived: bool, exclude_blank: bool):
    """Export chat history of a project to Markdown or JSON."""
    fmt = parse_format(fmt_name)
    if fmt is None:
        raise click.BadParameter(f"Unknown format '{fmt_name}'. Use 'md' or 'json'.",
                                 param_hint="--format")
    if split and output is None:
        raise click.UsageError("--split requires --output DIRECTORY")

    # Remote projects are looked up by the path on the remote machine as given
    project = clean_path(project_path) if os.path.exists(project_path) else project_path
    ws_dir = find_workspace_dir(project, paths.workspace_storage)
    if ws_dir is None:
        raise NotFound(f"No workspace found for: {project}")

    options = ExportOptions(
        with_thinking=with_thinking or all_extras,
        with_tools=with_tools or all_extras,
        with_stats=with_stats or all_extras,
        include_archived=include_archived,
        exclude_blank=exclude_blank,
    )
    export, store = build_export(ws_dir, project, paths.global_db, options)

    if store.skipped:
        click.echo(f"Warning: skipped {store.skipped} malformed record(s)", err=True)
    if store.blank_filtered:
        click.echo(f"Excluded {store.blank_filtered} blank session(s)", err=True)

    if split:
        written = write_split(export, output, fmt)
        click.echo(f"Exported {len(written)} session(s) to {output}", err=True)
    elif output is not None:
        output.write_text(render(export, fmt), encoding="utf-8")
        click.echo(f"Exported {len(export.sessions)} session(s) to {output}", err=True)
    else:
        click.echo(render(export, fmt))


@main.command()
@click.option("--dry-run", "-n", is_flag=True, help="Show what would be deleted.")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt.")
@click.pass_obj
@_handle_errors
def clean(paths: CursorPaths, dry_run: bool, yes: bool):
    """Remove workspace storage of projects that no longer exist."""
    orphans = migrate.find_orphans(paths.workspace_storage)
    if not orphans:
        click.echo("No orphaned workspace storage found.")
        return

    total = sum(o.size_bytes for o in orphans)
    click.echo(f"Found {len(orphans)} orphaned workspace(s) ({migrate.format_size(total)}):")
    for o in orphans:
        click.echo(f"  {o.storage_dir.name}  {o.folder_uri}  {migrate.format_size(o.size_bytes)}")

    if dry_run:
        click.secho("(DRY-RUN MODE - nothing deleted)", fg="blue")
        return
    if not yes and not click.confirm("Delete these workspaces?"):
        click.echo("Aborted.")
        return

    deleted, failed = migrate.clean(orphans)
    click.echo(f"Deleted {deleted} workspace(s)" + (f", {failed} failed" if failed else ""))


@main.command()
@click.argument("project_path")
@click.argument("backup_file")
@click.pass_obj
@_handle_errors
def backup(paths: CursorPaths, project_path: str, backup_file: str):
    """Backup Cursor metadata for a project."""
    archive, manifest = migrate.backup(paths, project_path, backup_file)
    click.echo(f"Backed up {manifest.project_path}")
    click.echo(f"  workspace storage: {'yes' if manifest.includes.workspace_storage else 'no'}")
    click.echo(f"  projects data:     {'yes' if manifest.includes.projects_data else 'no'}")
    click.echo(f"Backup written to {archive}")


@main.command()
@click.argument("backup_file")
@click.argument("new_path")
@click.pass_obj
@_handle_errors
def restore(paths: CursorPaths, backup_file: str, new_path: str):
    """Restore Cursor metadata from a backup."""
    report, manifest = migrate.restore(paths, backup_file, new_path)
    click.echo(f"Restored backup of {manifest.project_path}")
    _print_report(report)


@main.command()
@click.argument("old_path")
@click.argument("new_path")
@click.option("--dry-run", "-n", is_flag=True, help="Show what would be done.")
@click.pass_obj
@_handle_errors
def clone(paths: CursorPaths, old_path: str, new_path: str, dry_run: bool):
    """Clone a project with its chat history to a new location."""
    _print_report(migrate.clone(paths, old_path, new_path, dry_run=dry_run))


@main.command()
@click.argument("old_path")
@click.argument("new_path")
@click.option("--dry-run", "-n", is_flag=True, help="Show what would be done.")
@click.option("--copy", "-c", is_flag=True, help="Copy instead of move.")
@click.option("--yes", "-y", is_flag=True, help="Merge into existing metadata directories without asking.")
@click.pass_obj
@_handle_errors
def rename(paths: CursorPaths, old_path: str, new_path: str, dry_run: bool, copy: bool, yes: bool):
    """Rename or copy a project while preserving its history."""
    def confirm_merge(target):
        return yes or click.confirm(f"Merge into existing directory {target}?", default=False)

    _print_report(migrate.rename(paths, old_path, new_path, copy=copy, dry_run=dry_run,
                                 confirm_merge=confirm_merge))
    if not dry_run:
        click.echo("Done. Open the project in Cursor from its new location.")


@main.command()
@click.option("--port", default=8080, help="Port to serve on.")
@click.option("--host", default="127.0.0.1", help="Host to bind to.")
def serve(port: int, host: str):
    """Start the local chat history viewer."""
    click.echo(f"Starting cursor-helper on http://{host}:{port}")
    uvicorn.run("cursor_helper.server:app", host=host, port=port, reload=False)
