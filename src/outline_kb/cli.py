"""CLI for maintaining an outline knowledge base."""

import datetime
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger

from outline_kb.errors import OutlineError
from outline_kb.logging_config import configure_logging
from outline_kb.models.node import Priority, TaskFilter
from outline_kb.repository import Repository

app = typer.Typer(help="Outline knowledge base: notes, tasks, search and export.")

BaseDirOption = Annotated[
    Path | None,
    typer.Option("--base-dir", "-d", help="Knowledge base directory (default: $OUTLINE_KB_HOME)"),
]


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    configure_logging(verbose=verbose)


def _open_repo(base_dir: Path | None) -> Repository:
    try:
        return Repository(base_dir).open()
    except (OSError, RuntimeError) as e:
        logger.error("Cannot open knowledge base: {}", e)
        raise typer.Exit(1) from e


def _resolve_note_id(repo: Repository, note: str) -> str:
    """Resolve a note title or id to an id."""
    found = repo.note_by_title(note)
    if found is not None:
        return found.id
    try:
        return repo.get_note(note).id
    except OutlineError:
        typer.echo(f"Note '{note}' not found.")
        raise typer.Exit(1) from None


@app.command()
def init(base_dir: BaseDirOption = None) -> None:
    """Create the knowledge base directory and database."""
    with _open_repo(base_dir) as repo:
        typer.echo(f"Knowledge base ready at {repo.config.base_dir}")


@app.command(name="notes")
def notes_cmd(
    query: str = typer.Argument("", help="Only notes whose title contains this text"),
    base_dir: BaseDirOption = None,
) -> None:
    """List notes, most recently modified first."""
    with _open_repo(base_dir) as repo:
        found = repo.find_notes(query) if query else repo.list_notes()
        if not found:
            typer.echo("No notes.")
            return
        for note in found:
            typer.echo(f"  {note.title}  id={note.id}")


@app.command()
def search(
    query: str = typer.Argument(..., help="Search query"),
    note: Annotated[
        str | None,
        typer.Option("--note", "-N", help="Restrict to a note (title or id)"),
    ] = None,
    limit: int = typer.Option(10, "--limit", "-n", help="Max results"),
    base_dir: BaseDirOption = None,
) -> None:
    """Search node content."""
    with _open_repo(base_dir) as repo:
        note_id = _resolve_note_id(repo, note) if note else None
        try:
            response = repo.search(query, note_id=note_id, limit=limit)
        except OutlineError as e:
            typer.echo(f"Invalid query: {e.message}")
            raise typer.Exit(1) from None
        typer.echo(f"Found {len(response.results)} result(s):\n")
        for r in response.results:
            typer.echo(f"  [{r.note_title}] {r.snippet[:80]}")
            typer.echo(f"    id={r.node.id}")


@app.command()
def backlinks(
    note: str = typer.Argument(..., help="Note title or id"),
    base_dir: BaseDirOption = None,
) -> None:
    """Show references to a note, grouped by the referring note."""
    with _open_repo(base_dir) as repo:
        groups = repo.backlinks(_resolve_note_id(repo, note))
        if not groups:
            typer.echo("No backlinks.")
            return
        for group in groups:
            typer.echo(f"{group.source_note.title}:")
            for ref in group.references:
                typer.echo(f"  - {ref.context[:80] or ref.link_text}")


@app.command()
def tasks(
    note: Annotated[
        str | None,
        typer.Option("--note", "-N", help="Restrict to a note (title or id)"),
    ] = None,
    priority: Annotated[
        Priority | None,
        typer.Option("--priority", "-p", help="Only tasks with this priority"),
    ] = None,
    due: Annotated[
        datetime.datetime | None,
        typer.Option("--due", help="Only tasks due on or before this date", formats=["%Y-%m-%d"]),
    ] = None,
    show_all: bool = typer.Option(False, "--all", "-a", help="Include completed tasks"),
    base_dir: BaseDirOption = None,
) -> None:
    """List open tasks by due date and priority."""
    with _open_repo(base_dir) as repo:
        task_filter = TaskFilter(
            note_id=_resolve_note_id(repo, note) if note else None,
            priority=priority,
            due_on_or_before=due.date() if due else None,
            include_completed=show_all,
        )
        found = repo.open_tasks(task_filter)
        if not found:
            typer.echo("No tasks.")
            return
        for node in found:
            box = "[x]" if node.completed else "[ ]"
            extra = []
            if node.due_date:
                extra.append(f"due {node.due_date.isoformat()}")
            if node.priority:
                extra.append(node.priority.value)
            suffix = f"  ({', '.join(extra)})" if extra else ""
            typer.echo(f"  {box} {node.content[:80]}{suffix}")


@app.command()
def export(
    note: str = typer.Argument(..., help="Note title or id"),
    base_dir: BaseDirOption = None,
) -> None:
    """Print a note as markdown."""
    with _open_repo(base_dir) as repo:
        typer.echo(repo.export(_resolve_note_id(repo, note)), nl=False)


@app.command(name="export-all")
def export_all(
    out_dir: Path = typer.Argument(..., help="Directory for the .md files"),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Only report what would change"),
    base_dir: BaseDirOption = None,
) -> None:
    """Export every note as markdown; stale .md files in OUT_DIR are removed."""
    with _open_repo(base_dir) as repo:
        writer = repo.export_all(out_dir, dry_run=dry_run)
        created = sum(1 for action, _ in writer.updates if action == "create")
        typer.echo(
            f"Exported: {created} new, {writer.num_changed} changed, "
            f"{writer.num_same} unchanged, {writer.num_removed} removed"
        )


@app.command()
def reindex(
    check_only: bool = typer.Option(False, "--check", help="Only report inconsistencies"),
    base_dir: BaseDirOption = None,
) -> None:
    """Verify or rebuild the full-text search index."""
    with _open_repo(base_dir) as repo:
        stale = repo.check_index()
        if check_only:
            typer.echo(f"{len(stale)} node(s) out of sync")
            if stale:
                raise typer.Exit(1)
            return
        count = repo.rebuild_index()
        typer.echo(f"Reindexed {count} node(s), {len(stale)} were out of sync")


@app.command()
def today(base_dir: BaseDirOption = None) -> None:
    """Print today's daily note, creating it if needed."""
    with _open_repo(base_dir) as repo:
        note = repo.daily_note()
        typer.echo(repo.export(note.id), nl=False)
