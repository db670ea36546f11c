"""kanban CLI: cards as Markdown files under .kanban/.

Commands:
    kanban init                      create .kanban/columns.toml + column dirs
    kanban new TITLE                 create a card (backlog by default)
    kanban show ID                   print the card file
    kanban move ID COLUMN            move a card to another column
    kanban done ID                   complete a card (archive under done/YYYY/MM)
    kanban update ID                 patch fields, append to or replace the body
    kanban list                      table of cards
    kanban relate TYPE FROM TO       add (or --remove) a parent/depends/relates edge
    kanban tree ID                   parent/children tree
    kanban notes add|list ID         per-card journal
    kanban reindex                   rebuild cards.ndjson + relations.ndjson
    kanban lint                      consistency checks
    kanban render                    write generated/*.md
    kanban watch                     follow file changes, print notifications
"""

from __future__ import annotations

import contextlib
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click

from kanban.config import init_config
from kanban.errors import KanbanError
from kanban.lint import lint_board
from kanban.models import Edge, ListFilter
from kanban.relations import set_relations, tree
from kanban.render import write_generated
from kanban.store import Board

if TYPE_CHECKING:
    from collections.abc import Iterator

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def _errors() -> Iterator[None]:
    try:
        yield
    except KanbanError as exc:
        raise click.ClickException(str(exc)) from exc


def _fields(**opts: Any) -> dict[str, Any]:
    """Drop options the user did not pass; multi-value options become lists."""
    out: dict[str, Any] = {}
    for key, value in opts.items():
        if value is None or value == ():
            continue
        out[key] = list(value) if isinstance(value, tuple) else value
    return out


def _echo_warnings(warnings: list[str]) -> None:
    for w in warnings:
        click.echo(f"warning: {w}", err=True)


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="kanban-board")
@click.option("--dir", "root", default=".", show_default=True, help="Project root containing .kanban/")
@click.pass_context
def cli(ctx: click.Context, root: str) -> None:
    """File-backed kanban board."""
    ctx.obj = Board(Path(root).resolve())


@cli.command()
@click.option("--column", "columns", multiple=True, help="Column name (repeatable)")
@click.pass_obj
def init(board: Board, columns: tuple[str, ...]) -> None:
    """Create .kanban/columns.toml and the column directories."""
    try:
        path = init_config(board.root, list(columns) or None)
        click.echo(f"Created {path}")
    except FileExistsError:
        click.echo("columns.toml already exists, skipping init")


# ---------------------------------------------------------------------------
# Cards
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("title")
@click.option("--column", "-c", default="backlog", show_default=True)
@click.option("--lane", default=None)
@click.option("--priority", "-p", default=None)
@click.option("--size", type=int, default=None)
@click.option("--label", "labels", multiple=True)
@click.option("--assignee", "assignees", multiple=True)
@click.option("--description", default=None)
@click.option("--body", default="", help="Markdown body")
@click.pass_obj
def new(board: Board, title: str, column: str, body: str, **opts: Any) -> None:
    """Create a card and print its id."""
    with _errors():
        card_id = board.create(title, column, body=body, **_fields(**opts))
    click.echo(card_id)


@cli.command()
@click.argument("card_id")
@click.pass_obj
def show(board: Board, card_id: str) -> None:
    """Print a card file."""
    with _errors():
        click.echo(board.read_text(card_id), nl=False)


@cli.command()
@click.argument("card_id")
@click.argument("column")
@click.pass_obj
def move(board: Board, card_id: str, column: str) -> None:
    """Move a card to COLUMN."""
    with _errors():
        res = board.move(card_id, column)
    if res.moved:
        click.echo(f"{res.from_column} -> {res.to_column}")
    else:
        click.echo(f"already in {res.to_column}")


@cli.command()
@click.argument("card_id")
@click.pass_obj
def done(board: Board, card_id: str) -> None:
    """Complete a card."""
    with _errors():
        card = board.complete(card_id)
    click.echo(f"completed {card.id} at {card.completed_at}")


@cli.command()
@click.argument("card_id")
@click.option("--title", default=None)
@click.option("--description", default=None)
@click.option("--lane", default=None)
@click.option("--priority", "-p", default=None)
@click.option("--size", type=int, default=None)
@click.option("--label", "labels", multiple=True, help="Replaces all labels")
@click.option("--assignee", "assignees", multiple=True, help="Replaces all assignees")
@click.option("--resume-hint", default=None)
@click.option("--next-step", "next_steps", multiple=True)
@click.option("--blocker", "blockers", multiple=True)
@click.option("--body", default=None, help="Text appended to the body")
@click.option("--replace", "replace_body", is_flag=True, help="Replace the body instead of appending")
@click.pass_obj
def update(board: Board, card_id: str, body: str | None, replace_body: bool, **opts: Any) -> None:
    """Patch front matter and/or the body of a card."""
    with _errors():
        res = board.update(card_id, _fields(**opts), body=body, replace_body=replace_body)
    _echo_warnings(res.warnings)
    click.echo(str(res.path))


@cli.command("list")
@click.option("--column", "-c", "columns", multiple=True)
@click.option("--lane", default=None)
@click.option("--priority", "-p", default=None)
@click.option("--label", default=None)
@click.option("--assignee", default=None)
@click.option("--query", "-q", default=None, help="Substring of title, body, or id")
@click.option("--all", "include_done", is_flag=True, help="Include completed cards")
@click.option("--offset", "-o", default=0, show_default=True)
@click.option("--limit", "-l", default=200, show_default=True)
@click.option("--json", "as_json", is_flag=True)
@click.pass_obj
def list_cmd(board: Board, columns: tuple[str, ...], as_json: bool, **opts: Any) -> None:
    """List cards."""
    from rich.console import Console
    from rich.table import Table

    with _errors():
        page = board.list_cards(ListFilter(columns=list(columns) or None, **opts))
    if as_json:
        click.echo(json.dumps({"items": page.items, "nextOffset": page.next_offset}, ensure_ascii=False))
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Column")
    table.add_column("Lane")
    table.add_column("Title")
    for it in page.items:
        table.add_row(str(it["cardId"]), it["column"] or "", it["lane"] or "", it["title"] or "")
    console = Console()
    console.print(table)
    if page.next_offset is not None:
        console.print(f"[dim]more: --offset {page.next_offset}[/dim]")


# ---------------------------------------------------------------------------
# Relations
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("rel_type", type=click.Choice(["parent", "depends", "relates"]))
@click.argument("from_id")
@click.argument("to_id", required=False, default="*")
@click.option("--remove", is_flag=True, help="Remove the edge instead of adding it")
@click.pass_obj
def relate(board: Board, rel_type: str, from_id: str, to_id: str, remove: bool) -> None:
    """Add or remove a relation edge (TO may be omitted when removing a parent)."""
    edge = Edge(rel_type, from_id, to_id)
    with _errors():
        warnings = set_relations(board, remove=[edge]) if remove else set_relations(board, add=[edge])
    _echo_warnings(warnings)


@cli.command("tree")
@click.argument("root_id")
@click.option("--depth", "-d", default=3, show_default=True)
@click.pass_obj
def tree_cmd(board: Board, root_id: str, depth: int) -> None:
    """Print the parent/children tree under ROOT_ID."""
    def emit(node: dict[str, Any], indent: int) -> None:
        click.echo(f"{'  ' * indent}{node['id']}  [{node['column'] or '?'}]  {node['title']}")
        for child in node["children"]:
            emit(child, indent + 1)

    with _errors():
        emit(tree(board, root_id, depth), 0)


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------


@cli.group()
def notes() -> None:
    """Per-card append-only journal."""


@notes.command("add")
@click.argument("card_id")
@click.argument("text")
@click.option("--type", "note_type", default="worklog", show_default=True)
@click.option("--tag", "tags", multiple=True)
@click.option("--author", default=None)
@click.pass_obj
def notes_add(board: Board, card_id: str, text: str, note_type: str, tags: tuple[str, ...], author: str | None) -> None:
    """Append a note to a card's journal."""
    with _errors():
        entry = board.append_note(card_id, text, note_type=note_type, tags=list(tags) or None, author=author)
    click.echo(entry.ts)


@notes.command("list")
@click.argument("card_id")
@click.option("--limit", "-l", type=int, default=None, help="Latest N entries (default 3)")
@click.option("--all", "all_entries", is_flag=True)
@click.option("--since", default=None, help="Only entries at or after this ISO timestamp")
@click.pass_obj
def notes_list(board: Board, card_id: str, limit: int | None, all_entries: bool, since: str | None) -> None:
    """Show journal entries, newest first."""
    with _errors():
        entries = board.list_notes(card_id, limit=limit, all_entries=all_entries, since=since)
    for e in entries:
        tags = f" [{', '.join(e.tags)}]" if e.tags else ""
        click.echo(f"{e.ts}  {e.type}{tags}  {e.text}")


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_obj
def reindex(board: Board) -> None:
    """Rebuild cards.ndjson and relations.ndjson from the card files."""
    with _errors():
        counts = board.reindex()
    click.echo(f"Indexed {counts['cards']} cards, {counts['relations']} relations")


@cli.command()
@click.pass_obj
def lint(board: Board) -> None:
    """Report dangling/self/cyclic relations, WIP overruns, and missing fields."""
    issues = lint_board(board)
    for issue in issues:
        click.echo(issue)
    if issues:
        click.get_current_context().exit(1)
    click.echo("ok")


@cli.command()
@click.pass_obj
def render(board: Board) -> None:
    """Write generated/board.md and configured progress files."""
    try:
        paths = write_generated(board)
    except OSError as exc:
        raise click.ClickException(str(exc)) from exc
    for p in paths:
        click.echo(str(p))


@cli.command()
@click.pass_obj
def watch(board: Board) -> None:
    """Watch .kanban/ and print a JSON notification per change (Ctrl-C to stop)."""
    from kanban.watcher import run

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(message)s")
    run(board.root)


def main() -> None:
    cli(standalone_mode=True)


if __name__ == "__main__":
    main()
