"""Read and write card files under <root>/.kanban/.

Board is the public API:
    board = Board("/path/to/project")
    card_id = board.create("Write docs", column="backlog", lane="docs")
    board.move(card_id, "doing")
    board.update(card_id, {"title": "Write the docs"}, body="first draft done")
    board.complete(card_id)

Every mutation rewrites the card file, then upserts cards.ndjson. Lookups by id
walk the tree; the filesystem is authoritative, the index is a cache.
"""

from __future__ import annotations

import contextlib
import fcntl
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from kanban.codec import encode
from kanban.config import BOARD_DIRNAME, load_config
from kanban.errors import ConflictError, InvalidArgumentError, NotFoundError, StorageError
from kanban.index import (
    atomic_write,
    iter_card_files,
    read_card_file,
    read_card_index,
    reindex,
    scan_cards,
    upsert_card_index,
)
from kanban.models import Card, ListFilter, ListPage, NoteEntry, normalize_id, utc_now
from kanban.paths import (
    DONE_COLUMN,
    card_id_from_name,
    column_from_path,
    done_dir,
    filename_for,
    is_column_name,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

    from kanban.config import BoardConfig
    from kanban.index import ScannedCard

logger = logging.getLogger("kanban.store")

_MAX_RENAME_ATTEMPTS = 50
_DEFAULT_NOTES_LIMIT = 3

_STR_FIELDS = frozenset({"title", "description", "lane", "priority", "resume_hint"})
_LIST_FIELDS = frozenset({"labels", "assignees", "next_steps", "blockers"})
PATCHABLE_FIELDS = _STR_FIELDS | _LIST_FIELDS | {"size"}


@dataclass
class MoveResult:
    from_column: str
    to_column: str
    path: Path
    moved: bool = True


@dataclass
class UpdateResult:
    path: Path
    column: str
    warnings: list[str] = field(default_factory=list)


@contextlib.contextmanager
def _storage(action: str) -> Iterator[None]:
    """Re-raise OSError as StorageError."""
    try:
        yield
    except OSError as exc:
        msg = f"{action}: {exc}"
        raise StorageError(msg) from exc


def validate_fields(fields: dict[str, Any]) -> None:
    """Reject unknown front-matter fields and values of the wrong type."""
    for key, value in fields.items():
        if key not in PATCHABLE_FIELDS:
            msg = f"invalid-argument: field not patchable: {key}"
            raise InvalidArgumentError(msg)
        if value is None:
            continue
        if key in _STR_FIELDS and not isinstance(value, str):
            msg = f"invalid-argument: {key} must be a string"
            raise InvalidArgumentError(msg)
        if key in _LIST_FIELDS and (
            not isinstance(value, list) or not all(isinstance(v, str) for v in value)
        ):
            msg = f"invalid-argument: {key} must be a list of strings"
            raise InvalidArgumentError(msg)
        if key == "size" and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
            msg = "invalid-argument: size must be a non-negative integer"
            raise InvalidArgumentError(msg)
    if "title" in fields and not (fields["title"] or "").strip():
        msg = "invalid-argument: title must not be empty"
        raise InvalidArgumentError(msg)


def decide_rename_target(
    current: Path,
    new_path: Path,
    *,
    auto_rename: bool,
    suffix: str = "",
    exists: Callable[[Path], bool] = Path.exists,
) -> tuple[Path | None, str | None]:
    """Pick where a retitled card file should go.

    Returns (target, warning). target is None when the file must keep its name.
    """
    if new_path == current:
        return None, None
    if not exists(new_path):
        return new_path, None
    if not auto_rename:
        return None, f"rename target exists; kept original filename: {new_path}"
    tag = suffix.strip("-")
    for i in range(1, _MAX_RENAME_ATTEMPTS + 1):
        alt = new_path.with_name(f"{new_path.stem}-{tag}{i}{new_path.suffix}")
        if alt == current or not exists(alt):
            return alt, f"rename conflict; auto-renamed to {alt.name}"
    return None, "rename conflict; auto-rename failed; kept original filename"


class Board:
    """Markdown-file-backed kanban board rooted at <root>/.kanban."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        self.base = self.root / BOARD_DIRNAME

    def config(self) -> BoardConfig:
        return load_config(self.root)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def column_dir(self, column: str) -> Path:
        if not is_column_name(column):
            msg = f"invalid-argument: not a column name: {column!r}"
            raise InvalidArgumentError(msg)
        return self.base / column

    def notes_path(self, card_id: str) -> Path:
        return self.base / "notes" / f"{normalize_id(card_id)}.ndjson"

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def find_path(self, card_id: str) -> Path:
        """Locate a card file by id prefix (case-insensitive)."""
        key = normalize_id(card_id)
        if not key:
            msg = "invalid-argument: card id is required"
            raise InvalidArgumentError(msg)
        for path in iter_card_files(self.base):
            if card_id_from_name(path.name) == key:
                return path
        msg = f"card not found: {card_id}"
        raise NotFoundError(msg)

    def locate(self, card_id: str) -> tuple[str, Path]:
        """(column, path) of a card."""
        path = self.find_path(card_id)
        return column_from_path(self.base, path) or "", path

    def read_text(self, card_id: str) -> str:
        path = self.find_path(card_id)
        with _storage(f"read {path}"):
            return path.read_text(encoding="utf-8")

    def read(self, card_id: str) -> Card:
        return self.read_path(self.find_path(card_id))

    def read_path(self, path: Path) -> Card:
        with _storage(f"read {path}"):
            return read_card_file(path)

    def _write_card(self, path: Path, card: Card) -> None:
        with _storage(f"write {path}"):
            atomic_write(path, encode(card))

    def _rename(self, src: Path, dest: Path) -> None:
        with _storage(f"rename {src} -> {dest}"):
            dest.parent.mkdir(parents=True, exist_ok=True)
            src.rename(dest)

    def save(self, path: Path, card: Card) -> None:
        """Rewrite a card file in place and refresh its index entry."""
        self._write_card(path, card)
        with _storage("update card index"):
            upsert_card_index(self.base, card, column_from_path(self.base, path) or "")

    def iter_cards(self) -> list[ScannedCard]:
        return scan_cards(self.base)

    # ------------------------------------------------------------------
    # Write: lifecycle
    # ------------------------------------------------------------------

    def create(self, title: str, column: str = "backlog", *, body: str = "", **fields: Any) -> str:
        """Create a card file in column and index it. Returns the new card id."""
        if not isinstance(title, str) or not title.strip():
            msg = "invalid-argument: title is required"
            raise InvalidArgumentError(msg)
        validate_fields(fields)
        col_dir = self.column_dir(column)

        card = Card.new(title, body=body or "", **fields)
        path = col_dir / filename_for(card.id, title)
        with _storage(f"create {col_dir}"):
            col_dir.mkdir(parents=True, exist_ok=True)
        self._write_card(path, card)
        with _storage("update card index"):
            upsert_card_index(self.base, card, column)
        logger.debug("created %s in %s", card.id, column)
        return card.id

    def move(self, card_id: str, to_column: str) -> MoveResult:
        """Move a card file to another column directory, keeping its filename."""
        dest_dir = self.column_dir(to_column)
        column, path = self.locate(card_id)
        if column == to_column:
            return MoveResult(column, to_column, path, moved=False)

        dest = dest_dir / path.name
        if dest.exists():
            msg = f"conflict: {dest} already exists"
            raise ConflictError(msg)
        self._rename(path, dest)
        card = self.read_path(dest)
        with _storage("update card index"):
            upsert_card_index(self.base, card, to_column)
        return MoveResult(column, to_column, dest)

    def complete(self, card_id: str) -> Card:
        """Stamp completed_at and archive the file under done/<YYYY>/<MM>/."""
        _column, path = self.locate(card_id)
        card = self.read_path(path)
        completed_at = utc_now()
        dest = done_dir(self.base, completed_at) / path.name
        if dest != path and dest.exists():
            msg = f"conflict: {dest} already exists"
            raise ConflictError(msg)

        card.completed_at = completed_at
        self._write_card(path, card)
        if dest != path:
            self._rename(path, dest)
        with _storage("update card index"):
            upsert_card_index(self.base, card, DONE_COLUMN)
        return card

    def update(
        self,
        card_id: str,
        fields: dict[str, Any] | None = None,
        *,
        body: str | None = None,
        replace_body: bool = False,
    ) -> UpdateResult:
        """Patch front matter and/or the body; rename the file if the title changed.

        body is appended (on its own line) unless replace_body is set.
        Rename problems are reported in UpdateResult.warnings, never raised.
        """
        fields = dict(fields or {})
        validate_fields(fields)
        if replace_body and body is None:
            msg = "invalid-argument: replace_body requires body text"
            raise InvalidArgumentError(msg)

        column, path = self.locate(card_id)
        card = self.read_path(path)
        cfg = self.config()
        old_title = card.title
        for key, value in fields.items():
            setattr(card, key, value)
        if body is not None:
            if replace_body:
                card.body = body
            else:
                if card.body and not card.body.endswith("\n"):
                    card.body += "\n"
                card.body += body + "\n"
        self._write_card(path, card)

        warnings: list[str] = []
        final = path
        if card.title != old_title:
            new_path = path.parent / filename_for(card.id or card_id, card.title)
            target, warn = decide_rename_target(
                path,
                new_path,
                auto_rename=cfg.writer.auto_rename_on_conflict,
                suffix=cfg.writer.rename_suffix,
            )
            if target is not None and target != path:
                try:
                    path.rename(target)
                    final = target
                except OSError as exc:
                    warn = f"rename failed ({exc}); kept original filename"
            if warn:
                warnings.append(warn)

        with _storage("update card index"):
            upsert_card_index(self.base, card, column)
        return UpdateResult(path=final, column=column, warnings=warnings)

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_ids(self, column: str) -> list[str]:
        """Ids of the cards in one column (done/ is searched recursively)."""
        col_dir = self.column_dir(column)
        if not col_dir.is_dir():
            return []
        files = col_dir.rglob("*") if column == DONE_COLUMN else col_dir.iterdir()
        ids = [cid for f in files if f.is_file() and (cid := card_id_from_name(f.name))]
        return sorted(ids)

    def _default_columns(self, entries: list[dict[str, Any]]) -> list[str]:
        cols: list[str] = []
        for e in entries:
            col = str(e.get("column") or "")
            if col and col.lower() != DONE_COLUMN and col not in cols:
                cols.append(col)
        return cols or self.config().active_columns

    def list_cards(self, flt: ListFilter | None = None) -> ListPage:
        """List cards by column with optional filters, paged and sorted by id."""
        flt = flt or ListFilter()
        index_path = self.base / "cards.ndjson"
        use_index = flt.query is None and index_path.exists()
        entries = read_card_index(self.base) if index_path.exists() else []
        columns = list(flt.columns) if flt.columns else self._default_columns(entries)

        items: list[dict[str, Any]] = []
        if use_index:
            by_id = {normalize_id(str(e.get("id", ""))): e for e in entries}
            for e in by_id.values():
                col = str(e.get("column") or "")
                if col not in columns and not (flt.include_done and col == DONE_COLUMN):
                    continue
                if _entry_matches(e, flt):
                    items.append(_item(e.get("id"), e.get("title"), col, e.get("lane")))
        else:
            scan_cols = list(columns)
            if flt.include_done and DONE_COLUMN not in scan_cols:
                scan_cols.append(DONE_COLUMN)
            for col in scan_cols:
                for cid in self.list_ids(col) if is_column_name(col) else []:
                    try:
                        card = self.read(cid)
                    except (NotFoundError, StorageError, InvalidArgumentError):
                        continue
                    if _card_matches(card, flt):
                        items.append(_item(card.id, card.title, col, card.lane))

        items.sort(key=lambda it: str(it["cardId"] or ""))
        start = max(0, flt.offset)
        end = min(start + max(0, flt.limit), len(items))
        page = items[start:end] if start < len(items) else []
        return ListPage(items=page, next_offset=end if end < len(items) else None)

    # ------------------------------------------------------------------
    # Notes journal (notes/<ID>.ndjson, append-only)
    # ------------------------------------------------------------------

    def append_note(
        self,
        card_id: str,
        text: str,
        *,
        note_type: str = "worklog",
        tags: list[str] | None = None,
        author: str | None = None,
    ) -> NoteEntry:
        if not normalize_id(card_id):
            msg = "invalid-argument: card id is required"
            raise InvalidArgumentError(msg)
        if not text:
            msg = "invalid-argument: note text is required"
            raise InvalidArgumentError(msg)
        entry = NoteEntry(ts=utc_now(), type=note_type, text=text, tags=tags, author=author)
        path = self.notes_path(card_id)
        line = json.dumps(entry.to_dict(), ensure_ascii=False) + "\n"
        with _storage(f"append {path}"):
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as f:
                fcntl.flock(f, fcntl.LOCK_EX)
                f.write(line)
        return entry

    def list_notes(
        self,
        card_id: str,
        *,
        limit: int | None = None,
        all_entries: bool = False,
        since: str | None = None,
    ) -> list[NoteEntry]:
        """Newest first. Returns the latest `limit` (default 3) unless all_entries is set."""
        path = self.notes_path(card_id)
        if not path.exists():
            return []
        items: list[NoteEntry] = []
        with _storage(f"read {path}"):
            lines = path.read_text(encoding="utf-8").splitlines()
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                entry = NoteEntry.from_dict(json.loads(line))
            except (json.JSONDecodeError, KeyError, TypeError):
                continue
            # RFC 3339 UTC timestamps order lexicographically
            if since is not None and entry.ts < since:
                continue
            items.append(entry)
        items.reverse()
        if all_entries:
            return items
        return items[: limit if limit is not None else _DEFAULT_NOTES_LIMIT]

    # ------------------------------------------------------------------
    # Index maintenance
    # ------------------------------------------------------------------

    def reindex(self) -> dict[str, int]:
        with _storage("reindex"):
            return reindex(self.base)

    def refresh_index(self, card_id: str) -> bool:
        """Re-upsert one card's index entry from disk. False if the card file is gone."""
        try:
            column, path = self.locate(card_id)
        except NotFoundError:
            return False
        card = self.read_path(path)
        with _storage("update card index"):
            upsert_card_index(self.base, card, column)
        return True


def _item(card_id: Any, title: Any, column: str, lane: Any) -> dict[str, Any]:
    return {"cardId": card_id, "title": title, "column": column, "lane": lane}


def _eq(value: Any, wanted: str) -> bool:
    return isinstance(value, str) and value.lower() == wanted.lower()


def _has(values: Any, wanted: str) -> bool:
    return isinstance(values, list) and any(_eq(v, wanted) for v in values)


def _entry_matches(e: dict[str, Any], flt: ListFilter) -> bool:
    if flt.lane is not None and not _eq(e.get("lane"), flt.lane):
        return False
    if flt.priority is not None and not _eq(e.get("priority"), flt.priority):
        return False
    if flt.label is not None and not _has(e.get("labels"), flt.label):
        return False
    return not (flt.assignee is not None and not _has(e.get("assignees"), flt.assignee))


def _card_matches(card: Card, flt: ListFilter) -> bool:
    if not _entry_matches(card.index_entry(""), flt):
        return False
    if flt.query:
        q = flt.query.lower()
        haystacks = (card.title.lower(), card.body.lower(), card.id.lower())
        if not any(q in h for h in haystacks):
            return False
    return True
