"""Plain-Markdown summaries written to .kanban/generated/."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING

from kanban.config import DEFAULT_COLUMNS
from kanban.index import atomic_write
from kanban.models import normalize_id
from kanban.paths import DONE_COLUMN

if TYPE_CHECKING:
    from pathlib import Path

    from kanban.config import BoardConfig
    from kanban.models import Card
    from kanban.store import Board

GENERATED_DIR = "generated"


def _count_files(directory: Path) -> int:
    if not directory.is_dir():
        return 0
    return sum(1 for p in directory.rglob("*") if p.is_file())


def render_board(board: Board, config: BoardConfig | None = None) -> str:
    config = config or board.config()
    cols: list[str] = []
    for c in config.columns or DEFAULT_COLUMNS:
        if c != DONE_COLUMN and c not in cols:
            cols.append(c)
    lines = ["# Board", ""]
    lines += [f"- {c}: {_count_files(board.base / c)}" for c in cols]
    lines.append(f"- {DONE_COLUMN}: {_count_files(board.base / DONE_COLUMN)}")
    return "\n".join(lines) + "\n"


@dataclass
class Progress:
    done: int = 0
    total: int = 0
    done_size: int = 0
    total_size: int = 0

    @staticmethod
    def _pct(part: int, whole: int) -> float:
        return part / whole * 100.0 if whole else 0.0

    def __str__(self) -> str:
        return (
            f"progress: {self.done}/{self.total} ({self._pct(self.done, self.total):.1f}%) "
            f"size: {self.done_size}/{self.total_size} "
            f"({self._pct(self.done_size, self.total_size):.1f}%)"
        )


def parent_progress(board: Board, parent_id: str) -> Progress:
    """Done/total over all descendants of parent_id, counted and weighted by size."""
    children: dict[str, list[Card]] = defaultdict(list)
    for sc in board.iter_cards():
        if sc.card.parent:
            children[normalize_id(sc.card.parent)].append(sc.card)

    prog = Progress()
    stack = [normalize_id(parent_id)]
    visited = set(stack)
    while stack:
        for child in children.get(stack.pop(), []):
            if child.key in visited:
                continue
            visited.add(child.key)
            size = child.size or 0
            prog.total += 1
            prog.total_size += size
            if child.is_done:
                prog.done += 1
                prog.done_size += size
            stack.append(child.key)
    return prog


def render_parent_progress(board: Board, parent_id: str) -> str:
    return str(parent_progress(board, parent_id))


def write_generated(board: Board, config: BoardConfig | None = None) -> list[Path]:
    """Write board.md and the configured progress files. Returns the paths written."""
    config = config or board.config()
    out_dir = board.base / GENERATED_DIR
    written = []

    board_md = out_dir / "board.md"
    atomic_write(board_md, render_board(board, config))
    written.append(board_md)

    parents = config.render.parents
    if not parents:
        return written
    titles = {sc.card.key: sc.card.title for sc in board.iter_cards()}
    index = ["# Parent Progress\n"]
    for pid in parents:
        up = normalize_id(pid)
        path = out_dir / f"progress_{up}.md"
        atomic_write(path, render_parent_progress(board, up))
        written.append(path)
        index.append(f"- {titles.get(up) or up} ({up})")
    index_md = out_dir / "progress_index.md"
    atomic_write(index_md, "\n".join(index) + "\n")
    written.append(index_md)
    return written
