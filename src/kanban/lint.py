"""Read-only consistency checks over the card tree.

Each check returns a list of human-readable issue strings. Cards that fail to
parse are skipped; nothing here raises on a bad card or mutates the board.
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

from kanban.models import normalize_id

if TYPE_CHECKING:
    from kanban.config import BoardConfig
    from kanban.index import ScannedCard
    from kanban.models import Card
    from kanban.store import Board

_MAX_PARENT_HOPS = 1000


def check_required_fields(card: Card) -> list[str]:
    issues = []
    if not card.id.strip():
        issues.append("missing id")
    if not card.title.strip():
        issues.append("missing title")
    return issues


def check_relations(board: Board, cards: list[ScannedCard] | None = None) -> list[str]:
    """Dangling and self references, plus parent cycles."""
    cards = board.iter_cards() if cards is None else cards
    ids = {sc.card.key for sc in cards}
    parent_of: dict[str, str] = {}
    issues: list[str] = []

    for sc in cards:
        c = sc.card
        me = c.key
        if c.parent:
            p = normalize_id(c.parent)
            parent_of[me] = p
            if p not in ids:
                issues.append(f"dangling parent: {me} -> {p}")
            if p == me:
                issues.append(f"self parent: {me}")
        for d in map(normalize_id, c.depends_on or []):
            if d not in ids:
                issues.append(f"dangling depends: {me} -> {d}")
            if d == me:
                issues.append(f"self depends: {me}")
        for r in map(normalize_id, c.relates or []):
            if r not in ids:
                issues.append(f"dangling relates: {me} <-> {r}")
            if r == me:
                issues.append(f"self relates: {me}")

    for start in sorted(ids):
        seen: set[str] = set()
        cur = start
        for _ in range(_MAX_PARENT_HOPS):
            if cur not in parent_of:
                break
            if cur in seen:
                issues.append(f"parent cycle detected at {start}")
                break
            seen.add(cur)
            cur = parent_of[cur]
    return issues


def check_parent_done(board: Board, cards: list[ScannedCard] | None = None) -> list[str]:
    """A completed parent must not have incomplete children."""
    cards = board.iter_cards() if cards is None else cards
    by_id = {sc.card.key: sc.card for sc in cards}
    children: dict[str, list[Card]] = defaultdict(list)
    for sc in cards:
        if sc.card.parent:
            children[normalize_id(sc.card.parent)].append(sc.card)

    issues = []
    for pid in sorted(children):
        parent = by_id.get(pid)
        if parent is None or not parent.is_done:
            continue
        issues.extend(
            f"parent done but child not complete: {pid} -> {ch.id}"
            for ch in children[pid]
            if not ch.is_done
        )
    return issues


def check_wip(board: Board, limits: dict[str, int]) -> list[str]:
    """Count files directly inside each limited column directory."""
    issues = []
    for col, limit in limits.items():
        col_dir = board.base / col
        count = sum(1 for p in col_dir.iterdir() if p.is_file()) if col_dir.is_dir() else 0
        if count > limit:
            issues.append(f"wip exceeded: {col} limit {limit} actual {count}")
    return issues


def lint_board(board: Board, config: BoardConfig | None = None) -> list[str]:
    """Run every check once over a single scan of the tree."""
    config = config or board.config()
    cards = board.iter_cards()
    issues: list[str] = []
    for sc in cards:
        issues.extend(f"{sc.path.name}: {msg}" for msg in check_required_fields(sc.card))
    issues += check_relations(board, cards)
    issues += check_parent_done(board, cards)
    issues += check_wip(board, config.wip_limits)
    return issues
