"""Edit relation edges stored in card front matter and read the parent tree.

Edges live on the "from" card:

    parent    card.parent = to            (at most one)
    depends   card.depends_on += [to]
    relates   written on both cards, so both directions are indexed
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import TYPE_CHECKING, Any

from kanban.errors import InvalidArgumentError, NotFoundError
from kanban.index import Triple, update_relation_index
from kanban.models import RELATION_TYPES, Edge, normalize_id

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from kanban.models import Card
    from kanban.store import Board

logger = logging.getLogger("kanban.relations")

_DEFAULT_TREE_DEPTH = 3


def _validate(edge: Edge, *, adding: bool) -> tuple[str, str, str]:
    typ, frm, to = edge.triple()
    if typ not in RELATION_TYPES:
        msg = f"invalid-argument: type must be one of {'|'.join(RELATION_TYPES)}, got {edge.type!r}"
        raise InvalidArgumentError(msg)
    if not frm:
        msg = "invalid-argument: edge is missing 'from'"
        raise InvalidArgumentError(msg)
    if to == "*" and (adding or typ != "parent"):
        msg = f"invalid-argument: {typ} edge needs an explicit 'to'"
        raise InvalidArgumentError(msg)
    if frm == to:
        msg = f"invalid-argument: self {typ} edge on {frm}"
        raise InvalidArgumentError(msg)
    return typ, frm, to


def _without(values: list[str] | None, target: str) -> list[str] | None:
    if values is None:
        return None
    return [v for v in values if normalize_id(v) != target]


def _with(values: list[str] | None, target: str) -> list[str]:
    out = list(values or [])
    if all(normalize_id(v) != target for v in out):
        out.append(target)
    return out


def set_relations(
    board: Board,
    add: Iterable[Edge] = (),
    remove: Iterable[Edge] = (),
) -> list[str]:
    """Apply edge removals then additions, then update relations.ndjson once.

    The "from" card of every edge, and the target of every addition, must
    exist before anything is written. Removals tolerate a missing target so
    dangling edges can be cleaned up. Returns the index warnings (non-empty
    only when the incremental update fell back to a full rebuild).
    """
    removals = [_validate(e, adding=False) for e in remove]
    additions = [_validate(e, adding=True) for e in add]

    touched: dict[str, tuple[Path, Card]] = {}

    def load(card_id: str) -> Card:
        if card_id not in touched:
            _column, path = board.locate(card_id)
            touched[card_id] = (path, board.read_path(path))
        return touched[card_id][1]

    for _typ, frm, _to in removals:
        load(frm)
    for _typ, frm, to in additions:
        load(frm)
        load(to)

    idx_remove: list[Triple] = []
    idx_add: list[Triple] = []

    for typ, frm, to in removals:
        card = load(frm)
        if typ == "parent":
            if to == "*" or normalize_id(card.parent or "") == to:
                card.parent = None
            idx_remove.append(("parent", frm, to))
        elif typ == "depends":
            card.depends_on = _without(card.depends_on, to)
            idx_remove.append(("depends", frm, to))
        else:
            card.relates = _without(card.relates, to)
            try:
                other = load(to)
            except NotFoundError:
                logger.info("relates target %s is gone, removing edge from %s only", to, frm)
            else:
                other.relates = _without(other.relates, frm)
            idx_remove += [("relates", frm, to), ("relates", to, frm)]

    for typ, frm, to in additions:
        card = load(frm)
        if typ == "parent":
            card.parent = to
            idx_remove.append(("parent", frm, "*"))
            idx_add.append(("parent", frm, to))
        elif typ == "depends":
            card.depends_on = _with(card.depends_on, to)
            idx_add.append(("depends", frm, to))
        else:
            other = load(to)
            card.relates = _with(card.relates, to)
            other.relates = _with(other.relates, frm)
            idx_add += [("relates", frm, to), ("relates", to, frm)]

    for path, card in touched.values():
        board.save(path, card)

    if not idx_remove and not idx_add:
        return []
    return update_relation_index(board.base, idx_remove, idx_add)


def tree(board: Board, root_id: str, depth: int = _DEFAULT_TREE_DEPTH) -> dict[str, Any]:
    """Parent/children tree rooted at root_id: {id, title, column, children}."""
    children: dict[str, list[str]] = defaultdict(list)
    info: dict[str, tuple[str, str]] = {}
    for sc in board.iter_cards():
        key = sc.card.key
        info[key] = (sc.card.title, sc.column)
        if sc.card.parent:
            children[normalize_id(sc.card.parent)].append(key)

    def build(node: str, remaining: int, seen: frozenset[str]) -> dict[str, Any]:
        title, column = info.get(node, ("", ""))
        kids = []
        if remaining > 0:
            for child in sorted(children.get(node, [])):
                if child not in seen:
                    kids.append(build(child, remaining - 1, seen | {child}))
        return {"id": node, "title": title, "column": column, "children": kids}

    root = normalize_id(root_id)
    return build(root, max(0, depth), frozenset({root}))
