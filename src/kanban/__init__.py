"""File-based kanban board: Markdown card files as source of truth, NDJSON as derived index.

Layout:
    .kanban/
        columns.toml                  # board config
        <column>/<ID>__<slug>.md      # one card per file, column = directory
        done/<YYYY>/<MM>/             # completed cards, by completion month
        cards.ndjson                  # {"id","title","column","lane",...} (fully reconstructable)
        relations.ndjson              # {"type","from","to"}
        notes/<ID>.ndjson             # append-only journal per card

Card file:
    ---
    id: 01J...
    title: ...
    parent: 01J...                    # optional; depends_on / relates are lists
    ---

    Markdown body

Writes rewrite the card through a temp file + rename, then upsert the index
under flock(LOCK_EX) on .kanban/.index.lock.
"""

from kanban.config import BoardConfig, init_config, load_config
from kanban.models import Card, Edge, ListFilter, NoteEntry
from kanban.store import Board

__all__ = ["Board", "BoardConfig", "Card", "Edge", "ListFilter", "NoteEntry", "init_config", "load_config"]
