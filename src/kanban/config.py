"""BoardConfig: per-board settings from .kanban/columns.toml.

Layout (all relative to the board root):

    .kanban/
        columns.toml          # board config (git-tracked)
        <column>/             # one directory per column
            <ID>__<slug>.md
        done/<YYYY>/<MM>/     # completed cards
        cards.ndjson          # derived card index
        relations.ndjson      # derived relation index
        notes/<ID>.ndjson     # append-only journal per card
        generated/            # rendered summaries

columns.toml example:

    columns = ["backlog", "doing", "review", "done"]

    [wip_limits]
    doing = 3

    [watch]
    debounce_ms = 300
    max_batch = 50
    hot_columns = ["backlog", "doing"]

    [render]
    enabled = true
    debounce_ms = 300
    progress_parents = ["01J..."]

    [writer]
    auto_rename_on_conflict = true
    rename_suffix = "v"
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger("kanban.config")

BOARD_DIRNAME = ".kanban"
_CONFIG_FILENAME = "columns.toml"

DEFAULT_COLUMNS = ["backlog", "doing", "review"]
DEFAULT_HOT_COLUMNS = ["backlog", "doing"]
_DEFAULT_DEBOUNCE_MS = 300
_DEFAULT_MAX_BATCH = 50


@dataclass
class WatchConfig:
    debounce_ms: int = _DEFAULT_DEBOUNCE_MS
    max_batch: int = _DEFAULT_MAX_BATCH
    hot_columns: list[str] | None = None     # columns rescanned when the event queue overflows


@dataclass
class RenderConfig:
    enabled: bool = False
    debounce_ms: int = _DEFAULT_DEBOUNCE_MS
    progress_parent: str | None = None
    progress_parents: list[str] | None = None

    @property
    def parents(self) -> list[str]:
        if self.progress_parents is not None:
            return list(self.progress_parents)
        if self.progress_parent:
            return [self.progress_parent]
        return []


@dataclass
class WriterConfig:
    auto_rename_on_conflict: bool = False
    rename_suffix: str = ""                 # candidates are <stem>-<suffix><n>.md


@dataclass
class BoardConfig:
    """Resolved configuration for one board."""

    base: Path                                  # the .kanban directory
    columns: list[str] = field(default_factory=list)
    wip_limits: dict[str, int] = field(default_factory=dict)
    watch: WatchConfig = field(default_factory=WatchConfig)
    render: RenderConfig = field(default_factory=RenderConfig)
    writer: WriterConfig = field(default_factory=WriterConfig)

    @property
    def config_path(self) -> Path:
        return self.base / _CONFIG_FILENAME

    @property
    def active_columns(self) -> list[str]:
        """Configured columns without 'done', or the default column set."""
        cols = [c for c in self.columns if c.lower() != "done"] if self.columns else list(DEFAULT_COLUMNS)
        return _dedup(cols)

    @property
    def hot_columns(self) -> list[str]:
        if self.watch.hot_columns is not None:
            cols = list(self.watch.hot_columns)
        elif self.columns:
            cols = list(self.columns)
        else:
            cols = list(DEFAULT_HOT_COLUMNS)
        return sorted(set(cols))


def _dedup(items: list[str]) -> list[str]:
    seen: set[str] = set()
    out = []
    for c in items:
        if c.lower() not in seen:
            seen.add(c.lower())
            out.append(c)
    return out


def _str_list(value: Any) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


def load_config(root: Path | str) -> BoardConfig:
    """Load .kanban/columns.toml under root. Missing or broken files yield defaults."""
    base = Path(root) / BOARD_DIRNAME
    config_path = base / _CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_path.exists():
        try:
            with config_path.open("rb") as f:
                raw = tomllib.load(f)
        except (tomllib.TOMLDecodeError, OSError) as exc:
            logger.warning("ignoring unreadable %s: %s", config_path, exc)
            raw = {}

    try:
        return _from_raw(base, raw)
    except (TypeError, ValueError, AttributeError) as exc:
        logger.warning("ignoring invalid %s: %s", config_path, exc)
        return BoardConfig(base=base)


def _from_raw(base: Path, raw: dict[str, Any]) -> BoardConfig:
    watch_section = raw.get("watch", {})
    render_section = raw.get("render", {})
    writer_section = raw.get("writer", {})

    max_batch = int(watch_section.get("max_batch", _DEFAULT_MAX_BATCH))
    if max_batch <= 0:
        max_batch = _DEFAULT_MAX_BATCH

    return BoardConfig(
        base=base,
        columns=_str_list(raw.get("columns")) or [],
        wip_limits={str(k): int(v) for k, v in raw.get("wip_limits", {}).items()},
        watch=WatchConfig(
            debounce_ms=int(watch_section.get("debounce_ms", _DEFAULT_DEBOUNCE_MS)),
            max_batch=max_batch,
            hot_columns=_str_list(watch_section.get("hot_columns")),
        ),
        render=RenderConfig(
            enabled=bool(render_section.get("enabled", False)),
            debounce_ms=int(render_section.get("debounce_ms", _DEFAULT_DEBOUNCE_MS)),
            progress_parent=render_section.get("progress_parent"),
            progress_parents=_str_list(render_section.get("progress_parents")),
        ),
        writer=WriterConfig(
            auto_rename_on_conflict=bool(writer_section.get("auto_rename_on_conflict", False)),
            rename_suffix=str(writer_section.get("rename_suffix", "")),
        ),
    )


def init_config(root: Path, columns: list[str] | None = None) -> Path:
    """Write a default columns.toml and column directories. Raises if the file already exists."""
    base = root / BOARD_DIRNAME
    config_path = base / _CONFIG_FILENAME
    if config_path.exists():
        msg = f"columns.toml already exists at {config_path}"
        raise FileExistsError(msg)

    cols = columns or [*DEFAULT_COLUMNS, "done"]
    base.mkdir(parents=True, exist_ok=True)
    for col in cols:
        (base / col).mkdir(exist_ok=True)

    col_list = ", ".join(f'"{c}"' for c in cols)
    content = f"""\
columns = [{col_list}]

# [wip_limits]
# doing = 3

# [watch]
# debounce_ms = 300          # flush interval for coalesced change events
# max_batch = 50             # flush early once this many cards are pending
# hot_columns = ["backlog", "doing"]   # rescanned when the event queue overflows

# [render]
# enabled = false            # write generated/board.md on each flush
# debounce_ms = 300
# progress_parents = []      # card ids to write generated/progress_<ID>.md for

# [writer]
# auto_rename_on_conflict = false
# rename_suffix = ""         # conflicting renames try <slug>-<suffix>1.md, -2.md, ...
"""
    config_path.write_text(content)
    return config_path
