"""Watch a board directory and turn bursts of file events into notifications.

Three threads per watched root:

    backend   inotify_simple (Linux) or an mtime poll; pushes RawEvent onto a queue
    engine    WatchEngine.run(): coalesces card ids, flushes on the debounce
              interval or when the batch is full
    caller    start_watch() returns a WatchHandle; stop() tears both down

A flush re-upserts the card index for every pending id, optionally rewrites
generated/*.md, then publishes one board notification followed by one per card:

    {"jsonrpc":"2.0","method":"notifications/publish",
     "params":{"event":"resource/updated","uri":"kanban://<root>/board"}}

Queue protocol: RawEvent(paths) is a normal change, RawEvent(()) means the
backend's own queue overflowed, None means the backend is gone.

Falls back to pure polling if inotify is unavailable (macOS, Docker).
"""

from __future__ import annotations

import json
import logging
import queue
import sys
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from kanban.errors import KanbanError
from kanban.index import iter_card_files
from kanban.paths import card_id_from_name, is_column_name
from kanban.render import write_generated
from kanban.store import Board

if TYPE_CHECKING:
    from collections.abc import Callable

    from kanban.config import BoardConfig

logger = logging.getLogger("kanban.watcher")

_FLOOD_BURSTS = 3
_INOTIFY_TIMEOUT_MS = 500
_POLL_INTERVAL = 1.0
_JOIN_TIMEOUT = 5.0


# ---------------------------------------------------------------------------
# Registry: at most one watch per canonical root
# ---------------------------------------------------------------------------

class WatchRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._roots: set[str] = set()

    @staticmethod
    def canonical(root: Path | str) -> str:
        return str(Path(root).resolve())

    def claim(self, root: Path | str) -> bool:
        """Mark root as watched. False if it already was."""
        key = self.canonical(root)
        with self._lock:
            if key in self._roots:
                return False
            self._roots.add(key)
            return True

    def release(self, root: Path | str) -> None:
        with self._lock:
            self._roots.discard(self.canonical(root))

    def clear(self) -> None:
        with self._lock:
            self._roots.clear()

    def __contains__(self, root: object) -> bool:
        if not isinstance(root, (str, Path)):
            return False
        with self._lock:
            return self.canonical(root) in self._roots


default_registry = WatchRegistry()


# ---------------------------------------------------------------------------
# Notification sinks
# ---------------------------------------------------------------------------

class NotificationSink(Protocol):
    def publish(self, message: str) -> None: ...


class StdoutSink:
    """One JSON message per line on stdout."""

    def publish(self, message: str) -> None:
        sys.stdout.write(message + "\n")
        sys.stdout.flush()


class ListSink:
    """Keeps every message; for tests and embedding."""

    def __init__(self) -> None:
        self.messages: list[str] = []
        self._lock = threading.Lock()

    def publish(self, message: str) -> None:
        with self._lock:
            self.messages.append(message)

    @property
    def uris(self) -> list[str]:
        with self._lock:
            return [json.loads(m)["params"]["uri"] for m in self.messages]


def notification(uri: str) -> str:
    return json.dumps(
        {
            "jsonrpc": "2.0",
            "method": "notifications/publish",
            "params": {"event": "resource/updated", "uri": uri},
        },
        separators=(",", ":"),
    )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

@dataclass
class RawEvent:
    paths: tuple[Path, ...] = ()

    @property
    def is_overflow(self) -> bool:
        return not self.paths


@dataclass
class EngineStats:
    flushes: int = 0
    floods: int = 0
    renders: int = 0
    errors: int = 0


class WatchEngine:
    """Debounce loop over a queue of RawEvent. run() blocks until stop() or disconnect."""

    def __init__(
        self,
        board: Board,
        sink: NotificationSink,
        events: queue.Queue[RawEvent | None],
        config: BoardConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.board = board
        self.sink = sink
        self.events = events
        self.config = config or board.config()
        self.clock = clock
        self.stats = EngineStats()

        self.pending: set[str] = set()
        self.overflow_bursts = 0
        self._last_flush = clock()
        self._last_render: float | None = None
        self._stopped = threading.Event()

        self._debounce = max(self.config.watch.debounce_ms, 0) / 1000.0
        self._render_debounce = max(self.config.render.debounce_ms, 0) / 1000.0
        self._max_batch = self.config.watch.max_batch
        self._uri_base = f"kanban://{board.root}"

    def stop(self) -> None:
        self._stopped.set()
        self.events.put(None)

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def run(self) -> None:
        while not self._stopped.is_set():
            try:
                item = self.events.get(timeout=self._debounce or None)
            except queue.Empty:
                if self.pending:
                    self.flush()
                continue

            if item is None:
                break
            if self._stopped.is_set():
                break
            if not self.pending:
                # First event after an idle spell opens a new debounce window.
                self._last_flush = self.clock()

            if item.is_overflow:
                self._rescan_hot_columns()
                self.overflow_bursts += 1
                if self.overflow_bursts >= _FLOOD_BURSTS:
                    self._flood()
                    continue
            else:
                self.overflow_bursts = 0
                for p in item.paths:
                    cid = card_id_from_name(p.name)
                    if cid:
                        self.pending.add(cid)

            due = self.clock() - self._last_flush >= self._debounce
            if self.pending and (due or len(self.pending) >= self._max_batch):
                self.flush()

        # Drain what was collected before the backend went away.
        if self.pending:
            self.flush()
        logger.info("watch engine stopped for %s", self.board.root)

    def _rescan_hot_columns(self) -> None:
        added = 0
        for col in self.config.hot_columns:
            if not is_column_name(col):
                continue
            for cid in self.board.list_ids(col):
                if added >= self._max_batch:
                    return
                if cid not in self.pending:
                    self.pending.add(cid)
                    added += 1

    def _flood(self) -> None:
        logger.warning(
            "event queue overflowed %d times in a row; dropping %d pending ids",
            self.overflow_bursts, len(self.pending),
        )
        self.pending.clear()
        self.overflow_bursts = 0
        self.stats.floods += 1
        try:
            self.sink.publish(notification(f"{self._uri_base}/board"))
        except Exception:
            self.stats.errors += 1
            logger.exception("failed to publish board notification")

    def flush(self) -> None:
        ids = sorted(self.pending)
        for cid in ids:
            try:
                self.board.refresh_index(cid)
            except (KanbanError, OSError):
                self.stats.errors += 1
                logger.exception("failed to refresh index for %s", cid)
        if self.config.render.enabled:
            now = self.clock()
            if self._last_render is None or now - self._last_render >= self._render_debounce:
                try:
                    write_generated(self.board, self.config)
                    self.stats.renders += 1
                except (KanbanError, OSError):
                    self.stats.errors += 1
                    logger.exception("failed to render %s", self.board.base)
                self._last_render = now
        try:
            self.sink.publish(notification(f"{self._uri_base}/board"))
            for cid in ids:
                self.sink.publish(notification(f"{self._uri_base}/cards/{cid}"))
        except Exception:
            self.stats.errors += 1
            logger.exception("flush failed for %s", self.board.root)
        self.pending.clear()
        self._last_flush = self.clock()
        self.stats.flushes += 1


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

def watch_inotify(base: Path, events: queue.Queue[RawEvent | None], stop: threading.Event) -> None:
    """Feed events from inotify_simple (Linux) until stop is set."""
    import inotify_simple  # type: ignore[import]

    inotify = inotify_simple.INotify()
    flags = inotify_simple.flags  # type: ignore[attr-defined]
    mask = flags.CREATE | flags.CLOSE_WRITE | flags.MOVED_TO | flags.MOVED_FROM | flags.DELETE

    watched: dict[int, Path] = {}

    def add(directory: Path) -> None:
        try:
            watched[inotify.add_watch(str(directory), mask)] = directory
        except OSError:
            logger.debug("cannot watch %s", directory)

    base.mkdir(parents=True, exist_ok=True)
    add(base)
    for sub in base.rglob("*"):
        if sub.is_dir():
            add(sub)
    logger.info("inotify watching %s (%d dirs)", base, len(watched))

    try:
        while not stop.is_set():
            paths: list[Path] = []
            overflow = False
            for event in inotify.read(timeout=_INOTIFY_TIMEOUT_MS):
                if event.mask & flags.Q_OVERFLOW:
                    overflow = True
                    continue
                dir_path = watched.get(event.wd)
                if dir_path is None or not event.name:
                    continue
                changed = dir_path / event.name
                if event.mask & flags.ISDIR:
                    if event.mask & (flags.CREATE | flags.MOVED_TO):
                        # New column or done/<YYYY>/<MM>: watch it and pick up files already inside.
                        add(changed)
                        paths.extend(changed.rglob("*.md"))
                    continue
                paths.append(changed)
            if overflow:
                events.put(RawEvent(()))
            if paths:
                events.put(RawEvent(tuple(paths)))
    finally:
        inotify.close()


def _snapshot(base: Path) -> dict[Path, float]:
    out = {}
    for p in iter_card_files(base):
        try:
            out[p] = p.stat().st_mtime
        except OSError:
            continue
    return out


def watch_poll(
    base: Path,
    events: queue.Queue[RawEvent | None],
    stop: threading.Event,
    interval: float = _POLL_INTERVAL,
) -> None:
    """Polling fallback for macOS/Docker. Compares card mtimes every interval seconds."""
    logger.info("polling %s interval=%.1fs", base, interval)
    seen = _snapshot(base)
    while not stop.wait(interval):
        current = _snapshot(base)
        changed = [p for p, m in current.items() if seen.get(p) != m]
        changed += [p for p in seen if p not in current]
        seen = current
        if changed:
            events.put(RawEvent(tuple(changed)))


def _run_backend(base: Path, events: queue.Queue[RawEvent | None], stop: threading.Event) -> None:
    try:
        try:
            watch_inotify(base, events, stop)
        except ImportError:
            logger.warning("inotify_simple not available, falling back to polling")
            watch_poll(base, events, stop)
    except Exception:
        logger.exception("watch backend failed for %s", base)
    finally:
        # Wakes the engine; it drains and exits.
        events.put(None)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

@dataclass
class WatchHandle:
    root: str
    engine: WatchEngine
    registry: WatchRegistry
    _stop: threading.Event
    _threads: list[threading.Thread] = field(default_factory=list)

    def stop(self) -> None:
        self._stop.set()
        self.engine.stop()
        for t in self._threads:
            t.join(timeout=_JOIN_TIMEOUT)
        self.registry.release(self.root)

    def wait(self) -> None:
        """Block until the engine thread exits (backend gone or stop())."""
        for t in self._threads:
            while t.is_alive():
                t.join(timeout=1.0)


def start_watch(
    root: Path | str,
    sink: NotificationSink | None = None,
    registry: WatchRegistry | None = None,
) -> tuple[WatchHandle | None, dict[str, Any]]:
    """Start a background watch on root unless one is already running."""
    registry = registry or default_registry
    key = registry.canonical(root)
    if not registry.claim(key):
        return None, {"started": False, "alreadyWatching": True}

    board = Board(key)
    events: queue.Queue[RawEvent | None] = queue.Queue()
    stop = threading.Event()
    engine = WatchEngine(board, sink or StdoutSink(), events)

    backend = threading.Thread(
        target=_run_backend, args=(board.base, events, stop), name=f"kanban-watch-backend:{key}", daemon=True,
    )
    runner = threading.Thread(target=engine.run, name=f"kanban-watch-engine:{key}", daemon=True)
    handle = WatchHandle(root=key, engine=engine, registry=registry, _stop=stop, _threads=[runner, backend])
    backend.start()
    runner.start()
    logger.info("watching %s", key)
    return handle, {"started": True}


def run(root: Path | str) -> None:
    """Watch root in the foreground, printing notifications to stdout until Ctrl-C."""
    handle, _ = start_watch(root)
    if handle is None:
        logger.warning("already watching %s", root)
        return
    try:
        handle.wait()
    except KeyboardInterrupt:
        logger.info("interrupted")
    finally:
        handle.stop()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(message)s")
    run(Path(sys.argv[1]) if len(sys.argv) > 1 else Path.cwd())
