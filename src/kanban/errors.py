"""Error kinds surfaced by the board storage layer."""

from __future__ import annotations


class KanbanError(Exception):
    """Base class for every error raised by kanban operations."""

    kind = "internal"


class NotFoundError(KanbanError):
    """Unknown card id or resource path."""

    kind = "not-found"


class InvalidArgumentError(KanbanError):
    """Missing required field, malformed patch, invalid relation kind."""

    kind = "invalid-argument"


class CardFormatError(InvalidArgumentError):
    """A card file has a front-matter block that is not a YAML mapping."""


class ConflictError(KanbanError):
    kind = "conflict"


class StorageError(KanbanError):
    """A filesystem operation failed. The OSError is chained."""

    kind = "io"


class InternalError(KanbanError):
    kind = "internal"
