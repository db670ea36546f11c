"""Card file codec: YAML front matter + Markdown body.

    ---
    id: 01J...
    title: Fix the thing
    ---

    free text body

decode(encode(card)) == card for any card with string fields.
"""

from __future__ import annotations

import re

import yaml

from kanban.errors import CardFormatError
from kanban.models import Card

_DELIM = "---\n"
_HEADER_RE = re.compile(r"\A---\n(.*?\n)?---\n\n?(.*)\Z", re.DOTALL)


def encode(card: Card) -> str:
    header = yaml.safe_dump(
        card.front_matter(),
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )
    return f"{_DELIM}{header}{_DELIM}\n{card.body}"


def decode(text: str) -> Card:
    """Parse a card file. Text without a front-matter block becomes the body of an empty card."""
    m = _HEADER_RE.match(text)
    if m is None:
        return Card(body=text)
    raw_header, body = m.group(1) or "", m.group(2)
    try:
        fm = yaml.safe_load(raw_header) if raw_header.strip() else {}
    except yaml.YAMLError as exc:
        msg = f"invalid front matter: {exc}"
        raise CardFormatError(msg) from exc
    if fm is None:
        fm = {}
    if not isinstance(fm, dict):
        msg = f"front matter must be a mapping, got {type(fm).__name__}"
        raise CardFormatError(msg)
    return Card.from_front_matter(fm, body=body)
