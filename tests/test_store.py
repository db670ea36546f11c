"""Tests for Board: create/read/move/complete/update, listing, and notes."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from kanban.errors import ConflictError, InvalidArgumentError, NotFoundError
from kanban.index import read_card_index
from kanban.lint import check_parent_done
from kanban.models import Edge, ListFilter, utc_now
from kanban.paths import done_dir
from kanban.relations import set_relations
from kanban.store import decide_rename_target


def _index_entries(board, card_id):
    return [e for e in read_card_index(board.base) if e["id"].upper() == card_id.upper()]


class TestCreateRead:
    def test_create_writes_file_and_index(self, board):
        card_id = board.create("Write docs", lane="docs", labels=["x"])
        column, path = board.locate(card_id)
        assert column == "backlog"
        assert path.name == f"{card_id}__write-docs.md"
        card = board.read(card_id)
        assert card.title == "Write docs"
        assert card.lane == "docs"
        assert card.created_at
        [entry] = _index_entries(board, card_id)
        assert entry["column"] == "backlog"
        assert entry["title"] == "Write docs"

    def test_lookup_is_case_insensitive(self, board):
        card_id = board.create("A")
        assert board.read(card_id.lower()).id == card_id

    def test_read_text_is_the_file(self, board):
        card_id = board.create("A", body="hello\n")
        assert board.read_text(card_id).endswith("\n\nhello\n")

    def test_title_required(self, board):
        with pytest.raises(InvalidArgumentError):
            board.create("   ")

    def test_unknown_field_rejected(self, board):
        with pytest.raises(InvalidArgumentError):
            board.create("A", color="red")

    def test_mistyped_field_rejected(self, board):
        with pytest.raises(InvalidArgumentError):
            board.create("A", labels="bug")

    def test_reserved_column_rejected(self, board):
        with pytest.raises(InvalidArgumentError):
            board.create("A", column="notes")

    def test_unknown_id(self, board):
        with pytest.raises(NotFoundError):
            board.read("01NOPE")


class TestMove:
    def test_move(self, board):
        card_id = board.create("A")
        res = board.move(card_id, "doing")
        assert res.moved
        assert (res.from_column, res.to_column) == ("backlog", "doing")
        assert res.path == board.base / "doing" / f"{card_id}__a.md"
        assert board.list_ids("backlog") == []
        assert board.list_ids("doing") == [card_id]
        [entry] = _index_entries(board, card_id)
        assert entry["column"] == "doing"

    def test_move_to_same_column_is_noop(self, board):
        card_id = board.create("A")
        index_before = (board.base / "cards.ndjson").read_text()
        _, path = board.locate(card_id)
        mtime = path.stat().st_mtime_ns
        res = board.move(card_id, "backlog")
        assert not res.moved
        assert path.stat().st_mtime_ns == mtime
        assert (board.base / "cards.ndjson").read_text() == index_before

    def test_move_into_reserved_dir(self, board):
        card_id = board.create("A")
        with pytest.raises(InvalidArgumentError):
            board.move(card_id, "generated")

    def test_move_creates_new_column(self, board):
        card_id = board.create("A")
        board.move(card_id, "blocked")
        assert board.locate(card_id)[0] == "blocked"


class TestComplete:
    def test_complete_archives_by_month(self, board):
        card_id = board.create("A")
        card = board.complete(card_id)
        assert card.is_done
        column, path = board.locate(card_id)
        assert column == "done"
        yyyy, mm = card.completed_at[:4], card.completed_at[5:7]
        assert path.parent == board.base / "done" / yyyy / mm
        assert board.read(card_id).completed_at == card.completed_at

    def test_complete_twice(self, board):
        card_id = board.create("A")
        board.complete(card_id)
        second = board.complete(card_id)
        entries = _index_entries(board, card_id)
        assert len(entries) == 1
        assert entries[0]["column"] == "done"
        assert entries[0]["completed_at"] == second.completed_at
        files = [p for p in (board.base / "done").rglob("*.md")]
        assert len(files) == 1

    def test_existing_archive_target_leaves_card_untouched(self, board):
        card_id = board.create("A")
        _, path = board.locate(card_id)
        dest = done_dir(board.base, utc_now()) / path.name
        dest.parent.mkdir(parents=True)
        dest.write_text("placeholder")
        with pytest.raises(ConflictError):
            board.complete(card_id)
        assert board.read_path(path).completed_at is None
        assert path.exists()
        assert dest.read_text() == "placeholder"

    def test_done_listing_is_recursive(self, board):
        card_id = board.create("A")
        board.complete(card_id)
        assert board.list_ids("done") == [card_id]


class TestUpdate:
    def test_append_body(self, board):
        card_id = board.create("A", body="line")
        board.update(card_id, body="more")
        assert board.read(card_id).body == "line\nmore\n"

    def test_append_to_empty_body(self, board):
        card_id = board.create("A")
        board.update(card_id, body="first")
        assert board.read(card_id).body == "first\n"

    def test_replace_body(self, board):
        card_id = board.create("A", body="old\n")
        board.update(card_id, body="new", replace_body=True)
        assert board.read(card_id).body == "new"

    def test_replace_requires_text(self, board):
        card_id = board.create("A")
        with pytest.raises(InvalidArgumentError):
            board.update(card_id, replace_body=True)

    def test_patch_fields(self, board):
        card_id = board.create("A")
        res = board.update(card_id, {"priority": "P0", "size": 5, "next_steps": ["ship"]})
        card = board.read(card_id)
        assert (card.priority, card.size, card.next_steps) == ("P0", 5, ["ship"])
        assert res.warnings == []
        assert res.column == "backlog"

    def test_relations_are_not_patchable(self, board):
        card_id = board.create("A")
        with pytest.raises(InvalidArgumentError):
            board.update(card_id, {"parent": "01X"})

    def test_title_change_renames(self, board):
        card_id = board.create("Old name")
        res = board.update(card_id, {"title": "New name"})
        assert res.path.name == f"{card_id}__new-name.md"
        assert not (res.path.parent / f"{card_id}__old-name.md").exists()
        assert board.read(card_id).title == "New name"
        [entry] = _index_entries(board, card_id)
        assert entry["title"] == "New name"

    def test_title_change_with_invalid_config(self, board, write_config):
        write_config('[writer]\nauto_rename_on_conflict = true\n[watch]\ndebounce_ms = "fast"\n')
        card_id = board.create("Old name")
        res = board.update(card_id, {"title": "New name"})
        assert res.path.name == f"{card_id}__new-name.md"
        assert res.warnings == []
        [entry] = _index_entries(board, card_id)
        assert entry["title"] == "New name"

    def test_rename_conflict_keeps_original(self, board):
        card_id = board.create("a")
        _, path = board.locate(card_id)
        blocker = path.parent / f"{card_id}__b.md"
        blocker.write_text("placeholder")
        res = board.update(card_id, {"title": "b"})
        assert res.path == path
        assert res.warnings == [f"rename target exists; kept original filename: {blocker}"]
        assert blocker.read_text() == "placeholder"

    def test_rename_conflict_auto_renames(self, board, write_config):
        write_config("[writer]\nauto_rename_on_conflict = true\n")
        card_id = board.create("a")
        _, path = board.locate(card_id)
        (path.parent / f"{card_id}__b.md").write_text("placeholder")
        res = board.update(card_id, {"title": "b"})
        assert res.path.name == f"{card_id}__b-1.md"
        assert res.warnings == [f"rename conflict; auto-renamed to {card_id}__b-1.md"]
        assert not path.exists()


class TestDecideRenameTarget:
    cur = Path("/b/backlog/X__a.md")
    new = Path("/b/backlog/X__b.md")

    def test_same_path(self):
        assert decide_rename_target(self.cur, self.cur, auto_rename=False) == (None, None)

    def test_free_target(self):
        target, warning = decide_rename_target(self.cur, self.new, auto_rename=False, exists=lambda p: False)
        assert (target, warning) == (self.new, None)

    def test_suffix(self):
        taken = {self.new, self.new.with_name("X__b-v1.md")}
        target, warning = decide_rename_target(
            self.cur, self.new, auto_rename=True, suffix="v", exists=lambda p: p in taken,
        )
        assert target == self.new.with_name("X__b-v2.md")
        assert warning == "rename conflict; auto-renamed to X__b-v2.md"

    def test_exhausted(self):
        target, warning = decide_rename_target(self.cur, self.new, auto_rename=True, exists=lambda p: True)
        assert target is None
        assert warning == "rename conflict; auto-rename failed; kept original filename"


class TestListCards:
    def test_filters_and_paging(self, board):
        ids = [board.create(f"card {i}", lane="web" if i % 2 else "api") for i in range(5)]
        page = board.list_cards(ListFilter(lane="WEB"))
        assert [it["cardId"] for it in page.items] == sorted(ids[1::2])
        assert page.next_offset is None

        page = board.list_cards(ListFilter(limit=2))
        assert len(page.items) == 2
        assert page.next_offset == 2
        assert [it["cardId"] for it in page.items] == sorted(ids)[:2]

        page = board.list_cards(ListFilter(offset=4, limit=2))
        assert [it["cardId"] for it in page.items] == sorted(ids)[4:]
        assert page.next_offset is None

    def test_item_shape(self, board):
        card_id = board.create("A", lane="x")
        [item] = board.list_cards().items
        assert item == {"cardId": card_id, "title": "A", "column": "backlog", "lane": "x"}

    def test_query_scans_bodies(self, board):
        board.create("A", body="mentions the needle")
        board.create("B")
        items = board.list_cards(ListFilter(query="NEEDLE")).items
        assert [it["title"] for it in items] == ["A"]

    def test_done_hidden_unless_requested(self, board):
        a = board.create("A")
        board.create("B")
        board.complete(a)
        assert [it["title"] for it in board.list_cards().items] == ["B"]
        titles = {it["title"] for it in board.list_cards(ListFilter(include_done=True)).items}
        assert titles == {"A", "B"}

    def test_label_and_assignee(self, board):
        board.create("A", labels=["Bug"], assignees=["sam"])
        board.create("B", labels=["feature"])
        assert [it["title"] for it in board.list_cards(ListFilter(label="bug")).items] == ["A"]
        assert [it["title"] for it in board.list_cards(ListFilter(assignee="SAM")).items] == ["A"]


class TestNotes:
    def test_newest_first_default_three(self, board):
        card_id = board.create("A")
        for i in range(5):
            board.append_note(card_id, f"n{i}")
        assert [e.text for e in board.list_notes(card_id)] == ["n4", "n3", "n2"]
        assert [e.text for e in board.list_notes(card_id, all_entries=True)] == ["n4", "n3", "n2", "n1", "n0"]
        assert [e.text for e in board.list_notes(card_id, limit=1)] == ["n4"]

    def test_journal_format(self, board):
        card_id = board.create("A")
        board.append_note(card_id, "did a thing", note_type="decision", tags=["x"], author="sam")
        [line] = board.notes_path(card_id).read_text().splitlines()
        obj = json.loads(line)
        assert obj["type"] == "decision"
        assert obj["tags"] == ["x"]
        assert obj["author"] == "sam"
        assert obj["text"] == "did a thing"

    def test_since(self, board):
        card_id = board.create("A")
        board.append_note(card_id, "old")
        board.notes_path(card_id).write_text(
            json.dumps({"ts": "2000-01-01T00:00:00+00:00", "type": "worklog", "text": "ancient"}) + "\n"
            + board.notes_path(card_id).read_text()
        )
        texts = [e.text for e in board.list_notes(card_id, all_entries=True, since="2001-01-01")]
        assert texts == ["old"]

    def test_broken_lines_skipped(self, board):
        card_id = board.create("A")
        board.append_note(card_id, "ok")
        with board.notes_path(card_id).open("a") as f:
            f.write("{not json\n")
        assert [e.text for e in board.list_notes(card_id)] == ["ok"]

    def test_empty_text_rejected(self, board):
        card_id = board.create("A")
        with pytest.raises(InvalidArgumentError):
            board.append_note(card_id, "")


class TestScenarios:
    def test_create_and_read(self, board):
        card_id = board.create("A", column="backlog")
        assert board.read(card_id).title == "A"
        assert board.locate(card_id)[0] == "backlog"

    def test_move_changes_listing(self, board):
        card_id = board.create("A")
        board.move(card_id, "doing")
        assert board.list_cards(ListFilter(columns=["backlog"])).items == []
        assert len(board.list_cards(ListFilter(columns=["doing"])).items) == 1

    def test_reparent(self, board):
        a, p, q = board.create("A"), board.create("P"), board.create("Q")
        set_relations(board, add=[Edge("parent", a, p)])
        set_relations(board, remove=[Edge("parent", a, "*")], add=[Edge("parent", a, q)])
        assert board.read(a).parent == q
        edges = (board.base / "relations.ndjson").read_text()
        assert p not in edges
        assert json.loads(edges.splitlines()[0]) == {"type": "parent", "from": a, "to": q}

    def test_parent_done_check(self, board):
        p, a, b = board.create("P"), board.create("A"), board.create("B")
        set_relations(board, add=[Edge("parent", a, p), Edge("parent", b, p)])
        board.complete(a)
        assert check_parent_done(board) == []
        board.complete(p)
        assert check_parent_done(board) == [f"parent done but child not complete: {p} -> {b}"]
