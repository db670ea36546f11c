"""Tests for relation editing, the parent tree, and progress rendering."""

from __future__ import annotations

import pytest

from kanban.errors import InvalidArgumentError, NotFoundError
from kanban.index import read_relation_index
from kanban.models import Edge
from kanban.relations import set_relations, tree
from kanban.render import parent_progress, render_board, render_parent_progress, write_generated


@pytest.fixture
def family(board):
    p = board.create("Parent")
    a = board.create("Child A", size=3)
    b = board.create("Child B", size=1)
    g = board.create("Grandchild", size=2)
    set_relations(board, add=[Edge("parent", a, p), Edge("parent", b, p), Edge("parent", g, a)])
    return p, a, b, g


class TestSetRelations:
    def test_unknown_type(self, board):
        a, b = board.create("A"), board.create("B")
        with pytest.raises(InvalidArgumentError):
            set_relations(board, add=[Edge("blocks", a, b)])

    def test_self_edge(self, board):
        a = board.create("A")
        with pytest.raises(InvalidArgumentError):
            set_relations(board, add=[Edge("depends", a, a)])

    def test_unknown_card_writes_nothing(self, board):
        a = board.create("A")
        with pytest.raises(NotFoundError):
            set_relations(board, add=[Edge("depends", a, "01NOPE")])
        assert board.read(a).depends_on is None
        assert read_relation_index(board.base) == []

    def test_add_requires_target(self, board):
        a = board.create("A")
        with pytest.raises(InvalidArgumentError):
            set_relations(board, add=[Edge("parent", a)])

    def test_depends_add_remove(self, board):
        a, b = board.create("A"), board.create("B")
        set_relations(board, add=[Edge("depends", a, b.lower())])
        set_relations(board, add=[Edge("depends", a, b)])
        assert board.read(a).depends_on == [b]
        assert read_relation_index(board.base) == [("depends", a, b)]
        set_relations(board, remove=[Edge("depends", a, b)])
        assert board.read(a).depends_on == []
        assert read_relation_index(board.base) == []

    def test_new_parent_replaces_old(self, board):
        a, p, q = board.create("A"), board.create("P"), board.create("Q")
        set_relations(board, add=[Edge("parent", a, p)])
        warnings = set_relations(board, add=[Edge("parent", a, q)])
        assert warnings == []
        assert read_relation_index(board.base) == [("parent", a, q)]

    def test_remove_parent(self, board):
        a, p = board.create("A"), board.create("P")
        set_relations(board, add=[Edge("parent", a, p)])
        set_relations(board, remove=[Edge("parent", a)])
        assert board.read(a).parent is None
        assert read_relation_index(board.base) == []

    def test_remove_dangling_depends(self, board):
        a, b = board.create("A"), board.create("B")
        set_relations(board, add=[Edge("depends", a, b)])
        board.locate(b)[1].unlink()
        set_relations(board, remove=[Edge("depends", a, b)])
        assert board.read(a).depends_on == []
        assert read_relation_index(board.base) == []

    def test_remove_dangling_relates(self, board):
        a, b = board.create("A"), board.create("B")
        set_relations(board, add=[Edge("relates", a, b)])
        board.locate(b)[1].unlink()
        set_relations(board, remove=[Edge("relates", a, b)])
        assert board.read(a).relates == []
        assert read_relation_index(board.base) == []

    def test_remove_needs_existing_source(self, board):
        b = board.create("B")
        with pytest.raises(NotFoundError):
            set_relations(board, remove=[Edge("depends", "01NOPE", b)])


class TestTree:
    def test_tree(self, board, family):
        p, a, b, g = family
        t = tree(board, p)
        assert (t["id"], t["title"], t["column"]) == (p, "Parent", "backlog")
        children = {c["id"]: c for c in t["children"]}
        assert set(children) == {a, b}
        assert [c["id"] for c in children[a]["children"]] == [g]

    def test_depth(self, board, family):
        p, *_ = family
        t = tree(board, p.lower(), depth=1)
        assert all(c["children"] == [] for c in t["children"])
        assert tree(board, p, depth=0)["children"] == []

    def test_unknown_root(self, board):
        assert tree(board, "01nope") == {"id": "01NOPE", "title": "", "column": "", "children": []}


class TestRender:
    def test_board(self, board):
        board.create("A")
        b = board.create("B")
        board.move(b, "doing")
        c = board.create("C")
        board.complete(c)
        assert render_board(board) == "# Board\n\n- backlog: 1\n- doing: 1\n- review: 0\n- done: 1\n"

    def test_progress(self, board, family):
        p, a, b, g = family
        board.complete(b)
        board.complete(g)
        prog = parent_progress(board, p)
        assert (prog.done, prog.total, prog.done_size, prog.total_size) == (2, 3, 3, 6)
        assert render_parent_progress(board, p) == "progress: 2/3 (66.7%) size: 3/6 (50.0%)"

    def test_progress_without_children(self, board):
        p = board.create("P")
        assert render_parent_progress(board, p) == "progress: 0/0 (0.0%) size: 0/0 (0.0%)"

    def test_write_generated(self, board, family, write_config):
        p, *_ = family
        write_config(f'[render]\nprogress_parents = ["{p.lower()}"]\n')
        written = write_generated(board)
        gen = board.base / "generated"
        assert {f.name for f in written} == {"board.md", f"progress_{p}.md", "progress_index.md"}
        assert (gen / "progress_index.md").read_text() == f"# Parent Progress\n\n- Parent ({p})\n"
        assert (gen / f"progress_{p}.md").read_text().startswith("progress: 0/3")
        assert sorted(f.name for f in gen.iterdir()) == sorted(f.name for f in written)
