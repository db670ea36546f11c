"""Tests for columns.toml loading."""

from __future__ import annotations

import logging

import pytest

from kanban.config import DEFAULT_COLUMNS, init_config, load_config


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        cfg = load_config(tmp_path)
        assert cfg.columns == []
        assert cfg.active_columns == DEFAULT_COLUMNS
        assert cfg.hot_columns == ["backlog", "doing"]
        assert cfg.watch.debounce_ms == 300
        assert cfg.watch.max_batch == 50
        assert not cfg.render.enabled
        assert not cfg.writer.auto_rename_on_conflict

    def test_init_writes_loadable_file(self, tmp_path):
        path = init_config(tmp_path)
        cfg = load_config(tmp_path)
        assert path == cfg.config_path
        assert cfg.columns == ["backlog", "doing", "review", "done"]
        assert cfg.active_columns == ["backlog", "doing", "review"]
        assert (tmp_path / ".kanban" / "doing").is_dir()

    def test_init_refuses_overwrite(self, tmp_path):
        init_config(tmp_path)
        with pytest.raises(FileExistsError):
            init_config(tmp_path)

    def test_full_file(self, tmp_path, board, write_config):
        write_config(
            'columns = ["todo", "wip", "done"]\n'
            "[wip_limits]\nwip = 2\n"
            '[watch]\ndebounce_ms = 50\nmax_batch = 10\nhot_columns = ["wip"]\n'
            '[render]\nenabled = true\nprogress_parent = "01P"\n'
            '[writer]\nauto_rename_on_conflict = true\nrename_suffix = "v"\n'
        )
        cfg = load_config(tmp_path)
        assert cfg.active_columns == ["todo", "wip"]
        assert cfg.wip_limits == {"wip": 2}
        assert (cfg.watch.debounce_ms, cfg.watch.max_batch) == (50, 10)
        assert cfg.hot_columns == ["wip"]
        assert cfg.render.parents == ["01P"]
        assert cfg.writer.rename_suffix == "v"

    def test_progress_parents_wins(self, tmp_path, board, write_config):
        write_config('[render]\nprogress_parent = "01A"\nprogress_parents = ["01B", "01C"]\n')
        assert load_config(tmp_path).render.parents == ["01B", "01C"]

    def test_hot_columns_fall_back_to_columns(self, tmp_path, board, write_config):
        write_config('columns = ["b", "a"]\n')
        assert load_config(tmp_path).hot_columns == ["a", "b"]

    def test_broken_file_degrades_to_defaults(self, tmp_path, board, write_config, caplog):
        write_config("columns = [\n")
        with caplog.at_level(logging.WARNING, logger="kanban.config"):
            cfg = load_config(tmp_path)
        assert cfg.columns == []
        assert "ignoring unreadable" in caplog.text

    @pytest.mark.parametrize(
        "text",
        [
            '[watch]\ndebounce_ms = "fast"\n',
            "wip_limits = 3\n",
            "columns = 5\n",
        ],
    )
    def test_wrong_types_degrade_to_defaults(self, tmp_path, board, write_config, caplog, text):
        write_config(text)
        with caplog.at_level(logging.WARNING, logger="kanban.config"):
            cfg = load_config(tmp_path)
        assert cfg.columns == []
        assert cfg.wip_limits == {}
        assert cfg.watch.debounce_ms == 300
        assert "ignoring invalid" in caplog.text
