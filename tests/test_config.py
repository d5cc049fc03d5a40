"""Tests for configuration loading and structured logging."""

import json
import logging

from windowkeeper.config import Config
from windowkeeper.context import OperatingMode
from windowkeeper.logging import (
    ConsoleFormatter,
    JSONFormatter,
    begin_turn,
    get_debug_log_path,
    get_current_turn,
    get_filtered_logs,
    log_session_header,
    rotate_debug_log,
    set_current_mode,
)


class TestConfig:
    def test_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
        config = Config.load(str(tmp_path / "missing.yaml"))
        assert config.budget.max_context_tokens == 80000
        assert config.budget.min_messages_to_keep == 4
        assert config.assembler.stable_cache_ttl == 30.0
        assert config.maintenance.flush_threshold_tokens == 50000
        assert config.llm.auto_budget is True

    def test_load_yaml(self, temp_config):
        config = Config.load(str(temp_config))
        assert config.budget.max_context_tokens == 1000
        assert config.budget.reserve_for_response == 100
        # Unset keys keep their defaults
        assert config.budget.summary_threshold == 30
        assert config.assembler.stable_cache_ttl == 5.0
        assert config.maintenance.compact_keep_recent == 10
        assert config.maintenance.compact_min_messages == 40
        assert config.llm.model == "gpt-4o"
        assert config.logging.level == "DEBUG"

    def test_xdg_search(self, tmp_path, monkeypatch, temp_config):
        config_dir = tmp_path / "xdg" / "windowkeeper"
        config_dir.mkdir(parents=True)
        (config_dir / "config.yaml").write_text(temp_config.read_text())
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))

        assert Config.load().llm.model == "gpt-4o"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert Config.load(str(path)) == Config()


class TestJSONFormatter:
    def _record(self, name="windowkeeper.context.window", msg="Context window built"):
        return logging.LogRecord(name, logging.INFO, __file__, 1, msg, None, None)

    def test_fields(self):
        entry = json.loads(JSONFormatter().format(self._record()))
        assert entry["level"] == "INFO"
        assert entry["component"] == "window"
        assert entry["msg"] == "Context window built"
        assert "ts" in entry

    def test_turn_and_mode_injected(self):
        assert json.loads(JSONFormatter().format(self._record()))["turn"] == 0

        begin_turn(OperatingMode.CHAT)
        assert begin_turn(OperatingMode.HEARTBEAT) == 2

        entry = json.loads(JSONFormatter().format(self._record()))
        assert entry["turn"] == 2
        assert entry["mode"] == "heartbeat"

    def test_mode_change_keeps_turn(self):
        begin_turn(OperatingMode.CHAT)
        set_current_mode(OperatingMode.CRON)
        assert get_current_turn() == 1
        assert json.loads(JSONFormatter().format(self._record()))["mode"] == "cron"

    def test_extra_ctx(self):
        record = self._record()
        record.ctx = {"dropped": 3}
        entry = json.loads(JSONFormatter().format(record))
        assert entry["ctx"] == {"dropped": 3}


class TestConsoleFormatter:
    def _record(self):
        return logging.LogRecord(
            "windowkeeper.context.window", logging.WARNING, __file__, 1, "over budget", None, None
        )

    def test_chat_untagged(self):
        line = ConsoleFormatter(use_colors=False).format(self._record())
        assert line.endswith("[WRN] window: over budget")

    def test_other_modes_tagged(self):
        begin_turn(OperatingMode.SUBTASK)
        line = ConsoleFormatter(use_colors=False).format(self._record())
        assert line.endswith("[WRN] window/subtask: over budget")


class TestSessionHeader:
    def test_records_model_budget(self, caplog, temp_config):
        config = Config.load(str(temp_config))
        logger = logging.getLogger("windowkeeper")
        with caplog.at_level(logging.DEBUG, logger="windowkeeper"):
            log_session_header(config, logger)

        header = caplog.records[-1].ctx
        assert header["model"] == "gpt-4o"
        assert header["context_limit"] == 128000
        assert header["auto_budget"] is False
        assert header["budget"]["max_context_tokens"] == 1000


class TestDebugLog:
    def test_path_follows_xdg(self, tmp_path, monkeypatch):
        monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
        assert get_debug_log_path() == tmp_path / "windowkeeper" / "logs" / "debug.log"

    def test_rotate(self, tmp_path):
        log_path = tmp_path / "debug.log"
        log_path.write_text("old\n")
        rotate_debug_log(log_path)
        assert not log_path.exists()
        assert (tmp_path / "debug.log.1").read_text() == "old\n"

    def test_filtered_logs(self, tmp_path, monkeypatch):
        monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
        log_path = get_debug_log_path()
        log_path.parent.mkdir(parents=True)
        lines = [
            {"level": "INFO", "component": "window", "msg": "a"},
            {"level": "WARNING", "component": "assembler", "msg": "b"},
            {"level": "WARNING", "component": "window", "msg": "c"},
        ]
        log_path.write_text("\n".join(json.dumps(l) for l in lines) + "\nnot json\n")

        result = get_filtered_logs(component="window", level="WARNING")
        assert [json.loads(l)["msg"] for l in result.splitlines()] == ["c"]
        assert len(get_filtered_logs(lines=2).splitlines()) == 2

    def test_filter_by_turn_and_mode(self, tmp_path, monkeypatch):
        monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
        log_path = get_debug_log_path()
        log_path.parent.mkdir(parents=True)
        lines = [
            {"turn": 1, "mode": "chat", "msg": "a"},
            {"turn": 2, "mode": "heartbeat", "msg": "b"},
            {"turn": 2, "mode": "heartbeat", "msg": "c"},
            {"turn": 3, "mode": "chat", "msg": "d"},
        ]
        log_path.write_text("\n".join(json.dumps(l) for l in lines) + "\n")

        by_turn = get_filtered_logs(turn=2)
        assert [json.loads(l)["msg"] for l in by_turn.splitlines()] == ["b", "c"]
        by_mode = get_filtered_logs(mode="chat")
        assert [json.loads(l)["msg"] for l in by_mode.splitlines()] == ["a", "d"]

    def test_missing_log(self, tmp_path, monkeypatch):
        monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
        assert get_filtered_logs() == "No debug log found."
