"""Tests for operating modes and prompt section resolution."""

import logging

from windowkeeper.context import ModuleTable, OperatingMode, resolve_modules


class TestOperatingMode:
    def test_parse_string(self):
        assert OperatingMode.parse("heartbeat") is OperatingMode.HEARTBEAT
        assert OperatingMode.parse(" Take_Control ") is OperatingMode.TAKE_CONTROL

    def test_parse_enum_passthrough(self):
        assert OperatingMode.parse(OperatingMode.VISION) is OperatingMode.VISION

    def test_parse_default(self):
        assert OperatingMode.parse(None) is OperatingMode.CHAT
        assert OperatingMode.parse("") is OperatingMode.CHAT

    def test_parse_unknown_falls_back(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert OperatingMode.parse("dreaming") is OperatingMode.CHAT
        assert "Unknown operating mode" in caplog.text


class TestResolveModules:
    def test_chat_enables_everything(self):
        table = resolve_modules("chat")
        assert table == ModuleTable()
        assert all(table.to_dict().values())
        assert table.disabled() == []

    def test_default_is_chat(self):
        assert resolve_modules() == resolve_modules("chat")

    def test_subtask(self):
        table = resolve_modules("subtask")
        assert table.onboarding is False
        assert table.monitoring is False
        assert table.health is False
        assert table.capabilities is True
        assert table.background_tasks is True

    def test_heartbeat(self):
        table = resolve_modules(OperatingMode.HEARTBEAT)
        assert table.tool_instructions is False
        assert table.onboarding is False
        assert table.active_hours is True
        assert table.health is True

    def test_cron(self):
        table = resolve_modules("cron")
        assert table.onboarding is False
        assert table.monitoring is False
        assert table.cron is True

    def test_take_control_only_drops_onboarding(self):
        assert resolve_modules("take_control").disabled() == ["onboarding"]

    def test_vision(self):
        table = resolve_modules("vision")
        assert table.tool_instructions is False
        assert table.index is False
        assert table.monitoring is True

    def test_intent_forces_section(self):
        assert resolve_modules("cron").monitoring is False
        assert resolve_modules("cron", intent="screen_look").monitoring is True
        assert resolve_modules("subtask", intent="memory_recall").daily_notes is True

    def test_unknown_intent_ignored(self):
        assert resolve_modules("cron", intent="small_talk") == resolve_modules("cron")
