"""Tests for settings loading and structured logging."""

import json
import logging

from advisorbot.config import Settings, load_settings, log_event


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.max_steps == 4
        assert settings.llm_timeout == 30.0
        assert settings.tool_timeout == 10.0

    def test_model_for_tier(self):
        settings = Settings(standard_model="small", advanced_model="large")
        assert settings.model_for_tier("standard") == "small"
        assert settings.model_for_tier("advanced") == "large"
        assert settings.model_for_tier(None) == "small"


class TestLoadSettings:
    def test_reads_environment(self, monkeypatch, temp_dir):
        monkeypatch.setenv("ADVISORBOT_MAX_STEPS", "6")
        monkeypatch.setenv("ADVISORBOT_TOOL_TIMEOUT", "2.5")
        monkeypatch.setenv("ADVISORBOT_ADVANCED_MODEL", "gpt-4.1")
        settings = load_settings(str(temp_dir / "missing.env"))
        assert settings.max_steps == 6
        assert settings.tool_timeout == 2.5
        assert settings.advanced_model == "gpt-4.1"

    def test_reads_env_file(self, monkeypatch, temp_dir):
        monkeypatch.delenv("ADVISORBOT_LLM_TIMEOUT", raising=False)
        env_file = temp_dir / ".env"
        env_file.write_text("ADVISORBOT_LLM_TIMEOUT=12\n")
        try:
            assert load_settings(str(env_file)).llm_timeout == 12.0
        finally:
            monkeypatch.delenv("ADVISORBOT_LLM_TIMEOUT", raising=False)

    def test_invalid_values_fall_back(self, monkeypatch, temp_dir):
        monkeypatch.setenv("ADVISORBOT_MAX_STEPS", "many")
        monkeypatch.setenv("ADVISORBOT_LLM_TIMEOUT", "soon")
        settings = load_settings(str(temp_dir / "missing.env"))
        assert settings.max_steps == 4
        assert settings.llm_timeout == 30.0

    def test_step_ceiling_is_at_least_one(self, monkeypatch, temp_dir):
        monkeypatch.setenv("ADVISORBOT_MAX_STEPS", "0")
        assert load_settings(str(temp_dir / "missing.env")).max_steps == 1


def test_log_event_emits_json(caplog):
    log = logging.getLogger("advisorbot.test")
    with caplog.at_level(logging.INFO, logger="advisorbot.test"):
        log_event(log, "tool_dispatched", tool="searchClients", success=True)
    payload = json.loads(caplog.records[-1].getMessage())
    assert payload["event"] == "tool_dispatched"
    assert payload["tool"] == "searchClients"
    assert payload["success"] is True
    assert "timestamp" in payload
