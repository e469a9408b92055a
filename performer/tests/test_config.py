"""Tests for configuration loading and persistence."""
import json

from core.config import DEFAULT_PERSONA_PROMPT, AppConfig, ConfigManager


class TestConfigManager:
    def test_defaults(self, tmp_path):
        config = ConfigManager(tmp_path).config
        assert config.llm.provider == "openai"
        assert config.song.api_url == "http://localhost:62362"
        assert config.timing.first_stall_delay == 10.0
        assert config.autotalk.enabled
        assert config.autotalk.topics

    def test_update_nested_persists(self, tmp_path):
        cm = ConfigManager(tmp_path)
        cm.update_nested("song", poll_interval=5.0)

        reloaded = ConfigManager(tmp_path).config
        assert reloaded.song.poll_interval == 5.0
        assert reloaded.song.options.f0_method == "rmvpe"

    def test_partial_file_keeps_defaults(self, tmp_path):
        (tmp_path / "config.json").write_text(json.dumps({"autotalk": {"enabled": False}}))
        config = ConfigManager(tmp_path).config
        assert not config.autotalk.enabled
        assert config.autotalk.base_interval == 5.0

    def test_corrupt_file_falls_back(self, tmp_path):
        (tmp_path / "config.json").write_text("{not json")
        assert ConfigManager(tmp_path).config == AppConfig()

    def test_owner_check_ignores_case(self, tmp_path):
        cm = ConfigManager(tmp_path)
        cm.update_nested("moderation", owners=["TheStreamer"])
        assert cm.is_owner("thestreamer")
        assert not cm.is_owner("someone")

    def test_persona_prompt_default(self, tmp_path):
        assert ConfigManager(tmp_path).persona_prompt() == DEFAULT_PERSONA_PROMPT

    def test_missing_persona_file_falls_back(self, tmp_path):
        cm = ConfigManager(tmp_path)
        cm.update_nested("persona", prompt_file="missing.txt")
        assert cm.persona_prompt() == DEFAULT_PERSONA_PROMPT

    def test_api_key_lookup(self, tmp_path):
        cm = ConfigManager(tmp_path)
        cm.update_nested("api_keys", claude="sk-ant")
        assert cm.api_key_for("claude") == "sk-ant"
        assert cm.api_key_for("openai") == ""
