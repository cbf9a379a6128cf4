from pathlib import Path

import pytest
from pydantic import ValidationError

from flowbot.config import AppConfig, _interpolate_env_vars, load_config

EXAMPLE = Path(__file__).resolve().parent.parent / "config.example.yaml"


class TestInterpolation:
    def test_env_var_replaced(self, monkeypatch):
        monkeypatch.setenv("FLOWBOT_TEST_TOKEN", "abc")
        assert _interpolate_env_vars("token: ${FLOWBOT_TEST_TOKEN}") == "token: abc"

    def test_unknown_var_left_alone(self, monkeypatch):
        monkeypatch.delenv("FLOWBOT_MISSING", raising=False)
        assert _interpolate_env_vars("${FLOWBOT_MISSING}") == "${FLOWBOT_MISSING}"

    def test_extra_takes_precedence(self):
        assert _interpolate_env_vars("${data_dir}/x.db", extra={"data_dir": "/srv"}) == "/srv/x.db"


class TestLoadConfig:
    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml", tmp_path / ".env")

    def test_data_dir_self_reference_and_dotenv(self, tmp_path, monkeypatch):
        monkeypatch.delenv("FLOWBOT_WA_TOKEN", raising=False)
        (tmp_path / ".env").write_text("FLOWBOT_WA_TOKEN=from-dotenv\n")
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "data_dir: /var/flowbot\n"
            "channels:\n"
            "  - id: wa-main\n"
            "    platform: whatsapp\n"
            "    token: ${FLOWBOT_WA_TOKEN}\n"
            "storage:\n"
            "  db_path: ${data_dir}/flowbot.db\n"
        )
        config = load_config(config_file, tmp_path / ".env")
        assert config.storage.db_path == "/var/flowbot/flowbot.db"
        assert config.channels[0].token == "from-dotenv"

    def test_example_config_is_valid(self, monkeypatch):
        for var in ("WHATSAPP_TOKEN", "WHATSAPP_PHONE_NUMBER_ID", "WHATSAPP_VERIFY_TOKEN", "ANTHROPIC_API_KEY", "OPENAI_API_KEY"):
            monkeypatch.setenv(var, "x")
        config = load_config(EXAMPLE, "/nonexistent/.env")
        assert config.phone.country_code == "57"
        assert config.ai.backend == "anthropic"
        assert config.forms.cancel_keyword == "cancelar"


class TestDefaults:
    def test_channels_required(self):
        with pytest.raises(ValidationError):
            AppConfig()

    def test_defaults(self):
        config = AppConfig(channels=[{"id": "tg", "platform": "telegram"}])
        assert config.retry.max_attempts == 3
        assert config.cache.ai_response_ttl == 180
        assert config.messages.processing_voice == "Procesando mensaje de voz..."
        assert config.anthropic is None
