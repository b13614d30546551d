"""Unit tests for environment configuration."""

import pytest

from api_dialogue.config import AppConfig


ENV_KEYS = [
    "MIN_CONFIDENCE_THRESHOLD",
    "CONVERSATION_TIMEOUT_SECONDS",
    "REQUEST_TIMEOUT_SECONDS",
    "EMBEDDING_BACKEND",
    "EMBEDDING_MODEL",
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "PARAMETER_EXTRACTOR",
    "CONVERSATIONS_DIR",
    "API_AUTH_TOKEN",
    "BASE_URL_OVERRIDE",
]


@pytest.fixture
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


class TestAppConfig:
    """Tests for AppConfig.from_env."""

    def test_defaults(self, clean_env):
        config = AppConfig.from_env()
        assert config.min_confidence == 0.35
        assert config.conversation_timeout == 1800
        assert config.request_timeout == 30.0
        assert config.embedding_backend == "none"
        assert config.parameter_extractor == "pattern"
        assert config.conversations_dir is None
        assert config.api_auth_token is None

    def test_values_from_environment(self, clean_env):
        clean_env.setenv("MIN_CONFIDENCE_THRESHOLD", "0.5")
        clean_env.setenv("CONVERSATION_TIMEOUT_SECONDS", "60")
        clean_env.setenv("EMBEDDING_BACKEND", "OpenAI")
        clean_env.setenv("API_AUTH_TOKEN", "secret")
        clean_env.setenv("CONVERSATIONS_DIR", "/tmp/conversations")

        config = AppConfig.from_env()
        assert config.min_confidence == 0.5
        assert config.conversation_timeout == 60
        assert config.embedding_backend == "openai"
        assert config.api_auth_token == "secret"
        assert config.conversations_dir == "/tmp/conversations"

    def test_invalid_values_fall_back(self, clean_env):
        clean_env.setenv("MIN_CONFIDENCE_THRESHOLD", "high")
        clean_env.setenv("CONVERSATION_TIMEOUT_SECONDS", "1.5")
        clean_env.setenv("PARAMETER_EXTRACTOR", "magic")

        config = AppConfig.from_env()
        assert config.min_confidence == 0.35
        assert config.conversation_timeout == 1800
        assert config.parameter_extractor == "pattern"

    def test_env_file(self, clean_env, tmp_path):
        env_file = tmp_path / "custom.env"
        env_file.write_text("MIN_CONFIDENCE_THRESHOLD=0.6\nAPI_AUTH_TOKEN=from-file\n")
        # Registered with monkeypatch so the values load_dotenv sets are removed afterwards.
        clean_env.setenv("MIN_CONFIDENCE_THRESHOLD", "")
        clean_env.delenv("MIN_CONFIDENCE_THRESHOLD")
        clean_env.setenv("API_AUTH_TOKEN", "")
        clean_env.delenv("API_AUTH_TOKEN")

        config = AppConfig.from_env(str(env_file))
        assert config.min_confidence == 0.6
        assert config.api_auth_token == "from-file"

    def test_environment_wins_over_env_file(self, clean_env, tmp_path):
        env_file = tmp_path / "custom.env"
        env_file.write_text("MIN_CONFIDENCE_THRESHOLD=0.6\n")
        clean_env.setenv("MIN_CONFIDENCE_THRESHOLD", "0.2")

        assert AppConfig.from_env(str(env_file)).min_confidence == 0.2

    def test_repr_hides_token(self):
        assert "secret" not in repr(AppConfig(api_auth_token="secret"))
