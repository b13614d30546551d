"""
Runtime configuration loaded from the environment and an optional .env file.
"""

import os
from typing import Optional
from loguru import logger
from dotenv import load_dotenv


EMBEDDING_BACKENDS = ("none", "sentence-transformers", "openai")
PARAMETER_EXTRACTORS = ("pattern", "openai")


def _get_float(key: str, default: float) -> float:
    raw = os.getenv(key)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid float value for {key}: {raw}, using default {default}")
        return default


def _get_int(key: str, default: int) -> int:
    raw = os.getenv(key)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid int value for {key}: {raw}, using default {default}")
        return default


def _get_choice(key: str, choices: tuple, default: str) -> str:
    raw = (os.getenv(key) or "").strip().lower()
    if not raw:
        return default
    if raw not in choices:
        logger.warning(f"Invalid value for {key}: {raw} (expected one of {', '.join(choices)}), using {default}")
        return default
    return raw


class AppConfig:
    """Settings for one engine instance."""

    def __init__(self,
                 min_confidence: float = 0.35,
                 conversation_timeout: int = 1800,
                 request_timeout: float = 30.0,
                 embedding_backend: str = "none",
                 embedding_model: Optional[str] = None,
                 openai_api_key: Optional[str] = None,
                 openai_model: str = "gpt-3.5-turbo",
                 parameter_extractor: str = "pattern",
                 conversations_dir: Optional[str] = None,
                 api_auth_token: Optional[str] = None,
                 base_url_override: Optional[str] = None):
        self.min_confidence = min_confidence
        self.conversation_timeout = conversation_timeout
        self.request_timeout = request_timeout
        self.embedding_backend = embedding_backend
        self.embedding_model = embedding_model
        self.openai_api_key = openai_api_key
        self.openai_model = openai_model
        self.parameter_extractor = parameter_extractor
        self.conversations_dir = conversations_dir
        self.api_auth_token = api_auth_token
        self.base_url_override = base_url_override

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "AppConfig":
        """
        Build a config from environment variables.

        Values in ``env_file`` (or ``.env`` in the working directory) are
        loaded first but never override variables already set.

        Environment Variables:
            MIN_CONFIDENCE_THRESHOLD: Fused score below which no tool is selected (default 0.35)
            CONVERSATION_TIMEOUT_SECONDS: Idle time before a conversation is evicted (default 1800)
            REQUEST_TIMEOUT_SECONDS: HTTP timeout for tool execution (default 30)
            EMBEDDING_BACKEND: none, sentence-transformers or openai (default none)
            EMBEDDING_MODEL: Model name for the embedding backend
            OPENAI_API_KEY / OPENAI_MODEL: Credentials and chat model for OpenAI features
            PARAMETER_EXTRACTOR: pattern or openai (default pattern)
            CONVERSATIONS_DIR: Directory for JSON conversation files (unset keeps them in memory)
            API_AUTH_TOKEN: Bearer token sent to endpoints that declare security
            BASE_URL_OVERRIDE: Replaces the base URL compiled from the document
        """
        load_dotenv(env_file)
        return cls(
            min_confidence=_get_float("MIN_CONFIDENCE_THRESHOLD", 0.35),
            conversation_timeout=_get_int("CONVERSATION_TIMEOUT_SECONDS", 1800),
            request_timeout=_get_float("REQUEST_TIMEOUT_SECONDS", 30.0),
            embedding_backend=_get_choice("EMBEDDING_BACKEND", EMBEDDING_BACKENDS, "none"),
            embedding_model=os.getenv("EMBEDDING_MODEL") or None,
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_model=os.getenv("OPENAI_MODEL", "gpt-3.5-turbo"),
            parameter_extractor=_get_choice("PARAMETER_EXTRACTOR", PARAMETER_EXTRACTORS, "pattern"),
            conversations_dir=os.getenv("CONVERSATIONS_DIR") or None,
            api_auth_token=os.getenv("API_AUTH_TOKEN") or None,
            base_url_override=os.getenv("BASE_URL_OVERRIDE") or None,
        )

    def __repr__(self):
        return (f"AppConfig(min_confidence={self.min_confidence}, embedding_backend='{self.embedding_backend}', "
                f"parameter_extractor='{self.parameter_extractor}', "
                f"api_auth_token={'set' if self.api_auth_token else 'unset'})")
