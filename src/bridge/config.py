"""
Configuration management for the Twilio <-> OpenAI Realtime bridge.

Loads environment variables and provides a strongly-typed configuration object.
Validates required keys at startup.
"""

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Tuple

from dotenv import load_dotenv
import structlog

load_dotenv()

logger = structlog.get_logger(__name__)

DEFAULT_ROUTE_DESTINATIONS = ("JAY", "ROBERTO", "OFFICE")


class ConfigError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


@dataclass(frozen=True)
class Config:
    """Strongly-typed configuration object."""

    # Server
    public_host: str = ""
    port: int = 7860
    log_level: str = "INFO"

    # Optional shared secret checked on /incoming-call and /media-stream
    stream_secret: str = ""
    stream_secret_header: str = "x-stream-secret"

    # OpenAI Realtime
    openai_api_key: str = ""
    openai_realtime_model: str = "gpt-4o-mini-realtime-preview"
    openai_realtime_voice: str = "alloy"
    openai_realtime_url: str = "wss://api.openai.com/v1/realtime"
    openai_realtime_vad_threshold: float = 0.5
    # Text output is needed for routing tag extraction.
    openai_realtime_text_output: bool = True
    openai_realtime_open_timeout_seconds: float = 10.0

    # Prompting
    openai_realtime_instructions: str = ""
    openai_realtime_instructions_file: str = ""
    openai_realtime_greeting: str = ""
    knowledge_file: str = ""
    knowledge_max_chars: int = 12_000

    # Routing tags
    route_destinations: Tuple[str, ...] = DEFAULT_ROUTE_DESTINATIONS

    # Diagnostics
    audio_milestone_frames: int = 250

    # Agent settings
    agent_name: str = "Elena"
    company_name: str = "Pedraza Surveying"

    @property
    def ws_url(self) -> str:
        """Get the WebSocket URL for Twilio."""
        return f"wss://{self.public_host}/media-stream"

    @property
    def realtime_url(self) -> str:
        """Get the OpenAI Realtime URL for this model/voice (μ-law 8kHz)."""
        return (
            f"{self.openai_realtime_url}?model={self.openai_realtime_model}"
            f"&voice={self.openai_realtime_voice}&format=pcmu"
        )

    def validate(self) -> None:
        """Validate that all required configuration is present."""
        missing = []

        if not self.openai_api_key:
            missing.append("OPENAI_API_KEY")
        if not self.openai_realtime_model:
            missing.append("OPENAI_REALTIME_MODEL")

        if missing:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(missing)}\n"
                "Please check your .env file."
            )

        if not 0.0 <= self.openai_realtime_vad_threshold <= 1.0:
            raise ConfigError(
                f"Invalid OPENAI_REALTIME_VAD_THRESHOLD '{self.openai_realtime_vad_threshold}'. "
                "Expected a value between 0 and 1."
            )

    def log_config(self) -> None:
        """Log configuration (without secrets)."""
        logger.info(
            "Configuration loaded",
            public_host=self.public_host,
            port=self.port,
            log_level=self.log_level,
            realtime_model=self.openai_realtime_model,
            realtime_voice=self.openai_realtime_voice,
            vad_threshold=self.openai_realtime_vad_threshold,
            text_output=self.openai_realtime_text_output,
            open_timeout_seconds=self.openai_realtime_open_timeout_seconds,
            instructions_file=self.openai_realtime_instructions_file or None,
            knowledge_file=self.knowledge_file or None,
            route_destinations=list(self.route_destinations),
            agent_name=self.agent_name,
            openai_key_set=bool(self.openai_api_key),
            stream_secret_set=bool(self.stream_secret),
        )


def _get_bool(key: str, default: bool = False) -> bool:
    """Get a boolean from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ("true", "1", "yes", "on")


def _get_int(key: str, default: int) -> int:
    """Get an integer from environment variable."""
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


def _get_float(key: str, default: float) -> float:
    """Get a float from environment variable."""
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default


def _get_list(key: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    """Get an upper-cased, comma-separated list from environment variable."""
    raw = os.getenv(key, "")
    items = tuple(part.strip().upper() for part in raw.split(",") if part.strip())
    return items or default


@lru_cache(maxsize=1)
def get_config() -> Config:
    """
    Get the application configuration.

    Uses lru_cache to ensure we only load config once.
    """
    config = Config(
        # Server
        public_host=os.getenv("PUBLIC_HOST", ""),
        port=_get_int("PORT", 7860),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        stream_secret=os.getenv("STREAM_SECRET", ""),
        stream_secret_header=os.getenv("STREAM_SECRET_HEADER", "x-stream-secret").strip().lower(),

        # OpenAI Realtime
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        openai_realtime_model=os.getenv("OPENAI_REALTIME_MODEL", "gpt-4o-mini-realtime-preview"),
        openai_realtime_voice=os.getenv("OPENAI_REALTIME_VOICE", "alloy"),
        openai_realtime_url=os.getenv("OPENAI_REALTIME_URL", "wss://api.openai.com/v1/realtime"),
        openai_realtime_vad_threshold=_get_float("OPENAI_REALTIME_VAD_THRESHOLD", 0.5),
        openai_realtime_text_output=_get_bool("OPENAI_REALTIME_TEXT_OUTPUT", True),
        openai_realtime_open_timeout_seconds=_get_float("OPENAI_REALTIME_OPEN_TIMEOUT_SECONDS", 10.0),

        # Prompting
        openai_realtime_instructions=os.getenv("OPENAI_REALTIME_INSTRUCTIONS", ""),
        openai_realtime_instructions_file=os.getenv("OPENAI_REALTIME_INSTRUCTIONS_FILE", ""),
        openai_realtime_greeting=os.getenv("OPENAI_REALTIME_GREETING", ""),
        knowledge_file=os.getenv("KNOWLEDGE_FILE", ""),
        knowledge_max_chars=_get_int("KNOWLEDGE_MAX_CHARS", 12_000),

        # Routing tags
        route_destinations=_get_list("ROUTE_DESTINATIONS", DEFAULT_ROUTE_DESTINATIONS),

        # Diagnostics
        audio_milestone_frames=_get_int("AUDIO_MILESTONE_FRAMES", 250),

        # Agent settings
        agent_name=os.getenv("AGENT_NAME", "Elena"),
        company_name=os.getenv("COMPANY_NAME", "Pedraza Surveying"),
    )

    return config


def init_config() -> Config:
    """
    Initialize and validate configuration.

    Call this at application startup to fail fast if config is invalid.
    """
    config = get_config()
    config.validate()
    config.log_config()
    return config
