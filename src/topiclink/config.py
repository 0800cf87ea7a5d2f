"""Connection settings.

Settings are read from a JSON file or from ``TOPICLINK_*`` environment
variables (a ``.env`` file is honoured).
"""

import json
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from topiclink.logger import get_logger

logger = get_logger("config")

DEFAULT_CONFIG_FILE = "topiclink.json"


class BackoffSettings(BaseModel):
    """Reconnection backoff configuration."""

    model_config = ConfigDict(frozen=True)

    initial_delay: float = Field(1.0, gt=0, description="Delay before the first retry (seconds)")
    max_delay: float = Field(60.0, gt=0, description="Ceiling for any retry delay (seconds)")
    multiplier: float = Field(2.0, ge=1.0, description="Growth factor per attempt")
    jitter: float = Field(0.0, ge=0.0, lt=1.0, description="Random reduction fraction applied to each delay")
    max_attempts: Optional[int] = Field(
        None, ge=1, description="Give up after this many retries (unbounded when unset)"
    )

    @model_validator(mode="after")
    def _check_initial_delay(self) -> "BackoffSettings":
        if self.initial_delay > self.max_delay:
            raise ValueError("initial_delay must not exceed max_delay")
        return self


class ConnectionSettings(BaseModel):
    """Everything needed to open and maintain one session."""

    model_config = ConfigDict(frozen=True)

    url: str = Field("ws://localhost:8080", description="Server URL")
    principal: Optional[str] = Field(None, description="Security principal")
    credentials: Optional[str] = Field(None, description="Password or token for the principal")
    diagnostic_selector: str = Field("*.*", min_length=1, description="Selector fetched by test_connection")
    selectors: list[str] = Field(default_factory=list, description="Selectors subscribed at startup")
    backoff: BackoffSettings = Field(default_factory=BackoffSettings)


def load_settings(config_path: Optional[str | Path] = None) -> ConnectionSettings:
    """
    Load connection settings from a JSON file.

    Args:
        config_path: Path to the JSON file. Defaults to ``topiclink.json`` in
            the current directory.

    Raises:
        FileNotFoundError: If the file does not exist
        json.JSONDecodeError: If the file is not valid JSON
        ValidationError: If the settings are invalid
    """
    path = Path(config_path) if config_path is not None else Path.cwd() / DEFAULT_CONFIG_FILE

    if not path.exists():
        error_msg = f"Configuration file not found: {path}"
        logger.error(error_msg)
        raise FileNotFoundError(error_msg)

    logger.info(f"Loading configuration from: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON in configuration file {path}: {e}")
        raise

    try:
        return ConnectionSettings(**data)
    except ValidationError as e:
        logger.error(f"Invalid configuration in {path}: {e}")
        raise


def settings_from_env(prefix: str = "TOPICLINK_") -> ConnectionSettings:
    """
    Build settings from environment variables.

    Recognised variables (with the default prefix): ``TOPICLINK_URL``,
    ``TOPICLINK_PRINCIPAL``, ``TOPICLINK_CREDENTIALS``,
    ``TOPICLINK_DIAGNOSTIC_SELECTOR``, ``TOPICLINK_SELECTORS`` (comma
    separated) and ``TOPICLINK_INITIAL_DELAY``, ``TOPICLINK_MAX_DELAY``,
    ``TOPICLINK_MULTIPLIER``, ``TOPICLINK_JITTER``, ``TOPICLINK_MAX_ATTEMPTS``.
    """
    load_dotenv()

    def env(name: str) -> Optional[str]:
        value = os.getenv(prefix + name)
        return value if value else None

    backoff: dict[str, str] = {}
    for key in ("initial_delay", "max_delay", "multiplier", "jitter", "max_attempts"):
        value = env(key.upper())
        if value is not None:
            backoff[key] = value

    data: dict[str, object] = {"backoff": backoff}
    for key in ("url", "principal", "credentials", "diagnostic_selector"):
        value = env(key.upper())
        if value is not None:
            data[key] = value

    selectors = env("SELECTORS")
    if selectors:
        data["selectors"] = [s.strip() for s in selectors.split(",") if s.strip()]

    try:
        return ConnectionSettings(**data)
    except ValidationError as e:
        logger.error(f"Invalid configuration in environment: {e}")
        raise
