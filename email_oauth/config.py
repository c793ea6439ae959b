"""Settings discovery and loading for email-oauth."""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Environment variables
ENV_CONFIG_DIR = "EMAIL_OAUTH_CONFIG_DIR"
ENV_CALLBACK_TIMEOUT = "EMAIL_OAUTH_CALLBACK_TIMEOUT"
ENV_REFRESH_BUFFER_MS = "EMAIL_OAUTH_REFRESH_BUFFER_MS"
ENV_HTTP_TIMEOUT = "EMAIL_OAUTH_HTTP_TIMEOUT"

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "email-oauth"
DEFAULT_CALLBACK_TIMEOUT = 300.0  # seconds
DEFAULT_REFRESH_BUFFER_MS = 60_000
DEFAULT_HTTP_TIMEOUT = 30.0  # seconds


@dataclass
class Settings:
    """Resolved configuration."""

    config_dir: Path = DEFAULT_CONFIG_DIR
    callback_timeout: float = DEFAULT_CALLBACK_TIMEOUT
    refresh_buffer_ms: int = DEFAULT_REFRESH_BUFFER_MS
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    env_path: Path | None = None


def find_env_file(explicit_path: Path | None = None, config_dir: Path | None = None) -> Path | None:
    """Find the .env file, checking the working directory then the config dir."""
    if explicit_path:
        if explicit_path.exists():
            return explicit_path
        return None

    candidates = [Path(".env")]
    if config_dir is not None:
        candidates.append(config_dir / ".env")

    for path in candidates:
        if path.exists():
            return path
    return None


def _env_number(name: str, default: float, cast: type = float) -> float:
    """Read a positive number from the environment."""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw.strip())
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


def load_settings(
    config_dir: Path | None = None,
    env_path: Path | None = None,
) -> Settings:
    """Load settings from arguments, environment and an optional .env file.

    Explicit arguments win over environment variables, which win over
    defaults. Variables already set in the environment are not
    overridden by the .env file.

    Args:
        config_dir: Explicit storage directory (optional)
        env_path: Explicit path to .env file (optional)

    Returns:
        Settings instance

    Raises:
        ValueError: If a numeric variable is malformed
    """
    env_dir = os.environ.get(ENV_CONFIG_DIR)
    search_dir = config_dir or (Path(env_dir).expanduser() if env_dir else DEFAULT_CONFIG_DIR)

    env_file = find_env_file(env_path, search_dir)
    if env_file:
        load_dotenv(env_file)

    if config_dir is None:
        # The .env file may have supplied the directory
        env_dir = os.environ.get(ENV_CONFIG_DIR)
        config_dir = Path(env_dir).expanduser() if env_dir else DEFAULT_CONFIG_DIR

    return Settings(
        config_dir=config_dir,
        callback_timeout=_env_number(ENV_CALLBACK_TIMEOUT, DEFAULT_CALLBACK_TIMEOUT),
        refresh_buffer_ms=int(_env_number(ENV_REFRESH_BUFFER_MS, DEFAULT_REFRESH_BUFFER_MS, int)),
        http_timeout=_env_number(ENV_HTTP_TIMEOUT, DEFAULT_HTTP_TIMEOUT),
        env_path=env_file,
    )
