"""Configuration loading and persisted client state.

Settings come from a TOML file (defaults.toml shipped with the package)
and are overridden by environment variables. Env files are loaded into
os.environ first, with this priority:
  1. Environment variables (highest, already set in shell)
  2. ~/.chatrelay/chat.env
  3. .env in current directory
"""

from __future__ import annotations

import json
import logging
import os
import tomllib
from pathlib import Path

from pydantic import ValidationError

from chatrelay.schemas.config import ChatConfig

logger = logging.getLogger(__name__)

# Directory for user-level chatrelay files
CHATRELAY_HOME = Path.home() / ".chatrelay"
ENV_FILE = CHATRELAY_HOME / "chat.env"
STATE_FILE = CHATRELAY_HOME / "state.json"

_CONFIG_DIR = Path(__file__).parent / "data"

# Env var -> ChatConfig field
_ENV_OVERRIDES: dict[str, str] = {
    "FASTAPI_URL": "backend_url",
    "CHAT_UI_HOST": "host",
    "CHAT_UI_PORT": "port",
    "CHATRELAY_SERVER_URL": "server_url",
    "CHATRELAY_STATIC_DIR": "static_dir",
    "CHATRELAY_LOG_LEVEL": "log_level",
}


class ConfigError(ValueError):
    """Raised when configuration cannot be loaded or validated."""


def load_env_files(*paths: Path) -> list[str]:
    """Fill unset environment variables from env files.

    Files are applied in order, so earlier files win over later ones and
    the shell environment wins over both. With no arguments this reads
    ~/.chatrelay/chat.env, then .env in the current directory.

    Returns:
        Names of the variables that were set.
    """
    loaded: list[str] = []
    for path in paths or (ENV_FILE, Path.cwd() / ".env"):
        try:
            entries = read_env_file(path)
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning("Skipping env file %s: %s", path, e)
            continue
        for key, value in entries.items():
            if os.environ.get(key):
                continue
            os.environ[key] = value
            loaded.append(key)
        logger.debug("Env file %s supplied %d value(s)", path, len(entries))
    return loaded


def read_env_file(path: Path) -> dict[str, str]:
    """Parse ``KEY=VALUE`` lines from an env file.

    Blank lines and ``#`` comments are skipped and an ``export`` prefix is
    accepted. A value wrapped in matching quotes is taken literally;
    otherwise a `` #`` starts a trailing comment.
    """
    entries: dict[str, str] = {}
    for number, line in enumerate(path.read_text(encoding="utf-8").splitlines(), 1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key:
            logger.debug("%s:%d is not KEY=VALUE; skipped", path, number)
            continue
        entries[key] = _env_value(value.strip())
    return entries


def _env_value(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        return value[1:-1]
    comment = value.find(" #")
    if comment != -1:
        value = value[:comment].rstrip()
    return value


def load_config(config_path: Path | None = None) -> ChatConfig:
    """Load configuration from TOML, then apply environment overrides.

    Args:
        config_path: Path to a TOML file. Defaults to chatrelay/data/defaults.toml.

    Returns:
        Validated ChatConfig.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ConfigError: If the TOML or an override is invalid.
    """
    path = config_path or _CONFIG_DIR / "defaults.toml"
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e

    values: dict[str, object] = {}
    values.update(raw.get("server", {}))
    values.update(raw.get("client", {}))
    if "level" in raw.get("logging", {}):
        values["log_level"] = raw["logging"]["level"]

    for env_var, field in _ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value:
            values[field] = value

    try:
        return ChatConfig(**values)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


class ClientState:
    """Client-side state persisted between runs (the selected model)."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or STATE_FILE

    def load_model(self) -> str | None:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return None
        model = data.get("selected_model") if isinstance(data, dict) else None
        return model if isinstance(model, str) and model else None

    def save_model(self, model: str) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(
                json.dumps({"selected_model": model}), encoding="utf-8",
            )
        except OSError:
            logger.warning("Could not save selected model to %s", self._path)
