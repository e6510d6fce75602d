from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .errors import ConfigError

__all__ = [
    "BotSettings",
    "ConfigError",
    "HOME_CONFIG_PATH",
    "LOCAL_CONFIG_NAME",
    "load_config",
    "load_settings",
]

# Environment variable names for secrets; the first name wins.
ENV_BOT_TOKEN = ("VOXRELAY_BOT_TOKEN", "TELEGRAM_TOKEN")
ENV_OPENAI_API_KEY = ("OPENAI_API_KEY",)
ENV_MONGODB_URI = ("VOXRELAY_MONGODB_URI", "MONGODB")

LOCAL_CONFIG_NAME = Path(".voxrelay") / "voxrelay.toml"
HOME_CONFIG_PATH = Path.home() / ".voxrelay" / "voxrelay.toml"

DEFAULT_VOICES_DIR = Path.home() / ".voxrelay" / "voices"


@dataclass(frozen=True, slots=True)
class BotSettings:
    bot_token: str
    openai_api_key: str
    mongodb_uri: str
    database: str = "Telegram"
    collection: str = "Users"
    voices_dir: Path = DEFAULT_VOICES_DIR
    ffmpeg: str = "ffmpeg"
    max_voice_seconds: float = 30.0
    chat_model: str = "gpt-4-1106-preview"
    speech_model: str = "whisper-1"
    image_model: str = "dall-e-3"
    image_size: str = "1024x1024"
    system_prompt: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    request_timeout_s: float = 120.0
    voice_timeout_s: float | None = 300.0


def _config_candidates() -> list[Path]:
    candidates = [Path.cwd() / LOCAL_CONFIG_NAME, HOME_CONFIG_PATH]
    if candidates[0] == candidates[1]:
        return [candidates[0]]
    return candidates


def _read_config(cfg_path: Path) -> dict:
    try:
        raw = cfg_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigError(f"Missing config file {cfg_path}.") from None
    except OSError as e:
        raise ConfigError(f"Failed to read config file {cfg_path}: {e}") from e
    try:
        return tomllib.loads(raw)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Malformed TOML in {cfg_path}: {e}") from None


def load_config(path: str | Path | None = None) -> tuple[dict, Path | None]:
    """Read the TOML config.

    An explicit path must exist. Without one, the local and home candidates
    are tried in order; when neither exists an empty config is returned so
    that a pure environment-variable setup still works.
    """
    if path:
        cfg_path = Path(path).expanduser()
        return _read_config(cfg_path), cfg_path

    for candidate in _config_candidates():
        if candidate.is_file():
            return _read_config(candidate), candidate
    return {}, None


def _describe(config_path: Path | None) -> str:
    return str(config_path) if config_path is not None else "the config file"


def _secret(
    config: dict,
    config_path: Path | None,
    *,
    key: str,
    env_names: tuple[str, ...],
    label: str,
) -> str:
    for env_name in env_names:
        env_value = os.environ.get(env_name)
        if env_value and env_value.strip():
            return env_value.strip()

    try:
        value = config[key]
    except KeyError:
        raise ConfigError(
            f"Missing {label}. Set {env_names[0]} environment variable "
            f"or add `{key}` to {_describe(config_path)}."
        ) from None

    if not isinstance(value, str) or not value.strip():
        raise ConfigError(
            f"Invalid `{key}` in {_describe(config_path)}; expected a non-empty string."
        )
    return value.strip()


def _optional_str(
    config: dict, config_path: Path | None, key: str, default: str | None
) -> str | None:
    value = config.get(key, default)
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(
            f"Invalid `{key}` in {_describe(config_path)}; expected a non-empty string."
        )
    return value.strip()


def _positive_number(
    config: dict, config_path: Path | None, key: str, default: float | None
) -> float | None:
    value: Any = config.get(key, default)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(
            f"Invalid `{key}` in {_describe(config_path)}; expected a positive number."
        )
    return float(value)


def load_settings(path: str | Path | None = None) -> BotSettings:
    config, config_path = load_config(path)
    defaults = BotSettings(bot_token="", openai_api_key="", mongodb_uri="")

    voices_dir = config.get("voices_dir")
    if voices_dir is None:
        voices_path = defaults.voices_dir
    elif isinstance(voices_dir, str) and voices_dir.strip():
        voices_path = Path(voices_dir.strip()).expanduser()
    else:
        raise ConfigError(
            f"Invalid `voices_dir` in {_describe(config_path)}; expected a path string."
        )

    voice_timeout_s = config.get("voice_timeout_s", defaults.voice_timeout_s)
    if isinstance(voice_timeout_s, bool):
        raise ConfigError(
            f"Invalid `voice_timeout_s` in {_describe(config_path)}; "
            "expected a positive number or 0."
        )
    if voice_timeout_s == 0:
        voice_timeout_s = None

    return BotSettings(
        bot_token=_secret(
            config,
            config_path,
            key="bot_token",
            env_names=ENV_BOT_TOKEN,
            label="bot token",
        ),
        openai_api_key=_secret(
            config,
            config_path,
            key="openai_api_key",
            env_names=ENV_OPENAI_API_KEY,
            label="OpenAI API key",
        ),
        mongodb_uri=_secret(
            config,
            config_path,
            key="mongodb_uri",
            env_names=ENV_MONGODB_URI,
            label="MongoDB connection string",
        ),
        database=_optional_str(config, config_path, "database", defaults.database),
        collection=_optional_str(
            config, config_path, "collection", defaults.collection
        ),
        voices_dir=voices_path,
        ffmpeg=_optional_str(config, config_path, "ffmpeg", defaults.ffmpeg),
        max_voice_seconds=_positive_number(
            config, config_path, "max_voice_seconds", defaults.max_voice_seconds
        ),
        chat_model=_optional_str(
            config, config_path, "chat_model", defaults.chat_model
        ),
        speech_model=_optional_str(
            config, config_path, "speech_model", defaults.speech_model
        ),
        image_model=_optional_str(
            config, config_path, "image_model", defaults.image_model
        ),
        image_size=_optional_str(
            config, config_path, "image_size", defaults.image_size
        ),
        system_prompt=_optional_str(config, config_path, "system_prompt", None),
        openai_base_url=_optional_str(
            config, config_path, "openai_base_url", defaults.openai_base_url
        ).rstrip("/"),
        request_timeout_s=_positive_number(
            config, config_path, "request_timeout_s", defaults.request_timeout_s
        ),
        voice_timeout_s=_positive_number(
            {"voice_timeout_s": voice_timeout_s},
            config_path,
            "voice_timeout_s",
            None,
        ),
    )
