"""
Config loader for chatrelay.
Reads config.yaml once and caches it. ${ENV_VAR} references anywhere in
the file are resolved against the environment (and .env, if present).
Typed views over the sections the providers and dispatcher consume live
here too, so nothing else has to know the YAML layout.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path

import yaml
from dotenv import load_dotenv

load_dotenv()

_CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"

_config: dict | None = None

OPENAI_BASE_URL = "https://api.openai.com"
DEFAULT_OPENAI_MODEL = "gpt-3.5-turbo"
DEFAULT_OPENAI_TEMPERATURE = 0.5
DEFAULT_TIMEOUT = 60
DEFAULT_NAMESPACE = "chatgpt"
DEFAULT_MAX_HISTORY_DEPTH = 1000


def _resolve_env_vars(value: str) -> str:
    """Replace ${ENV_VAR} patterns with actual environment variable values."""
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, "")
    return re.sub(r"\$\{(\w+)\}", replacer, value)


def _walk_and_resolve(obj):
    """Recursively resolve env vars in all string values."""
    if isinstance(obj, dict):
        return {k: _walk_and_resolve(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_walk_and_resolve(v) for v in obj]
    elif isinstance(obj, str):
        return _resolve_env_vars(obj)
    return obj


def load_config(path: Path | str | None = None) -> dict:
    """Load and cache config from YAML file."""
    global _config
    if _config is not None:
        return _config

    config_path = Path(path or os.environ.get("CHATRELAY_CONFIG") or _CONFIG_PATH)
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    _config = _walk_and_resolve(raw)
    return _config


def get_config() -> dict:
    """Return cached config, loading if necessary."""
    if _config is None:
        return load_config()
    return _config


def reset_config():
    """Drop the cached config so the next get_config() re-reads the file."""
    global _config
    _config = None


def setup_logging(cfg: dict):
    log_cfg = cfg.get("logging", {}) or {}
    level = getattr(logging, str(log_cfg.get("level", "INFO")).upper(), logging.INFO)
    log_file = log_cfg.get("file")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


def _optional(value, cast):
    if value is None or value == "":
        return None
    return cast(value)


def _flag(value) -> bool:
    """YAML booleans pass through; quoted strings must spell out yes."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ("true", "1", "yes", "on")


@dataclass
class OpenAIConfig:
    """Settings for the OpenAI chat-completion provider."""
    api_key: str = ""
    base_url: str = OPENAI_BASE_URL
    model: str = DEFAULT_OPENAI_MODEL
    temperature: float | None = DEFAULT_OPENAI_TEMPERATURE
    max_tokens: int | None = None
    top_p: float | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    system: str | None = None      # preamble sent as the first message
    timeout: float = DEFAULT_TIMEOUT

    @classmethod
    def from_dict(cls, data: dict | None) -> "OpenAIConfig":
        data = data or {}
        return cls(
            api_key=data.get("api_key") or "",
            base_url=(data.get("base_url") or OPENAI_BASE_URL).rstrip("/"),
            model=data.get("model") or DEFAULT_OPENAI_MODEL,
            temperature=_optional(data.get("temperature", DEFAULT_OPENAI_TEMPERATURE), float),
            max_tokens=_optional(data.get("max_tokens"), int),
            top_p=_optional(data.get("top_p"), float),
            frequency_penalty=_optional(data.get("frequency_penalty"), float),
            presence_penalty=_optional(data.get("presence_penalty"), float),
            system=data.get("system") or None,
            timeout=float(data.get("timeout") or DEFAULT_TIMEOUT),
        )


@dataclass
class ChatConfig:
    """Thread bookkeeping settings shared by every provider."""
    namespace: str = DEFAULT_NAMESPACE
    default_mode: str | None = None
    max_history_depth: int = DEFAULT_MAX_HISTORY_DEPTH
    store_replies: bool = False

    @classmethod
    def from_dict(cls, data: dict | None) -> "ChatConfig":
        data = data or {}
        return cls(
            namespace=data.get("namespace") or DEFAULT_NAMESPACE,
            default_mode=data.get("default_mode") or None,
            max_history_depth=int(data.get("max_history_depth") or DEFAULT_MAX_HISTORY_DEPTH),
            store_replies=_flag(data.get("store_replies")),
        )
