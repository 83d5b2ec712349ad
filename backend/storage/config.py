"""Service configuration (LLM endpoint, extra sensitive words, strictness).

Read-only at runtime: operators edit `config.json` in the data dir or set
environment variables. There is no HTTP route that writes it, since the LLM
endpoint receives the service's own API key.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any

from movie_games.llm import DEFAULT_MODEL, DEFAULT_TIMEOUT
from movie_games.sanitizer import parse_word_list

from .core import data_dir

logger = logging.getLogger(__name__)

_CONFIG_DEFAULTS: dict[str, Any] = {
    "llm": {
        "base_url": "",
        "model": DEFAULT_MODEL,
        "timeout": DEFAULT_TIMEOUT,
    },
    "sensitive_words": [],
    "strict_characters": False,
}


def _config_path() -> Path:
    return data_dir() / "config.json"


def _word_list(value: Any) -> list[str]:
    """A list of strings, or one env-style string; anything else is ignored."""
    if isinstance(value, str):
        return parse_word_list(value)
    if isinstance(value, list):
        words = [w.strip() for w in value if isinstance(w, str) and w.strip()]
        if len(words) != len(value):
            logger.warning("config.json: ignoring %d non-string sensitive words", len(value) - len(words))
        return words
    logger.warning("config.json: sensitive_words must be a list of strings, ignoring it")
    return []


def _llm_section(value: Any) -> dict[str, Any]:
    if not isinstance(value, dict):
        return {}
    section: dict[str, Any] = {}
    for key in ("base_url", "model"):
        if isinstance(value.get(key), str):
            section[key] = value[key]
    if isinstance(value.get("timeout"), (int, float)) and not isinstance(value["timeout"], bool):
        section["timeout"] = float(value["timeout"])
    return section


def _env_overrides(config: dict[str, Any]) -> None:
    if os.getenv("LLM_BASE_URL"):
        config["llm"]["base_url"] = os.environ["LLM_BASE_URL"]
    if os.getenv("LLM_MODEL"):
        config["llm"]["model"] = os.environ["LLM_MODEL"]
    if os.getenv("LLM_TIMEOUT"):
        config["llm"]["timeout"] = float(os.environ["LLM_TIMEOUT"])


def get_config() -> dict[str, Any]:
    """Read config, returning defaults merged with stored values.

    Environment variables win over the file for the LLM section.
    """
    config: dict[str, Any] = {
        "llm": dict(_CONFIG_DEFAULTS["llm"]),
        "sensitive_words": list(_CONFIG_DEFAULTS["sensitive_words"]),
        "strict_characters": _CONFIG_DEFAULTS["strict_characters"],
    }
    path = _config_path()
    if path.is_file():
        stored = json.loads(path.read_text())
        config["llm"].update(_llm_section(stored.get("llm")))
        if "sensitive_words" in stored:
            config["sensitive_words"] = _word_list(stored["sensitive_words"])
        if "strict_characters" in stored:
            config["strict_characters"] = stored["strict_characters"] is True
    _env_overrides(config)
    return config


def server_api_key() -> str:
    """The service's own key, used for callers without one."""
    return os.getenv("GLM_API_KEY") or os.getenv("BIGMODEL_API_KEY") or ""
