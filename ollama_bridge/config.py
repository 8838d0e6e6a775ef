# Copyright (c) 2026 Ollama-Bridge Authors.
# This software is released under the GNU General Public License v3.0.
# See the LICENSE file in the project root for full license information.

"""
Ollama-Bridge: Configuration for the upstream model server and the HTTP facade.

Configuration structure:
    [ollama] → where and how to reach the model server
    [prompt] → the system instructions sent with every conversion
    [server] → host, port, debug dumps and UI assets

Supports TOML configuration files; every value has a default so an empty
file (or no file at all) yields a working configuration.
"""

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


DEFAULT_OLLAMA_URL = "http://127.0.0.1:11434"
DEFAULT_MODEL = "llama3.2:latest"

SYSTEM_PROMPT = """You are an expert SDET. Convert the following Selenium Java code to Idiomatic Playwright TypeScript.
Rules:
- Return ONLY the TypeScript code.
- No markdown formatting (like ```).
- Use 'await page.locator(...)' instead of driver.findElement.
- Wrap in 'test' blocks.
- Add necessary imports for @playwright/test."""


@dataclass
class OllamaConfig:
    """Configuration for the upstream Ollama server."""
    url: str = DEFAULT_OLLAMA_URL
    default_model: str = DEFAULT_MODEL
    health_timeout: float = 2.0
    models_timeout: float = 3.0


@dataclass
class BridgeConfig:
    """Complete bridge configuration."""
    ollama: OllamaConfig = field(default_factory=OllamaConfig)
    system_prompt: str = SYSTEM_PROMPT

    # Server settings (can be overridden by CLI)
    host: str = "127.0.0.1"
    port: int = 3001
    debug: bool = False
    static_dir: str | None = "ui/dist"
    log_dir: str = "logs"


class ConfigurationError(Exception):
    """Raised when configuration is invalid."""
    pass


def load_config(config_path: str | Path) -> BridgeConfig:
    """
    Load configuration from a TOML file.

    Args:
        config_path: Path to the TOML configuration file

    Returns:
        BridgeConfig object

    Raises:
        ConfigurationError: If configuration is invalid
        FileNotFoundError: If config file doesn't exist
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "rb") as f:
        try:
            raw = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML in {config_path}: {e}") from e

    return parse_config(raw, source=str(config_path))


def _section(raw: dict[str, Any], name: str, source: str) -> dict[str, Any]:
    section = raw.get(name, {})
    if not isinstance(section, dict):
        raise ConfigurationError(f"Section [{name}] must be a table in {source}")
    return section


def _typed(section: dict[str, Any], key: str, types: tuple, default: Any, where: str) -> Any:
    value = section.get(key, default)
    # bool is an int subclass; reject it for numeric settings
    if isinstance(value, bool) and bool not in types:
        raise ConfigurationError(f"'{key}' in {where} must not be a boolean")
    if value is not None and not isinstance(value, types):
        names = "/".join(t.__name__ for t in types)
        raise ConfigurationError(f"'{key}' in {where} must be {names}, got {type(value).__name__}")
    return value


def parse_config(raw: dict[str, Any], source: str = "<dict>") -> BridgeConfig:
    """
    Parse raw configuration dictionary into BridgeConfig.

    Args:
        raw: Raw configuration dictionary (e.g., from TOML)
        source: Source identifier for error messages

    Returns:
        BridgeConfig object

    Raises:
        ConfigurationError: If configuration is invalid
    """
    config = BridgeConfig()

    # Parse upstream settings
    ollama_raw = _section(raw, "ollama", source)
    where = f"[ollama] of {source}"
    config.ollama = OllamaConfig(
        url=_typed(ollama_raw, "url", (str,), DEFAULT_OLLAMA_URL, where).rstrip("/"),
        default_model=_typed(ollama_raw, "default_model", (str,), DEFAULT_MODEL, where),
        health_timeout=float(_typed(ollama_raw, "health_timeout", (int, float), 2.0, where)),
        models_timeout=float(_typed(ollama_raw, "models_timeout", (int, float), 3.0, where)),
    )
    if not config.ollama.url:
        raise ConfigurationError(f"Ollama 'url' must not be empty in {source}")
    if not config.ollama.default_model:
        raise ConfigurationError(f"Ollama 'default_model' must not be empty in {source}")
    if config.ollama.health_timeout <= 0 or config.ollama.models_timeout <= 0:
        raise ConfigurationError(f"Ollama timeouts must be positive in {source}")

    # Parse prompt
    prompt_raw = _section(raw, "prompt", source)
    config.system_prompt = _typed(prompt_raw, "system", (str,), SYSTEM_PROMPT, f"[prompt] of {source}")

    # Parse server settings
    server_raw = _section(raw, "server", source)
    where = f"[server] of {source}"
    config.host = _typed(server_raw, "host", (str,), config.host, where)
    config.port = _typed(server_raw, "port", (int,), config.port, where)
    config.debug = _typed(server_raw, "debug", (bool,), config.debug, where)
    config.static_dir = _typed(server_raw, "static_dir", (str,), config.static_dir, where) or None
    config.log_dir = _typed(server_raw, "log_dir", (str,), config.log_dir, where)

    if not 0 < config.port < 65536:
        raise ConfigurationError(f"Server 'port' out of range ({config.port}) in {source}")

    logger.info(f"Loaded configuration from {source}: "
                f"ollama={config.ollama.url}, default model={config.ollama.default_model}")

    return config


def create_default_config(ollama_url: str | None = None, model: str | None = None) -> BridgeConfig:
    """
    Create a default configuration when no config file is provided.

    Args:
        ollama_url: Base URL of the Ollama server (None = default)
        model: Default model tag (None = default)

    Returns:
        BridgeConfig object
    """
    config = BridgeConfig()

    if ollama_url:
        config.ollama.url = ollama_url.rstrip("/")
    if model:
        config.ollama.default_model = model

    logger.info(f"Created default configuration for {config.ollama.url} "
                f"(model: {config.ollama.default_model})")

    return config
