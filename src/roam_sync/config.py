import os
from pathlib import Path
from typing import Any

import toml


CONFIG_DIR = Path.home() / ".config" / "roam-sync"
CONFIG_FILE = CONFIG_DIR / "config.toml"


def get_config_file() -> Path:
    """Config file path; ROAM_CONFIG_FILE overrides the default location."""
    override = os.getenv("ROAM_CONFIG_FILE")
    if override:
        return Path(override).expanduser()
    return CONFIG_FILE


def load_config() -> dict[str, Any]:
    """Load configuration from the config file."""
    path = get_config_file()
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return toml.loads(f.read())


def get_config_value(key: str, default: Any = None) -> Any:
    """Get a configuration value by key (supports nested keys with dots)."""
    value: Any = load_config()
    for k in key.split("."):
        if isinstance(value, dict) and k in value:
            value = value[k]
        else:
            return default
    return value


def get_env_or_config(env_key: str, config_key: str | None = None, default: Any = None) -> Any:
    """Get a value from environment variable or config file.

    Environment variables take precedence over config file values.
    """
    env_value = os.getenv(env_key)
    if env_value is not None:
        return env_value
    if config_key is None:
        config_key = env_key.lower()
    return get_config_value(config_key, default)


def init_config_file() -> Path:
    """Create a default config file if it doesn't exist."""
    path = get_config_file()
    path.parent.mkdir(parents=True, exist_ok=True)
    if not path.exists():
        default_config = """\
# roam-sync configuration

[roam]
# api_token = "your-api-token"
# api_graph = "your-graph-name"

[storage]
# dir = ""  # Directory for sync event logs (JSONL)

[batch]
# size = 100
# max_retries = 3
"""
        with open(path, "w", encoding="utf-8") as f:
            f.write(default_config)
    return path
