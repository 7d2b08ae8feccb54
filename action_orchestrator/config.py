"""
Engine Configuration

Nested dictionary configuration built from defaults, environment variables and
caller overrides. Every manager reads its own section with ``config.get``.
Durations are seconds unless the key ends in ``_ms``. The environment variables
for second-based durations carry a ``_SECONDS`` suffix; ``TIMEOUT`` and
``SLOW_MO`` stay in milliseconds.
"""

import copy
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .errors import ConfigurationError

DEFAULT_CONFIG: Dict[str, Any] = {
    "browser": {
        "browser_type": "chromium",
        "headless": True,
        "slow_mo": 100,
        "timeout_ms": 30000,
        "viewport_width": 1366,
        "viewport_height": 768,
        "args": [
            "--no-sandbox",
            "--disable-setuid-sandbox",
            "--disable-dev-shm-usage",
            "--disable-accelerated-2d-canvas",
            "--no-first-run",
            "--no-zygote",
            "--disable-gpu",
        ],
    },
    "tasks": {
        "max_retries": 3,
        "retry_delay": 5,
        "task_timeout": 300,  # 5 minutes
        "history_limit": 1000,
    },
    "session": {
        "cookie_path": "./data/cookies.json",
        "user_agent_path": "./data/user-agents.json",
        "proxy_path": "./data/proxies.json",
        "screenshot_dir": "./data/screenshots",
        "session_timeout": 3600,  # 1 hour
        "cleanup_interval": 300,  # 5 minutes
    },
    "logging": {
        "level": "INFO",
        "file": "./data/logs/app.log",
        "max_bytes": 10 * 1024 * 1024,
        "backup_count": 5,
        "json": False,
    },
    "providers_path": "./data/providers.json",
    "providers": [],
}

# (environment variable, section, key, type)
ENVIRONMENT_OVERRIDES = [
    ("HEADLESS", "browser", "headless", "bool"),
    ("SLOW_MO", "browser", "slow_mo", "int"),
    ("TIMEOUT", "browser", "timeout_ms", "int"),
    ("BROWSER_TYPE", "browser", "browser_type", "str"),
    ("MAX_RETRIES", "tasks", "max_retries", "int"),
    ("RETRY_DELAY_SECONDS", "tasks", "retry_delay", "float"),
    ("TASK_TIMEOUT_SECONDS", "tasks", "task_timeout", "float"),
    ("COOKIE_PATH", "session", "cookie_path", "str"),
    ("USER_AGENT_PATH", "session", "user_agent_path", "str"),
    ("PROXY_PATH", "session", "proxy_path", "str"),
    ("SCREENSHOT_DIR", "session", "screenshot_dir", "str"),
    ("SESSION_TIMEOUT_SECONDS", "session", "session_timeout", "float"),
    ("LOG_LEVEL", "logging", "level", "str"),
    ("LOG_FILE", "logging", "file", "str"),
    ("LOG_JSON", "logging", "json", "bool"),
    ("PROVIDERS_PATH", None, "providers_path", "str"),
]


def load_config(
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """
    Build the engine configuration.

    Args:
        overrides: Values deep-merged over defaults and environment
        environ: Environment mapping, defaults to ``os.environ``

    Returns:
        Complete configuration dictionary
    """
    environ = os.environ if environ is None else environ
    config = copy.deepcopy(DEFAULT_CONFIG)

    for variable, section, key, kind in ENVIRONMENT_OVERRIDES:
        raw = environ.get(variable)
        if raw is None or raw == "":
            continue
        target = config if section is None else config[section]
        target[key] = _coerce(variable, raw, kind)

    if overrides:
        _deep_merge(config, overrides)

    if not config["providers"]:
        config["providers"] = load_provider_profiles(config["providers_path"])

    return config


def load_provider_profiles(path: Optional[str]) -> List[Dict[str, Any]]:
    """Load provider profiles from a JSON file, empty when the file is absent"""
    if not path:
        return []

    file_path = Path(path)
    if not file_path.exists():
        return []

    try:
        with open(file_path, "r") as f:
            profiles = json.load(f)
    except (OSError, json.JSONDecodeError) as error:
        raise ConfigurationError(
            f"Cannot read provider profiles from {file_path}: {error}"
        ) from error

    if isinstance(profiles, dict):
        profiles = [dict(profile, name=name) for name, profile in profiles.items()]
    if not isinstance(profiles, list):
        raise ConfigurationError(
            f"Provider profiles in {file_path} must be a list or a mapping"
        )
    return profiles


def _coerce(variable: str, raw: str, kind: str) -> Any:
    if kind == "str":
        return raw
    if kind == "bool":
        return raw.strip().lower() != "false"
    try:
        return int(raw) if kind == "int" else float(raw)
    except ValueError:
        raise ConfigurationError(
            f"Environment variable {variable} must be a number, got {raw!r}"
        ) from None


def _deep_merge(base: Dict[str, Any], overrides: Mapping[str, Any]) -> None:
    for key, value in overrides.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = copy.deepcopy(value)
