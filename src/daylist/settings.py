from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from dynaconf import Dynaconf

PACKAGE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = PACKAGE_DIR.parent


def _resolve_config_dir() -> Path | None:
    env_override = os.environ.get("DAYLIST_CONFIG_DIR")
    candidates: list[Path] = []

    if env_override:
        candidates.append(Path(env_override).expanduser())

    candidates.append(PROJECT_ROOT / "config")
    candidates.append(PROJECT_ROOT.parent / "config")

    for candidate in candidates:
        expanded = candidate.expanduser()
        if expanded.is_dir():
            return expanded.resolve()

    if env_override:
        searched = ", ".join(str(path) for path in candidates)
        raise RuntimeError(
            f"Unable to locate configuration directory. Searched: {searched}. "
            "Set DAYLIST_CONFIG_DIR to a valid directory."
        )
    # Installed without a checkout: defaults and DAYLIST_* variables only.
    return None


CONFIG_DIR = _resolve_config_dir()


DEFAULTS: dict[str, Any] = {
    "APP_NAME": "Daylist",
    "LOG_LEVEL": "INFO",
    "REMOTE": {
        "endpoint": "api-eu-1.hpkv.io",
        "api_key": None,
        "secure": True,
        "ws_path": "/ws",
        "token_path": "/token/websocket",
        "timeout": 10.0,
    },
    "SYNC": {
        "debounce_ms": 1000,
        "sent_id_capacity": 100,
        "key_prefix": "todos-",
    },
    "DAYS": {
        "past": 1,
        "future": 4,
    },
    "TASKS": {
        "default_priority": "low",
        "max_text_length": 500,
    },
}

_settings_files: list[Path] = []
if CONFIG_DIR is not None:
    _settings_files = [
        CONFIG_DIR / "settings.toml",
        CONFIG_DIR / ".secrets.toml",
        CONFIG_DIR / "settings.local.toml",
    ]

settings = Dynaconf(
    envvar_prefix="DAYLIST",
    settings_files=_settings_files,
    environments=True,
    env_switcher="DAYLIST_ENV",
    load_dotenv=True,
    envvar_parse_values=True,
    merge_enabled=True,
    defaults=DEFAULTS,
)


_MISSING = object()


def _ensure_defaults(prefix: str, defaults: dict[str, Any]) -> None:
    for key, value in defaults.items():
        dotted = f"{prefix}.{key}" if prefix else key
        existing = settings.get(dotted, _MISSING)

        if isinstance(value, dict):
            if existing is _MISSING:
                settings.set(dotted, value.copy())
                existing = settings.get(dotted, _MISSING)
            # Only recurse into mappings so user-provided primitives survive.
            if isinstance(existing, Mapping):
                _ensure_defaults(dotted, value)
            continue

        if existing is _MISSING:
            settings.set(dotted, value)


_ensure_defaults("", DEFAULTS)


def _normalise_endpoint() -> None:
    raw = str(settings.get("REMOTE.endpoint") or "").strip()
    for scheme in ("wss://", "ws://", "https://", "http://"):
        if raw.startswith(scheme):
            raw = raw[len(scheme) :]
            break
    settings.set("REMOTE.endpoint", raw.rstrip("/"))


_normalise_endpoint()

debounce_default = DEFAULTS["SYNC"]["debounce_ms"]
debounce_raw = settings.get("SYNC.debounce_ms", debounce_default)
try:
    debounce_ms = int(debounce_raw)
except (TypeError, ValueError):
    debounce_ms = debounce_default
settings.set("SYNC.debounce_ms", max(debounce_ms, 0))

__all__ = ["settings"]
