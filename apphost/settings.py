from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping


def _env_bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_str(env: Mapping[str, str], name: str) -> str | None:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = "apphost.db"
    simulated_startup_delay_s: float = 20.0
    health_poll_interval_s: float = 5.0
    health_timeout_s: float = 2.0

    # GitHub Codespaces (sandbox mode)
    codespaces: bool = False
    codespace_name: str | None = None
    port_forwarding_domain: str | None = None


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if environ is None else environ
    return Settings(
        db_path=env.get("APPHOST_DB_PATH", "apphost.db"),
        simulated_startup_delay_s=_env_float(env, "APPHOST_SIMULATED_STARTUP_DELAY_S", 20.0),
        health_poll_interval_s=_env_float(env, "APPHOST_HEALTH_POLL_INTERVAL_S", 5.0),
        health_timeout_s=_env_float(env, "APPHOST_HEALTH_TIMEOUT_S", 2.0),
        codespaces=_env_bool(env, "CODESPACES", False),
        codespace_name=_env_str(env, "CODESPACE_NAME"),
        port_forwarding_domain=_env_str(env, "GITHUB_CODESPACES_PORT_FORWARDING_DOMAIN"),
    )


settings = load_settings()
