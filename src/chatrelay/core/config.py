"""Environment-driven settings for the relay and its gateway client.

Values are read once per ``RelaySettings.from_env()`` call so tests can patch
the environment and build a fresh instance. Numeric values that fail to parse
fall back to their defaults rather than aborting startup.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_GATEWAY_URL = "https://openrouter.ai/api/v1"
DEFAULT_GATEWAY_NAME = "OpenRouter"
DEFAULT_API_KEY_ENV = "OPENROUTER_API_KEY"
DEFAULT_MAX_TOKENS = 512
DEFAULT_THROTTLE_MS = 100
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_READ_TIMEOUT = 120.0


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        return default
    return value if value > 0 else default


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        value = float(str(raw).strip())
    except ValueError:
        return default
    return value if value > 0 else default


@dataclass(frozen=True)
class RelaySettings:
    """Resolved configuration for one relay orchestrator."""

    api_key: Optional[str] = None
    api_key_env: str = DEFAULT_API_KEY_ENV
    base_url: str = DEFAULT_GATEWAY_URL
    gateway_name: str = DEFAULT_GATEWAY_NAME
    max_tokens: int = DEFAULT_MAX_TOKENS
    throttle_interval_s: float = DEFAULT_THROTTLE_MS / 1000.0
    connect_timeout_s: float = DEFAULT_CONNECT_TIMEOUT
    read_timeout_s: float = DEFAULT_READ_TIMEOUT

    @property
    def has_credential(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    @property
    def completions_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/chat/completions"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "RelaySettings":
        env = os.environ if env is None else env
        api_key = (env.get(DEFAULT_API_KEY_ENV) or "").strip() or None
        base_url = (env.get("CHATRELAY_GATEWAY_URL") or "").strip() or DEFAULT_GATEWAY_URL
        gateway_name = (env.get("CHATRELAY_GATEWAY_NAME") or "").strip() or DEFAULT_GATEWAY_NAME
        return cls(
            api_key=api_key,
            api_key_env=DEFAULT_API_KEY_ENV,
            base_url=base_url,
            gateway_name=gateway_name,
            max_tokens=_env_int(env, "CHATRELAY_MAX_TOKENS", DEFAULT_MAX_TOKENS),
            throttle_interval_s=_env_int(env, "CHATRELAY_THROTTLE_MS", DEFAULT_THROTTLE_MS) / 1000.0,
            connect_timeout_s=_env_float(env, "CHATRELAY_CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT),
            read_timeout_s=_env_float(env, "CHATRELAY_READ_TIMEOUT", DEFAULT_READ_TIMEOUT),
        )
