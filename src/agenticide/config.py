"""Runtime configuration read from the environment."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

# Provider credentials, first match wins
ANTHROPIC_KEY_VARS = ("ANTHROPIC_API_KEY", "CLAUDE_API_KEY")
OPENAI_KEY_VARS = ("OPENAI_API_KEY",)
COPILOT_KEY_VARS = ("OPENAI_API_KEY", "GITHUB_TOKEN")

DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_CACHE_TTL = 3600
DEFAULT_HISTORY_WINDOW = 10
DEFAULT_OLLAMA_URL = "http://localhost:11434"
DEFAULT_LMSTUDIO_URL = "http://localhost:1234"


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def _number(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


@dataclass
class AgenticideConfig:
    """Settings shared by the dispatcher, transports and CLI.

    Use `from_env()` for the process configuration; construct directly in
    tests.
    """

    home: Path = field(default_factory=lambda: Path.home() / ".agenticide")
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    cache_ttl: int = DEFAULT_CACHE_TTL
    cache_enabled: bool = True
    history_window: int = DEFAULT_HISTORY_WINDOW
    log_level: str = "WARNING"
    ollama_model: str = "codellama"
    ollama_url: str = DEFAULT_OLLAMA_URL
    lmstudio_url: str = DEFAULT_LMSTUDIO_URL
    working_directory: str = field(default_factory=os.getcwd)
    env: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> AgenticideConfig:
        env = dict(os.environ if env is None else env)
        home = env.get("AGENTICIDE_HOME")
        return cls(
            home=Path(home).expanduser() if home else Path.home() / ".agenticide",
            request_timeout=_number(env, "AGENTICIDE_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT),
            cache_ttl=int(_number(env, "AGENTICIDE_CACHE_TTL", DEFAULT_CACHE_TTL)),
            cache_enabled=not _truthy(env.get("AGENTICIDE_NO_CACHE")),
            history_window=int(
                _number(env, "AGENTICIDE_HISTORY_WINDOW", DEFAULT_HISTORY_WINDOW)
            ),
            log_level=env.get("AGENTICIDE_LOG_LEVEL", "WARNING").upper(),
            ollama_model=env.get("AGENTICIDE_OLLAMA_MODEL") or "codellama",
            ollama_url=env.get("AGENTICIDE_OLLAMA_URL") or DEFAULT_OLLAMA_URL,
            lmstudio_url=env.get("AGENTICIDE_LMSTUDIO_URL") or DEFAULT_LMSTUDIO_URL,
            env=env,
        )

    @property
    def sessions_dir(self) -> Path:
        return self.home / "sessions"

    def api_key(self, names: tuple[str, ...]) -> str | None:
        """Return the first non-empty value among the given env vars."""
        for name in names:
            value = self.env.get(name)
            if value:
                return value
        return None


__all__ = [
    "ANTHROPIC_KEY_VARS",
    "COPILOT_KEY_VARS",
    "OPENAI_KEY_VARS",
    "AgenticideConfig",
]
