"""Data records shared across the dispatch layer."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    """Conversation roles kept in history."""

    USER = "user"
    ASSISTANT = "assistant"


class TransportKind(str, Enum):
    """How a provider is reached."""

    ACP = "acp"
    API = "api"
    LOCAL_EXEC = "local-exec"


class Message(BaseModel):
    """One conversation turn.

    Messages are immutable once created; history only ever appends them.
    `in_reply_to` is the history index of the user turn an assistant turn
    answers, since assistant turns land in completion order.
    """

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str
    timestamp: float = Field(default_factory=time.time)
    agent: str | None = None
    in_reply_to: int | None = None
    cached: bool = False

    def to_chat(self) -> dict[str, str]:
        """Render as an OpenAI/Anthropic style chat message."""
        return {"role": self.role.value, "content": self.content}


class SendOptions(BaseModel):
    """Per-call options for `AgentDispatcher.send_message`."""

    agent: str | None = None
    context: dict[str, Any] | None = None
    no_cache: bool = False
    max_tokens: int | None = None
    temperature: float | None = None


class ModelInfo(BaseModel):
    """Entry in the model catalog."""

    id: str
    category: str
    provider: str
    name: str
    tier: str


# Known models per logical provider
MODELS: dict[str, dict[str, dict[str, str]]] = {
    "claude": {
        "claude-3-opus": {"provider": "anthropic", "name": "Claude 3 Opus", "tier": "premium"},
        "claude-3-sonnet": {
            "provider": "anthropic",
            "name": "Claude 3 Sonnet",
            "tier": "standard",
        },
        "claude-3-haiku": {"provider": "anthropic", "name": "Claude 3 Haiku", "tier": "fast"},
    },
    "openai": {
        "gpt-4": {"provider": "openai", "name": "GPT-4", "tier": "premium"},
        "gpt-4-turbo": {"provider": "openai", "name": "GPT-4 Turbo", "tier": "standard"},
        "gpt-3.5-turbo": {"provider": "openai", "name": "GPT-3.5 Turbo", "tier": "fast"},
    },
    "copilot": {
        "copilot-gpt4": {"provider": "github", "name": "Copilot GPT-4", "tier": "premium"},
        "copilot-gpt35": {"provider": "github", "name": "Copilot GPT-3.5", "tier": "standard"},
    },
    "local": {
        "codellama": {"provider": "ollama", "name": "CodeLlama", "tier": "local"},
        "deepseek-coder": {"provider": "ollama", "name": "DeepSeek Coder", "tier": "local"},
    },
}


def list_models() -> list[ModelInfo]:
    """Flatten the catalog into a list."""
    return [
        ModelInfo(id=model_id, category=category, **info)
        for category, models in MODELS.items()
        for model_id, info in models.items()
    ]


def model_tier(model_id: str) -> str:
    """Look up a model's tier, "unknown" if it isn't catalogued.

    Dated snapshots (claude-3-sonnet-20240229) resolve to their base model.
    """
    for models in MODELS.values():
        if model_id in models:
            return models[model_id]["tier"]
    prefixes = [
        (known, info["tier"])
        for models in MODELS.values()
        for known, info in models.items()
        if model_id.startswith(f"{known}-")
    ]
    if prefixes:
        return max(prefixes, key=lambda match: len(match[0]))[1]
    return "unknown"


__all__ = [
    "MODELS",
    "Message",
    "ModelInfo",
    "Role",
    "SendOptions",
    "TransportKind",
    "list_models",
    "model_tier",
]
