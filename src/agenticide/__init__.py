"""Agenticide: route coding prompts to ACP agents, hosted APIs or local models."""

from .cache import ConversationCache, context_hash
from .config import AgenticideConfig
from .context import ProjectContext, StaticContextSource, build_prompt, pack_context
from .dispatcher import AgentDispatcher
from .errors import (
    AgenticideError,
    AgentRpcError,
    DispatchError,
    ProtocolTimeoutError,
    ProviderNotInitializedError,
    ProviderUnavailableError,
    TransportError,
)
from .history import ConversationHistory
from .models import Message, Role, SendOptions, TransportKind
from .providers import Provider, ProviderRegistry
from .session_store import SessionStore

__version__ = "0.1.0"

__all__ = [
    "AgentDispatcher",
    "AgentRpcError",
    "AgenticideConfig",
    "AgenticideError",
    "ConversationCache",
    "ConversationHistory",
    "DispatchError",
    "Message",
    "ProjectContext",
    "ProtocolTimeoutError",
    "Provider",
    "ProviderNotInitializedError",
    "ProviderRegistry",
    "ProviderUnavailableError",
    "Role",
    "SendOptions",
    "SessionStore",
    "StaticContextSource",
    "TransportError",
    "TransportKind",
    "__version__",
    "build_prompt",
    "context_hash",
    "pack_context",
]
