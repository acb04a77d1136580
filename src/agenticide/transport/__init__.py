"""Transport adapters: one concrete channel to a backend each.

- StdioAgentTransport: ACP agent process over stdio
- HttpsTransport: hosted chat API (OpenAI, Anthropic) or local model server
  (Ollama, LM Studio)
- LocalExecTransport: local model binary run per turn
- MockTransport: in-memory, for tests
"""

from .base import ProviderTransport, TransportRequest
from .https import (
    AnthropicDialect,
    ApiDialect,
    HttpsTransport,
    LMStudioDialect,
    OllamaDialect,
    OpenAIDialect,
)
from .local_exec import LocalExecTransport
from .mock import MockTransport
from .stdio import StdioAgentTransport

__all__ = [
    "AnthropicDialect",
    "ApiDialect",
    "HttpsTransport",
    "LMStudioDialect",
    "LocalExecTransport",
    "MockTransport",
    "OllamaDialect",
    "OpenAIDialect",
    "ProviderTransport",
    "StdioAgentTransport",
    "TransportRequest",
]
