"""Handlers for calls the agent makes back into the client.

The agent may, mid-prompt, stream session updates, ask for a permission
grant, or read/write text files. Each call is routed by method name, never by
request ID. File access is confined to the working directory and I/O failures
produce empty results instead of errors so one bad path can't break the
session.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from .types import AcpMethod

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Any]
UpdateListener = Callable[[str, dict[str, Any]], None]


def update_text(update: dict[str, Any]) -> str:
    """Extract streamed text from an agent_message_chunk update ("" otherwise)."""
    kind = update.get("sessionUpdate") or update.get("type")
    if kind not in ("agent_message_chunk", "agentMessageChunk"):
        return ""
    content = update.get("content")
    if isinstance(content, dict):
        return str(content.get("text", ""))
    if isinstance(content, str):
        return content
    return ""


class ClientCallbacks:
    """Default client-side policy for agent-initiated calls.

    - Permission requests are auto-approved with the first offered option.
    - Text files are read/written relative to `cwd`; paths escaping it are
      refused.
    - Session updates are forwarded to an optional listener.
    """

    def __init__(
        self,
        cwd: str | Path,
        *,
        on_update: UpdateListener | None = None,
    ) -> None:
        self.cwd = Path(cwd).resolve()
        self._on_update = on_update
        self._text_sinks: dict[str, list[str]] = {}

    def method_table(self) -> dict[str, Handler]:
        """Method name -> handler, including the camelCase aliases."""
        return {
            AcpMethod.SESSION_UPDATE: self.session_update,
            "sessionUpdate": self.session_update,
            AcpMethod.REQUEST_PERMISSION: self.request_permission,
            "requestPermission": self.request_permission,
            AcpMethod.READ_TEXT_FILE: self.read_text_file,
            "readTextFile": self.read_text_file,
            AcpMethod.WRITE_TEXT_FILE: self.write_text_file,
            "writeTextFile": self.write_text_file,
        }

    # =========================================================================
    # Streamed text collection
    # =========================================================================

    def start_collecting(self, session_id: str) -> None:
        self._text_sinks[session_id] = []

    def collected_text(self, session_id: str) -> str:
        return "".join(self._text_sinks.pop(session_id, []))

    # =========================================================================
    # Handlers
    # =========================================================================

    def session_update(self, params: dict[str, Any]) -> None:
        session_id = str(params.get("sessionId", ""))
        update = params.get("update") or {}
        if not isinstance(update, dict):
            return None

        text = update_text(update)
        if text and session_id in self._text_sinks:
            self._text_sinks[session_id].append(text)

        if self._on_update is not None:
            try:
                self._on_update(session_id, update)
            except Exception as e:
                logger.warning(f"Session update listener failed: {e}")
        return None

    def request_permission(self, params: dict[str, Any]) -> dict[str, Any]:
        options = params.get("options") or []
        tool_call = params.get("toolCall") or {}
        title = tool_call.get("title") if isinstance(tool_call, dict) else None

        if not options:
            logger.info(f"Permission request without options ({title or 'untitled'}), cancelling")
            return {"outcome": {"outcome": "cancelled"}}

        first = options[0]
        option_id = first.get("optionId") if isinstance(first, dict) else str(first)
        logger.info(f"Auto-approving permission request ({title or 'untitled'}): {option_id}")
        return {"outcome": {"outcome": "selected", "optionId": option_id}}

    def _resolve(self, raw_path: Any) -> Path | None:
        if not raw_path:
            return None
        path = Path(str(raw_path))
        if not path.is_absolute():
            path = self.cwd / path
        path = path.resolve()
        if path != self.cwd and self.cwd not in path.parents:
            logger.warning(f"Refusing file access outside {self.cwd}: {path}")
            return None
        return path

    def read_text_file(self, params: dict[str, Any]) -> dict[str, Any]:
        path = self._resolve(params.get("path"))
        if path is None:
            return {"content": ""}

        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Failed to read {path}: {e}")
            return {"content": ""}

        line = params.get("line")
        limit = params.get("limit")
        if line is None and limit is None:
            return {"content": text}

        lines = text.splitlines(keepends=True)
        start = max(int(line or 1) - 1, 0)
        end = start + int(limit) if limit is not None else None
        return {"content": "".join(lines[start:end])}

    def write_text_file(self, params: dict[str, Any]) -> None:
        path = self._resolve(params.get("path"))
        if path is None:
            return None

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(str(params.get("content", "")), encoding="utf-8")
        except OSError as e:
            logger.warning(f"Failed to write {path}: {e}")
        return None


__all__ = ["ClientCallbacks", "Handler", "UpdateListener", "update_text"]
