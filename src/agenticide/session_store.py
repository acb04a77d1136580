"""
Named conversation persistence.

Storage location: ~/.agenticide/sessions/<session-name>/
Files created: transcript.jsonl, metadata.json
The most recently saved name is remembered in sessions/.last-session
"""

from __future__ import annotations

import json
import logging
import shutil
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

LAST_SESSION_FILE = ".last-session"


def generate_session_name(now: datetime | None = None) -> str:
    """Timestamp-based default name, e.g. session-2025-01-15-10-30-00."""
    now = now or datetime.now()
    return now.strftime("session-%Y-%m-%d-%H-%M-%S")


def _validate_name(name: str) -> None:
    if not name or not name.strip():
        raise ValueError("session name cannot be empty")
    if "/" in name or "\\" in name or name in (".", "..") or name.startswith("."):
        raise ValueError(f"Invalid session name: {name}")


class SessionStore:
    """
    Key-value persistence of conversation history, keyed by session name.

    Contract:
    - Inputs: session name (str), transcript (list of dicts), metadata (dict)
    - Outputs: saved files or (transcript, metadata) tuples
    - Side Effects: filesystem writes under storage_dir/<name>/
    - Errors: FileNotFoundError for missing sessions, ValueError for bad names
    """

    def __init__(self, storage_dir: Path | None = None):
        if storage_dir is None:
            storage_dir = Path.home() / ".agenticide" / "sessions"
        self.storage_dir = storage_dir
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def _session_dir(self, name: str) -> Path:
        return self.storage_dir / name

    def _metadata_path(self, name: str) -> Path:
        return self._session_dir(name) / "metadata.json"

    def _transcript_path(self, name: str) -> Path:
        return self._session_dir(name) / "transcript.jsonl"

    # =========================================================================
    # Save / load
    # =========================================================================

    def save(
        self,
        name: str | None,
        transcript: list[dict[str, Any]],
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Save a transcript under a name, returning the name used.

        Raises:
            ValueError: If the name is invalid
        """
        name = name or generate_session_name()
        _validate_name(name)

        session_dir = self._session_dir(name)
        session_dir.mkdir(parents=True, exist_ok=True)

        lines = [json.dumps(message, ensure_ascii=False) for message in transcript]
        content = "\n".join(lines) + "\n" if lines else ""
        self._transcript_path(name).write_text(content, encoding="utf-8")

        now = datetime.now(UTC).isoformat()
        previous = self.load_metadata(name) or {}
        record = {
            **(metadata or {}),
            "name": name,
            "created": previous.get("created", now),
            "updated": now,
            "message_count": len(transcript),
        }
        self._metadata_path(name).write_text(
            json.dumps(record, indent=2, ensure_ascii=False), encoding="utf-8"
        )
        (self.storage_dir / LAST_SESSION_FILE).write_text(name, encoding="utf-8")

        logger.debug(f"Session {name} saved ({len(transcript)} messages)")
        return name

    def load(self, name: str) -> tuple[list[dict[str, Any]], dict[str, Any]]:
        """Load (transcript, metadata).

        Raises:
            FileNotFoundError: If the session does not exist
            ValueError: If the name is invalid
        """
        _validate_name(name)
        if not self._session_dir(name).is_dir():
            raise FileNotFoundError(f"Session '{name}' not found")
        return self.load_transcript(name), self.load_metadata(name) or {}

    def load_metadata(self, name: str) -> dict[str, Any] | None:
        path = self._metadata_path(name)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load metadata for {name}: {e}")
            return None

    def load_transcript(self, name: str) -> list[dict[str, Any]]:
        path = self._transcript_path(name)
        if not path.exists():
            return []
        try:
            with open(path, encoding="utf-8") as f:
                return [json.loads(line) for line in f if line.strip()]
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load transcript for {name}: {e}")
            return []

    # =========================================================================
    # Listing and housekeeping
    # =========================================================================

    def session_exists(self, name: str) -> bool:
        if not name or "/" in name or "\\" in name:
            return False
        return self._session_dir(name).is_dir()

    def list_sessions(self, *, limit: int | None = None) -> list[dict[str, Any]]:
        """Metadata of all saved sessions, most recently updated first."""
        sessions = []
        for session_dir in self.storage_dir.iterdir():
            if not session_dir.is_dir() or session_dir.name.startswith("."):
                continue
            metadata = self.load_metadata(session_dir.name)
            if metadata is not None:
                sessions.append(metadata)

        sessions.sort(key=lambda s: s.get("updated", ""), reverse=True)
        return sessions[:limit] if limit else sessions

    def last_session(self) -> str | None:
        path = self.storage_dir / LAST_SESSION_FILE
        if not path.exists():
            return None
        name = path.read_text(encoding="utf-8").strip()
        return name if self.session_exists(name) else None

    def delete_session(self, name: str) -> bool:
        _validate_name(name)
        session_dir = self._session_dir(name)
        if not session_dir.exists():
            return False
        shutil.rmtree(session_dir)
        logger.info(f"Deleted session: {name}")
        return True

    def cleanup_old_sessions(self, days: int = 30) -> int:
        """Remove sessions not modified in the last `days` days."""
        if days < 0:
            raise ValueError("days must be non-negative")

        cutoff = (datetime.now(UTC) - timedelta(days=days)).timestamp()
        removed = 0
        for session_dir in self.storage_dir.iterdir():
            if not session_dir.is_dir() or session_dir.name.startswith("."):
                continue
            if session_dir.stat().st_mtime < cutoff:
                shutil.rmtree(session_dir)
                logger.info(f"Removed old session: {session_dir.name}")
                removed += 1
        return removed


__all__ = ["SessionStore", "generate_session_name"]
