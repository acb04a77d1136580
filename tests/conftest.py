"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import stat
import sys
from pathlib import Path

import pytest

from agenticide.config import AgenticideConfig

# A minimal ACP agent: answers the handshake, streams the first prompt line
# back as "echo: <line>", and supports a few scripted behaviours keyed on the
# prompt prefix.
FAKE_AGENT_SOURCE = '''
import json
import signal
import sys
import time

if "--ignore-term" in sys.argv:
    signal.signal(signal.SIGTERM, signal.SIG_IGN)

if "--startup-noise" in sys.argv:
    # Several pipe buffers of banner text before the first protocol message
    for step in range(4000):
        sys.stdout.write(f"starting up, step {step:05d} " + "." * 60 + "\\n")
    sys.stdout.flush()


def send(message):
    sys.stdout.write(json.dumps(message) + "\\n")
    sys.stdout.flush()


while True:
    line = sys.stdin.readline()
    if not line:
        break
    line = line.strip()
    if not line:
        continue
    message = json.loads(line)
    method = message.get("method")
    request_id = message.get("id")
    params = message.get("params") or {}

    if method == "initialize":
        send({"jsonrpc": "2.0", "id": request_id, "result": {
            "protocolVersion": params.get("protocolVersion"),
            "agentCapabilities": {"loadSession": False},
            "agentInfo": {"name": "fake-agent"},
        }})
    elif method == "session/new":
        send({"jsonrpc": "2.0", "id": request_id, "result": {"sessionId": "sess-1"}})
    elif method == "session/prompt":
        prompt = params.get("prompt", "")
        session_id = params.get("sessionId")
        if prompt.startswith("hang"):
            continue
        if prompt.startswith("fail"):
            send({"jsonrpc": "2.0", "id": request_id,
                  "error": {"code": -32000, "message": "agent refused"}})
            continue
        if prompt.startswith("ask-permission"):
            send({"jsonrpc": "2.0", "id": 900, "method": "session/request_permission",
                  "params": {"sessionId": session_id,
                             "options": [{"optionId": "allow"}, {"optionId": "deny"}]}})
            reply = json.loads(sys.stdin.readline())
            chosen = reply["result"]["outcome"]["optionId"]
            send({"jsonrpc": "2.0", "id": request_id, "result": {"content": chosen}})
            continue
        for text in ("echo: ", prompt.splitlines()[0] if prompt else ""):
            send({"jsonrpc": "2.0", "method": "session/update", "params": {
                "sessionId": session_id,
                "update": {"sessionUpdate": "agent_message_chunk",
                           "content": {"type": "text", "text": text}},
            }})
        send({"jsonrpc": "2.0", "id": request_id, "result": {"stopReason": "end_turn"}})
    elif request_id is not None:
        send({"jsonrpc": "2.0", "id": request_id,
              "error": {"code": -32601, "message": "Method not found"}})

if "--ignore-term" in sys.argv:
    time.sleep(60)
'''


@pytest.fixture(scope="module")
def anyio_backend():
    """Configure anyio to use asyncio backend."""
    return "asyncio"


@pytest.fixture
def fake_agent(tmp_path: Path) -> Path:
    """Executable fake ACP agent script (runs under the current interpreter)."""
    script = tmp_path / "fake-agent"
    script.write_text(f"#!{sys.executable}\n{FAKE_AGENT_SOURCE}", encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


@pytest.fixture
def config(tmp_path: Path) -> AgenticideConfig:
    """Isolated configuration with no API keys."""
    workdir = tmp_path / "project"
    workdir.mkdir()
    return AgenticideConfig(
        home=tmp_path / "home",
        request_timeout=5.0,
        working_directory=str(workdir),
        env={},
    )
