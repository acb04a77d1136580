"""ACP agent over a subprocess's stdin/stdout.

Wire format:
- Requests and replies: JSON-RPC object + newline to subprocess stdin
- Responses and agent calls: JSON-RPC object + newline from subprocess stdout
- stderr is drained into debug logs
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from ..acp.handlers import ClientCallbacks, UpdateListener
from ..acp.session import DEFAULT_TIMEOUT, ProtocolSession
from ..errors import TransportError
from ..models import TransportKind
from .base import TransportRequest

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 65536
SHUTDOWN_GRACE = 5.0


class StdioAgentTransport:
    """Transport to an agent binary speaking ACP on stdio.

    `start()` launches the process and begins reading its stdout into the
    protocol session straight away. `connect()` performs the ACP handshake;
    the logical session is created by the first `send()` and reused after.
    """

    kind = TransportKind.ACP

    def __init__(
        self,
        command: Sequence[str],
        *,
        provider_id: str,
        cwd: str | Path | None = None,
        env: dict[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        on_update: UpdateListener | None = None,
        shutdown_grace: float = SHUTDOWN_GRACE,
    ) -> None:
        self.command = list(command)
        self.provider_id = provider_id
        self.cwd = str(Path(cwd or Path.cwd()).resolve())
        self.env = env
        self.timeout = timeout
        self.shutdown_grace = shutdown_grace
        self._on_update = on_update

        self._process: asyncio.subprocess.Process | None = None
        self._session: ProtocolSession | None = None
        self._stdout_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process else None

    @property
    def is_alive(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def session(self) -> ProtocolSession | None:
        return self._session

    async def start(self) -> None:
        """Launch the agent process.

        Raises:
            TransportError: The binary could not be executed
        """
        if self._process is not None:
            return

        env = None
        if self.env:
            env = {**os.environ, **self.env}

        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
                env=env,
            )
        except OSError as e:
            raise TransportError(
                f"Failed to launch {self.command[0]}: {e}", provider_id=self.provider_id
            ) from e

        self._session = ProtocolSession(
            self._write,
            timeout=self.timeout,
            cwd=self.cwd,
            callbacks=ClientCallbacks(self.cwd, on_update=self._on_update),
            provider_id=self.provider_id,
        )
        self._stdout_task = asyncio.create_task(self._read_stdout(self._session))
        self._stderr_task = asyncio.create_task(self._read_stderr())
        logger.info(f"Launched agent: {' '.join(self.command)} (pid={self._process.pid})")

    def _running_session(self) -> ProtocolSession:
        if self._closed or self._session is None or not self.is_alive:
            raise TransportError("Agent process is not running", provider_id=self.provider_id)
        return self._session

    async def connect(self) -> dict[str, Any]:
        """Launch the agent if needed and run the ACP handshake.

        Raises:
            TransportError: The process is gone, did not answer in time or
                rejected the handshake
        """
        await self.start()
        session = self._running_session()
        if session.initialized:
            return {
                "agentInfo": session.agent_info,
                "agentCapabilities": session.agent_capabilities,
            }
        return await session.initialize()

    async def send(self, request: TransportRequest) -> str:
        session = self._running_session()
        return await session.prompt(request.prompt, request.context)

    async def _write(self, frame: bytes) -> None:
        if not self._process or not self._process.stdin or self._process.stdin.is_closing():
            raise ConnectionError("Process not running")
        self._process.stdin.write(frame)
        await self._process.stdin.drain()

    async def _read_stdout(self, session: ProtocolSession) -> None:
        if not self._process or not self._process.stdout:
            return

        try:
            while True:
                chunk = await self._process.stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    # EOF - process exited
                    break
                session.feed(chunk)
        except asyncio.CancelledError:
            pass
        else:
            logger.info(f"Agent {self.provider_id} closed its output")
            session.close(f"Agent process for {self.provider_id} exited")

    async def _read_stderr(self) -> None:
        if not self._process or not self._process.stderr:
            return

        try:
            while True:
                line = await self._process.stderr.readline()
                if not line:
                    break
                logger.debug(f"[{self.provider_id} stderr] {line.decode('utf-8', 'replace').strip()}")
        except asyncio.CancelledError:
            pass

    async def close(self) -> None:
        """Reject pending requests and stop the process (kill after the grace period)."""
        if self._closed:
            return
        self._closed = True

        if self._session is not None:
            self._session.close(f"Transport for {self.provider_id} closed")

        for task in (self._stdout_task, self._stderr_task):
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        process = self._process
        if process is None:
            return
        if process.stdin and not process.stdin.is_closing():
            process.stdin.close()
        if process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=self.shutdown_grace)
            except TimeoutError:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
        logger.info(f"Agent terminated (pid={process.pid}, code={process.returncode})")


__all__ = ["StdioAgentTransport"]
