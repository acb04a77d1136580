"""Local model runner invoked once per turn (e.g. `ollama run <model> <prompt>`)."""

from __future__ import annotations

import asyncio
import logging

from ..errors import TransportError
from ..models import TransportKind
from .base import TransportRequest

logger = logging.getLogger(__name__)


class LocalExecTransport:
    """Runs `<binary> run <model> <prompt>` as an argv list, never via a shell."""

    kind = TransportKind.LOCAL_EXEC

    def __init__(self, binary: str, model: str, *, provider_id: str) -> None:
        self.binary = binary
        self.model = model
        self.provider_id = provider_id

    def argv(self, prompt: str) -> list[str]:
        return [self.binary, "run", self.model, prompt]

    async def send(self, request: TransportRequest) -> str:
        try:
            process = await asyncio.create_subprocess_exec(
                *self.argv(request.prompt),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TransportError(
                f"Failed to run {self.binary}: {e}", provider_id=self.provider_id
            ) from e

        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        if process.returncode != 0:
            detail = stderr.decode("utf-8", "replace").strip()[:200]
            raise TransportError(
                f"{self.binary} exited with code {process.returncode}: {detail}",
                provider_id=self.provider_id,
            )
        return stdout.decode("utf-8", "replace").strip()

    async def close(self) -> None:
        """Nothing persistent to release."""


__all__ = ["LocalExecTransport"]
