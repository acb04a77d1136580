"""Project context packing.

Turns ambient project state into a bounded text block appended to prompts.
The block must be deterministic: identical inputs give identical text, which
keeps cache keys stable.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

MAX_SYMBOLS = 10
MAX_TASKS = 5


class TaskSummary(BaseModel):
    """Open task as seen by the packer."""

    description: str
    completed: bool = False


class ProjectContext(BaseModel):
    """Ambient signals about the project the user is working in.

    Accepts the camelCase keys used on the wire (`symbolCount`,
    `topSymbols`, `pendingTaskCount`) as well as snake_case.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    cwd: str | None = None
    symbol_count: int = Field(default=0, alias="symbolCount")
    top_symbols: list[str] = Field(default_factory=list, alias="topSymbols")
    pending_task_count: int = Field(default=0, alias="pendingTaskCount")
    tasks: list[TaskSummary] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (
            self.cwd
            or self.symbol_count
            or self.top_symbols
            or self.pending_task_count
            or self.tasks
        )


@runtime_checkable
class ContextSource(Protocol):
    """Anything that can describe the current project."""

    def snapshot(self) -> ProjectContext: ...


class StaticContextSource:
    """Context source backed by a fixed ProjectContext."""

    def __init__(self, context: ProjectContext | dict[str, Any] | None = None) -> None:
        if isinstance(context, dict):
            context = ProjectContext.model_validate(context)
        self._context = context or ProjectContext()

    def update(self, **changes: Any) -> None:
        self._context = self._context.model_copy(update=changes)

    def snapshot(self) -> ProjectContext:
        return self._context


def pack_context(context: ProjectContext | dict[str, Any] | None) -> str:
    """Render the context block, or "" when there is nothing to say."""
    if context is None:
        return ""
    if isinstance(context, dict):
        context = ProjectContext.model_validate(context)
    if context.is_empty():
        return ""

    lines = ["<context>"]
    if context.cwd:
        lines.append(f"Current directory: {context.cwd}")

    if context.symbol_count or context.top_symbols:
        total = context.symbol_count or len(context.top_symbols)
        lines.append(f"Project symbols ({total} total):")
        lines.extend(f"  - {symbol}" for symbol in context.top_symbols[:MAX_SYMBOLS])
        hidden = len(context.top_symbols) - MAX_SYMBOLS
        if hidden > 0:
            lines.append(f"  ... and {hidden} more")

    if context.pending_task_count or context.tasks:
        pending = context.pending_task_count or sum(1 for t in context.tasks if not t.completed)
        lines.append(f"Pending tasks: {pending}")
        for task in context.tasks[:MAX_TASKS]:
            marker = "✓" if task.completed else "○"
            lines.append(f"  {marker} {task.description}")

    lines.append("</context>")
    return "\n".join(lines)


def build_prompt(message: str, context: ProjectContext | dict[str, Any] | None) -> str:
    """Append the context block to a message."""
    block = pack_context(context)
    if not block:
        return message
    return f"{message}\n\n{block}"


__all__ = [
    "MAX_SYMBOLS",
    "MAX_TASKS",
    "ContextSource",
    "ProjectContext",
    "StaticContextSource",
    "TaskSummary",
    "build_prompt",
    "pack_context",
]
