"""Agenticide CLI.

Usage:
    agenticide ask "explain foo.js"            # Ask the default agent (copilot)
    agenticide ask "..." --agent claude        # Ask a specific agent
    agenticide ask "..." --session work        # Continue a saved conversation

    agenticide agent init <name>               # Check an agent can be initialized
    agenticide agent status                    # Probe every known agent
    agenticide agent models                    # List known models

    agenticide session list                    # List saved sessions
    agenticide session show <name>             # Show a session transcript
    agenticide session delete <name>           # Delete a session

Answers go to stdout; logs and diagnostics go to stderr.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import datetime

import click

from .config import AgenticideConfig
from .context import ProjectContext, StaticContextSource
from .dispatcher import AgentDispatcher
from .errors import AgenticideError
from .models import SendOptions
from .providers import DEFAULT_AGENT
from .session_store import SessionStore

# Output format options
FORMAT_TABLE = "table"
FORMAT_JSON = "json"

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def configure_logging(level: str) -> None:
    """Send all log output to stderr at the given level."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(logging.Formatter("%(levelname)s: %(name)s: %(message)s"))
    root_logger.addHandler(stderr_handler)
    root_logger.setLevel(level.upper())


def format_datetime(value: str | None) -> str:
    """Format an ISO timestamp for display."""
    if not value:
        return "N/A"
    try:
        return datetime.fromisoformat(value.rstrip("Z")).strftime("%Y-%m-%d %H:%M")
    except ValueError:
        return value


def truncate(text: str | None, max_len: int = 50) -> str:
    """Truncate text for display."""
    if not text:
        return ""
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def _config(ctx: click.Context) -> AgenticideConfig:
    return ctx.ensure_object(dict)["config"]


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Log level (default: AGENTICIDE_LOG_LEVEL or WARNING)",
)
@click.pass_context
def main(ctx: click.Context, log_level: str | None) -> None:
    """Agenticide - route coding questions to AI agents."""
    try:
        config = AgenticideConfig.from_env()
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    configure_logging(log_level or config.log_level)
    ctx.ensure_object(dict)["config"] = config


# =============================================================================
# ask
# =============================================================================


@main.command()
@click.argument("message")
@click.option("--agent", "-a", default=None, help=f"Agent to use (default: {DEFAULT_AGENT})")
@click.option("--no-cache", is_flag=True, help="Always call the backend")
@click.option("--max-tokens", type=int, default=None, help="Maximum reply tokens (API backends)")
@click.option("--temperature", type=float, default=None, help="Sampling temperature")
@click.option(
    "--cwd",
    type=click.Path(exists=True, file_okay=False),
    default=None,
    help="Project directory (default: current directory)",
)
@click.option("--session", "session_name", default=None, help="Load and save history under a name")
@click.pass_context
def ask(
    ctx: click.Context,
    message: str,
    agent: str | None,
    no_cache: bool,
    max_tokens: int | None,
    temperature: float | None,
    cwd: str | None,
    session_name: str | None,
) -> None:
    """Send MESSAGE to an agent and print the reply.

    Examples:

        agenticide ask "explain foo.js"

        agenticide ask "write a test for parse()" --agent claude --no-cache
    """
    config = _config(ctx)
    if cwd:
        config.working_directory = cwd
    name = agent or DEFAULT_AGENT

    async def execute() -> str:
        dispatcher = AgentDispatcher(
            config,
            context_source=StaticContextSource(ProjectContext(cwd=config.working_directory)),
        )
        store = SessionStore(config.sessions_dir) if session_name else None
        try:
            if store is not None and session_name and store.session_exists(session_name):
                dispatcher.restore_session(store, session_name)

            if not await dispatcher.initialize(name):
                raise click.ClickException(f"Agent {name} is not available")
            dispatcher.set_active_agent(name)

            reply = await dispatcher.send_message(
                message,
                SendOptions(no_cache=no_cache, max_tokens=max_tokens, temperature=temperature),
            )
            if store is not None:
                dispatcher.save_session(store, session_name)
            return reply
        finally:
            await dispatcher.dispose()

    try:
        reply = asyncio.run(execute())
    except AgenticideError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(reply)


# =============================================================================
# agent
# =============================================================================


@main.group()
def agent() -> None:
    """Initialize and inspect agents."""


@agent.command("init")
@click.argument("name")
@click.pass_context
def agent_init(ctx: click.Context, name: str) -> None:
    """Run the fallback chain for NAME and report which backend was selected."""
    config = _config(ctx)

    async def execute() -> dict | None:
        dispatcher = AgentDispatcher(config)
        try:
            if not await dispatcher.initialize(name):
                return None
            return dispatcher.get_status()[name]
        finally:
            await dispatcher.dispose()

    status = asyncio.run(execute())
    if status is None:
        click.echo(f"Agent {name} is not available", err=True)
        sys.exit(1)

    suffix = " (fallback)" if status["fallback"] else ""
    click.echo(f"{name}: {status['type']} / {status['model']}{suffix}")


@agent.command("status")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
    help="Output format",
)
@click.pass_context
def agent_status(ctx: click.Context, output_format: str) -> None:
    """Probe every known agent and show which backend each would use."""
    config = _config(ctx)

    async def execute() -> dict[str, dict | None]:
        dispatcher = AgentDispatcher(config)
        try:
            results: dict[str, dict | None] = {}
            for name in dispatcher.chains:
                ok = await dispatcher.initialize(name)
                results[name] = dispatcher.get_status()[name] if ok else None
            return results
        finally:
            await dispatcher.dispose()

    results = asyncio.run(execute())

    if output_format == FORMAT_JSON:
        click.echo(json.dumps(results, indent=2))
        return

    click.echo(f"{'Agent':<10} {'Type':<11} {'Model':<26} {'Fallback':<8}")
    click.echo("-" * 58)
    for name, status in results.items():
        if status is None:
            click.echo(f"{name:<10} {'unavailable':<11}")
            continue
        fallback = "yes" if status["fallback"] else "no"
        click.echo(f"{name:<10} {status['type']:<11} {status['model']:<26} {fallback:<8}")


@agent.command("models")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
    help="Output format",
)
@click.pass_context
def agent_models(ctx: click.Context, output_format: str) -> None:
    """List known models."""
    models = AgentDispatcher(_config(ctx), chains={}).list_models()

    if output_format == FORMAT_JSON:
        click.echo(json.dumps([m.model_dump() for m in models], indent=2))
        return

    click.echo(f"{'ID':<18} {'Category':<9} {'Provider':<10} {'Tier':<9} Name")
    click.echo("-" * 70)
    for m in models:
        click.echo(f"{m.id:<18} {m.category:<9} {m.provider:<10} {m.tier:<9} {m.name}")


# =============================================================================
# session
# =============================================================================


@main.group()
def session() -> None:
    """Manage saved sessions."""


@session.command("list")
@click.option("--limit", "-n", default=20, help="Maximum sessions to show")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
    help="Output format",
)
@click.pass_context
def session_list(ctx: click.Context, limit: int, output_format: str) -> None:
    """List saved sessions, most recent first."""
    store = SessionStore(_config(ctx).sessions_dir)
    sessions = store.list_sessions(limit=limit)

    if not sessions:
        click.echo("No sessions found.")
        return

    if output_format == FORMAT_JSON:
        click.echo(json.dumps(sessions, indent=2, ensure_ascii=False, default=str))
        return

    click.echo(f"{'Name':<32} {'Messages':>8} {'Agent':<10} {'Updated':<17}")
    click.echo("-" * 70)
    for s in sessions:
        name = truncate(s.get("name", "?"), 32)
        agent_name = s.get("active_agent") or "-"
        click.echo(
            f"{name:<32} {s.get('message_count', 0):>8} {agent_name:<10} "
            f"{format_datetime(s.get('updated')):<17}"
        )

    click.echo(f"\nTotal: {len(sessions)} session(s)")


@session.command("show")
@click.argument("name")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
    help="Output format",
)
@click.pass_context
def session_show(ctx: click.Context, name: str, output_format: str) -> None:
    """Show a saved session and its transcript."""
    store = SessionStore(_config(ctx).sessions_dir)
    try:
        transcript, metadata = store.load(name)
    except (FileNotFoundError, ValueError) as e:
        click.echo(str(e), err=True)
        sys.exit(1)

    if output_format == FORMAT_JSON:
        click.echo(
            json.dumps(
                {**metadata, "transcript": transcript}, indent=2, ensure_ascii=False, default=str
            )
        )
        return

    click.echo(f"Session:  {metadata.get('name', name)}")
    click.echo(f"Messages: {metadata.get('message_count', len(transcript))}")
    click.echo(f"Created:  {format_datetime(metadata.get('created'))}")
    click.echo(f"Updated:  {format_datetime(metadata.get('updated'))}")
    click.echo("")
    for entry in transcript:
        speaker = entry.get("agent") or entry.get("role", "?")
        click.echo(f"[{speaker}] {truncate(entry.get('content', ''), 200)}")


@session.command("delete")
@click.argument("name")
@click.option("--force", "-f", is_flag=True, help="Skip confirmation")
@click.pass_context
def session_delete(ctx: click.Context, name: str, force: bool) -> None:
    """Delete a saved session."""
    store = SessionStore(_config(ctx).sessions_dir)
    if not store.session_exists(name):
        click.echo(f"Session not found: {name}", err=True)
        sys.exit(1)

    if not force and not click.confirm(f"Delete session {name}?"):
        click.echo("Cancelled.")
        return

    store.delete_session(name)
    click.echo(f"Deleted session: {name}")


if __name__ == "__main__":
    main()
