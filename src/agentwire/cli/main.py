"""CLI entry point for agentwire."""

from __future__ import annotations

import asyncio
import contextlib
import signal
import sys
from collections.abc import Callable

import click

from agentwire import __version__
from agentwire.cli.output import RichPrinter, print_message
from agentwire.core.config import build_app_config, configure_logging
from agentwire.core.engine import AppContext
from agentwire.core.interaction import InteractionBroker, PermissionPrompt, QuestionPrompt
from agentwire.core.loop import ConversationLoop
from agentwire.errors import RendezvousClosed
from agentwire.types.config import AppConfig
from agentwire.types.messages import Message, Result


@click.group()
@click.version_option(__version__, prog_name="agentwire")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.option("--cwd", default=None, help="Working directory")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, cwd: str | None) -> None:
    """agentwire -- terminal agent with local and remote tools.

    \b
    Usage:
      agentwire chat "Fix the bug in auth.py"
      agentwire chat                      (interactive)
      agentwire serve --port 8787
      agentwire tools
      agentwire tasks run "npm test"
    """
    configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["cwd"] = cwd


# ---------------------------------------------------------------------------
# chat
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("prompt", nargs=-1)
@click.option("--provider", "-p", default=None, help="anthropic, gemini or openai")
@click.option("--model", "-m", default=None, help="Model ID")
@click.option("--gateway-url", default=None, help="Gateway base URL")
@click.option("--tools", "tool_names", default=None, help="Comma-separated local tools to enable")
@click.option("--rich/--no-rich", "use_rich", default=None, help="Rich output (default: auto)")
@click.option("--interactive/--no-interactive", default=None,
              help="Answer questions and permission prompts (default: TTY)")
@click.option("--dangerously-skip-permissions", is_flag=True, default=False,
              help="Run dangerous commands without asking")
@click.option("--read-before-write", is_flag=True, default=False,
              help="Refuse edits to files the agent has not read")
@click.pass_context
def chat(
    ctx: click.Context,
    prompt: tuple[str, ...],
    provider: str | None,
    model: str | None,
    gateway_url: str | None,
    tool_names: str | None,
    use_rich: bool | None,
    interactive: bool | None,
    dangerously_skip_permissions: bool,
    read_before_write: bool,
) -> None:
    """Send a prompt (or start a session) against the gateway."""
    prompt_text = " ".join(prompt).strip()
    if not prompt_text and not sys.stdin.isatty():
        prompt_text = sys.stdin.read().strip()
        if not prompt_text:
            click.echo("Error: empty prompt", err=True)
            sys.exit(1)

    is_tty = sys.stdin.isatty()
    config = build_app_config(
        ctx.obj.get("cwd"),
        overrides={"gateway": {"provider": provider, "model": model, "url": gateway_url}},
        tools=[t.strip() for t in tool_names.split(",") if t.strip()] if tool_names else None,
        interactive=is_tty if interactive is None else interactive,
        skip_permissions=dangerously_skip_permissions,
        **({"read_before_write": True} if read_before_write else {}),
    )
    printer = RichPrinter().print_message if (
        use_rich if use_rich is not None else sys.stderr.isatty()
    ) else print_message

    result = asyncio.run(_chat(config, prompt_text or None, printer))
    if result is not None and result.stop_reason == "error":
        sys.exit(1)


async def _chat(
    config: AppConfig, prompt: str | None, printer: Callable[[Message], None],
) -> Result | None:
    result: Result | None = None
    async with AppContext(config) as app:
        conversation = app.new_loop()
        answerer = (
            asyncio.create_task(_answer_prompts(app.interaction))
            if app.interaction is not None else None
        )
        try:
            if prompt is not None:
                result = await _run_prompt(conversation, prompt, printer)
            else:
                while True:
                    try:
                        line = await asyncio.to_thread(
                            click.prompt, ">", default="", show_default=False, err=True,
                        )
                    except click.Abort:
                        break
                    if line.strip() in ("exit", "quit"):
                        break
                    if line.strip():
                        result = await _run_prompt(conversation, line.strip(), printer)
        finally:
            if answerer is not None:
                answerer.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await answerer
        app.end_conversation(result)
    return result


async def _run_prompt(
    conversation: ConversationLoop, prompt: str, printer: Callable[[Message], None],
) -> Result | None:
    """Run one prompt; Ctrl-C cancels the turn instead of the process."""
    loop = asyncio.get_running_loop()
    installed = False
    with contextlib.suppress(NotImplementedError, RuntimeError):
        loop.add_signal_handler(signal.SIGINT, conversation.cancel)
        installed = True

    result: Result | None = None
    try:
        async for msg in conversation.run(prompt):
            printer(msg)
            if isinstance(msg, Result):
                result = msg
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)
    return result


async def _answer_prompts(broker: InteractionBroker) -> None:
    """Answer tool prompts on the terminal, one at a time."""
    async for prompt in broker.prompts:
        try:
            match prompt:
                case QuestionPrompt(question=question, options=options, reply=reply):
                    click.echo(f"\n? {question}", err=True)
                    for i, option in enumerate(options, 1):
                        click.echo(f"  {i}. {option}", err=True)
                    answer = await asyncio.to_thread(click.prompt, "Answer", err=True)
                    if options and answer.isdigit() and 1 <= int(answer) <= len(options):
                        answer = options[int(answer) - 1]
                    reply.send(answer)
                case PermissionPrompt(tool_name=tool, operation=op, reason=reason, reply=reply):
                    approved = await asyncio.to_thread(
                        click.confirm,
                        f"\n{tool} wants to run: {op}\n  ({reason}) Allow?",
                        default=False, err=True,
                    )
                    reply.send(approved)
        except RendezvousClosed:
            continue
        except click.Abort:
            prompt.reply.close()


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8787, show_default=True, type=int)
@click.option("--log-level", default="info", show_default=True)
def serve(host: str, port: int, log_level: str) -> None:
    """Run the provider gateway (POST /agentic-loop)."""
    import uvicorn

    from agentwire.gateway.app import create_app

    uvicorn.run(create_app(), host=host, port=port, log_level=log_level)


# ---------------------------------------------------------------------------
# tools
# ---------------------------------------------------------------------------


@cli.command("tools")
@click.option("--remote/--no-remote", default=True, help="Also list tool provider tools")
@click.pass_context
def tools_cmd(ctx: click.Context, remote: bool) -> None:
    """List local and remote tools."""
    config = build_app_config(ctx.obj.get("cwd"), overrides={"rpc": {"enabled": remote}})
    asyncio.run(_list_tools(config))


async def _list_tools(config: AppConfig) -> None:
    async with AppContext(config) as app:
        click.echo("Local tools:")
        for definition in app.registry.get_definitions():
            click.echo(f"  {definition.name:<12} {definition.description.splitlines()[0][:70]}")

        if app.rpc is None:
            return
        remote = await app.router.remote_definitions()
        if not app.router.remote_enabled:
            click.echo(f"\nRemote tools: unavailable ({app.router.remote_disabled_reason})")
            return
        click.echo(f"\nRemote tools ({len(remote)}):")
        for definition in remote:
            first = definition.description.splitlines()[0][:70] if definition.description else ""
            click.echo(f"  {definition.name:<24} {first}")


# ---------------------------------------------------------------------------
# tasks
# ---------------------------------------------------------------------------


@cli.group("tasks")
def tasks_cmd() -> None:
    """Run shell commands through the task registry."""


@tasks_cmd.command("run")
@click.argument("command")
@click.option("--timeout", default=120.0, show_default=True, help="Seconds before the task is killed")
@click.pass_context
def tasks_run(ctx: click.Context, command: str, timeout: float) -> None:
    """Run COMMAND in the foreground and report its status."""
    cwd = ctx.obj.get("cwd") if ctx.obj else None
    code = asyncio.run(_run_task(command, cwd, timeout))
    sys.exit(code)


async def _run_task(command: str, cwd: str | None, timeout: float) -> int:
    from agentwire.tasks.registry import TaskRegistry

    registry = TaskRegistry()
    try:
        task = await registry.run_task(
            command,
            cwd=cwd,
            timeout=timeout,
            on_output=lambda chunk: click.echo(chunk, nl=False),
            on_error=lambda chunk: click.echo(chunk, nl=False, err=True),
        )
    finally:
        await registry.close()
    click.echo(f"[{task.id}] {task.status.value} exit={task.exit_code} "
               f"({task.runtime:.1f}s)", err=True)
    return task.exit_code if task.exit_code is not None else 1


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
