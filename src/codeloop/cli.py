"""CLI entry point for codeloop."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
import time
from dataclasses import dataclass

import typer
from rich.console import Console
from rich.table import Table

from codeloop.config import CodeloopConfig
from codeloop.tool.factory import Role

app = typer.Typer(
    name="codeloop",
    help="An autonomous coding agent: plan, generate, and review with tools.",
    no_args_is_help=True,
)
sessions_app = typer.Typer(help="Inspect saved runs.", no_args_is_help=True)
app.add_typer(sessions_app, name="sessions")

console = Console()


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


@dataclass
class RunOptions:
    """Command-line overrides shared by the role commands."""

    model: str | None = None
    workspace: str | None = None
    max_iterations: int | None = None
    clarify: bool | None = None
    save: bool = True


# ---------------------------------------------------------------------------
# Role commands
# ---------------------------------------------------------------------------


def _role_command(role: Role, task: str, options: RunOptions, config_file: str | None) -> None:
    config = CodeloopConfig.load(config_file)
    if options.model:
        config.llm.model = options.model
    if options.workspace:
        config.workspace = options.workspace

    workspace = os.path.abspath(config.workspace)
    if not os.path.isdir(workspace):
        typer.echo(f"Error: Workspace not found: {workspace}", err=True)
        raise typer.Exit(1)
    config.workspace = workspace

    typer.echo("codeloop v0.1.0")
    typer.echo(f"Role: {role.value}")
    typer.echo(f"Workspace: {workspace}")
    typer.echo(f"Model: {config.llm.model}")
    typer.echo("---")

    success = asyncio.run(_run_role(role, task, config, options))
    raise typer.Exit(0 if success else 1)


async def _run_role(role: Role, task: str, config: CodeloopConfig, options: RunOptions) -> bool:
    """Run one role against the workspace with plain CLI output."""
    from codeloop.agent.cancel import CancelToken
    from codeloop.agent.clarification import ConsoleReplyChannel
    from codeloop.agent.prompts import discover_prompts, system_prompt
    from codeloop.agent.runner import AgentRunner
    from codeloop.llm.provider import create_client
    from codeloop.session.store import SessionStore
    from codeloop.session.wire import EventType, Wire
    from codeloop.tool.factory import ToolFactory

    run_config = config.run_config(role)
    if options.max_iterations is not None:
        run_config = run_config.with_overrides(max_iterations=options.max_iterations)
    if options.clarify is not None:
        run_config = run_config.with_overrides(clarification_enabled=options.clarify)
    prompt = system_prompt(role, clarification=run_config.clarification_enabled)
    override = discover_prompts(config.prompts_dir).get(role)
    if override is not None:
        prompt = override.text
        run_config = override.apply(run_config)

    factory = ToolFactory(config.workspace, allowed_commands=config.allowed_commands)
    registry = factory.build(role, clarification=run_config.clarification_enabled)
    client = create_client(
        model=config.llm.model,
        temperature=config.llm.temperature,
        max_tokens=config.llm.max_tokens,
        native_function_calling=config.llm.native_function_calling,
        embedding_model=config.llm.embedding_model,
    )

    reply_channel = None
    if run_config.clarification_enabled and sys.stdin.isatty():
        reply_channel = ConsoleReplyChannel(console)

    wire = Wire()
    runner = AgentRunner(
        client,
        registry,
        prompt,
        config.llm.model,
        run_config,
        wire=wire,
        reply_channel=reply_channel,
    )

    # --- Wire consumer (async background task) ---
    async def _consume_wire() -> None:
        queue = wire.subscribe()
        while True:
            event = await queue.get()
            if event is None:
                break

            d = event.data
            if event.type == EventType.STEP_BEGIN:
                print(f"\n[Step {d.get('iteration', 0)}/{run_config.max_iterations}]", flush=True)

            elif event.type == EventType.TEXT:
                print(d.get("text", ""), flush=True)

            elif event.type == EventType.TOOL_CALL:
                name = d.get("name", "?")
                arguments = d.get("arguments") or {}
                detail = ""
                if name == "run_shell_command":
                    detail = f" {arguments.get('command', '')}"
                elif "file_path" in arguments:
                    detail = f" {arguments['file_path']}"
                print(f"  > {name}{detail}", flush=True)

            elif event.type == EventType.TOOL_RESULT:
                name = d.get("name", "?")
                content = d.get("content", "")
                status = "ERROR" if d.get("is_error") else "OK"
                first_line = content.split("\n")[0][:100] if content else status
                print(f"  < {name} [{status}]: {first_line}", flush=True)

            elif event.type == EventType.CLARIFICATION:
                if reply_channel is None:
                    print(f"\n{d.get('question', '')}\n", flush=True)

            elif event.type == EventType.STATUS:
                print(f"  ({d.get('message', '')})", flush=True)

            elif event.type == EventType.ERROR:
                print(f"\nERROR: {d.get('error', 'Unknown error')}", flush=True)

        wire.unsubscribe(queue)

    consumer_task = asyncio.create_task(_consume_wire())

    token = CancelToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel, "interrupted by user")
    except NotImplementedError:
        pass  # Windows event loops; Ctrl-C then cancels the task instead

    typer.echo(f"Tools: {', '.join(registry.names())}")
    started_at = time.time()
    try:
        result = await runner.run(task, token)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            pass
        wire.close()
        await consumer_task

    print(f"\n---\nRun finished: {result.status.value}")
    print(
        f"Iterations: {result.iterations}  Tool calls: {result.tool_calls}"
        f"  Retries: {result.tool_retries}"
    )
    if result.error_counts:
        counts = ", ".join(f"{code}={n}" for code, n in sorted(result.error_counts.items()))
        print(f"Tool errors: {counts}")

    if options.save:
        store = SessionStore(config.session_dir)
        record = await store.save(
            result,
            role=role.value,
            model=config.llm.model,
            request=task,
            started_at=started_at,
        )
        print(f"Session saved: {record.id}")

    return result.success


_TASK = typer.Argument(help="What the agent should do.")
_MODEL = typer.Option(None, "--model", "-m", help="LLM model to use (default: from env/config).")
_WORKSPACE = typer.Option(None, "--workspace", "-w", help="Workspace root (default: from env/config).")
_MAX_ITERATIONS = typer.Option(None, "--max-iterations", "-n", min=1, help="Override the iteration budget.")
_CLARIFY = typer.Option(None, "--clarify/--no-clarify", help="Let the agent ask you questions.")
_SAVE = typer.Option(True, "--save/--no-save", help="Save the run to the session directory.")
_VERBOSE = typer.Option(False, "--verbose", "-v", help="Enable debug logging.")
_CONFIG = typer.Option(None, "--config", "-c", help="Config file path.")


@app.command()
def plan(
    task: str = _TASK,
    model: str | None = _MODEL,
    workspace: str | None = _WORKSPACE,
    max_iterations: int | None = _MAX_ITERATIONS,
    clarify: bool | None = _CLARIFY,
    save: bool = _SAVE,
    verbose: bool = _VERBOSE,
    config_file: str | None = _CONFIG,
) -> None:
    """Explore the workspace read-only and produce a development plan."""
    setup_logging(verbose)
    options = RunOptions(model, workspace, max_iterations, clarify, save)
    _role_command(Role.PLANNING, task, options, config_file)


@app.command()
def generate(
    task: str = _TASK,
    model: str | None = _MODEL,
    workspace: str | None = _WORKSPACE,
    max_iterations: int | None = _MAX_ITERATIONS,
    clarify: bool | None = _CLARIFY,
    save: bool = _SAVE,
    verbose: bool = _VERBOSE,
    config_file: str | None = _CONFIG,
) -> None:
    """Implement a task by reading and writing files in the workspace."""
    setup_logging(verbose)
    options = RunOptions(model, workspace, max_iterations, clarify, save)
    _role_command(Role.GENERATION, task, options, config_file)


@app.command()
def review(
    task: str = _TASK,
    model: str | None = _MODEL,
    workspace: str | None = _WORKSPACE,
    max_iterations: int | None = _MAX_ITERATIONS,
    clarify: bool | None = _CLARIFY,
    save: bool = _SAVE,
    verbose: bool = _VERBOSE,
    config_file: str | None = _CONFIG,
) -> None:
    """Run tests and the linter, and fix what fails."""
    setup_logging(verbose)
    options = RunOptions(model, workspace, max_iterations, clarify, save)
    _role_command(Role.REVIEW, task, options, config_file)


@app.command()
def tools(
    role: Role = typer.Argument(help="Role whose tools to list."),
    clarify: bool = typer.Option(False, "--clarify", help="Include the clarification tool."),
    workspace: str = typer.Option(".", "--workspace", "-w", help="Workspace root."),
) -> None:
    """List the tools a role can use."""
    from codeloop.tool.factory import ToolFactory

    registry = ToolFactory(workspace).build(role, clarification=clarify)
    table = Table(title=f"{role.value} tools")
    table.add_column("Name", style="bold")
    table.add_column("Description")
    for tool in registry:
        table.add_row(tool.name, tool.description.split("\n")[0])
    console.print(table)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@sessions_app.command("list")
def sessions_list(config_file: str | None = _CONFIG) -> None:
    """List saved runs, newest first."""
    from codeloop.session.store import SessionStore

    config = CodeloopConfig.load(config_file)
    records = asyncio.run(SessionStore(config.session_dir).list_sessions())
    if not records:
        typer.echo("No saved sessions.")
        return

    table = Table()
    table.add_column("ID")
    table.add_column("Role")
    table.add_column("Status")
    table.add_column("Iterations", justify="right")
    table.add_column("Tool calls", justify="right")
    table.add_column("Request")
    for r in records:
        table.add_row(
            r.id, r.role, r.status, str(r.iterations), str(r.tool_calls), r.request[:60]
        )
    console.print(table)


@sessions_app.command("show")
def sessions_show(
    session_id: str = typer.Argument(help="Session ID from `codeloop sessions list`."),
    config_file: str | None = _CONFIG,
) -> None:
    """Print a saved run and its transcript."""
    from codeloop.session.store import SessionStore

    config = CodeloopConfig.load(config_file)
    try:
        record = asyncio.run(SessionStore(config.session_dir).load(session_id))
    except (FileNotFoundError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(f"Session: {record.id}")
    typer.echo(f"Role: {record.role}  Model: {record.model}")
    typer.echo(f"Status: {record.status}  Iterations: {record.iterations}  Tool calls: {record.tool_calls}")
    typer.echo(f"Request: {record.request}")
    if record.error:
        typer.echo(f"Error: {record.error}")
    typer.echo("---")
    for msg in record.messages:
        if msg.role == "system":
            continue
        if msg.tool_call is not None:
            typer.echo(f"[assistant] called {msg.tool_call.name} {msg.tool_call.arguments}")
        elif msg.role == "tool":
            typer.echo(f"[tool {msg.name}] {msg.content}")
        else:
            typer.echo(f"[{msg.role}] {msg.content}")
    if record.final_response:
        typer.echo("---")
        typer.echo(record.final_response)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
