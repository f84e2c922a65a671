import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

app = typer.Typer(name="coqui", help="Terminal AI agent with delegation, sandboxed Python and approvals.")
console = Console()

HELP_TEXT = """\
[bold]Commands[/bold]
  /new            start a new session
  /history        show this session's messages
  /sessions       list stored sessions
  /resume <id>    switch to another session
  /model \\[role]   show the model for a role (default: orchestrator)
  /config         show the active configuration
  /help           show this help
  /quit, /exit, /q  leave
"""

QUIT_COMMANDS = ("/quit", "/exit", "/q")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(name)s | %(levelname)s | %(message)s")


def _load(config: str, workdir: str) -> tuple[Path, dict, Path]:
    """Project root, parsed coqui.yaml and the resolved workspace."""
    from coqui.config import load_config, resolve_workspace

    project_root = Path(workdir).expanduser().resolve() if workdir else Path.cwd()
    if not project_root.is_dir():
        console.print(f"[red]Working directory not found: {project_root}[/red]")
        raise typer.Exit(1)
    data = load_config(Path(config)) if config else load_config()
    workspace = resolve_workspace(project_root, data)
    return project_root, data, workspace


def _select_session(storage, workspace: Path, primary_model: str, new: bool, session: str) -> str:
    from coqui.agents.orchestrator import ORCHESTRATOR_ROLE
    from coqui.services.session_storage import read_session_file

    if new:
        return storage.create_session(ORCHESTRATOR_ROLE, primary_model)
    if session:
        if storage.get_session(session) is None:
            console.print(f"[red]Session not found: {session}[/red]")
            raise typer.Exit(1)
        return session

    remembered = read_session_file(workspace)
    if remembered and storage.get_session(remembered) is not None:
        return remembered
    latest = storage.get_latest_session_id()
    if latest:
        return latest
    return storage.create_session(ORCHESTRATOR_ROLE, primary_model)


def _history(storage, session_id: str) -> list[dict]:
    return [
        {"role": m["role"], "content": m["content"]}
        for m in storage.get_messages(session_id)
        if m["role"] in ("user", "assistant")
    ]


def _print_sessions(storage, current: str = "", limit: int = 20) -> None:
    sessions = storage.list_sessions(limit)
    if not sessions:
        console.print("[dim]No sessions yet.[/dim]")
        return
    table = Table(title="Sessions", border_style="dim")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Updated", style="dim")
    table.add_column("Model")
    table.add_column("Messages", justify="right")
    table.add_column("Tokens", justify="right")
    for s in sessions:
        marker = " *" if s["id"] == current else ""
        table.add_row(
            s["id"] + marker, s["updated_at"], s["model"], str(s["message_count"]), str(s["token_count"])
        )
    console.print(table)


def _print_history(storage, session_id: str) -> None:
    messages = storage.get_messages(session_id)
    if not messages:
        console.print("[dim]No messages in this session.[/dim]")
        return
    for m in messages:
        style = "bold cyan" if m["role"] == "user" else "bold green"
        console.print(f"[{style}]{m['role']}[/] [dim]{m['created_at']}[/dim]")
        console.print(m["content"], markup=False, highlight=False)
        console.print()


def _print_roles(resolver) -> None:
    table = Table(title="Roles", border_style="dim")
    table.add_column("Role", style="cyan")
    table.add_column("Model")
    table.add_row("(default)", resolver.primary_model)
    for role, model in resolver.to_dict().items():
        table.add_row(role, model)
    console.print(table)


def _run_prompt(prompt: str, project_root: Path, data: dict, workspace: Path, storage, session_id: str, callback) -> None:
    from coqui.agents.orchestrator import build_orchestrator, build_policy
    from coqui.models.agent_schemas import AgentError, MaxIterationsError

    history = _history(storage, session_id)
    storage.add_message(session_id, "user", prompt)

    agent = build_orchestrator(
        project_root=project_root,
        workspace=workspace,
        config=data,
        storage=storage,
        session_id=session_id,
        callback=callback,
        policy=build_policy(data, console),
        history=history,
    )

    try:
        output = agent.run(prompt)
    except MaxIterationsError as e:
        console.print(f"\n[red]Agent exceeded {e.iterations} iterations without completing.[/red]")
        if e.last_output:
            console.print(f"[dim]Last output:[/dim] {escape(e.last_output)}")
        return
    except AgentError as e:
        console.print(f"\n[red]Agent failed: {escape(str(e))}[/red]")
        return

    storage.add_message(session_id, "assistant", output.content)
    if output.usage is not None:
        storage.update_token_count(session_id, output.usage.total_tokens)
    callback.print_response(output)


@app.command()
def run(
    config: str = typer.Option("", "--config", "-c", help="Path to coqui.yaml"),
    new: bool = typer.Option(False, "--new", help="Start a new session"),
    session: str = typer.Option("", "--session", "-s", help="Resume a session by id"),
    workdir: str = typer.Option("", "--workdir", "-w", help="Project root (default: current directory)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable detailed logging"),
) -> None:
    """Start the interactive agent REPL."""
    from coqui.agents.console_callback import ConsoleCallback
    from coqui.agents.orchestrator import ORCHESTRATOR_ROLE
    from coqui.config import RoleResolver
    from coqui.services.session_storage import SessionStorage, write_session_file

    _setup_logging(verbose)
    project_root, data, workspace = _load(config, workdir)
    resolver = RoleResolver(data)
    storage = SessionStorage.for_workspace(workspace)
    session_id = _select_session(storage, workspace, resolver.resolve(ORCHESTRATOR_ROLE), new, session)
    write_session_file(workspace, session_id)

    callback = ConsoleCallback(console, verbose=verbose)
    if verbose:
        from coqui.agents.orchestrator import build_registry

        callback.print_tools(build_registry(project_root, workspace))
    console.print(f"[bold]Coqui[/bold] [dim]model {resolver.resolve(ORCHESTRATOR_ROLE)}[/dim]")
    console.print(f"[dim]Project: {project_root}[/dim]")
    console.print(f"[dim]Workspace: {workspace}[/dim]")
    console.print(f"[dim]Session: {session_id}  (/help for commands)[/dim]")
    console.print()

    try:
        while True:
            try:
                line = console.input("[bold cyan]You>[/] ").strip()
            except (EOFError, KeyboardInterrupt):
                console.print()
                break
            if not line:
                continue

            if line.startswith("/"):
                command, _, arg = line.partition(" ")
                arg = arg.strip()
                if command in QUIT_COMMANDS:
                    break
                elif command == "/help":
                    console.print(HELP_TEXT)
                elif command == "/new":
                    session_id = storage.create_session(ORCHESTRATOR_ROLE, resolver.resolve(ORCHESTRATOR_ROLE))
                    write_session_file(workspace, session_id)
                    console.print(f"[green]New session {session_id}[/green]")
                elif command == "/history":
                    _print_history(storage, session_id)
                elif command == "/sessions":
                    _print_sessions(storage, session_id)
                elif command == "/resume":
                    if not arg:
                        console.print("[yellow]Usage: /resume <session-id>[/yellow]")
                    elif storage.get_session(arg) is None:
                        console.print(f"[red]Session not found: {arg}[/red]")
                    else:
                        session_id = arg
                        write_session_file(workspace, session_id)
                        console.print(f"[green]Resumed session {session_id}[/green]")
                elif command == "/model":
                    role = arg or ORCHESTRATOR_ROLE
                    console.print(f"[cyan]{role}[/cyan] → {resolver.resolve(role)}")
                elif command == "/config":
                    _print_roles(resolver)
                    console.print(f"[dim]Workspace: {workspace}[/dim]")
                else:
                    console.print(f"[yellow]Unknown command {command}. Type /help.[/yellow]")
                continue

            _run_prompt(line, project_root, data, workspace, storage, session_id, callback)
    finally:
        storage.close()


@app.command()
def sessions(
    config: str = typer.Option("", "--config", "-c", help="Path to coqui.yaml"),
    workdir: str = typer.Option("", "--workdir", "-w", help="Project root (default: current directory)"),
    limit: int = typer.Option(20, "--limit", "-n", help="How many sessions to show"),
) -> None:
    """List stored sessions."""
    from coqui.services.session_storage import SessionStorage

    _setup_logging(False)
    _, _, workspace = _load(config, workdir)
    storage = SessionStorage.for_workspace(workspace)
    try:
        _print_sessions(storage, limit=limit)
    finally:
        storage.close()


@app.command()
def roles(
    config: str = typer.Option("", "--config", "-c", help="Path to coqui.yaml"),
) -> None:
    """Show which model each role resolves to."""
    from coqui.config import RoleResolver, load_config

    _setup_logging(False)
    data = load_config(Path(config)) if config else load_config()
    _print_roles(RoleResolver(data))


if __name__ == "__main__":
    app()
