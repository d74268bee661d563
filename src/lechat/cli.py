"""CLI entry point for lechat -- route indexing, API server and terminal chat."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.table import Table

from .llm import DEFAULT_MODEL

app = typer.Typer(
    name="lechat",
    help="AI assistant for documentation sites: route index, chat API and terminal chat.",
    add_completion=False,
)

console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _load_dotenv(start_dir: Path) -> None:
    """Load a .env file from *start_dir* (or parents) into os.environ.

    Only sets vars that are not already present in the environment.
    Handles KEY=VALUE lines, ignores comments and blank lines.
    """
    search = start_dir.resolve()
    for d in [search, *search.parents]:
        candidate = d / ".env"
        if candidate.is_file():
            try:
                for line in candidate.read_text(encoding="utf-8").splitlines():
                    line = line.strip()
                    if not line or line.startswith("#") or "=" not in line:
                        continue
                    key, _, value = line.partition("=")
                    key = key.strip()
                    value = value.strip().strip("\"'")
                    if key and key not in os.environ:
                        os.environ[key] = value
            except OSError as exc:
                logging.getLogger(__name__).warning("Could not read %s: %s", candidate, exc)
            return  # stop after the first .env found


def _project(path: Path | None = None):
    """Return ``(project_root, lechat_dir | None, config)``.

    Without a ``.lechat/`` directory the start directory is the project root
    and defaults apply.
    """
    from .project import LECHAT_DIR, find_project_root, load_config

    start = Path(path).resolve() if path else Path.cwd()
    root = find_project_root(start)
    if root is None:
        return start, None, load_config(None)
    lechat_dir = root / LECHAT_DIR
    try:
        cfg = load_config(lechat_dir)
    except ValueError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1)
    return root, lechat_dir, cfg


def _build_llm_client(model: str = DEFAULT_MODEL, *, quiet: bool = False, **kwargs):
    """Build an LLM client (or None) from environment + flags."""
    from .llm import LLMClient

    api_key = os.environ.get("MISTRAL_API_KEY", "").strip()
    if api_key:
        return LLMClient(api_key=api_key, model=model, **kwargs)
    if not quiet:
        console.print("[yellow]MISTRAL_API_KEY not set.[/yellow]")
    return None


def _load_index_or_none(project_root: Path, cfg):
    from .project import resolve_route_index_path
    from .routes import load_route_index

    index_path = resolve_route_index_path(project_root, cfg)
    if not index_path.is_file():
        console.print(
            f"[yellow]No route index at {index_path}.[/yellow] "
            "Run [bold]lechat routes[/bold] to enable navigation."
        )
        return None
    return load_route_index(index_path)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def init(
    path: Optional[Path] = typer.Argument(None, help="Project path (default: current directory)."),
) -> None:
    """Initialise a .lechat/ directory with a default config."""
    from .project import init_project

    target = Path(path).resolve() if path else Path.cwd()
    try:
        lechat_dir = init_project(target)
    except FileExistsError:
        console.print(f"[yellow]Already initialised:[/yellow] {target / '.lechat'}")
        raise typer.Exit(code=0)
    except ValueError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1)

    console.print(f"[green]Initialised[/green] {lechat_dir}")
    console.print("  Run [bold]lechat routes[/bold] to build the route index.")


@app.command()
def routes(
    path: Optional[Path] = typer.Argument(None, help="Project path (default: current directory)."),
    source: Optional[list[str]] = typer.Option(
        None, "--source", "-s", help="Docs tree as DIR or DIR=/base-route (repeatable)."
    ),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Route index file."),
) -> None:
    """Scan documentation trees and write the route index."""
    from .project import resolve_route_index_path
    from .routes import build_route_index, parse_source_spec, write_route_index

    project_root, _lechat_dir, cfg = _project(path)
    specs = source or cfg.docs_dirs
    sources = [parse_source_spec(spec, project_root) for spec in specs]
    missing = [str(p) for p, _ in sources if not p.is_dir()]
    if len(missing) == len(sources):
        console.print(f"[red]Error:[/red] No docs directory found ({', '.join(missing)}).")
        raise typer.Exit(code=1)

    index = build_route_index(sources, product_name=cfg.product_name)
    out = output.resolve() if output else resolve_route_index_path(project_root, cfg)
    write_route_index(index, out)

    table = Table(title=f"{len(index.all_routes)} routes")
    table.add_column("Category")
    table.add_column("Routes", justify="right")
    for cat in index.categories:
        table.add_row(cat.name, str(len(cat.routes)))
    console.print(table)
    console.print(f"[green]Wrote[/green] {out}")


@app.command()
def serve(
    path: Optional[Path] = typer.Argument(None, help="Project path (default: current directory)."),
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address."),
    port: int = typer.Option(8000, "--port", "-p", help="Port number."),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Mistral model id."),
) -> None:
    """Run the chat and suggestion API."""
    from .project import resolve_route_index_path
    from .web.server import start_server

    project_root, _lechat_dir, cfg = _project(path)
    _load_dotenv(project_root)
    if model:
        cfg.model = model

    llm_client = _build_llm_client(cfg.model, timeout=cfg.chat_timeout)
    if llm_client is None:
        console.print("[dim]Chat endpoints will answer 503 until a key is configured.[/dim]")
    index_path = resolve_route_index_path(project_root, cfg)
    if not index_path.is_file():
        console.print(f"[yellow]No route index at {index_path}; navigation disabled.[/yellow]")

    console.print(f"[bold cyan]LeChat API:[/bold cyan] http://{host}:{port}/api/lechat")
    start_server(index_path, cfg, llm_client, host=host, port=port)


def _print_sessions(controller) -> None:
    for i, session in enumerate(controller.list_sessions(), start=1):
        marker = "*" if session.id == controller.active_session_id else " "
        console.print(f" {marker} {i}. {session.title} [dim]({len(session.messages)} messages)[/dim]")


@app.command()
def chat(
    path: Optional[Path] = typer.Argument(None, help="Project path (default: current directory)."),
    server: Optional[str] = typer.Option(None, "--server", help="Use a running API at this URL."),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Mistral model id."),
    page: str = typer.Option("/", "--page", help="Initial page route."),
) -> None:
    """Chat with the assistant in the terminal.

    Commands: /new, /sessions, /switch N, /clear, /quit.
    """
    from .chat import ChatService
    from .controller import ChatController, HttpTransport, LocalStore, ServiceTransport
    from .models import PageContext
    from .project import LECHAT_DIR, STORE_FILE

    project_root, lechat_dir, cfg = _project(path)
    _load_dotenv(project_root)
    if model:
        cfg.model = model
    index = _load_index_or_none(project_root, cfg)

    if server:
        transport = HttpTransport(server, timeout=cfg.chat_timeout + 5)
    else:
        llm_client = _build_llm_client(cfg.model, timeout=cfg.chat_timeout)
        if llm_client is None:
            console.print("[red]Error:[/red] Set MISTRAL_API_KEY or pass --server.")
            raise typer.Exit(code=1)
        transport = ServiceTransport(ChatService(llm_client, index, cfg))

    def _navigate(route: str) -> None:
        console.print(f"[bold magenta]-> navigating to[/bold magenta] {route}")

    store = LocalStore((lechat_dir or project_root / LECHAT_DIR) / STORE_FILE)
    controller = ChatController(transport, store, navigator=_navigate, route_index=index)
    if controller.page_context is None:
        title = index.title_for(page) if index else page
        controller.set_page_context(PageContext(title=title, url=page))

    greeting = index.init_message if index and index.init_message else "Ask me anything!"
    console.print(f"[bold]{cfg.assistant_name}:[/bold] {greeting}")

    while True:
        try:
            text = console.input(f"[dim]{controller.page_context.url}[/dim] [bold]> [/bold]")
        except (EOFError, KeyboardInterrupt):
            break
        cmd = text.strip()
        if cmd in ("/quit", "/exit"):
            break
        if cmd == "/new":
            controller.new_session()
            console.print("[green]Started a new session.[/green]")
            continue
        if cmd == "/sessions":
            _print_sessions(controller)
            continue
        if cmd.startswith("/switch"):
            try:
                n = int(cmd.split()[1])
                target = controller.list_sessions()[n - 1]
            except (IndexError, ValueError):
                console.print("[red]Usage:[/red] /switch N (see /sessions)")
                continue
            controller.switch_session(target.id)
            for msg in controller.messages:
                console.print(f"[dim]{msg.role}:[/dim] {msg.content}")
            continue
        if cmd == "/clear":
            controller.clear_messages()
            continue

        with console.status("Thinking..."):
            try:
                response = asyncio.run(controller.send_message(cmd))
            except KeyboardInterrupt:
                controller.stop()
                console.print("[yellow]Stopped.[/yellow]")
                continue
        if controller.error:
            console.print(f"[red]Error:[/red] {controller.error}")
        elif response is not None:
            console.print(f"[bold]{cfg.assistant_name}:[/bold]")
            console.print(Markdown(response.content))
            if response.set_preference:
                console.print(
                    f"[dim]Preference saved: {response.set_preference.key} = "
                    f"{response.set_preference.value}[/dim]"
                )


@app.command()
def suggest(
    query: str = typer.Argument(..., help="Partial search query."),
    path: Optional[Path] = typer.Option(None, "--path", help="Project path."),
) -> None:
    """Print LLM query completions for QUERY."""
    from .suggestions import SuggestionService

    project_root, _lechat_dir, cfg = _project(path)
    _load_dotenv(project_root)
    llm_client = _build_llm_client(cfg.model)
    if llm_client is None:
        raise typer.Exit(code=1)
    index = _load_index_or_none(project_root, cfg)
    suggestions = asyncio.run(SuggestionService(llm_client, index, cfg).suggest(query))
    if not suggestions:
        console.print("[dim]No suggestions.[/dim]")
    for s in suggestions:
        console.print(f"- {s}")


@app.command()
def config(
    key: Optional[str] = typer.Argument(None, help="Config key to get or set."),
    value: Optional[str] = typer.Argument(None, help="New value (omit to read)."),
    path: Optional[Path] = typer.Option(None, "--path", help="Project path."),
) -> None:
    """View or modify .lechat/config.toml settings."""
    from .project import save_config

    _project_root, lechat_dir, cfg = _project(path)
    if lechat_dir is None:
        console.print(
            "[red]Error:[/red] No .lechat/ directory found. Run [bold]lechat init[/bold] first."
        )
        raise typer.Exit(code=1)

    if key is None:
        console.print("[bold]lechat config:[/bold]")
        for field_name in type(cfg).model_fields:
            console.print(f"  {field_name} = {getattr(cfg, field_name)!r}")
        return

    fields = type(cfg).model_fields
    if key not in fields:
        console.print(
            f"[red]Error:[/red] Unknown config key [bold]{key}[/bold].\n"
            f"  Valid keys: {', '.join(fields)}"
        )
        raise typer.Exit(code=1)

    if value is None:
        console.print(f"{key} = {getattr(cfg, key)!r}")
        return

    field_type = fields[key].annotation
    try:
        if field_type is bool:
            coerced = value.lower() in ("true", "1", "yes")
        elif field_type is int:
            coerced = int(value)
        elif field_type is float:
            coerced = float(value)
        elif field_type == list[str]:
            coerced = [v.strip() for v in value.split(",") if v.strip()]
        else:
            coerced = value
    except (ValueError, TypeError):
        console.print(f"[red]Error:[/red] Cannot convert {value!r} to {field_type}")
        raise typer.Exit(code=1)

    setattr(cfg, key, coerced)
    save_config(lechat_dir, cfg)
    console.print(f"[green]Updated:[/green] {key} = {coerced!r}")


if __name__ == "__main__":
    app()
