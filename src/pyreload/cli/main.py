"""
pyreload CLI - Main entry point.

Provides commands for:
- serve: Serve a directory with live reload
- config: Manage configuration
- version: Show version information
"""

from pathlib import Path

import typer
from rich.console import Console

app = typer.Typer(
    name="pyreload",
    help="Live reload - refresh browser pages when files change",
    add_completion=True,
)
console = Console()


@app.command()
def serve(
    directory: Path = typer.Argument(
        Path("."), exists=True, file_okay=False, help="Directory to serve"
    ),
    host: str | None = typer.Option(None, "--host", "-h", help="Bind host"),
    port: int = typer.Option(8080, "--port", "-p", help="Bind port"),
    route: str | None = typer.Option(None, "--route", "-r", help="Client script route"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log connections and reloads"),
    watch: bool = typer.Option(True, "--watch/--no-watch", help="Reload on file changes"),
    log_level: str | None = typer.Option(None, "--log-level", "-l", help="Log level"),
    config: Path | None = typer.Option(None, "--config", "-c", help="YAML config file"),
) -> None:
    """Serve a directory and reload connected browsers when it changes."""
    import logging
    import os

    import uvicorn

    from pyreload.cli.static import create_static_app
    from pyreload.client import normalize_route
    from pyreload.config import get_settings

    if config is not None:
        os.environ["PYRELOAD_CONFIG_PATH"] = str(config)
        get_settings.cache_clear()

    settings = get_settings()
    host = host or settings.host
    route = route or settings.route
    verbose = verbose or settings.verbose
    log_level = (log_level or settings.log_level).upper()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    server_app = create_static_app(directory, route=route, verbose=verbose, watch=watch)
    script_route = "/" + normalize_route(route).lstrip("/")

    console.print(f"[bold green]Serving {directory.resolve()} on http://{host}:{port}[/bold green]")
    console.print(f"[dim]Add <script src=\"{script_route}\"></script> to your pages[/dim]")
    console.print(f"[dim]Watching for changes: {watch}[/dim]")
    console.print()

    uvicorn.run(server_app, host=host, port=port, log_level=log_level.lower())


@app.command()
def config(
    action: str = typer.Argument("show", help="Action: show, init, path"),
) -> None:
    """Manage configuration."""
    from pyreload.config import get_settings

    if action == "show":
        settings = get_settings()
        console.print_json(data=settings.model_dump(mode="json"))

    elif action == "init":
        config_path = Path("pyreload.yaml")
        if config_path.exists():
            console.print(f"[yellow]Config file already exists: {config_path}[/yellow]")
            return

        default_config = """# pyreload configuration
reload:
  host: 0.0.0.0
  port: 9856
  route: /reload/reload.js
  verbose: false
  log_level: INFO
"""
        config_path.write_text(default_config)
        console.print(f"[green]Created config file: {config_path}[/green]")

    elif action == "path":
        settings = get_settings()
        if settings.config_path:
            console.print(str(settings.config_path))
        else:
            console.print("[dim]No config file specified[/dim]")

    else:
        console.print(f"[red]Unknown action: {action}[/red]")
        console.print("[dim]Available actions: show, init, path[/dim]")


@app.command()
def version() -> None:
    """Show version information."""
    from pyreload import __version__

    console.print(f"pyreload version {__version__}")


if __name__ == "__main__":
    app()
