from __future__ import annotations

import dataclasses
import json
from pathlib import Path

import typer
from mnemo_core.config import MnemoConfig
from rich.console import Console
from rich.syntax import Syntax

from mnemo_cli.commands.memory import ConfigOption, _handle_errors, load_config

console = Console()

config_app = typer.Typer(
    name="config",
    help="View and manage Mnemo configuration",
    invoke_without_command=True,
)


def _config_sources() -> list[Path]:
    """Config files the layered lookup would read, lowest priority first."""
    project_path = Path.cwd() / ".mnemo" / "config.toml"
    if not project_path.exists():
        project_path = Path.cwd() / "mnemo.toml"
    return [
        path
        for path in (Path.home() / ".mnemo" / "config.toml", project_path)
        if path.exists()
    ]


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return json.dumps(value)
    return repr(value)


def render_toml(config: MnemoConfig) -> str:
    """Serialize *config* back to TOML, one table per section."""
    lines: list[str] = []
    for section, values in dataclasses.asdict(config).items():
        if lines:
            lines.append("")
        lines.append(f"[{section}]")
        lines.extend(f"{key} = {_toml_value(val)}" for key, val in values.items())
    return "\n".join(lines) + "\n"


@config_app.callback(invoke_without_command=True)
def config_command(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Print as JSON"),
    config_path: Path | None = ConfigOption,
) -> None:
    """Show the effective configuration."""
    if ctx.invoked_subcommand is not None:
        return

    with _handle_errors():
        config = load_config(config_path)

    if as_json:
        typer.echo(json.dumps(dataclasses.asdict(config), indent=2))
        return

    sources = [config_path] if config_path is not None else _config_sources()
    if sources:
        console.print(
            "[bold]Sources:[/bold] " + ", ".join(str(p) for p in sources)
        )
    else:
        console.print("[dim]No config file found, using defaults.[/dim]")
    console.print(Syntax(render_toml(config), "toml", theme="monokai"))


@config_app.command("init")
def config_init(
    path: Path = typer.Argument(Path("mnemo.toml"), help="File to write"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file"),
) -> None:
    """Write a config file holding the default settings."""
    if path.exists() and not force:
        console.print(f"[yellow]{path} already exists.[/yellow] Use --force to overwrite.")
        raise typer.Exit(1)

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_toml(MnemoConfig()))
    console.print(f"[green]✓[/green] Wrote {path}")
