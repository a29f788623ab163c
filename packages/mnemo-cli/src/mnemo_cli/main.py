from __future__ import annotations

import typer

from mnemo_cli.commands.config import config_app
from mnemo_cli.commands.memory import (
    cleanup_command,
    forget_command,
    recall_command,
    remember_command,
    stats_command,
)

app = typer.Typer(
    name="mnemo",
    help="Mnemo: relevance-ranked memory for agents",
    no_args_is_help=True,
)

app.command("remember")(remember_command)
app.command("recall")(recall_command)
app.command("cleanup")(cleanup_command)
app.command("stats")(stats_command)
app.command("forget")(forget_command)
app.add_typer(
    config_app,
    name="config",
    help="View and manage configuration",
)


@app.command()
def version() -> None:
    """Show the Mnemo version."""
    from mnemo_core import __version__
    from rich.console import Console
    Console().print(f"mnemo {__version__}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
