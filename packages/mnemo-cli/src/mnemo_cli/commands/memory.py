"""Memory commands: remember, recall, cleanup, stats, forget."""
from __future__ import annotations

import asyncio
import contextlib
import json
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import typer
from mnemo_core.config import MnemoConfig
from mnemo_core.errors import (
    ConfigError,
    EntryNotFoundError,
    StorageError,
    ValidationError,
)
from mnemo_core.logging import setup_logging
from mnemo_engine import CleanupOptions, MemoryManager, RecallOptions
from mnemo_store import StoreBuilder
from rich.console import Console
from rich.markup import escape
from rich.table import Table

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator

    from mnemo_engine import CleanupResult, MemoryStats, RecallResult, ScoreBreakdown

console = Console()
err_console = Console(stderr=True)

T = TypeVar("T")

# Exit codes
EXIT_STORAGE = 1
EXIT_INVALID = 2

ConfigOption = typer.Option(
    None, "--config", "-c", help="Path to a mnemo.toml (default: layered lookup)",
)
UserOption = typer.Option(None, "--user", "-u", help="Narrow to one user")
JsonOption = typer.Option(False, "--json", help="Print the result as JSON")


# ── Helpers ──────────────────────────────────────────────────────────


@contextlib.contextmanager
def _handle_errors() -> Iterator[None]:
    """Map engine errors to a red message and an exit code."""
    try:
        yield
    except (ValidationError, ConfigError) as exc:
        err_console.print(f"[red]Invalid request:[/red] {escape(str(exc))}")
        raise typer.Exit(EXIT_INVALID) from None
    except EntryNotFoundError as exc:
        err_console.print(f"[red]Not found:[/red] {escape(str(exc))}")
        raise typer.Exit(EXIT_STORAGE) from None
    except StorageError as exc:
        err_console.print(f"[red]Storage error:[/red] {escape(str(exc))}")
        raise typer.Exit(EXIT_STORAGE) from None


def load_config(path: Path | None) -> MnemoConfig:
    """Load an explicit config file, or the layered global/project config."""
    config = MnemoConfig.from_toml(path) if path is not None else MnemoConfig.load()
    setup_logging(config.logging.level, json_output=config.logging.json_output)
    return config


async def _with_manager(
    config: MnemoConfig,
    action: Callable[[MemoryManager], Awaitable[T]],
) -> T:
    store = await StoreBuilder(config).build()
    try:
        return await action(MemoryManager(store, config))
    finally:
        await store.close()


def run(config: MnemoConfig, action: Callable[[MemoryManager], Awaitable[T]]) -> T:
    """Open a store for *config*, run *action* against it, close the store."""
    return asyncio.run(_with_manager(config, action))


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2))


# ── Commands ─────────────────────────────────────────────────────────


def remember_command(
    agent_id: str = typer.Argument(..., help="Agent the memory belongs to"),
    input_text: str = typer.Argument(..., metavar="INPUT", help="What the agent was asked"),
    output: str = typer.Option("", "--output", "-o", help="What the agent answered"),
    user_id: str | None = UserOption,
    entry_type: str = typer.Option("summary", "--type", "-t", help="Entry type"),
    context: str | None = typer.Option(None, "--context", help="Extra context to keep"),
    corrects: str | None = typer.Option(
        None, "--corrects", help="Record INPUT as a correction of this entry id",
    ),
    config_path: Path | None = ConfigOption,
) -> None:
    """Summarize an interaction and store it (or reinforce a near-duplicate)."""
    with _handle_errors():
        config = load_config(config_path)
        if corrects is not None:
            entry = run(config, lambda m: m.learn_from_correction(
                agent_id, "", output, input_text, user_id=user_id, corrects=corrects,
            ))
        else:
            entry = run(config, lambda m: m.record_interaction(
                agent_id, input_text, output,
                user_id=user_id, context=context, type=entry_type,
            ))

    verb = "Reinforced" if entry.frequency > 1 else "Stored"
    console.print(
        f"[green]✓[/green] {verb} {entry.type.value} [bold]{entry.id}[/bold]"
        f" [dim](frequency {entry.frequency})[/dim]"
    )
    console.print(f"  {escape(entry.summary)}")


def recall_command(
    agent_id: str = typer.Argument(..., help="Agent to recall for"),
    query: str = typer.Argument("", help="Free-text query"),
    user_id: str | None = UserOption,
    limit: int | None = typer.Option(None, "--limit", "-n", help="Maximum entries"),
    min_relevance: float | None = typer.Option(
        None, "--min-relevance", help="Drop entries scoring below this",
    ),
    types: list[str] | None = typer.Option(
        None, "--type", "-t", help="Restrict to an entry type (repeatable)",
    ),
    preset: str | None = typer.Option(
        None, "--preset", help="research, automation, router or general",
    ),
    touch: bool = typer.Option(
        True, "--touch/--no-touch", help="Count this recall as an access",
    ),
    explain: bool = typer.Option(False, "--explain", help="Show score breakdown"),
    as_json: bool = JsonOption,
    config_path: Path | None = ConfigOption,
) -> None:
    """Rank stored memories against a query."""
    with _handle_errors():
        config = load_config(config_path)
        base = (
            RecallOptions.preset(preset) if preset
            else RecallOptions(limit=config.recall.limit, min_relevance=config.recall.min_relevance)
        )
        options = RecallOptions(
            limit=base.limit if limit is None else limit,
            min_relevance=base.min_relevance if min_relevance is None else min_relevance,
            types=types or base.types,
            touch=touch,
        )

        async def _recall(manager: MemoryManager) -> tuple[RecallResult, list[ScoreBreakdown]]:
            result = await manager.recall(agent_id, query, user_id=user_id, options=options)
            return result, explain_scores(manager, query, result)

        result, breakdowns = run(config, _recall)

    if as_json:
        _echo_json(result.to_dict())
        return
    _print_recall(result, breakdowns if explain else None)


def cleanup_command(
    agent_id: str = typer.Argument(..., help="Agent whose memory to prune"),
    user_id: str | None = UserOption,
    max_age_days: int | None = typer.Option(
        None, "--max-age", help="Evict entries not accessed for this many days",
    ),
    min_relevance: float | None = typer.Option(
        None, "--min-relevance", help="Evict unreinforced entries below this",
    ),
    max_entries: int | None = typer.Option(
        None, "--max-entries", help="Keep at most this many entries",
    ),
    strict: bool = typer.Option(
        False, "--strict", help="Fail when any deletion fails",
    ),
    as_json: bool = JsonOption,
    config_path: Path | None = ConfigOption,
) -> None:
    """Evict old, low-relevance and overflowing memories."""
    with _handle_errors():
        config = load_config(config_path)
        retention = config.retention
        options = CleanupOptions(
            max_age_days=retention.max_age_days if max_age_days is None else max_age_days,
            min_relevance=retention.min_relevance if min_relevance is None else min_relevance,
            max_entries=retention.max_entries if max_entries is None else max_entries,
        )
        result = run(config, lambda m: m.cleanup(
            agent_id, options, user_id=user_id, strict=strict,
        ))

    if as_json:
        _echo_json(result.to_dict())
    else:
        _print_cleanup(result)
    if result.failed_ids:
        raise typer.Exit(EXIT_STORAGE)


def stats_command(
    agent_id: str = typer.Argument(..., help="Agent to summarize"),
    user_id: str | None = UserOption,
    as_json: bool = JsonOption,
    config_path: Path | None = ConfigOption,
) -> None:
    """Show entry counts, average relevance, top patterns and recent activity."""
    with _handle_errors():
        config = load_config(config_path)
        stats = run(config, lambda m: m.stats(agent_id, user_id=user_id))

    if as_json:
        _echo_json(stats.to_dict())
        return
    _print_stats(agent_id, stats)


def forget_command(
    agent_id: str = typer.Argument(..., help="Agent the entry belongs to"),
    entry_id: str = typer.Argument(..., help="Id of the entry to delete"),
    user_id: str | None = UserOption,
    as_json: bool = JsonOption,
    config_path: Path | None = ConfigOption,
) -> None:
    """Delete a single memory entry."""
    with _handle_errors():
        config = load_config(config_path)
        removed = run(config, lambda m: m.delete(agent_id, entry_id, user_id=user_id))

    if as_json:
        _echo_json({"success": removed})
    elif removed:
        console.print(f"[green]✓[/green] Deleted {entry_id}")
    else:
        console.print(f"[yellow]No entry {entry_id} for {agent_id}.[/yellow]")


def explain_scores(
    manager: MemoryManager, query: str, result: RecallResult
) -> list[ScoreBreakdown]:
    """Break down each returned score at the instant the recall ranked at."""
    now = result.as_of or manager.clock.now()
    return [manager.scorer.breakdown(query, scored.entry, now) for scored in result.entries]


# ── Display ──────────────────────────────────────────────────────────


def _print_recall(
    result: RecallResult, breakdowns: list[ScoreBreakdown] | None
) -> None:
    if not result.entries:
        console.print("[yellow]No matching memories.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Score", justify="right")
    if breakdowns is not None:
        table.add_column("Text", justify="right", style="dim")
        table.add_column("Recency", justify="right", style="dim")
        table.add_column("Intrinsic", justify="right", style="dim")
    table.add_column("Type")
    table.add_column("Summary")
    table.add_column("Id", style="dim")

    for i, scored in enumerate(result.entries):
        entry = scored.entry
        row = [f"{scored.score:.3f}"]
        if breakdowns is not None:
            parts = breakdowns[i]
            row += [f"{parts.text:.3f}", f"{parts.recency:.3f}", f"{parts.intrinsic:.3f}"]
        row += [entry.type.value, escape(entry.summary), entry.id]
        table.add_row(*row)

    console.print(table)
    console.print(
        f"[dim]{len(result.entries)} of {result.total_matches} match(es),"
        f" average relevance {result.average_relevance:.3f}[/dim]"
    )
    _print_patterns(result.patterns)


def _print_patterns(patterns: list) -> None:
    if not patterns:
        return
    console.print("\n[bold]Patterns[/bold]")
    for pattern in patterns:
        console.print(f"  • {escape(pattern.pattern)} (seen {pattern.frequency}x)")
        if pattern.corrections:
            console.print(
                f"    [yellow]corrections:[/yellow] {escape(', '.join(pattern.corrections))}"
            )


def _print_cleanup(result: CleanupResult) -> None:
    console.print(
        f"[green]✓[/green] Deleted {result.deleted_count} entr"
        f"{'y' if result.deleted_count == 1 else 'ies'}"
        f" [dim](expired {result.expired}, low relevance {result.low_relevance},"
        f" overflow {result.overflow})[/dim]"
    )
    if result.cancelled:
        console.print("[yellow]Cleanup stopped before finishing.[/yellow]")
    if result.failed_ids:
        console.print(
            f"[red]Failed to delete {len(result.failed_ids)}:[/red]"
            f" {', '.join(result.failed_ids)}"
        )


def _print_stats(agent_id: str, stats: MemoryStats) -> None:
    table = Table(title=f"Memory: {agent_id}", show_header=True, header_style="bold cyan")
    table.add_column("Type", style="bold")
    table.add_column("Entries", justify="right")
    for type_name, count in sorted(stats.by_type.items()):
        table.add_row(type_name, str(count))
    console.print(table)
    console.print(
        f"[dim]{stats.total_entries} entries,"
        f" average relevance {stats.average_relevance:.3f}[/dim]"
    )
    _print_patterns(stats.top_patterns)

    if stats.recent_activity:
        console.print("\n[bold]Recent activity[/bold]")
        for entry in stats.recent_activity:
            assert entry.last_accessed is not None
            console.print(
                f"  {entry.last_accessed:%Y-%m-%d %H:%M} [{entry.type.value}]"
                f" {entry.summary}",
                markup=False,
            )
