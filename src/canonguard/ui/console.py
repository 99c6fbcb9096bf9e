"""Rich-powered console output for canonguard."""

from __future__ import annotations

from rich.console import Console as RichConsole
from rich.panel import Panel
from rich.table import Table

from canonguard import __version__
from canonguard.context.models import ContextResult, Redaction
from canonguard.context.window import WindowEntry
from canonguard.story.models import CanonFact


class Console:
    """Terminal output for canonguard using Rich."""

    def __init__(self) -> None:
        self.console = RichConsole()

    def banner(self) -> None:
        self.console.print(
            Panel(
                f"[bold cyan]canonguard[/bold cyan] [dim]v{__version__}[/dim]\n"
                "[dim]Spoiler-safe context for AI co-writing[/dim]",
                border_style="cyan",
                padding=(1, 2),
            )
        )

    def success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {message}")

    def error(self, message: str) -> None:
        self.console.print(f"[red]✗[/red] {message}")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]![/yellow] {message}")

    def info(self, message: str) -> None:
        self.console.print(f"[blue]i[/blue] {message}")

    def show_result(self, result: ContextResult) -> None:
        """Display the block breakdown of a composed context."""
        used_pct = result.token_estimate / max(result.max_tokens, 1) * 100
        table = Table(
            title=f"Context ({result.token_estimate:,} / {result.max_tokens:,} tokens, {used_pct:.0f}%)",
            border_style="cyan",
        )
        table.add_column("Tier", style="bold")
        table.add_column("Block")
        table.add_column("Score", justify="right")
        table.add_column("Tokens", justify="right", style="cyan")
        table.add_column("Reason", style="dim")

        for block in result.blocks:
            key = f"[red]{block.key}[/red]" if block.spoiler else block.key
            table.add_row(
                block.tier.name.lower(),
                key,
                f"{block.score:.2f}",
                str(block.token_estimate),
                block.reason,
            )
        self.console.print(table)
        self.console.print(
            f"  Ranking: {result.ranking_mode.value}  "
            f"Dropped: {len(result.dropped_blocks)}  "
            f"Time: {result.assembly_time_ms:.1f}ms"
        )

    def show_redactions(self, redactions: list[Redaction]) -> None:
        if not redactions:
            self.console.print("[dim]No facts withheld.[/dim]")
            return
        table = Table(title="Redactions", border_style="yellow")
        table.add_column("Fact", style="bold")
        table.add_column("Reason")
        table.add_column("Spoiler", justify="center")
        for r in redactions:
            table.add_row(r.fact_id, r.reason, "[red]yes[/red]" if r.spoiler else "")
        self.console.print(table)

    def show_facts(self, facts: list[CanonFact]) -> None:
        table = Table(title="Visible canon", border_style="green")
        table.add_column("Fact", style="bold")
        table.add_column("Entity")
        table.add_column("State", style="dim")
        for f in facts:
            table.add_row(f.id, f.entity_id, f.reveal_state.value)
        self.console.print(table)

    def show_window(self, entries: list[WindowEntry]) -> None:
        table = Table(title="Scene window (oldest first)", border_style="cyan")
        table.add_column("Scene", style="bold")
        table.add_column("Summary")
        for entry in entries:
            summary = entry.summary if entry.has_summary else f"[dim]{entry.summary}[/dim]"
            table.add_row(entry.label, summary)
        self.console.print(table)
