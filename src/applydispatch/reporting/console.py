"""Rich-powered console output."""

from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from applydispatch.models import BatchSummary, JobOutcome

_console = Console()


def print_banner(user_id: str) -> None:
    """Display the startup banner."""
    _console.print(
        Panel.fit(
            f"[bold cyan]ApplyDispatch[/bold cyan]  —  Auto-application batch for {user_id}",
            border_style="cyan",
        )
    )


def print_progress(record: JobOutcome, index: int) -> None:
    """Print a single job result line."""
    style_map = {
        "sent": "bold green",
        "awaiting_approval": "bold yellow",
        "skipped_quota": "dim",
        "abandoned": "dim red",
        "failed": "bold red",
    }
    style = style_map.get(record.outcome, "")
    title = record.title or "(untitled)"
    company = record.company or "(unknown)"
    _console.print(
        f"  [{style}]{index:>4}[/{style}]  "
        f"[{style}]{record.outcome:<20}[/{style}]  "
        f"{title}  @  {company}"
    )


def print_batch_report(summary: BatchSummary) -> None:
    """Display a batch summary table."""
    table = Table(title="Batch Report", show_header=True, header_style="bold magenta")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Matched", str(summary.matched))
    table.add_row("Composed", str(summary.composed))
    table.add_row("Sent", str(summary.sent))
    table.add_row("Failed", str(summary.failed))
    table.add_row("Skipped (daily quota)", str(summary.skipped_by_quota))
    table.add_row("Awaiting approval", str(summary.awaiting_approval))
    table.add_row("Run ID", summary.run_id)
    table.add_row("Started", summary.started_at)
    table.add_row("Ended", summary.ended_at or "—")

    _console.print()
    _console.print(table)
    _console.print()
