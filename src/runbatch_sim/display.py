"""Rich-based display for runbatch-sim.

This module provides visual output for the simulator using Rich library.
It's decoupled from the simulation logic - it just renders data.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from rich.console import Console

# Try to import Rich, provide fallback info if not available
try:
    from rich.console import Console
    from rich.layout import Layout
    from rich.live import Live
    from rich.panel import Panel
    from rich.table import Table
    from rich.text import Text

    RICH_AVAILABLE = True
except ImportError:
    RICH_AVAILABLE = False


@dataclass
class EventRecord:
    """A recent event for display."""

    timestamp: datetime
    event_type: str
    work_id: str
    details: str = ""


@dataclass
class SimulationState:
    """Current state of the simulation for display.

    This is the data contract between the runner and display.
    The runner updates this; the display renders it.
    """

    # Queue stats
    submitted: int = 0
    queued: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0

    # Batch stats
    batches: int = 0
    batch_size: int = 0
    peak_running: int = 0
    queue_state: str = "idle"
    parked: bool = False

    # Timing
    start_time: float = 0.0
    elapsed: float = 0.0

    # Recent events (most recent first)
    events: list[EventRecord] = field(default_factory=list)
    max_events: int = 10

    # Config display
    mode: str = "start"
    concurrency: int = 4
    target_count: int = 0
    latency_ms: int = 0
    latency_jitter: float = 0.2
    outlier_chance: float = 0.0
    error_rate: float = 0.0

    # Outcome
    error: str | None = None
    in_order: bool | None = None

    @property
    def throughput(self) -> float:
        """Work units completed per second."""
        if self.elapsed > 0:
            return self.completed / self.elapsed
        return 0.0

    @property
    def progress(self) -> float:
        """Fraction complete (0.0 to 1.0)."""
        if self.submitted > 0:
            return (self.completed + self.failed) / self.submitted
        return 0.0

    def add_event(self, event_type: str, work_id: str, details: str = "") -> None:
        """Add an event to the display log."""
        self.events.insert(0, EventRecord(
            timestamp=datetime.now(),
            event_type=event_type,
            work_id=work_id,
            details=details,
        ))
        if len(self.events) > self.max_events:
            self.events = self.events[:self.max_events]


class SimulatorDisplay:
    """Rich-based TUI display for the simulator.

    Shows queue stats, the batch currently in flight, recent events
    and a config footer.
    """

    def __init__(self, state: SimulationState, console: Console | None = None):
        if not RICH_AVAILABLE:
            raise ImportError(
                "Rich is required for the simulator display. "
                "Install with: pip install runbatch[sim]"
            )

        self.state = state
        self.console = console or Console()
        self._live: Live | None = None

    def __enter__(self) -> SimulatorDisplay:
        self._live = Live(
            self._build_layout(),
            console=self.console,
            refresh_per_second=10,
            screen=False,
        )
        self._live.__enter__()
        return self

    def __exit__(self, *args) -> None:
        if self._live:
            self._live.__exit__(*args)
            self._live = None

    def refresh(self) -> None:
        """Update the display with current state."""
        if self._live:
            self._live.update(self._build_layout())

    def _build_layout(self) -> Panel:
        layout = Layout()
        layout.split_column(
            Layout(name="queue", size=4),
            Layout(name="batch", size=4),
            Layout(name="events", size=7),
            Layout(name="controls", size=3),
        )
        layout["queue"].update(self._build_queue_section())
        layout["batch"].update(self._build_batch_section())
        layout["events"].update(self._build_events_section())
        layout["controls"].update(self._build_controls_section())

        return Panel(
            layout,
            title="[bold cyan]runbatch-sim[/bold cyan]",
            border_style="cyan",
        )

    def _build_queue_section(self) -> Panel:
        """Build queue stats panel."""
        s = self.state

        stats = Table.grid(expand=True, padding=(0, 2))
        for _ in range(4):
            stats.add_column(justify="left")
        stats.add_row(
            f"[dim]Queued:[/dim] [bold]{s.queued:,}[/bold]",
            f"[dim]Running:[/dim] [bold yellow]{s.running}[/bold yellow]",
            f"[dim]Completed:[/dim] [bold green]{s.completed:,}[/bold green]",
            f"[dim]Failed:[/dim] [bold red]{s.failed}[/bold red]",
        )

        stats2 = Table.grid(expand=True, padding=(0, 2))
        for _ in range(3):
            stats2.add_column(justify="left")
        parked = "[red]ON[/red]" if s.parked else "[green]OFF[/green]"
        stats2.add_row(
            f"[dim]Parked:[/dim] {parked}",
            f"[dim]Progress:[/dim] [bold]{s.progress * 100:.0f}%[/bold]",
            f"[dim]Throughput:[/dim] [bold]{s.throughput:.1f}/s[/bold]",
        )

        content = Table.grid(expand=True)
        content.add_row(stats)
        content.add_row(stats2)
        return Panel(content, title="[bold]Queue[/bold]", border_style="blue")

    def _build_batch_section(self) -> Panel:
        """Build the in-flight batch panel."""
        s = self.state

        table = Table(box=None, expand=True, padding=(0, 1), show_header=False)
        table.add_column("State", width=18)
        table.add_column("Batch", width=24)
        table.add_column("Batches", width=12, justify="right")
        table.add_column("Peak", width=10, justify="right")

        pct = s.running / s.concurrency if s.concurrency else 0.0
        bar = self._progress_bar(pct, 8)
        table.add_row(
            f"[bold]{s.queue_state}[/bold]",
            f"{bar} {s.running}/{s.concurrency}",
            f"{s.batches} run",
            f"peak {s.peak_running}",
        )
        return Panel(table, title="[bold]Batch[/bold]", border_style="blue")

    def _build_events_section(self) -> Panel:
        """Build recent events panel."""
        s = self.state

        table = Table(box=None, expand=True, padding=(0, 1), show_header=False)
        table.add_column("Time", width=10, style="dim")
        table.add_column("Event", width=14)
        table.add_column("ID", width=12)
        table.add_column("Details")

        event_styles = {
            "completed": "green",
            "failed": "red",
            "started": "yellow",
            "queued": "dim",
            "batch": "cyan",
        }
        for event in s.events[:5]:
            style = event_styles.get(event.event_type, "white")
            table.add_row(
                event.timestamp.strftime("%H:%M:%S"),
                f"[{style}]{event.event_type}[/{style}]",
                event.work_id[:12],
                event.details[:30],
            )

        if not s.events:
            table.add_row("[dim]No events yet[/dim]", "", "", "")

        return Panel(table, title="[bold]Recent Events[/bold]", border_style="blue")

    def _build_controls_section(self) -> Panel:
        """Build controls/config footer."""
        s = self.state

        text = Text()
        text.append("Mode: ", style="dim")
        text.append(s.mode, style="bold")
        text.append("  Latency: ", style="dim")
        text.append(f"{s.latency_ms}ms", style="bold")
        if s.latency_jitter > 0:
            text.append(f" ±{s.latency_jitter*100:.0f}%", style="dim")
        if s.outlier_chance > 0:
            text.append("  Outliers: ", style="dim")
            text.append(f"{s.outlier_chance*100:.0f}%", style="bold yellow")
        text.append("  Error: ", style="dim")
        text.append(f"{s.error_rate*100:.0f}%", style="bold red" if s.error_rate > 0 else "bold")
        text.append("  Target: ", style="dim")
        text.append(f"{s.target_count:,}", style="bold")
        text.append("    Ctrl+C to stop", style="dim")

        return Panel(text, title="[bold]Config[/bold]", border_style="dim")

    @staticmethod
    def _progress_bar(pct: float, width: int = 10) -> str:
        """Create a mini progress bar."""
        pct = min(1.0, max(0.0, pct))
        filled = int(pct * width)
        empty = width - filled

        if pct >= 0.9:
            color = "red"
        elif pct >= 0.7:
            color = "yellow"
        else:
            color = "green"

        return f"[{color}]{'█' * filled}{'░' * empty}[/{color}]"


def print_simple_stats(state: SimulationState) -> None:
    """Print simple stats without Rich (fallback)."""
    s = state
    done = s.completed + s.failed
    pct = (done / s.submitted * 100) if s.submitted > 0 else 0

    print(
        f"\r[{done}/{s.submitted}] "
        f"Q:{s.queued} R:{s.running} B:{s.batches} ✓:{s.completed} ✗:{s.failed} "
        f"({pct:.0f}%) {s.throughput:.1f}/s",
        end="",
        flush=True,
    )
