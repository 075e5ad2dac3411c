#!/usr/bin/env python3
"""
runbatch-sim: Interactive simulator for testing runbatch.

Usage:
    runbatch-sim --count 100 --latency 50
    runbatch-sim --count 50 --error-rate 0.1 --mode drain
    runbatch-sim --count 40 --mode add_now --submit-rate 20 --no-tui
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from runbatch_sim.display import RICH_AVAILABLE, SimulationState, SimulatorDisplay, print_simple_stats
from runbatch_sim.runner import MODES, SimConfig, SimulationRunner


def configure_logging(verbose: bool = False) -> None:
    """Configure logging for the simulator."""
    runbatch_logger = logging.getLogger("runbatch")
    if verbose:
        runbatch_logger.setLevel(logging.DEBUG)
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s: %(name)s: %(message)s"))
        runbatch_logger.addHandler(handler)
    else:
        # Silence library logs - simulator handles its own display
        runbatch_logger.setLevel(logging.CRITICAL)


async def run_with_display(config: SimConfig, use_tui: bool = True, verbose: bool = False) -> SimulationState:
    """Run simulation with visual display.

    Args:
        config: Simulation configuration
        use_tui: Use Rich TUI display (default True)
        verbose: Print event log instead of status updates (implies no-tui)
    """
    state = SimulationState()

    if verbose:
        from datetime import datetime

        original_add_event = state.add_event

        def logging_add_event(event_type: str, work_id: str, details: str = "") -> None:
            ts = datetime.now().strftime("%H:%M:%S.%f")[:-3]
            symbols = {"completed": "✓", "failed": "✗", "started": "▶", "queued": "+", "batch": "#"}
            symbol = symbols.get(event_type, "·")
            print(f"{ts} {symbol} {event_type:<12} {work_id:<20} {details}")
            original_add_event(event_type, work_id, details)

        state.add_event = logging_add_event  # type: ignore

    runner = SimulationRunner(config, state)

    if verbose:
        print("\nrunbatch-sim [verbose]")
        print(f"   Mode: {config.mode}, Count: {config.count}, Concurrency: {config.concurrency}")
        print(f"   Latency: {config.latency_ms}ms ±{int(config.latency_jitter*100)}%, Error: {config.error_rate * 100:.0f}%")
        print()
        print(f"{'TIME':<12} {'':1} {'EVENT':<12} {'WORK_ID':<20} DETAILS")
        print("-" * 72)

        try:
            await runner.run()
        except (KeyboardInterrupt, asyncio.CancelledError):
            runner.stop()

        print("-" * 72)

    elif use_tui and RICH_AVAILABLE:
        display = SimulatorDisplay(state)

        async def update_loop():
            """Background task to refresh display."""
            while True:
                display.refresh()
                await asyncio.sleep(0.1)

        with display:
            update_task = asyncio.create_task(update_loop())
            try:
                await runner.run()
            except (KeyboardInterrupt, asyncio.CancelledError):
                runner.stop()
            finally:
                update_task.cancel()
                try:
                    await update_task
                except asyncio.CancelledError:
                    pass
                display.refresh()

    else:
        print("\nrunbatch-sim")
        print(f"   Mode: {config.mode}, Count: {config.count}, Latency: {config.latency_ms}ms, Error: {config.error_rate * 100:.0f}%")
        print()

        async def update_loop():
            """Print progress periodically."""
            while True:
                print_simple_stats(state)
                await asyncio.sleep(0.5)

        update_task = asyncio.create_task(update_loop())
        try:
            await runner.run()
        except (KeyboardInterrupt, asyncio.CancelledError):
            runner.stop()
        finally:
            update_task.cancel()
            try:
                await update_task
            except asyncio.CancelledError:
                pass

        print_simple_stats(state)
        print()

    print_final_summary(state)
    return state


def print_final_summary(state: SimulationState) -> None:
    """Print final summary after simulation."""
    order = "n/a" if state.in_order is None else ("yes" if state.in_order else "no")

    if RICH_AVAILABLE:
        from rich.console import Console
        from rich.table import Table

        console = Console()
        console.print()

        table = Table(title="Simulation Results", show_header=False, border_style="green")
        table.add_column("Metric", style="dim")
        table.add_column("Value", style="bold")

        table.add_row("Submitted", str(state.submitted))
        table.add_row("Completed", f"[green]{state.completed}[/green]")
        table.add_row("Failed", f"[red]{state.failed}[/red]" if state.failed else "0")
        table.add_row("Batches", str(state.batches))
        table.add_row("Peak running", str(state.peak_running))
        table.add_row("In order", order)
        table.add_row("Duration", f"{state.elapsed:.2f}s")
        table.add_row("Throughput", f"{state.throughput:.2f}/s")
        if state.error:
            table.add_row("Error", f"[red]{state.error}[/red]")

        console.print(table)
    else:
        print("\nResults:")
        print(f"   Submitted:    {state.submitted}")
        print(f"   Completed:    {state.completed}")
        print(f"   Failed:       {state.failed}")
        print(f"   Batches:      {state.batches}")
        print(f"   Peak running: {state.peak_running}")
        print(f"   In order:     {order}")
        print(f"   Duration:     {state.elapsed:.2f}s")
        print(f"   Throughput:   {state.throughput:.2f}/s")
        if state.error:
            print(f"   Error:        {state.error}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="runbatch simulator - test batched workloads interactively",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  runbatch-sim --count 100 --latency 50
  runbatch-sim --count 1000 --latency 10 --concurrency 10
  runbatch-sim --count 50 --error-rate 0.2 --mode drain
  runbatch-sim --count 40 --mode add_now --submit-rate 20
        """,
    )

    parser.add_argument(
        "--mode", "-m",
        choices=MODES,
        default="start",
        help="How work is pushed through the queue (default: start)",
    )
    parser.add_argument(
        "--count", "-n",
        type=int,
        default=100,
        help="Number of work units to queue (default: 100)",
    )
    parser.add_argument(
        "--latency", "-l",
        type=int,
        default=100,
        help="Base unit latency in ms (default: 100)",
    )
    parser.add_argument(
        "--jitter", "-j",
        type=float,
        default=0.2,
        help="Latency variance as fraction, e.g. 0.2 = ±20%% (default: 0.2)",
    )
    parser.add_argument(
        "--outliers",
        type=float,
        default=0.0,
        help="Chance of outlier (slow) unit, 0.0-1.0 (default: 0.0)",
    )
    parser.add_argument(
        "--outlier-mult",
        type=float,
        default=5.0,
        help="Outlier latency multiplier (default: 5.0)",
    )
    parser.add_argument(
        "--error-rate", "-e",
        type=float,
        default=0.0,
        help="Fraction of units that fail, 0.0-1.0 (default: 0.0)",
    )
    parser.add_argument(
        "--duration", "-d",
        type=float,
        default=None,
        help="Maximum duration in seconds (default: run until complete)",
    )
    parser.add_argument(
        "--concurrency", "-c",
        type=int,
        default=4,
        help="Units per batch (default: 4)",
    )
    parser.add_argument(
        "--delay",
        type=float,
        default=0.0,
        help="Seconds to wait after each batch settles (default: 0)",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=5.0,
        help="Seconds between re-checks while the queue is busy (default: 5)",
    )
    parser.add_argument(
        "--submit-rate", "-s",
        type=float,
        default=None,
        help="Submit rate (work/second) for add_now mode (default: as fast as possible)",
    )
    parser.add_argument(
        "--tui",
        action="store_true",
        help="Use full TUI display (requires rich)",
    )
    parser.add_argument(
        "--no-tui",
        action="store_true",
        help="Disable TUI, use simple text output",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Print event log instead of status updates (no-tui)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed for reproducible behavior (default: random)",
    )
    return parser


def main(argv: list[str] | None = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=args.verbose)

    use_tui = args.tui or (RICH_AVAILABLE and not args.no_tui)
    if args.tui and not RICH_AVAILABLE:
        print("Warning: --tui requires rich. Install with: pip install runbatch[sim]", file=sys.stderr)
        print("Falling back to simple display.", file=sys.stderr)
        use_tui = False

    try:
        config = SimConfig(
            count=args.count,
            latency_ms=args.latency,
            latency_jitter=args.jitter,
            outlier_chance=args.outliers,
            outlier_multiplier=args.outlier_mult,
            error_rate=args.error_rate,
            duration=args.duration,
            concurrency=args.concurrency,
            delay=args.delay,
            interval=args.interval,
            mode=args.mode,
            submit_rate=args.submit_rate,
            seed=args.seed,
        )
    except ValueError as e:
        parser.error(str(e))

    async def run_main():
        """Wrapper to handle signals properly."""
        import signal

        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        main_task = asyncio.create_task(run_with_display(config, use_tui=use_tui, verbose=args.verbose))
        stop_task = asyncio.create_task(stop_event.wait())

        done, pending = await asyncio.wait(
            [main_task, stop_task],
            return_when=asyncio.FIRST_COMPLETED,
        )

        for task in pending:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if stop_task in done:
            print("\nInterrupted.")
            sys.exit(130)

        state = main_task.result()
        if state.error:
            sys.exit(1)

    try:
        asyncio.run(run_main())
    except KeyboardInterrupt:
        print("\nInterrupted.")
        sys.exit(130)


if __name__ == "__main__":
    main()
