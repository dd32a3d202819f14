#!/usr/bin/env python3
"""
LogoFetch CLI - Command-line tool for resolving, validating and analyzing logos.

Usage:
    logofetch <domain_or_company> [options]
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from logo_cache import (
    BrightnessAnalysis,
    ImageAnalysisError,
    LogoResolution,
    LogoService,
    MemoryHealthState,
    Settings,
)


def setup_logging(verbose: bool = False) -> None:
    """Set up minimal logging configuration."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    # Suppress all HTTP logging
    logging.getLogger("httpx").setLevel(logging.CRITICAL)
    logging.getLogger("httpcore").setLevel(logging.CRITICAL)


def create_result_panel(result: LogoResolution) -> Panel:
    """Create a rich panel describing a resolved logo."""
    details = Table(show_header=False, box=None, padding=(0, 1))
    details.add_row("[cyan]Key:[/cyan]", result.key)
    details.add_row("[cyan]Source:[/cyan]", result.source.value)

    if result.buffer is not None:
        details.add_row("[cyan]Type:[/cyan]", result.content_type)
        details.add_row("[cyan]Size:[/cyan]", f"{len(result.buffer)} bytes")
        return Panel(details, title="Logo", border_style="green")

    details.add_row("[cyan]Error:[/cyan]", f"[red]{result.error}[/red]")
    return Panel(details, title="No logo", border_style="red")


def create_analysis_panel(analysis: BrightnessAnalysis) -> Panel:
    """Create a rich panel for a brightness analysis."""
    details = Table(show_header=False, box=None, padding=(0, 1))
    details.add_row(
        "[cyan]Image:[/cyan]",
        f"{analysis.format.upper()} {analysis.width}×{analysis.height}",
    )
    details.add_row("[cyan]Brightness:[/cyan]", f"{analysis.average_brightness:.1f}")
    details.add_row("[cyan]Light colored:[/cyan]", str(analysis.is_light_colored))
    details.add_row("[cyan]Transparency:[/cyan]", str(analysis.has_transparency))
    details.add_row(
        "[cyan]Invert in light theme:[/cyan]",
        str(analysis.needs_inversion_in_light_theme),
    )
    details.add_row(
        "[cyan]Invert in dark theme:[/cyan]",
        str(analysis.needs_inversion_in_dark_theme),
    )
    return Panel(details, title="Brightness", border_style="cyan")


def display_health(service: LogoService, console: Console) -> None:
    """Display cache statistics and memory health."""
    stats = service.get_cache_stats()
    health = service.get_memory_health()

    table = Table(title="Runtime", show_header=True, header_style="bold")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Cache entries", str(stats.entry_count))
    table.add_row("Cache hits / misses", f"{stats.hit_count} / {stats.miss_count}")
    table.add_row("Cached bytes", str(stats.total_bytes))

    state_style = {
        MemoryHealthState.HEALTHY: "green",
        MemoryHealthState.WARNING: "yellow",
        MemoryHealthState.CRITICAL: "red",
    }[health.state]
    table.add_row("Memory", f"[{state_style}]{health.state.value}[/{state_style}]")
    table.add_row("RSS", f"{health.rss / 1024**2:.1f} MB")
    table.add_row("Trend", health.trend.value)
    console.print(table)


def save_logo(data: bytes, content_type: str, save_dir: str, name: str) -> Path:
    output_dir = Path(save_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    ext = "svg" if "svg" in content_type else "png"
    output_path = output_dir / f"{name}.{ext}"
    output_path.write_bytes(data)
    return output_path


async def run(args: argparse.Namespace, console: Console) -> int:
    overrides = {}
    if args.reference:
        overrides["placeholder_reference_path"] = Path(args.reference)
    settings = Settings(**overrides)

    async with LogoService(settings) as service:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            progress.add_task(f"Resolving logo for {args.domain}...", total=None)
            result = await service.resolve_logo(args.domain)

        console.print(create_result_panel(result))
        if result.buffer is None:
            return 1

        if args.analyze or args.invert:
            try:
                analysis = await service.analyze_brightness(result.buffer)
                console.print(create_analysis_panel(analysis))
            except ImageAnalysisError as e:
                console.print(f"[yellow]Cannot analyze this logo: {e}[/yellow]")

        if args.save:
            path = save_logo(result.buffer, result.content_type, args.save, "logo")
            console.print(f"[bold green]Saved to:[/bold green] [link]{path.absolute()}[/link]")

        if args.invert:
            try:
                inverted = await service.invert(result.buffer)
            except ImageAnalysisError as e:
                console.print(f"[yellow]Cannot invert this logo: {e}[/yellow]")
            else:
                path = save_logo(inverted, "image/png", args.save or ".", "logo-inverted")
                console.print(
                    f"[bold green]Inverted logo saved to:[/bold green] [link]{path.absolute()}[/link]"
                )

        if args.verbose:
            display_health(service, console)

    return 0


async def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Resolve, validate and analyze company logos",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  logofetch github.com
  logofetch "https://www.reddit.com/r/python" --save
  logofetch "Acme Corp" --analyze --verbose
  logofetch openai.com --save logos/ --invert --reference globe.png
        """,
    )

    parser.add_argument(
        "domain", help="Domain, URL or company name (e.g., github.com)"
    )

    parser.add_argument(
        "--save",
        nargs="?",
        const=".",
        metavar="DIR",
        help="Save the logo as 'logo.ext' in current directory or specified directory",
    )

    parser.add_argument(
        "--analyze", action="store_true", help="Show brightness analysis"
    )

    parser.add_argument(
        "--invert",
        action="store_true",
        help="Also save a color-inverted copy as 'logo-inverted.png'",
    )

    parser.add_argument(
        "--reference",
        metavar="PATH",
        help="Placeholder icon to reject (defaults to LOGO_CACHE_PLACEHOLDER_REFERENCE_PATH)",
    )

    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Show debug logs and runtime stats"
    )

    args = parser.parse_args()

    setup_logging(verbose=args.verbose)
    console = Console()

    console.print(
        Panel.fit(
            f"[bold blue]LogoFetch[/bold blue] • Resolving [cyan]{args.domain}[/cyan]",
            border_style="blue",
        )
    )

    try:
        exit_code = await run(args, console)
    except KeyboardInterrupt:
        console.print("\n[red]Operation cancelled by user[/red]")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        if args.verbose:
            console.print_exception()
        sys.exit(1)

    sys.exit(exit_code)


def cli_entry() -> None:
    """Sync entry point for CLI script."""
    asyncio.run(main())


if __name__ == "__main__":
    cli_entry()
