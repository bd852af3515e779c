"""
Heimdall command line interface.

Usage:
    heimdall <settings_file> <crawl_options_file> <seed_list_file>
    python main.py settings.properties crawl.properties seeds.txt
"""

import asyncio
import sys
from typing import List, Tuple

import click
import structlog
from playwright.async_api import Error as PlaywrightError
from rich.console import Console
from rich.table import Table

from . import __version__
from .cache import create_cache
from .core.config import CrawlOptions, Settings, load_properties, load_seed_list
from .core.crawler_instance import CrawlerInstance
from .core.errors import ConfigurationError, HeimdallError
from .core.logging_setup import configure_logging
from .recorder import create_recorder


USAGE = "Usage: <settings_file> <crawl_options_file> <seed_list_file>"

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130

console = Console()
logger = structlog.get_logger(__name__)


def report_error(error: Exception):
    """Error listener handed to the cache, recorder and workers"""
    logger.error("crawl_error", error=str(error), exc_info=error)


@click.command()
@click.version_option(version=__version__, prog_name="heimdall")
@click.option("--headless/--no-headless", default=True, help="Run the browser headless (default: headless)")
@click.argument("paths", nargs=-1, type=click.Path())
def main(paths: Tuple[str, ...], headless: bool):
    """
    Crawl the seed URLs by clicking through their pages, recording every
    HTTP call to a WARC file with a CDX index.

    Example:
        heimdall settings.properties crawl.properties seeds.txt
    """
    if len(paths) != 3:
        console.print(USAGE, markup=False)
        sys.exit(EXIT_FAILURE)

    settings_path, options_path, seeds_path = paths

    try:
        settings = Settings.from_properties(load_properties(settings_path))
        options = CrawlOptions.from_properties(load_properties(options_path))
        seeds = load_seed_list(seeds_path)
    except ConfigurationError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        sys.exit(EXIT_FAILURE)

    configure_logging(settings.log_level, json_format=settings.log_format == "json")
    print_banner(settings, options, seeds)

    try:
        stats, interrupted = asyncio.run(run_crawl(settings, options, seeds, headless=headless))
    except ConfigurationError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        sys.exit(EXIT_FAILURE)
    except HeimdallError as e:
        console.print(f"[bold red]Initialisation failed:[/bold red] {e}")
        sys.exit(EXIT_FAILURE)
    except PlaywrightError as e:
        console.print(f"[bold red]Browser error:[/bold red] {e}")
        sys.exit(EXIT_FAILURE)

    print_summary(stats, interrupted)
    sys.exit(EXIT_INTERRUPTED if interrupted else EXIT_OK)


async def run_crawl(
    settings: Settings,
    options: CrawlOptions,
    seeds: List[str],
    headless: bool = True,
) -> Tuple[dict, bool]:
    """
    Open the recorder and cache, crawl the seeds, and close everything.

    Returns:
        Crawl statistics and whether the crawl was interrupted by a signal

    Raises:
        ConfigurationError: If a selector or required setting is invalid
        CacheError: If the cache cannot be opened
        RecorderError: If the recorder cannot be opened
    """
    recorder = create_recorder(settings.call_recorder)
    cache = create_cache(settings.server_response_cache)

    recorder.initialise(settings.properties)
    try:
        cache.initialise(settings.properties, report_error)
    except HeimdallError:
        recorder.dispose()
        raise

    with cache:
        instance = CrawlerInstance(
            recorder=recorder,
            cache=cache,
            options=options,
            reference_polling_interval=settings.reference_polling_interval,
            error_listener=report_error,
            headless=headless,
        )
        instance.install_signal_handlers()
        try:
            await instance.crawl(seeds)
        finally:
            instance.remove_signal_handlers()

    return instance.get_stats(), instance.interrupted


def print_banner(settings: Settings, options: CrawlOptions, seeds: List[str]):
    console.print("\n" + "=" * 80)
    console.print(f"HEIMDALL - Dynamic Web Crawler v{__version__}")
    console.print("=" * 80 + "\n")

    console.print(f"[green]Seeds:[/green] {len(seeds)}")
    for seed in seeds[:10]:
        console.print(f"  {seed}", markup=False)
    if len(seeds) > 10:
        console.print(f"  [dim]... and {len(seeds) - 10} more[/dim]")

    console.print(f"[green]Workers:[/green] {options.concurrent_workers}")
    console.print(f"[green]Max Click Depth:[/green] {options.max_ancestor_click_depth or 'unbounded'}")
    console.print(f"[green]Politeness:[/green] {'one request per host' if options.limit_single_concurrent_hit_per_domain else 'off'}")
    console.print(f"[green]Submit Forms:[/green] {options.submit_forms}")
    console.print(f"[green]Recorder:[/green] {settings.call_recorder}")
    console.print(f"[green]Cache:[/green] {settings.server_response_cache}")
    console.print()


def print_summary(stats: dict, interrupted: bool):
    table = Table(title="Crawl Summary")
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", style="green", justify="right")

    table.add_row("Seeds", str(stats["seeds"]))
    table.add_row("References processed", str(stats["references_processed"]))
    table.add_row("References registered", str(stats["references_registered"]))
    table.add_row("References aborted", str(stats["references_aborted"]))
    table.add_row("References pending", str(stats["references_pending"]))
    table.add_row("Calls recorded", str(stats["calls_recorded"]))
    table.add_row("Cache hits", str(stats["cache_hits"]))
    table.add_row("Failed requests", str(stats["requests_failed"]))
    table.add_row("Broken workers", str(stats["workers_broken"]))

    console.print()
    console.print(table)

    if interrupted:
        console.print("\n[yellow]Crawl interrupted[/yellow]\n")
    else:
        console.print("\n[bold green]Crawl complete![/bold green]\n")


if __name__ == "__main__":
    main()
