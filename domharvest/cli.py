"""CLI entry point for domharvest.

Launches a local Chromium, runs single or batch harvests from JSON schema
files and prints or writes the results.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Optional

import orjson
import typer
from playwright.async_api import async_playwright
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .clients.browser import PlaywrightPageFactory
from .core.config import HarvesterConfig, get_config
from .core.errors import HarvestError
from .harvester import Harvester
from .output import ResultsWriter
from .types.options import BatchItem, HarvestOptions, ScreenshotOptions, WaitForSelectorOptions
from .types.results import HarvestRecord, summarize
from .types.schema import SchemaError, schema_from_dict

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# CLI app
app = typer.Typer(
    name="domharvest",
    help="domharvest - Extract structured data from rendered web pages",
    add_completion=False,
)

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"domharvest version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        help="Show version and exit",
    ),
) -> None:
    """domharvest - Extract structured data from rendered web pages."""
    pass


def _load_json(path: Path) -> Any:
    try:
        return orjson.loads(path.read_bytes())
    except (OSError, orjson.JSONDecodeError) as e:
        console.print(f"[red]Cannot read {path}:[/red] {e}")
        raise typer.Exit(1)


def _load_config(verbose: bool) -> HarvesterConfig:
    config = get_config()
    if verbose:
        config.log_level = "debug"
        logging.getLogger().setLevel(logging.DEBUG)

    errors = config.validate()
    if errors:
        console.print("[red]Configuration errors:[/red]")
        for error in errors:
            console.print(f"  - {error}")
        console.print("\nPlease set DOMHARVEST_* environment variables or fix your .env file.")
        raise typer.Exit(1)
    return config


@asynccontextmanager
async def open_harvester(config: HarvesterConfig) -> AsyncIterator[Harvester]:
    """Launch Chromium and yield an engine bound to it."""
    async with async_playwright() as playwright:
        browser = await playwright.chromium.launch(headless=config.headless)
        try:
            factory = PlaywrightPageFactory(
                browser,
                user_agent=config.user_agent,
                viewport=config.viewport,
                extra_headers=config.extra_headers,
            )
            async with Harvester(factory, config) as harvester:
                yield harvester
        finally:
            await browser.close()


@app.command("harvest")
def harvest_cmd(
    url: str = typer.Argument(..., help="Page to harvest"),
    selector: str = typer.Argument(..., help="Root selector; one result per match"),
    schema_file: Path = typer.Option(
        ...,
        "--schema",
        "-s",
        help="JSON schema file",
    ),
    retries: int = typer.Option(0, "--retries", "-r", help="Retries after the first attempt"),
    backoff: str = typer.Option("exponential", "--backoff", help="exponential or linear"),
    retry_on: Optional[list[str]] = typer.Option(
        None,
        "--retry-on",
        help="Error kinds to retry (TimeoutError, NavigationError, ExtractionError)",
    ),
    wait_until: str = typer.Option(
        "domcontentloaded",
        "--wait-until",
        help="load, domcontentloaded or networkidle",
    ),
    wait_for: Optional[str] = typer.Option(
        None,
        "--wait-for",
        help="Selector to wait for before extracting",
    ),
    screenshot: Optional[Path] = typer.Option(
        None,
        "--screenshot",
        help="Save a full-page screenshot after extraction",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Write results as JSON instead of printing",
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable verbose logging"),
) -> None:
    """Harvest one page."""
    config = _load_config(verbose)

    try:
        schema = schema_from_dict(_load_json(schema_file))
        options = HarvestOptions(
            retries=retries,
            backoff=backoff,
            retry_on=retry_on or None,
            wait_until=wait_until,
            wait_for_selector=WaitForSelectorOptions(selector=wait_for) if wait_for else None,
            screenshot=ScreenshotOptions(path=str(screenshot), full_page=True) if screenshot else None,
        )
    except (SchemaError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    async def run() -> list[Any]:
        async with open_harvester(config) as harvester:
            return await harvester.harvest(url, selector, schema, options)

    try:
        results = asyncio.run(run())
    except HarvestError as e:
        console.print(f"[red]{e.kind.value}:[/red] {e}")
        raise typer.Exit(1)

    payload = orjson.dumps(results, option=orjson.OPT_INDENT_2)
    if output:
        output.write_bytes(payload)
        console.print(f"[green]Wrote {len(results)} results to {output}[/green]")
    else:
        console.print_json(payload.decode())


def _parse_batch(data: Any) -> tuple[list[BatchItem], Optional[int]]:
    """Parse a batch file: a list of items or {"items": [...], "concurrency": n}."""
    concurrency = None
    if isinstance(data, dict):
        concurrency = data.get("concurrency")
        data = data.get("items", [])

    items = []
    for entry in data:
        items.append(
            BatchItem(
                url=entry["url"],
                selector=entry["selector"],
                schema=schema_from_dict(entry["schema"]),
                options=HarvestOptions.from_dict(entry.get("options")),
            )
        )
    return items, concurrency


@app.command("batch")
def batch_cmd(
    batch_file: Path = typer.Argument(..., help="JSON batch file"),
    concurrency: Optional[int] = typer.Option(
        None,
        "--concurrency",
        "-c",
        help="Items in flight (default from file or config)",
    ),
    output_dir: Path = typer.Option(
        Path("./harvest"),
        "--output-dir",
        "-o",
        help="Output directory",
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable verbose logging"),
) -> None:
    """Harvest every item of a batch file."""
    config = _load_config(verbose)

    try:
        items, file_concurrency = _parse_batch(_load_json(batch_file))
    except (KeyError, TypeError, SchemaError, ValueError) as e:
        console.print(f"[red]Invalid batch file:[/red] {e}")
        raise typer.Exit(1)

    effective_concurrency = concurrency or file_concurrency or config.default_concurrency
    console.print(f"\n[bold]domharvest batch[/bold]")
    console.print(f"Items: {len(items)}  Concurrency: {effective_concurrency}")
    console.print(f"Output: {output_dir}\n")

    started_at = datetime.now()

    async def run() -> tuple[list[HarvestRecord], Path]:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Harvesting...", total=len(items))

            def on_progress(completed: int, total: int) -> None:
                progress.update(task, completed=completed)

            async with open_harvester(config) as harvester:
                records = await harvester.harvest_batch(
                    items,
                    concurrency=effective_concurrency,
                    on_progress=on_progress,
                )

            progress.update(task, description="Writing output...")
            writer = ResultsWriter(output_dir)
            path = await writer.write(records, started_at=started_at)
        return records, path

    try:
        records, output_path = asyncio.run(run())
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    _print_summary(records, output_path)


def _print_summary(records: list[HarvestRecord], output_path: Path) -> None:
    summary = summarize(records)

    console.print()
    table = Table(title="Harvest Summary")
    table.add_column("#", justify="right")
    table.add_column("URL", style="cyan")
    table.add_column("Status")
    table.add_column("Results", justify="right")
    table.add_column("Duration", justify="right")

    for record in records:
        if record.success:
            status = "[green]OK[/green]"
        else:
            status = f"[red]{record.error_kind}[/red]"
        table.add_row(
            str(record.index),
            record.url,
            status,
            str(len(record.data or [])),
            f"{record.duration:.1f}s",
        )

    console.print(table)
    console.print()
    console.print(f"[bold]Succeeded:[/bold] {summary.succeeded}/{summary.total}")
    console.print(f"[bold]Results:[/bold] {summary.items_extracted}")
    console.print(f"[bold]Output:[/bold] {output_path}")


@app.command("check")
def check_config() -> None:
    """Check configuration and browser availability."""
    config = get_config()

    console.print("[bold]Configuration Check[/bold]\n")

    errors = config.validate()
    if errors:
        console.print("[red]Invalid configuration:[/red]")
        for error in errors:
            console.print(f"  - {error}")
        raise typer.Exit(1)

    console.print(f"[green]Timeout:[/green] {config.timeout}s")
    console.print(f"[green]Log level:[/green] {config.log_level}")
    console.print(f"[green]Concurrency:[/green] {config.default_concurrency}")
    if config.rate_limit and config.rate_limit.global_limit:
        limit = config.rate_limit.global_limit
        console.print(f"[green]Global rate limit:[/green] {limit.requests}/{limit.per}s")
    if config.rate_limit and config.rate_limit.per_domain:
        limit = config.rate_limit.per_domain
        console.print(f"[green]Per-domain rate limit:[/green] {limit.requests}/{limit.per}s")

    console.print("\n[bold]Launching Chromium...[/bold]")

    async def probe() -> str:
        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(headless=True)
            version = browser.version
            await browser.close()
            return version

    try:
        with console.status("Starting browser..."):
            version = asyncio.run(probe())
        console.print(f"[green]Chromium {version} is available[/green]")
    except Exception as e:
        console.print(f"[red]Browser launch failed:[/red] {e}")
        console.print("Run `playwright install chromium` to install it.")
        raise typer.Exit(1)


# Alias commands
app.command("run")(harvest_cmd)


if __name__ == "__main__":
    app()
