"""CLI entry point for V8 coverage artifacts."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from v8cov.controller import finalize_offline
from v8cov.coverage.store import DiskCoverageStore
from v8cov.models.config import CoverageConfig
from v8cov.models.coverage import CoverageMap

console = Console()


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _load_config(config: str) -> CoverageConfig:
    path = Path(config)
    if not path.exists():
        console.print(f"[yellow]Config file not found: {config}, using defaults[/yellow]")
        return CoverageConfig()
    try:
        return CoverageConfig.load(path)
    except ValueError as e:
        console.print(f"[red]Invalid config {config}:[/red] {e}")
        sys.exit(1)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Native V8 coverage for end-to-end test runs"""
    setup_logging(verbose)


@cli.command()
@click.argument("spec")
@click.option("--config", "-c", default="v8cov.json", help="Config file path")
def finalize(spec: str, config: str) -> None:
    """Convert a leftover raw coverage file for SPEC into canonical coverage."""
    cfg = _load_config(config)
    coverage_map = finalize_offline(cfg, spec)
    if coverage_map is None:
        console.print(f"[yellow]No coverage finalized for {spec}[/yellow]")
        sys.exit(1)

    table = Table(title=f"Coverage for {spec}")
    table.add_column("File", style="bold")
    table.add_column("Lines hit")
    for path in sorted(coverage_map.files()):
        lines = coverage_map.file_coverage_for(path).line_coverage()
        hit = sum(1 for count in lines.values() if count > 0)
        table.add_row(path, f"{hit}/{len(lines)}")
    console.print(table)


@cli.command()
@click.argument("spec")
@click.option("--config", "-c", default="v8cov.json", help="Config file path")
def clear(spec: str, config: str) -> None:
    """Remove raw and canonical coverage files for SPEC."""
    cfg = _load_config(config)
    DiskCoverageStore(cfg.coverage_dir).purge(spec)
    console.print(f"[green]Cleared coverage for {spec}[/green]")


@cli.command()
@click.option("--output", "-o", default="coverage-final.json", help="Merged output file")
@click.option("--config", "-c", default="v8cov.json", help="Config file path")
def merge(output: str, config: str) -> None:
    """Merge every spec's canonical coverage into one file for report tools."""
    cfg = _load_config(config)
    store = DiskCoverageStore(cfg.coverage_dir)
    artifacts = store.list_canonical()
    if not artifacts:
        console.print(f"[yellow]No coverage files found in {cfg.coverage_dir}[/yellow]")
        return

    output_path = Path(output)
    merged = CoverageMap()
    merged_files = 0
    for path in artifacts:
        if path.resolve() == output_path.resolve():
            continue
        with open(path) as f:
            merged.merge(json.load(f))
        merged_files += 1

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        json.dump(merged.to_json(), f)
    console.print(f"[green]Merged {merged_files} files ({len(merged)} sources) into[/green] [blue]{output_path}[/blue]")


@cli.command()
@click.option("--base-url", "-u", prompt="Application base URL", help="URL the application is served from")
def init(base_url: str) -> None:
    """Create a default configuration file."""
    config_path = Path("v8cov.json")
    if config_path.exists():
        if not click.confirm("v8cov.json already exists. Overwrite?"):
            return

    cfg = CoverageConfig(base_urls=[base_url])
    cfg.save(config_path)
    console.print(f"[green]Created {config_path}[/green]")
    console.print("\nRun your end-to-end tests with coverage enabled:")
    console.print("  [blue]V8_COVERAGE=true pytest[/blue]")


if __name__ == "__main__":
    cli()
