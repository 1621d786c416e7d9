"""
Command-line interface for the netmap patch manager.
"""

import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional

import click
from rich.panel import Panel
from rich.table import Table

from nmpatches import __version__
from nmpatches.common import console, setup_logging
from nmpatches.config import PatchConfig
from nmpatches.models import DriverKind, InvalidVersionError, KernelVersion, compare_versions
from nmpatches.repository import RepositoryError
from nmpatches.workflow import PatchManager, resolve_driver


def print_banner():
    """Print application banner."""
    console.print(Panel.fit(
        f"[bold blue]Netmap Patch Manager[/bold blue] v{__version__}\n"
        "[dim]Patch range minimization and build verification[/dim]",
        border_style="blue",
    ))


def parse_version(ctx, param, value: Optional[str]) -> Optional[KernelVersion]:
    """Click callback turning an option into a KernelVersion."""
    if value is None:
        return None
    try:
        return KernelVersion.parse(value)
    except InvalidVersionError as e:
        raise click.BadParameter(str(e))


def get_manager(ctx) -> PatchManager:
    config: PatchConfig = ctx.obj["config"]
    config.ensure_dirs()
    return PatchManager(config)


def fail(ctx, error: Exception):
    console.print(f"[red]Error: {error}[/red]")
    if ctx.obj.get("verbose"):
        console.print_exception()
    sys.exit(1)


driver_option = click.option("--driver", "-d", required=True, help="Driver name, or name:version")
kind_option = click.option("--kind", type=click.Choice([k.value for k in DriverKind]),
                           help="Driver kind (default: from the driver table)")


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--work-dir", type=click.Path(), help="Directory holding the patch collections")
@click.option("--jobs", "-j", type=int, help="Parallel compile jobs")
@click.option("--keep-tmp", is_flag=True, help="Keep temporary build directories")
@click.pass_context
def main(ctx, verbose: bool, quiet: bool, work_dir: Optional[str], jobs: Optional[int], keep_tmp: bool):
    """
    Netmap patch manager.

    Extracts per-version driver patches, merges them into version ranges
    and verifies them by building against each kernel release.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet

    if verbose:
        setup_logging(level=logging.DEBUG)
    elif quiet:
        setup_logging(level=logging.WARNING)

    config = PatchConfig.from_env()
    if work_dir:
        config = replace(config, work_dir=Path(work_dir))
    if jobs:
        config = replace(config, jobs=jobs)
    if keep_tmp:
        config = replace(config, keep_tmp=True)
    ctx.obj["config"] = config

    if not quiet:
        print_banner()


@main.command()
@driver_option
@kind_option
@click.option("--from", "start", required=True, callback=parse_version, help="First kernel version")
@click.option("--to", "end", required=True, callback=parse_version, help="End kernel version (excluded)")
@click.pass_context
def extract(ctx, driver: str, kind: Optional[str], start: KernelVersion, end: KernelVersion):
    """
    Extract single-version patches into the pending collection.

    Examples:

        netmap-patches extract -d e1000e --from 2.6.32 --to 3.0
    """
    try:
        manager = get_manager(ctx)
        patches = manager.extract_range(resolve_driver(driver, kind and DriverKind(kind)), start, end)
        console.print(f"[green]Extracted {len(patches)} patch(es)[/green]")
    except (RepositoryError, OSError, ValueError) as e:
        fail(ctx, e)


@main.command()
@click.option("--collection", "-c", default="pending", type=click.Choice(["pending", "final"]),
              help="Collection to verify")
@click.option("--driver", "-d", help="Only check this driver")
@kind_option
@click.pass_context
def check(ctx, collection: str, driver: Optional[str], kind: Optional[str]):
    """
    Build-verify patches; failures move to the rejected collection.
    """
    try:
        manager = get_manager(ctx)
        key = resolve_driver(driver, kind and DriverKind(kind)) if driver else None
        results = manager.check(collection, key)
    except (RepositoryError, OSError) as e:
        fail(ctx, e)
        return

    table = Table(title=f"Verification of {collection}")
    table.add_column("Patch")
    table.add_column("Status")
    table.add_column("Builds", justify="right")
    table.add_column("Cached", justify="right")
    table.add_column("Message")
    colors = {"ok": "green", "warning": "yellow", "failed": "red"}
    for result in results:
        color = colors[result.status.value]
        table.add_row(
            result.patch_name,
            f"[{color}]{result.status.value}[/{color}]",
            str(result.builds),
            str(result.cache_hits),
            result.message,
        )
    console.print(table)

    if any(r.failed for r in results):
        sys.exit(2)


@main.command()
@driver_option
@kind_option
@click.pass_context
def minimize(ctx, driver: str, kind: Optional[str]):
    """
    Merge pending patches into maximal ranges in the final collection.
    """
    try:
        manager = get_manager(ctx)
        report = manager.minimize(resolve_driver(driver, kind and DriverKind(kind)))
    except (RepositoryError, OSError) as e:
        fail(ctx, e)
        return

    console.print(f"{report.inputs} patch(es) -> {len(report.outputs)} final")
    for name in report.outputs:
        console.print(f"  {name}")


@main.command()
@driver_option
@kind_option
@click.option("--version", "-V", "version", required=True, callback=parse_version,
              help="End version of the patch to open up")
@click.pass_context
def infty(ctx, driver: str, kind: Optional[str], version: KernelVersion):
    """
    Extend the final patch ending at VERSION to all later kernels.
    """
    try:
        manager = get_manager(ctx)
        new_name = manager.extend_to_infinity(resolve_driver(driver, kind and DriverKind(kind)), version)
    except (RepositoryError, OSError) as e:
        fail(ctx, e)
        return

    if new_name:
        console.print(f"[green]{new_name}[/green]")
    else:
        console.print(f"[yellow]No final patch ends at {version}[/yellow]")


@main.command()
@driver_option
@kind_option
@click.option("--from", "start", required=True, callback=parse_version, help="First kernel version")
@click.option("--to", "end", required=True, callback=parse_version, help="End kernel version (excluded)")
@click.pass_context
def run(ctx, driver: str, kind: Optional[str], start: KernelVersion, end: KernelVersion):
    """
    Extract, verify, minimize and extend to infinity for one driver.

    Examples:

        netmap-patches run -d ixgbe --from 2.6.32 --to 4.20
    """
    try:
        manager = get_manager(ctx)
        report = manager.process(resolve_driver(driver, kind and DriverKind(kind)), start, end)
    except (RepositoryError, OSError, ValueError) as e:
        fail(ctx, e)
        return

    console.print(f"Extracted: {len(report.extracted)}, rejected: {len(report.rejected)}")
    for name in report.final:
        console.print(f"  [green]{name}[/green]")
    for name in report.rejected:
        console.print(f"  [red]rejected {name}[/red]")


@main.command("run-all")
@click.option("--from", "start", required=True, callback=parse_version, help="First kernel version")
@click.option("--to", "end", required=True, callback=parse_version, help="End kernel version (excluded)")
@click.pass_context
def run_all(ctx, start: KernelVersion, end: KernelVersion):
    """
    Run the full workflow for every known driver.
    """
    try:
        manager = get_manager(ctx)
        reports = manager.process_all(start, end)
    except (RepositoryError, OSError) as e:
        fail(ctx, e)
        return

    table = Table(title=f"Drivers [{start}, {end})")
    table.add_column("Driver")
    table.add_column("Extracted", justify="right")
    table.add_column("Rejected", justify="right")
    table.add_column("Final", justify="right")
    table.add_column("Error")
    for slug, report in reports.items():
        table.add_row(
            slug,
            str(len(report.extracted)),
            str(len(report.rejected)),
            str(len(report.final)),
            report.error or "",
        )
    console.print(table)

    if not all(r.success for r in reports.values()):
        sys.exit(1)


@main.command("list")
@click.argument("collection", required=False, type=click.Choice(["pending", "rejected", "final"]))
@click.pass_context
def list_patches(ctx, collection: Optional[str]):
    """
    List patches in one or all collections.
    """
    manager = get_manager(ctx)
    names = [collection] if collection else ["pending", "rejected", "final"]
    for name in names:
        patch_set = manager.store.collection(name)
        console.print(f"\n[bold]{name}[/bold] ({len(patch_set)})")
        for patch_range in patch_set.ranges():
            console.print(f"  {patch_range.name}  [dim]{patch_range}[/dim]")


@main.command()
@click.pass_context
def summary(ctx):
    """
    Show patch counts per collection and driver.
    """
    manager = get_manager(ctx)
    table = Table(title="Patches")
    table.add_column("Collection")
    table.add_column("Driver")
    table.add_column("Patches", justify="right")
    for collection, counts in manager.summary().items():
        for slug, count in sorted(counts.items()):
            table.add_row(collection, slug, str(count))
    console.print(table)


@main.command()
@click.argument("version")
@click.option("--next", "show_next", is_flag=True, help="Print the following release")
@click.option("--compare", "other", help="Compare with another version (-1, 0, 1)")
def vers(version: str, show_next: bool, other: Optional[str]):
    """
    Show the canonical form of a kernel VERSION.
    """
    try:
        kv = KernelVersion.parse(version)
        if other:
            click.echo(compare_versions(version, other))
        elif show_next:
            click.echo(f"{kv.next()} {kv.next().canonical}")
        else:
            click.echo(f"{kv} {kv.canonical}")
    except InvalidVersionError as e:
        raise click.BadParameter(str(e))


@main.command("clear-cache")
@click.pass_context
def clear_cache(ctx):
    """
    Remove all build cache entries.
    """
    manager = get_manager(ctx)
    count = manager.clear_cache()
    console.print(f"Removed {count} cache entries")


if __name__ == "__main__":
    main()
