"""CLI interface for Contributor Sync."""

import asyncio
import contextlib
import logging
import signal
from dataclasses import replace
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from contributor_sync import __version__
from contributor_sync.config import Config, get_config
from contributor_sync.exceptions import ContributorSyncError
from contributor_sync.models.platform import Platform, RepositoryRef
from contributor_sync.models.report import ExitStatus
from contributor_sync.output.console import Console as OutputConsole
from contributor_sync.output.json_writer import (
    build_batch_report,
    build_sync_report,
    write_json_report,
)
from contributor_sync.sdk import ContributorSync

app = typer.Typer(
    name="contributor-sync",
    help="Sync GitHub/Gitee repository contributors into a database",
    add_completion=False,
)

console = Console(stderr=True)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        console.print(f"contributor-sync version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
):
    """Contributor Sync - rate-limited contributor ingestion for GitHub and Gitee."""
    pass


def _configure_logging(verbose: bool, debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=debug, show_path=debug)],
        force=True,
    )
    # httpx logs every request URL at INFO, including Gitee's access_token parameter
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _load_config(platform: Optional[Platform]) -> Config:
    config = get_config()
    if platform is not None and platform is not config.platform:
        config = replace(config, platform=platform)
    return config


def _exit(status: ExitStatus):
    raise typer.Exit(code=int(status))


async def _with_cancellation(sdk: ContributorSync, coro):
    """Run a sync coroutine; SIGINT asks the pipeline to stop cooperatively."""
    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, sdk.cancel)
    try:
        return await coro
    finally:
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)


@app.command()
def sync(
    owner: str = typer.Argument(..., help="Repository owner"),
    repo: str = typer.Argument(..., help="Repository name"),
    platform: Optional[Platform] = typer.Option(
        None,
        "--platform",
        "-p",
        case_sensitive=False,
        help="Source platform (default: CONTRIBUTOR_SYNC_PLATFORM or github)",
    ),
    register: bool = typer.Option(
        False,
        "--register",
        help="Register the repository first if it is unknown",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Write the report as JSON to this file",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    debug: bool = typer.Option(False, "--debug", help="Debug logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Minimal output"),
):
    """Sync the contributors of one repository.

    Examples:
        contributor-sync sync rust-lang rust --register
        contributor-sync sync openharmony docs --platform gitee
    """
    _configure_logging(verbose, debug)
    output_console = OutputConsole(verbose=verbose, quiet=quiet)

    try:
        config = _load_config(platform)
        ref = RepositoryRef(owner=owner, name=repo, platform=config.platform)

        async def run():
            async with ContributorSync(config=config) as sdk:
                return await _with_cancellation(sdk, sdk.sync(ref, register=register or None))

        output_console.print_header("Contributor Sync", str(ref))
        report = asyncio.run(run())
    except ContributorSyncError as e:
        output_console.print_error(str(e))
        _exit(ExitStatus.FATAL)
    except KeyboardInterrupt:
        console.print("\n[yellow]Sync cancelled[/yellow]")
        _exit(ExitStatus.CANCELLED)

    output_console.print_sync_report(report)
    if output:
        path = write_json_report(build_sync_report(report), output)
        output_console.print_output_path(str(path))
    _exit(report.exit_status)


@app.command("sync-all")
def sync_all(
    platform: Optional[Platform] = typer.Option(
        None, "--platform", "-p", case_sensitive=False, help="Source platform"
    ),
    budget: Optional[float] = typer.Option(
        None,
        "--budget",
        help="Wall-clock budget in seconds; unstarted repositories are skipped when it runs out",
    ),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Write the report as JSON to this file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    debug: bool = typer.Option(False, "--debug", help="Debug logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Minimal output"),
):
    """Sync every registered repository of a platform."""
    _configure_logging(verbose, debug)
    output_console = OutputConsole(verbose=verbose, quiet=quiet)

    try:
        config = _load_config(platform)

        async def run():
            async with ContributorSync(config=config) as sdk:
                return await _with_cancellation(sdk, sdk.sync_all(budget_seconds=budget))

        output_console.print_header("Contributor Sync", f"all {config.platform.value} repositories")
        batch = asyncio.run(run())
    except ContributorSyncError as e:
        output_console.print_error(str(e))
        _exit(ExitStatus.FATAL)
    except KeyboardInterrupt:
        console.print("\n[yellow]Sync cancelled[/yellow]")
        _exit(ExitStatus.CANCELLED)

    output_console.print_batch_report(batch)
    if output:
        path = write_json_report(build_batch_report(batch), output)
        output_console.print_output_path(str(path))
    _exit(batch.exit_status)


@app.command()
def register(
    url: str = typer.Argument(..., help="Repository URL or owner/name"),
    platform: Optional[Platform] = typer.Option(
        None, "--platform", "-p", case_sensitive=False, help="Platform for owner/name input"
    ),
):
    """Register a repository for syncing.

    Examples:
        contributor-sync register https://github.com/rust-lang/rust
        contributor-sync register https://gitee.com/openharmony/docs
    """
    _configure_logging(False, False)
    output_console = OutputConsole()

    try:
        config = _load_config(platform)

        async def run():
            async with ContributorSync(config=config) as sdk:
                return await sdk.register(url)

        ref, repository_id = asyncio.run(run())
    except ContributorSyncError as e:
        output_console.print_error(str(e))
        _exit(ExitStatus.FATAL)

    output_console.print_success(f"Registered {ref} (id {repository_id})")


@app.command()
def query(
    owner: str = typer.Argument(..., help="Repository owner"),
    repo: str = typer.Argument(..., help="Repository name"),
    limit: int = typer.Option(10, "--limit", "-n", help="Number of contributors to show"),
    platform: Optional[Platform] = typer.Option(
        None, "--platform", "-p", case_sensitive=False, help="Source platform"
    ),
):
    """Show stored top contributors and the region tally of a repository."""
    _configure_logging(False, False)
    output_console = OutputConsole()

    try:
        config = _load_config(platform)
        ref = RepositoryRef(owner=owner, name=repo, platform=config.platform)

        async def run():
            async with ContributorSync(config=config) as sdk:
                return await sdk.top_contributors(ref, limit), await sdk.region_stats(ref)

        top, regions = asyncio.run(run())
    except ContributorSyncError as e:
        output_console.print_error(str(e))
        _exit(ExitStatus.FATAL)

    output_console.print_header("Stored Contributors", str(ref))
    output_console.print_top_contributors(top)
    output_console.print_region_tally(regions)


@app.command("check-tokens")
def check_tokens(
    platform: Optional[Platform] = typer.Option(
        None, "--platform", "-p", case_sensitive=False, help="Source platform"
    ),
):
    """Check configured tokens and their remaining quota."""
    _configure_logging(False, False)
    output_console = OutputConsole()

    try:
        config = _load_config(platform)
        config.validate()

        async def run():
            async with ContributorSync(config=config) as sdk:
                return await sdk.check_tokens()

        status = asyncio.run(run())
    except ContributorSyncError as e:
        output_console.print_error(str(e))
        _exit(ExitStatus.FATAL)

    output_console.print_credential_status(status)
    if not any(entry["status"] != "invalid" for entry in status):
        output_console.print_error("No valid credentials remain")
        _exit(ExitStatus.FATAL)


if __name__ == "__main__":
    app()
