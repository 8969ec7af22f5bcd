"""Rich console output for sync reports."""

from typing import Any

from rich.console import Console as RichConsole
from rich.panel import Panel
from rich.table import Table

from contributor_sync.models.report import BatchReport, SyncReport
from contributor_sync.storage.database import ContributorSummary
from contributor_sync.utils.credential_pool import format_time_remaining


class Console:
    """Wrapper for rich console output."""

    def __init__(self, verbose: bool = False, quiet: bool = False):
        self.console = RichConsole()
        self.verbose = verbose
        self.quiet = quiet

    def print(self, *args, **kwargs):
        """Print to console (respects quiet mode)."""
        if not self.quiet:
            self.console.print(*args, **kwargs)

    def print_error(self, message: str):
        """Print error message."""
        self.console.print(f"[red]Error:[/red] {message}")

    def print_warning(self, message: str):
        """Print warning message."""
        self.console.print(f"[yellow]Warning:[/yellow] {message}")

    def print_success(self, message: str):
        """Print success message."""
        if not self.quiet:
            self.console.print(f"[green]{message}[/green]")

    def print_header(self, title: str, subtitle: str = ""):
        if self.quiet:
            return

        body = f"[bold blue]{title}[/bold blue]"
        if subtitle:
            body += f"\n[dim]{subtitle}[/dim]"
        self.console.print()
        self.console.print(Panel(body, expand=False))
        self.console.print()

    def print_sync_report(self, report: SyncReport):
        """Print the outcome of one repository sync."""
        if self.quiet:
            return

        table = Table(title=f"Sync: {report.repository}", show_header=False, expand=False)
        table.add_column("Metric", style="dim")
        table.add_column("Value")

        table.add_row("Stage", report.stage.value)
        table.add_row("Contributors", str(report.total_contributors))
        table.add_row("Succeeded", f"[green]{report.succeeded}[/green]")
        table.add_row("Failed", f"[red]{report.failed_count}[/red]" if report.failed else "0")
        table.add_row("Skipped", str(report.skipped))
        if report.duration_seconds is not None:
            table.add_row("Duration", f"{report.duration_seconds:.1f}s")
        if report.cancelled:
            table.add_row("Cancelled", "[yellow]yes[/yellow]")
        if report.failure:
            table.add_row("Aborted", f"[red]{report.failure.error}: {report.failure.message}[/red]")

        self.console.print(table)
        self.print_region_tally(report.region_tally)

        if report.failed and self.verbose:
            failures = Table(title="Failed Contributors", expand=False)
            failures.add_column("Login")
            failures.add_column("Stage")
            failures.add_column("Error")
            for failure in report.failed:
                failures.add_row(failure.login, failure.stage.value, failure.message[:80])
            self.console.print(failures)
            self.console.print()

    def print_batch_report(self, batch: BatchReport):
        """Print the outcome of a batch run, one row per repository."""
        if self.quiet:
            return

        table = Table(title="Batch Sync", expand=False)
        table.add_column("Repository")
        table.add_column("Contributors", justify="right")
        table.add_column("Succeeded", justify="right")
        table.add_column("Failed", justify="right")
        table.add_column("Skipped", justify="right")
        table.add_column("Status")

        for report in batch.reports:
            table.add_row(
                str(report.repository),
                str(report.total_contributors),
                str(report.succeeded),
                str(report.failed_count),
                str(report.skipped),
                report.exit_status.name.lower(),
            )
        for failure in batch.failed_repositories:
            table.add_row(
                str(failure.repository), "-", "-", "-", "-", f"[red]{failure.error}[/red]"
            )
        for ref in batch.skipped_repositories:
            table.add_row(str(ref), "-", "-", "-", "-", "[yellow]skipped[/yellow]")

        self.console.print(table)
        if batch.budget_exhausted:
            self.print_warning("Time budget exhausted; remaining repositories were skipped")
        self.print_region_tally(batch.region_tally)

    def print_region_tally(self, tally: dict[str, int]):
        if self.quiet or not tally:
            return

        table = Table(title="Regions", expand=False)
        table.add_column("Region")
        table.add_column("Contributors", justify="right")
        for region, count in sorted(tally.items(), key=lambda x: x[1], reverse=True):
            table.add_row(region, str(count))

        self.console.print(table)
        self.console.print()

    def print_top_contributors(self, contributors: list[ContributorSummary]):
        if self.quiet:
            return

        table = Table(title="Top Contributors", expand=False)
        table.add_column("#", justify="right", style="dim")
        table.add_column("Login")
        table.add_column("Name")
        table.add_column("Location")
        table.add_column("Contributions", justify="right")

        for rank, c in enumerate(contributors, start=1):
            table.add_row(
                str(rank), c.login, c.name or "-", c.location or "-", str(c.contributions)
            )

        self.console.print(table)
        self.console.print()

    def print_credential_status(self, status: list[dict[str, Any]]):
        """Print redacted quota status per credential."""
        table = Table(title="Credentials", expand=False)
        table.add_column("Credential")
        table.add_column("Status")
        table.add_column("Remaining", justify="right")
        table.add_column("Resets In", justify="right")

        styles = {"active": "green", "cooling-down": "yellow", "invalid": "red"}
        for entry in status:
            style = styles.get(entry["status"], "white")
            reset_in = entry.get("reset_in")
            table.add_row(
                entry["credential"],
                f"[{style}]{entry['status']}[/{style}]",
                f"{entry['remaining']}/{entry['limit']}",
                format_time_remaining(reset_in) if reset_in else "-",
            )

        self.console.print(table)

    def print_output_path(self, path: str):
        """Print output file path."""
        if not self.quiet:
            self.console.print(f"\n[green]Report saved to:[/green] {path}")
