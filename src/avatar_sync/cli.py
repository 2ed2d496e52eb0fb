"""CLI for AvatarSync.

Commands:
    resolve <identity>       - Resolve the authoritative image URL (read-only)
    reconcile <identity>     - Resolve and write the URL to every holder
    cleanup <identity>       - Reconcile, then delete superseded blobs
    placeholder <identity>   - Force a fresh placeholder image
    inspect <identity>       - Show every candidate with its liveness
    batch-cleanup            - Clean up every known person
    init-db                  - Create tables if they don't exist
"""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated, NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from avatar_sync.db import init_db
from avatar_sync.errors import ResolutionFailed
from avatar_sync.resolution.engine import open_engine
from avatar_sync.resolution.types import HolderWriteResult
from avatar_sync.services.batch import BatchOrchestrator

app = typer.Typer(
    name="avatar-sync",
    help="AvatarSync: cross-identity profile image resolution and reconciliation",
    no_args_is_help=True,
)
console = Console()


@app.callback()
def configure(
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Log every resolution step")
    ] = False,
):
    """Configure logging for all commands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def run_async(coro):
    """Run an async coroutine in sync context."""
    return asyncio.run(coro)


def print_holder_results(results: list[HolderWriteResult]) -> None:
    if not results:
        console.print("[yellow]No reference holders found for this person.[/yellow]")
        return

    table = Table(title="Holder Writes")
    table.add_column("Holder")
    table.add_column("Row")
    table.add_column("Result")
    for r in results:
        if not r.success:
            status = f"[red]FAILED[/red] {r.error}"
        elif r.changed:
            status = "[green]updated[/green]"
        else:
            status = "[dim]unchanged[/dim]"
        table.add_row(r.location.holder.value, r.location.row_id, status)
    console.print(table)


def fail(exc: ResolutionFailed) -> NoReturn:
    console.print(f"[red]Error:[/red] {exc}")
    console.print(f"Fallback initials: [bold]{exc.initials}[/bold]")
    raise typer.Exit(1) from None


@app.command()
def resolve(
    identity: Annotated[str, typer.Argument(help="Auth or record identity")],
):
    """Resolve the authoritative image URL without writing anything back."""
    async def _resolve():
        async with open_engine() as engine:
            try:
                outcome = await engine.resolve(identity)
            except ResolutionFailed as e:
                fail(e)

        panel_content = [
            f"[bold]Image URL:[/bold] {outcome.image_url}",
            f"[bold]Source:[/bold] {outcome.image.source.value}",
            f"[bold]Auth identity:[/bold] {outcome.person.auth_identity or '-'}",
            f"[bold]Record identity:[/bold] {outcome.person.record_identity or '-'}",
        ]
        if outcome.issues:
            panel_content.append("[bold]Issues:[/bold]")
            for issue in outcome.issues:
                panel_content.append(f"  • {issue}")
        console.print(Panel("\n".join(panel_content), title="Resolved Image"))

    run_async(_resolve())


@app.command()
def reconcile(
    identity: Annotated[str, typer.Argument(help="Auth or record identity")],
):
    """Resolve the image and write it to every reference holder."""
    async def _reconcile():
        async with open_engine() as engine:
            try:
                outcome = await engine.reconcile(identity)
            except ResolutionFailed as e:
                fail(e)

        console.print(
            f"[bold]{outcome.image_url}[/bold] ({outcome.resolution.image.source.value})"
        )
        print_holder_results(outcome.holder_results)
        if outcome.partial_failure:
            raise typer.Exit(1)

    run_async(_reconcile())


@app.command()
def cleanup(
    identity: Annotated[str, typer.Argument(help="Auth or record identity")],
    keep: Annotated[
        list[str] | None,
        typer.Option("--keep", "-k", help="Filename to keep (repeatable). Skips reconciliation."),
    ] = None,
):
    """Delete superseded blobs under the person's owner keys."""
    async def _cleanup():
        async with open_engine() as engine:
            try:
                outcome = await engine.cleanup(identity, keep or None)
            except ResolutionFailed as e:
                fail(e)

        if outcome.image_url:
            console.print(f"[bold]In use:[/bold] {outcome.image_url}")
        if outcome.skipped:
            console.print("[yellow]Skipped:[/yellow] no holder could be updated")
        console.print(f"[bold]Deleted:[/bold] {outcome.deleted_count} object(s)")
        for error in outcome.gc_errors:
            console.print(f"[red]Error:[/red] {error}")
        if outcome.failed:
            raise typer.Exit(1)

    run_async(_cleanup())


@app.command()
def placeholder(
    identity: Annotated[str, typer.Argument(help="Auth or record identity")],
):
    """Generate and propagate a fresh placeholder, even if an image exists."""
    async def _placeholder():
        async with open_engine() as engine:
            try:
                outcome = await engine.create_placeholder(identity)
            except ResolutionFailed as e:
                fail(e)

        console.print(f"[green]Placeholder:[/green] {outcome.image_url}")
        print_holder_results(outcome.holder_results)

    run_async(_placeholder())


@app.command()
def inspect(
    identity: Annotated[str, typer.Argument(help="Auth or record identity")],
):
    """Show every record and storage candidate with its HEAD status."""
    async def _inspect():
        async with open_engine() as engine:
            report = await engine.inspect(identity)

        console.print(
            f"[bold]Auth:[/bold] {report.person.auth_identity or '-'}  "
            f"[bold]Record:[/bold] {report.person.record_identity or '-'}"
        )

        table = Table(title="Record Candidates")
        table.add_column("Holder")
        table.add_column("URL")
        table.add_column("Status", justify="right")
        for ref, check in report.record_candidates:
            status = str(check.status_code or check.error or "-")
            table.add_row(ref.holder.value, ref.image_url, f"[{'green' if check.live else 'red'}]{status}")
        console.print(table)

        table = Table(title="Storage Candidates (priority order)")
        table.add_column("Owner key")
        table.add_column("Filename")
        table.add_column("Status", justify="right")
        for c in report.storage_candidates:
            status = str(c.liveness.status_code or c.liveness.error or "-")
            table.add_row(c.owner_key, c.filename, f"[{'green' if c.liveness.live else 'red'}]{status}")
        console.print(table)

        for issue in report.issues:
            console.print(f"[yellow]Issue:[/yellow] {issue}")

    run_async(_inspect())


@app.command("batch-cleanup")
def batch_cleanup(
    concurrency: Annotated[
        int | None, typer.Option("--concurrency", "-c", help="People processed at once")
    ] = None,
):
    """Resolve, propagate and collect for every known person."""
    async def _batch():
        async with open_engine() as engine:
            report = await BatchOrchestrator(engine, concurrency=concurrency).run()

        console.print(Panel(
            f"[bold]Processed:[/bold] {report.processed}\n"
            f"[bold]Succeeded:[/bold] {report.succeeded}\n"
            f"[bold]Failed:[/bold] {report.failed}\n"
            f"[bold]Deleted objects:[/bold] {report.deleted_object_count}",
            title="Batch Cleanup",
        ))

        if report.failures:
            table = Table(title="Failures")
            table.add_column("Person")
            table.add_column("Reason")
            for person_id, reason in report.failures.items():
                table.add_row(person_id, reason)
            console.print(table)

    run_async(_batch())


@app.command("init-db")
def init_database():
    """Initialize the database schema (creates tables if they don't exist)."""
    async def _init():
        await init_db()
        console.print("[green]Database initialized successfully.[/green]")

    run_async(_init())


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
