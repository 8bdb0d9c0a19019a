import asyncio
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from apps.kyc_worker.config import get_worker_settings
from apps.kyc_worker.decision import determine_verification_path
from apps.kyc_worker.errors import EscalationError, StoreUnavailable, UnsupportedDocumentType
from apps.kyc_worker.logging_config import configure_logging
from apps.kyc_worker.ocr import parse_document
from apps.kyc_worker.recovery import requeue_stuck_jobs
from apps.kyc_worker.runtime import build_runtime, run_worker

app = typer.Typer(help="KYC document verification worker CLI")
console = Console()


async def _with_runtime(action):
    runtime = build_runtime(get_worker_settings())
    try:
        return await action(runtime)
    finally:
        await runtime.aclose()


@app.callback()
def main(log_level: Optional[str] = typer.Option(None, "--log-level", help="Override LOG_LEVEL")):
    configure_logging(level=log_level)


@app.command()
def run(ops: bool = typer.Option(True, "--ops/--no-ops", help="Serve /health, /ops/queue and /metrics")):
    """Run the worker loop until interrupted."""
    settings = get_worker_settings()
    console.log(
        f"[bold]Starting worker[/] prefix={settings.queue_prefix} "
        f"poll={settings.poll_interval_ms}ms max_retries={settings.max_retries}"
    )
    try:
        asyncio.run(run_worker(settings, serve_ops=ops))
    except KeyboardInterrupt:
        console.log("[yellow]Worker stopped by user[/]")


@app.command()
def enqueue(document_ids: List[str] = typer.Argument(..., help="Document ids to queue")):
    """Queue documents for verification."""

    async def _enqueue(runtime):
        return [(doc_id, await runtime.queue.enqueue(doc_id)) for doc_id in document_ids]

    try:
        results = asyncio.run(_with_runtime(_enqueue))
    except StoreUnavailable as exc:
        console.log(f"[red]Queue store unavailable: {exc}[/]")
        raise typer.Exit(1)

    for doc_id, added in results:
        if added:
            console.log(f"[green]Queued {doc_id}[/]")
        else:
            console.log(f"[yellow]Skipped {doc_id}: already queued or processing[/]")


@app.command()
def stats():
    """Show queue depth per state."""

    async def _stats(runtime):
        return await runtime.queue.get_queue_stats()

    try:
        queue_stats = asyncio.run(_with_runtime(_stats))
    except StoreUnavailable as exc:
        console.log(f"[red]Queue store unavailable: {exc}[/]")
        raise typer.Exit(1)

    table = Table(title="Verification queue")
    table.add_column("State")
    table.add_column("Documents", justify="right")
    table.add_row("queued", str(queue_stats.queue_length))
    table.add_row("processing", str(queue_stats.processing_count))
    table.add_row("delayed", str(queue_stats.delayed_count))
    console.print(table)


@app.command("requeue-stuck")
def requeue_stuck(dry_run: bool = typer.Option(False, "--dry-run", help="Only list stuck documents")):
    """Move every processing document back to the queue and reset its attempts."""

    async def _requeue(runtime):
        return await requeue_stuck_jobs(runtime.queue, dry_run=dry_run)

    try:
        document_ids = asyncio.run(_with_runtime(_requeue))
    except StoreUnavailable as exc:
        console.log(f"[red]Queue store unavailable: {exc}[/]")
        raise typer.Exit(1)

    if not document_ids:
        console.log("No stuck documents")
        return
    verb = "Would requeue" if dry_run else "Requeued"
    for doc_id in document_ids:
        console.log(f"{verb} {doc_id}")
    console.log(f"[green]{verb} {len(document_ids)} document(s)[/]")


@app.command("review-status")
def review_status(ticket_id: str):
    """Show the manual review status of a ticket."""

    async def _status(runtime):
        return await runtime.escalation.get_status(ticket_id)

    try:
        status = asyncio.run(_with_runtime(_status))
    except EscalationError as exc:
        console.log(f"[red]Failed to fetch review status: {exc}[/]")
        raise typer.Exit(1)
    console.log(f"{ticket_id}: [bold]{status.status}[/] decision={status.decision or '-'}")
    if status.notes:
        console.log(status.notes)


@app.command("cancel-review")
def cancel_review(
    document_id: str,
    ticket_id: str,
    reason: Optional[str] = typer.Option(None, "--reason", help="Reason sent to the review service"),
):
    """Cancel a manual review ticket and mark the document accordingly."""

    async def _cancel(runtime):
        return await runtime.escalation.cancel(document_id, ticket_id, reason=reason)

    try:
        asyncio.run(_with_runtime(_cancel))
    except EscalationError as exc:
        console.log(f"[red]Failed to cancel review {ticket_id}: {exc}[/]")
        raise typer.Exit(1)
    console.log(f"[green]Cancelled review {ticket_id} for {document_id}[/]")


@app.command()
def score(
    document_type: str = typer.Argument(..., help="KTP or NPWP"),
    text_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Raw OCR text"),
):
    """Parse OCR text and show the score and routing decision."""
    try:
        parsed = parse_document(document_type.upper(), text_file.read_text(encoding="utf-8"))
    except UnsupportedDocumentType as exc:
        console.log(f"[red]{exc}[/]")
        raise typer.Exit(1)

    path = determine_verification_path(document_type.upper(), parsed)
    table = Table(title=f"{document_type.upper()} fields")
    table.add_column("Field")
    table.add_column("Value")
    for key, value in parsed.items():
        table.add_row(key, value)
    console.print(table)
    console.print(f"Score: {path.score} -> {path.outcome.value} ({path.decision.value})")


if __name__ == "__main__":
    app()
