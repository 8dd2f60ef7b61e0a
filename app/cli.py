"""CLI utilities."""

import asyncio
import json
import logging

import click
from sqlalchemy.orm import Session

from app.config import settings
from app.core import retention
from app.core.errors import ReportingError
from app.core.periods import parse_month
from app.core.snapshots import SnapshotService
from app.database import SessionLocal
from app.worker.tasks import generate_snapshot, render_snapshot_pdf


@click.group()
def cli():
    """Agency monthly reports CLI."""
    logging.basicConfig(level=settings.log_level)


@cli.command()
@click.option("--client-id", required=True, type=int)
@click.option("--month", required=True, help="Reported month (YYYY-MM)")
@click.option("--regenerate", is_flag=True, help="Overwrite an existing snapshot")
@click.option("--queue", is_flag=True, help="Queue on the worker instead of running here")
def generate(client_id: int, month: str, regenerate: bool, queue: bool):
    """Generate a monthly snapshot."""
    try:
        year, month_number = parse_month(month)
    except ReportingError as e:
        raise click.BadParameter(str(e), param_hint="--month")

    if queue:
        generate_snapshot.delay(client_id, year, month_number, regenerate)
        click.echo("Snapshot generation queued. Check worker logs for progress.")
        return

    db: Session = SessionLocal()
    try:
        result = asyncio.run(SnapshotService(db).generate(client_id, year, month_number, regenerate=regenerate))
    except ReportingError as e:
        raise click.ClickException(str(e))
    finally:
        db.close()

    click.echo(f"Snapshot {result.id} generated for {result.snapshot_date.isoformat()}")
    for omitted in result.omitted_sources:
        click.echo(f"  omitted {omitted.source_type}: {omitted.reason}")
    click.echo(json.dumps(result.metrics_summary, indent=2))


@cli.command("list-snapshots")
@click.option("--client-id", required=True, type=int)
@click.option("--limit", default=12, type=int)
@click.option("--offset", default=0, type=int)
def list_snapshots(client_id: int, limit: int, offset: int):
    """List a client's snapshots."""
    db: Session = SessionLocal()
    try:
        page = SnapshotService(db).list_summaries(client_id, limit=limit, offset=offset)
    except ReportingError as e:
        raise click.ClickException(str(e))
    finally:
        db.close()

    click.echo(f"{page['total']} snapshots")
    for item in page["items"]:
        pdf = "pdf" if item.has_pdf else "-"
        click.echo(f"{item.id:>6}  {item.snapshot_date.isoformat()}  v{item.template_version}  {pdf}")


@cli.command()
@click.option("--snapshot-id", required=True, type=int)
@click.option("--queue", is_flag=True, help="Queue on the worker instead of running here")
def render(snapshot_id: int, queue: bool):
    """Render a snapshot to PDF."""
    if queue:
        render_snapshot_pdf.delay(snapshot_id)
        click.echo("Rendering queued. Check worker logs for progress.")
        return

    db: Session = SessionLocal()
    try:
        SnapshotService(db).render_pdf(snapshot_id)
    except ReportingError as e:
        raise click.ClickException(str(e))
    finally:
        db.close()
    click.echo(f"Snapshot {snapshot_id} rendered")


@cli.command()
def sweep():
    """Delete snapshots past their retention window."""
    db: Session = SessionLocal()
    try:
        deleted = retention.sweep_expired_snapshots(db)
    finally:
        db.close()
    click.echo(f"Deleted {deleted} expired snapshots")


if __name__ == "__main__":
    cli()
