"""CLI tools for orchestrator administration."""

import asyncio
import logging

import click

from orchestrator.db.session import SessionLocal
from orchestrator.services import business_hours_service, org_service


@click.group()
def cli():
    """Automation orchestrator CLI tools."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


@cli.command()
@click.option("--name", required=True, help="Organization name")
@click.option("--slug", required=True, help="URL-friendly slug (lowercase, no spaces)")
@click.option("--timezone", "tz_name", default="UTC", help="IANA timezone (default: UTC)")
@click.option("--holiday-country", default=None, help="Country code whose public holidays close sending")
@click.option("--no-business-hours", is_flag=True, help="Disable business hours enforcement")
@click.option(
    "--max-sends-per-day",
    default=3,
    type=click.IntRange(min=0),
    help="Automation sends per contact per day (0 = no cap)",
)
def create_org(
    name: str,
    slug: str,
    tz_name: str,
    holiday_country: str | None,
    no_business_hours: bool,
    max_sends_per_day: int,
):
    """
    Create an organization with default Mon-Fri 09:00-17:00 business hours.

    Example:
        orchestrator create-org --name "Acme Corp" --slug acme --timezone America/New_York
    """
    db = SessionLocal()
    try:
        slug = slug.lower().strip()
        if not slug.replace("-", "").replace("_", "").isalnum():
            click.echo("❌ Slug must be alphanumeric (with optional hyphens/underscores)")
            return

        if org_service.get_org_by_slug(db, slug):
            click.echo(f"❌ Organization with slug '{slug}' already exists")
            return

        org = org_service.create_org(
            db,
            name=name,
            slug=slug,
            timezone=tz_name,
            enforce_business_hours=not no_business_hours,
            holiday_country=holiday_country,
            max_automation_sends_per_day=max_sends_per_day,
        )
        business_hours_service.seed_default_business_hours(db, org.id)
        db.commit()

        click.echo(f"✓ Created organization: {name}")
        click.echo(f"  ID: {org.id}")
        click.echo(f"  Slug: {slug}")
        click.echo(f"  Timezone: {tz_name}")
        click.echo(f"  Daily send cap per contact: {max_sends_per_day or 'none'}")
    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


@cli.command()
@click.option("--org-slug", required=True, help="Organization slug")
def seed_business_hours(org_slug: str):
    """Reset an organization's schedule to Mon-Fri 09:00-17:00."""
    db = SessionLocal()
    try:
        org = org_service.get_org_by_slug(db, org_slug)
        if not org:
            click.echo(f"❌ Organization '{org_slug}' not found")
            return
        rows = business_hours_service.seed_default_business_hours(db, org.id)
        db.commit()
        enabled = sum(1 for row in rows if row.is_enabled)
        click.echo(f"✓ Seeded business hours for {org.name} ({enabled} working days)")
    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
        raise
    finally:
        db.close()


@cli.command()
def sweep():
    """Run a single scheduler sweep and print what it did."""
    from orchestrator.services.scheduler_service import run_sweep

    result = asyncio.run(run_sweep(SessionLocal))
    click.echo(f"✓ Sweep {result.sweep_id}")
    click.echo(f"  Requeued stale claims: {result.requeued}")
    click.echo(f"  Dependency timeouts: {result.expired}")
    click.echo(f"  Released waiting executions: {result.released}")
    click.echo(f"  Campaigns started: {result.campaigns_started}")
    click.echo(f"  Dispatched: {result.dispatched} {result.claimed}")
    click.echo(f"  Outcomes: {result.outcomes}")
    click.echo(f"  Campaigns finalized: {result.campaigns_finalized}")


@cli.command()
@click.option("--interval", default=None, type=int, help="Seconds between sweeps")
def worker(interval: int | None):
    """Run the scheduler loop until interrupted."""
    from orchestrator.worker import worker_loop

    try:
        asyncio.run(worker_loop(interval))
    except KeyboardInterrupt:
        click.echo("Worker stopped")


if __name__ == "__main__":
    cli()
