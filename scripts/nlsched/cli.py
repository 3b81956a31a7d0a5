"""
Command-line interface for the Newsletter Scheduler.

Provides commands for sending due newsletters, running the scheduling daemon,
managing newsletter definitions and filling the curated article pool.
"""

import asyncio
import logging
import sys
from datetime import datetime
from typing import Optional, Tuple

import click
from dateutil import parser as date_parser
from dotenv import load_dotenv

# Load environment variables from .env file (if it exists)
load_dotenv()

from . import __version__
from .config import config
from .exceptions import MalformedRecurrenceRule
from .models import STATES, Article, Newsletter, as_utc
from .recurrence import RecurrenceEvaluator, describe
from .services import get_newsletter_scheduler, get_rule_set, get_store

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)
logger = logging.getLogger(__name__)

STATUS_COLORS = {
    "sent": "green",
    "skipped": "white",
    "finished": "cyan",
    "error": "red",
}


def setup_file_logging() -> None:
    """Set up file logging if enabled."""
    if config.get("logging.file_enabled", True):
        log_file = config.logs_dir / "nlsched.log"
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(config.get("logging.format")))
        logging.getLogger().addHandler(file_handler)


def _parse_datetime(value: str) -> datetime:
    try:
        return as_utc(date_parser.parse(value))
    except (ValueError, OverflowError) as e:
        raise click.BadParameter(f"Invalid date/time '{value}': {e}") from e


def _format_dt(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "-"


@click.group()
@click.version_option(version=__version__, prog_name="nlsched")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
def cli(verbose: bool) -> None:
    """Newsletter Scheduler - Send recurring newsletters through the Mailer."""
    level = logging.DEBUG if verbose else config.get("logging.level", "INFO")
    logging.getLogger().setLevel(level)
    setup_file_logging()


@cli.command()
@click.option("--now", "now_value", help="Evaluate as of this date/time instead of the current time")
def send(now_value: Optional[str]) -> None:
    """
    Process due newsletters now.

    Exits non-zero only when newsletters cannot be loaded; individual
    newsletter failures are reported and retried on the next run.
    """
    now = _parse_datetime(now_value) if now_value else None

    try:
        summary = get_newsletter_scheduler().run(now)
    except Exception as e:
        logger.exception("Newsletter run failed")
        click.echo(click.style(f"Could not load newsletters: {e}", fg="red"))
        sys.exit(1)

    if not summary.outcomes:
        click.echo("No newsletters to process")
        return

    for outcome in summary.outcomes:
        click.echo(click.style(f"  {outcome}", fg=STATUS_COLORS.get(outcome.status, "white")))

    click.echo()
    click.echo(click.style(str(summary), fg="green" if summary.errored == 0 else "yellow"))


@cli.command()
@click.option("--run-now", is_flag=True, help="Run one batch immediately on startup")
def serve(run_now: bool) -> None:
    """Run the scheduler daemon, sending due newsletters on an interval."""
    from .scheduler.jobs import send_newsletters_job
    from .scheduler.setup import create_scheduler

    async def _serve() -> None:
        scheduler = create_scheduler()
        scheduler.start()
        logger.info("Scheduler started with %d job(s)", len(scheduler.get_jobs()))
        try:
            if run_now:
                await send_newsletters_job()
            await asyncio.Event().wait()
        finally:
            scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    click.echo("Starting newsletter scheduler (Ctrl+C to stop)...")
    try:
        asyncio.run(_serve())
    except (KeyboardInterrupt, SystemExit):
        click.echo("Stopped.")


@cli.command("next")
@click.argument("newsletter_id", type=int)
@click.option("-n", "--count", default=5, show_default=True, help="Number of occurrences to show")
def next_occurrence(newsletter_id: int, count: int) -> None:
    """Show upcoming occurrences of a newsletter."""
    newsletter = get_store().get_newsletter(newsletter_id)
    if newsletter is None:
        click.echo(click.style(f"Newsletter {newsletter_id} not found", fg="red"))
        sys.exit(1)

    click.echo(click.style(newsletter.name, fg="bright_white", bold=True))
    click.echo(f"  State:     {newsletter.state}")
    click.echo(f"  Starts:    {_format_dt(newsletter.starts_at)}")
    click.echo(f"  Last sent: {_format_dt(newsletter.last_sent_at)}")

    evaluator = RecurrenceEvaluator()
    try:
        if newsletter.recurrence_rule:
            click.echo(f"  Rule:      {describe(newsletter.recurrence_rule, newsletter.starts_at)}")
        upcoming = evaluator.preview(
            newsletter.recurrence_rule, newsletter.starts_at, newsletter.last_sent_at, count
        )
    except MalformedRecurrenceRule as e:
        click.echo(click.style(str(e), fg="red"))
        sys.exit(1)

    if not upcoming:
        click.echo(click.style("No occurrences left.", fg="yellow"))
        return
    click.echo("  Upcoming:")
    for occurrence in upcoming:
        click.echo(f"    - {_format_dt(occurrence)}")


@cli.command()
@click.argument("source", type=click.File("r", encoding="utf-8"))
@click.option("-o", "--output", type=click.File("w", encoding="utf-8"), help="Write HTML to a file")
def transform(source, output) -> None:
    """
    Convert editorial markup into email HTML.

    SOURCE is a file with article markup ("-" for stdin).
    """
    result = get_rule_set().apply(source.read())
    if output:
        output.write(result)
        click.echo(click.style(f"Written to {output.name}", fg="green"))
    else:
        click.echo(result)


@cli.command()
@click.option("-n", "--name", required=True, help="Newsletter name")
@click.option("--starts-at", required=True, help="First send date/time")
@click.option("-r", "--rule", "recurrence_rule", help="RRULE recurrence, e.g. FREQ=WEEKLY;BYDAY=MO")
@click.option("-g", "--generator", "generator_id", type=int, required=True, help="Mailer generator ID")
@click.option("-s", "--segment", "segment_code", required=True, help="Segment code")
@click.option("--segment-provider", default="crm-segment", show_default=True, help="Segment provider")
@click.option("-t", "--mail-type", "mail_type_code", required=True, help="Mail type code")
@click.option("--from", "email_from", required=True, help="Sender address")
@click.option("--subject", "email_subject", required=True, help="Email subject")
@click.option("--personalized", is_flag=True, help="Let the Mailer pick articles per recipient")
@click.option("-c", "--criteria", default="pageviews_all", show_default=True, help="Article ranking criteria")
@click.option("--count", "articles_count", default=5, show_default=True, help="Number of articles")
@click.option("--timespan", default=1440, show_default=True, help="Article lookback in minutes")
def add(
    name: str,
    starts_at: str,
    recurrence_rule: Optional[str],
    generator_id: int,
    segment_code: str,
    segment_provider: str,
    mail_type_code: str,
    email_from: str,
    email_subject: str,
    personalized: bool,
    criteria: str,
    articles_count: int,
    timespan: int,
) -> None:
    """Add a newsletter definition."""
    from .articles import CRITERIA

    if not personalized and criteria not in CRITERIA:
        click.echo(click.style(f"Invalid criteria '{criteria}'. Valid: {', '.join(CRITERIA)}", fg="red"))
        sys.exit(1)

    starts = _parse_datetime(starts_at)
    if recurrence_rule:
        try:
            describe(recurrence_rule, starts)
        except MalformedRecurrenceRule as e:
            click.echo(click.style(str(e), fg="red"))
            sys.exit(1)

    newsletter = Newsletter(
        name=name,
        starts_at=starts,
        recurrence_rule=recurrence_rule,
        mailer_generator_id=generator_id,
        segment_code=segment_code,
        segment_provider=segment_provider,
        mail_type_code=mail_type_code,
        email_from=email_from,
        email_subject=email_subject,
        personalized_content=personalized,
        criteria=criteria,
        articles_count=articles_count,
        timespan=timespan,
    )
    newsletter_id = get_store().add_newsletter(newsletter)
    click.echo(click.style(f"Newsletter added successfully (ID: {newsletter_id})", fg="green"))


@cli.command("list")
@click.option("--state", type=click.Choice(STATES), help="Filter by state")
def list_newsletters(state: Optional[str]) -> None:
    """List newsletter definitions."""
    newsletters = get_store().list_newsletters(state=state)
    if not newsletters:
        click.echo(click.style("No newsletters found.", fg="yellow"))
        return

    for newsletter in newsletters:
        color = "green" if newsletter.state == "started" else "white"
        click.echo(click.style(f"[{newsletter.id}] {newsletter.name}", fg=color, bold=True))
        click.echo(
            f"    {newsletter.state} | starts {_format_dt(newsletter.starts_at)} | "
            f"last sent {_format_dt(newsletter.last_sent_at)} | "
            f"{newsletter.recurrence_rule or 'one-shot'}"
        )
    click.echo(f"\nTotal: {len(newsletters)} newsletters")


@cli.command("article-add")
@click.argument("url")
@click.option("--title", help="Article title")
@click.option("--published-at", required=True, help="Publication date/time")
@click.option(
    "-m", "--metric", "metrics", multiple=True, help="Metric as NAME=VALUE, e.g. pageviews_all=900"
)
def article_add(url: str, title: Optional[str], published_at: str, metrics: Tuple[str, ...]) -> None:
    """Add or update an article in the curated selection pool."""
    from .articles import parse_metrics

    try:
        values = parse_metrics(metrics)
    except ValueError as e:
        click.echo(click.style(str(e), fg="red"))
        sys.exit(1)

    article = Article(url=url, title=title, published_at=_parse_datetime(published_at), metrics=values)
    article_id = get_store().add_article(article)
    click.echo(click.style(f"Article saved (ID: {article_id})", fg="green"))


@cli.command("import-articles")
@click.argument("source", type=click.File("r", encoding="utf-8"))
def import_articles(source) -> None:
    """
    Import articles from a CSV file.

    The header must include url and published_at; title and metric columns
    (pageviews_all, conversions, ...) are optional. Existing URLs are updated.
    """
    from .articles import read_articles_csv

    try:
        articles = read_articles_csv(source)
    except ValueError as e:
        click.echo(click.style(f"Cannot import {source.name}: {e}", fg="red"))
        sys.exit(1)

    store = get_store()
    for article in articles:
        store.add_article(article)
    click.echo(click.style(f"Imported {len(articles)} articles", fg="green"))


@cli.command()
def stats() -> None:
    """Show newsletter and article pool statistics."""
    counts = get_store().get_stats()

    click.echo(click.style("\nNewsletter Scheduler Statistics", fg="bright_white", bold=True))
    click.echo("=" * 32)
    for state in STATES:
        click.echo(f"{state.capitalize() + ' newsletters:':<23}{counts.get(state, 0)}")
    click.echo(f"{'Articles in pool:':<23}{counts['articles']}")


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
