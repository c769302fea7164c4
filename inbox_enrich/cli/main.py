"""CLI entry point for the inbox enrichment pipeline."""

import logging

import click
from dotenv import load_dotenv

from inbox_enrich.config import EnrichmentConfig
from inbox_enrich.pipeline.runtime import Runtime

logger = logging.getLogger(__name__)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log progress at INFO level.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Enrich emails with AI categories, summaries, tasks and smart labels."""
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,  # keep CLI output clean
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    ctx.obj = Runtime(EnrichmentConfig.from_env())
    ctx.call_on_close(ctx.obj.close)


# Import and register commands after cli is defined to avoid circular imports.
from inbox_enrich.cli.commands import classify, done, extract, tasks  # noqa: E402

cli.add_command(classify)
cli.add_command(extract)
cli.add_command(tasks)
cli.add_command(done)
