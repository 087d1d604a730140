"""Command-line interface for the feed processor."""

import asyncio
import logging
import signal
from typing import Optional

import typer
from typing_extensions import Annotated

from feed_processor.config import Config
from feed_processor.models.enums import ContentType, SourceType
from feed_processor.processor import FeedProcessor, ProcessorListener, SourceHealth
from feed_processor.utils.logging_utils import setup_logging

app = typer.Typer(help="Feed Processor - aggregate Flickr, Twitter, news and Facebook feeds")

logger = logging.getLogger(__name__)


class LoggingListener(ProcessorListener):
    """Logs health changes and purges."""

    def on_source_health_changed(self, health: SourceHealth) -> None:
        state = "up" if health.is_up else "down"
        logger.debug(f"{health.feed or health.source_type.value} is {state}")

    def on_cache_purged(self, snapshot) -> None:
        logger.info(f"Cache purged, {len(snapshot)} items kept")


async def run_processor(config: Config, show_every: float, stop_event: Optional[asyncio.Event] = None) -> None:
    """
    Run the processor until ``stop_event`` is set or a shutdown signal arrives.

    Args:
        config: Validated configuration
        show_every: Seconds between two logged items, 0 to disable
        stop_event: Event that ends the run
    """
    stop_event = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Not available on this platform or outside the main thread
            pass

    processor = FeedProcessor(config, listeners=[LoggingListener()])
    await processor.start()
    try:
        while not stop_event.is_set():
            timeout = show_every if show_every > 0 else None
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                item = processor.get_next_item(ContentType.all())
                if item is None:
                    logger.info(f"Nothing to show yet ({len(processor.cache)} items cached)")
                else:
                    logger.info(f"Next item: {item!r}")
    finally:
        logger.info("Shutdown requested")
        await processor.stop()


@app.command()
def run(
    config: Annotated[str, typer.Option("--config", "-c", help="Path to configuration file")] = "config.yaml",
    log_level: Annotated[str, typer.Option("--log-level", "-l", help="Logging level")] = "INFO",
    show_every: Annotated[float, typer.Option("--show-every", "-s", help="Seconds between logged items (0 disables)")] = 10.0,
) -> None:
    """Run every configured feed until interrupted."""
    setup_logging(log_level)

    cfg = Config.from_files(config)
    validation_errors = cfg.validate()
    if validation_errors:
        for error in validation_errors:
            logger.error(f"Configuration error: {error}")
        logger.critical("Invalid configuration, aborting")
        raise typer.Exit(code=1)

    asyncio.run(run_processor(cfg, show_every))


@app.command("check-config")
def check_config(
    config: Annotated[str, typer.Option("--config", "-c", help="Path to configuration file")] = "config.yaml",
) -> None:
    """Validate a configuration file and report every problem."""
    cfg = Config.from_files(config)
    validation_errors = cfg.validate()
    if validation_errors:
        for error in validation_errors:
            typer.echo(f"Configuration error: {error}", err=True)
        raise typer.Exit(code=1)

    total_terms = sum(len(cfg.queries.terms_for(source_type)) for source_type in SourceType)
    typer.echo(f"Configuration OK ({total_terms} query terms)")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
