from __future__ import annotations

import asyncio
import logging
from typing import Tuple

import typer

from .config import AppConfig, UserProfile, load_config, load_profile, validate_config
from .logger import EventBus, gha_notice, setup_logging
from .pipeline import Pipeline


logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False, help="Turn collected articles into a podcast episode.")

CONFIG_OPTION = typer.Option("config.yaml", "--config", "-c", help="Path to config.yaml")
PROFILE_OPTION = typer.Option("profile.yaml", "--profile", "-p", help="Path to profile.yaml")


def _bootstrap(config_path: str, profile_path: str) -> Tuple[AppConfig, UserProfile, Pipeline]:
    cfg = load_config(config_path)
    bus = EventBus()
    setup_logging(cfg.logging.level, bus=bus)
    for w in validate_config(cfg):
        logger.warning("Config warning", extra={"detail": w})
    profile = load_profile(profile_path)
    pipeline = Pipeline(cfg, profile, bus=bus)
    pipeline.initialize()
    return cfg, profile, pipeline


@app.command()
def run(
    config: str = CONFIG_OPTION,
    profile: str = PROFILE_OPTION,
    script_only: bool = typer.Option(False, "--script-only", help="Write the script and skip audio/publishing."),
) -> None:
    """Run the pipeline once and publish an episode if there is anything new."""
    _, _, pipeline = _bootstrap(config, profile)
    result = asyncio.run(pipeline.run(script_only=script_only))
    if not result.success:
        gha_notice("ERROR", f"Pipeline failed: {result.error}")
        raise typer.Exit(code=1)
    if result.episode_id:
        typer.echo(f"Episode {result.episode_id}: {result.episode_title} ({result.article_count} articles)")
    else:
        typer.echo("Nothing new to publish")


@app.command()
def cleanup(config: str = CONFIG_OPTION, profile: str = PROFILE_OPTION) -> None:
    """Drop ledger records older than the configured retention windows."""
    _, _, pipeline = _bootstrap(config, profile)
    removed = pipeline.cleanup()
    typer.echo(f"Removed {removed['processed_articles']} processed and {removed['failed_urls']} failed records")


@app.command("clear-processed")
def clear_processed(config: str = CONFIG_OPTION, profile: str = PROFILE_OPTION) -> None:
    _, _, pipeline = _bootstrap(config, profile)
    typer.echo(f"Cleared {pipeline.clear_processed_articles()} processed articles")


@app.command("clear-failed")
def clear_failed(config: str = CONFIG_OPTION, profile: str = PROFILE_OPTION) -> None:
    _, _, pipeline = _bootstrap(config, profile)
    typer.echo(f"Cleared {pipeline.clear_failed_urls()} failed URLs")


@app.command("clear-all")
def clear_all(config: str = CONFIG_OPTION, profile: str = PROFILE_OPTION) -> None:
    """Reset the whole ledger (processed and failed)."""
    _, _, pipeline = _bootstrap(config, profile)
    counts = pipeline.store.clear_all()
    typer.echo(f"Cleared {counts['processed_articles']} processed and {counts['failed_urls']} failed records")


@app.command("clear-episodes")
def clear_episodes(
    config: str = CONFIG_OPTION,
    profile: str = PROFILE_OPTION,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete every episode's audio and script and empty the feed."""
    if not yes:
        typer.confirm("Delete all episodes and empty the feed?", abort=True)
    _, _, pipeline = _bootstrap(config, profile)
    counts = pipeline.clear_all_episodes()
    typer.echo(f"Removed {counts['audio_files']} audio and {counts['script_files']} script files")


def main() -> None:
    try:
        app()
    except SystemExit:
        raise
    except Exception as e:  # noqa: BLE001
        logger.exception("Fatal error", extra={"error": str(e)})
        gha_notice("ERROR", f"Fatal error: {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
