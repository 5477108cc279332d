"""
ghfeed CLI - Personal GitHub activity feed.

Commands:
    (none)    - Show the activity feed
    init      - Create the config directory and templates
    cache     - Show or clear the local cache
"""

from __future__ import annotations

import logging
import sqlite3
import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from . import __version__
from .config import (
    CONFIG_FILENAME,
    ENV_FILENAME,
    SAMPLE_CONFIG,
    ConfigError,
    FeedConfig,
    ensure_config_dir,
    get_config_dir,
    get_db_path,
    parse_allowed_repos,
)
from .feed import INITIAL_PROGRESS_TOTAL, run_feed
from .github import GitHubAPIError, GitHubClient, RateLimitError
from .render import Progress, render_report
from .store import Store


logger = logging.getLogger(__name__)

TIME_RANGE_EXAMPLES = (
    "Examples: --time 1h (1 hour), --time 2d (2 days), --time 3w (3 weeks), "
    "--time 4m (4 months), --time 1y (1 year)"
)

ENV_HELP = """\b
Environment Variables:
  GITHUB_TOKEN or GITHUB_ACTIVITY_TOKEN - GitHub Personal Access Token
  GITHUB_USERNAME or GITHUB_USER        - Your GitHub username
  ALLOWED_REPOS                         - Comma-separated list of allowed repos
  GHFEED_HOME                           - Config directory (default ~/.ghfeed)
"""


def _load_env(config_dir: Path) -> None:
    # Existing environment variables win over both files
    load_dotenv(config_dir / ENV_FILENAME)
    load_dotenv(Path.cwd() / ".env")


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s" if debug else "%(levelname)s: %(message)s",
    )
    # Keep HTTP connection chatter out of --debug output
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def _open_store(db_path: Path, clean: bool) -> Store | None:
    if clean:
        click.echo("Cleaning database cache...")
        if db_path.exists():
            try:
                db_path.unlink()
                click.echo("Database cache cleaned successfully")
            except OSError as e:
                click.echo(f"Warning: Failed to delete database file: {e}")
        else:
            click.echo("No existing database cache to clean")

    try:
        return Store(db_path)
    except (sqlite3.Error, OSError) as e:
        click.echo(f"Warning: Failed to open database: {e}")
        click.echo("Continuing without database caching...")
        return None


@click.group(invoke_without_command=True, epilog=ENV_HELP)
@click.version_option(version=__version__)
@click.option("--time", "time_range", default=None, help="Show items from last time range (1h, 2d, 3w, 4m, 1y)")
@click.option("--debug", is_flag=True, help="Show detailed API logging")
@click.option("--local", is_flag=True, help="Use local database instead of GitHub API")
@click.option("--links", is_flag=True, help="Show hyperlinks underneath each PR/issue")
@click.option("--ll", is_flag=True, help="Shortcut for --local --links (offline mode with links)")
@click.option("--clean", is_flag=True, help="Delete and recreate the database cache")
@click.option("--allowed-repos", default=None, help="Comma-separated list of allowed repos (e.g., user/repo1,user/repo2)")
@click.pass_context
def main(
    ctx: click.Context,
    time_range: str | None,
    debug: bool,
    local: bool,
    links: bool,
    ll: bool,
    clean: bool,
    allowed_repos: str | None,
):
    """ghfeed - Monitor GitHub pull requests and issues you are involved in."""
    _configure_logging(debug)
    if ctx.invoked_subcommand is not None:
        return

    config_dir = ensure_config_dir()
    _load_env(config_dir)

    config = FeedConfig.load(config_dir)
    config.debug = debug
    config.local_mode = local or ll
    config.show_links = links or ll or config.show_links
    if time_range:
        config.time_range = time_range
    if allowed_repos:
        config.allowed_repos = parse_allowed_repos(allowed_repos)

    try:
        config.window
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        click.echo(TIME_RANGE_EXAMPLES, err=True)
        sys.exit(1)

    if config.allowed_repos:
        logger.debug(f"Filtering to allowed repositories: {sorted(config.allowed_repos)}")

    store = _open_store(get_db_path(config_dir), clean)

    try:
        config.validate(config_dir / ENV_FILENAME)
    except ConfigError as e:
        click.echo(f"Configuration Error: {e}\n", err=True)
        sys.exit(1)

    logger.debug(f"Monitoring GitHub PR activity for user: {config.username}")
    logger.debug(f"Showing items from the last {config.time_range}")

    client = GitHubClient(token=config.token or None, base_url=config.api_url)
    progress = Progress(total=INITIAL_PROGRESS_TOTAL, enabled=not debug)

    if not debug:
        click.echo("Fetching data from GitHub... ", nl=False)
        progress.display()

    try:
        report = run_feed(config, client, store, progress)
    except RateLimitError as e:
        progress.clear()
        click.echo(f"Skipping this cycle due to rate limit: {e}")
        return
    except GitHubAPIError as e:
        progress.clear()
        click.echo(f"Skipping this cycle due to rate limit: failed to fetch rate limit: {e}")
        return

    progress.clear()
    click.echo(render_report(report, show_links=config.show_links, debug=debug))


@main.command()
@click.option("--force", is_flag=True, help="Overwrite an existing ghfeed.yml")
def init(force: bool):
    """Create the config directory, .env template and ghfeed.yml."""
    config_dir = ensure_config_dir()
    click.echo(f"Initializing ghfeed in: {config_dir}")
    click.echo(f"  Credentials: {config_dir / ENV_FILENAME}")

    store = Store(get_db_path(config_dir))
    click.echo(f"  Database: {store.db_path}")

    config_path = config_dir / CONFIG_FILENAME
    if not config_path.exists() or force:
        config_path.write_text(SAMPLE_CONFIG)
        click.echo(f"  Created: {config_path}")
    else:
        click.echo(f"  Skipped: {config_path} (already exists)")

    click.echo("\nghfeed initialized! Next steps:")
    click.echo(f"  1. Add GITHUB_TOKEN and GITHUB_USERNAME to {config_dir / ENV_FILENAME}")
    click.echo("  2. Run: ghfeed")
    click.echo("  3. Offline later with: ghfeed --ll")


@main.command()
@click.option("--clear", is_flag=True, help="Delete every cached item")
def cache(clear: bool):
    """Show cache statistics."""
    db_path = get_db_path(get_config_dir())
    store = Store(db_path)

    if clear:
        store.clear()
        click.echo(f"Cleared cache: {db_path}")
        return

    stats = store.stats()
    click.echo(f"Cache: {db_path}")
    click.echo(f"  Pull requests: {stats.pull_requests}")
    click.echo(f"  Issues:        {stats.issues}")
    click.echo(f"  Comments:      {stats.comments}")


if __name__ == "__main__":
    main()
