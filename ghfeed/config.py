"""
Configuration management for ghfeed.

Loads and validates:
- ~/.ghfeed/.env: Credentials (GITHUB_TOKEN, GITHUB_USERNAME, ALLOWED_REPOS)
- ~/.ghfeed/ghfeed.yml: Optional defaults (time range, concurrency, links)

The config directory can be moved with the GHFEED_HOME environment variable.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml


CONFIG_DIRNAME = ".ghfeed"
ENV_FILENAME = ".env"
CONFIG_FILENAME = "ghfeed.yml"
DB_FILENAME = "ghfeed.db"

DEFAULT_TIME_RANGE = "1m"
DEFAULT_API_URL = "https://api.github.com"
DEFAULT_CONCURRENCY = 8

VALID_TOKEN_PREFIXES = ("ghp_", "gho_", "github_pat_")

ENV_TEMPLATE = """\
# GitHub Feed Configuration
# Add your GitHub credentials here

# Your GitHub Personal Access Token (required)
# Generate at: https://github.com/settings/tokens
# Required scopes: repo, read:org
GITHUB_TOKEN=

# Your GitHub username (required)
GITHUB_USERNAME=

# Optional: Comma-separated list of allowed repos (e.g., user/repo1,user/repo2)
# Leave empty to allow all repos
ALLOWED_REPOS=
"""

SAMPLE_CONFIG = """\
# ghfeed defaults (command-line flags take precedence)

time_range: 1m        # 1h, 2d, 3w, 4m, 1y
show_links: false     # Print the URL under each item
concurrency: 8        # Parallel API requests
fetch_details: false  # Fetch full PR details (merged state) for closed PRs
# api_url: https://api.github.com
# allowed_repos:
#   - owner/repo
"""

TIME_UNITS = {
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
    "m": timedelta(days=30),
    "y": timedelta(days=365),
}


class ConfigError(Exception):
    """Invalid or incomplete configuration."""


def parse_time_range(value: str) -> timedelta:
    """
    Parse a lookback window like "1h", "2d", "3w", "4m" or "1y".

    Months are 30 days and years are 365 days.

    Raises:
        ValueError: if the value is malformed
    """
    match = re.match(r"^(\d+)([a-z])$", value.strip().lower())
    if not match:
        raise ValueError(
            f"invalid time range format: {value} (expected format like 1h, 2d, 3w, 4m, 1y)"
        )

    amount = int(match.group(1))
    unit = match.group(2)
    if amount < 1:
        raise ValueError(f"invalid time range number: {amount} (must be a positive integer)")
    if unit not in TIME_UNITS:
        raise ValueError(f"invalid time unit: {unit} (use h=hours, d=days, w=weeks, m=months, y=years)")

    return TIME_UNITS[unit] * amount


def parse_allowed_repos(value: str | list[str] | None) -> set[str]:
    """Parse a comma-separated (or list) repo filter into a set of owner/repo names."""
    if not value:
        return set()
    parts = value.split(",") if isinstance(value, str) else value
    return {part.strip() for part in parts if part and part.strip()}


@dataclass
class FeedConfig:
    """Complete ghfeed configuration for one invocation."""
    username: str = ""
    token: str = ""
    time_range: str = DEFAULT_TIME_RANGE
    allowed_repos: set[str] = field(default_factory=set)
    show_links: bool = False
    local_mode: bool = False
    debug: bool = False
    concurrency: int = DEFAULT_CONCURRENCY
    fetch_details: bool = False
    api_url: str = DEFAULT_API_URL

    @property
    def window(self) -> timedelta:
        return parse_time_range(self.time_range)

    def is_repo_allowed(self, owner: str, repo: str) -> bool:
        if not self.allowed_repos:
            return True
        return f"{owner}/{repo}" in self.allowed_repos

    @classmethod
    def load(cls, config_dir: Path | None = None) -> "FeedConfig":
        """Load defaults from ghfeed.yml and credentials from the environment."""
        config_dir = config_dir or get_config_dir()
        config = cls()

        config_path = config_dir / CONFIG_FILENAME
        if config_path.exists():
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
            config = cls._parse_main_config(data)

        config.token = os.environ.get("GITHUB_ACTIVITY_TOKEN") or os.environ.get("GITHUB_TOKEN") or ""
        config.username = os.environ.get("GITHUB_USERNAME") or os.environ.get("GITHUB_USER") or ""

        env_repos = parse_allowed_repos(os.environ.get("ALLOWED_REPOS"))
        if env_repos:
            config.allowed_repos = env_repos

        return config

    @classmethod
    def _parse_main_config(cls, data: dict[str, Any]) -> "FeedConfig":
        """Parse main configuration dictionary."""
        return cls(
            time_range=str(data.get("time_range", DEFAULT_TIME_RANGE)),
            allowed_repos=parse_allowed_repos(data.get("allowed_repos")),
            show_links=bool(data.get("show_links", False)),
            concurrency=int(data.get("concurrency", DEFAULT_CONCURRENCY)),
            fetch_details=bool(data.get("fetch_details", False)),
            api_url=data.get("api_url", DEFAULT_API_URL),
        )

    def validate(self, env_path: Path | None = None) -> None:
        """
        Check credentials before talking to GitHub.

        Offline mode needs no credentials.

        Raises:
            ConfigError: with instructions on how to fix the problem
        """
        try:
            self.window
        except ValueError as e:
            raise ConfigError(str(e)) from e

        if self.local_mode:
            return

        env_path = env_path or get_config_dir() / ENV_FILENAME

        if not self.username:
            raise ConfigError(
                "GitHub username is required.\n\n"
                "To fix this:\n"
                "  - Set GITHUB_USERNAME environment variable\n"
                f"  - Or add it to {env_path}"
            )

        if not self.token:
            raise ConfigError(
                "GitHub token is required.\n\n"
                "To fix this:\n"
                "  1. Generate a token at https://github.com/settings/tokens\n"
                "  2. Click 'Generate new token' -> 'Generate new token (classic)'\n"
                "  3. Give it a name and select scopes: 'repo', 'read:org'\n"
                "  4. Generate and copy the token\n"
                "  5. Set GITHUB_TOKEN environment variable\n"
                f"  6. Or add it to {env_path}"
            )

        if not self.token.startswith(VALID_TOKEN_PREFIXES):
            raise ConfigError(
                "GitHub token format looks invalid.\n\n"
                "GitHub Personal Access Tokens should start with:\n"
                "  - 'ghp_' (classic PAT)\n"
                "  - 'gho_' (OAuth token)\n"
                "  - 'github_pat_' (fine-grained PAT)\n\n"
                f"Your token starts with: '{self.token[:10]}'\n\n"
                "Please check your token at https://github.com/settings/tokens"
            )


def get_config_dir() -> Path:
    """Get the ghfeed config directory (GHFEED_HOME or ~/.ghfeed)."""
    override = os.environ.get("GHFEED_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / CONFIG_DIRNAME


def ensure_config_dir(config_dir: Path | None = None) -> Path:
    """Ensure the config directory and its .env template exist and return the directory."""
    config_dir = config_dir or get_config_dir()
    config_dir.mkdir(parents=True, exist_ok=True)

    env_path = config_dir / ENV_FILENAME
    if not env_path.exists():
        env_path.write_text(ENV_TEMPLATE)
        env_path.chmod(0o600)

    return config_dir


def get_db_path(config_dir: Path | None = None) -> Path:
    return (config_dir or get_config_dir()) / DB_FILENAME
