"""
ghfeed - Personal GitHub activity feed for pull requests and issues.

A CLI tool that:
1. Searches GitHub for PRs and issues you authored, were assigned,
   reviewed, commented on or were mentioned in
2. Merges the overlapping search results into one labelled set
3. Nests issues under the pull requests that reference them
4. Caches everything locally so the feed also works offline

Usage:
    ghfeed                  # Show activity from the last month
    ghfeed --time 2w        # Show activity from the last two weeks
    ghfeed --local --links  # Offline mode with links (same as --ll)
    ghfeed init             # Create ~/.ghfeed with a config template
    ghfeed cache            # Show cache statistics
"""

__version__ = "0.1.0"
__author__ = "ghfeed"
