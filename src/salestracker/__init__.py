"""Sales tracking: projects, income targets, dashboard statistics and leaderboards."""

__version__ = "0.3.0"
