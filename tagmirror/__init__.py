"""tagmirror — mirrors Bitbucket tags into PostHog annotations."""

__version__ = "0.1.0"
