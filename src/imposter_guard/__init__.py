"""Impersonation watchdog for the Bluesky Jetstream firehose."""

__version__ = "0.1.0"
