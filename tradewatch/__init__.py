"""Recurring marketplace searches with screenshot notifications to a Discord webhook."""

__version__ = "0.1.0"
