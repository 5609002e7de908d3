"""Goalify Sync - headless data sync and focus timer engine."""

__version__ = "1.0.0"
