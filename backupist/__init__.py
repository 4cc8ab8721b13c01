"""Backup building blocks: policies, configuration, tar.gz archives, local storage, SQLite records and retention cleanup."""

__version__ = "0.1.0"