"""Spotify listening-history dashboard service."""

__version__ = "0.3.0"
