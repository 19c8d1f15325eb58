"""Meetsum: record a meeting, transcribe it and relay it to a summary workflow."""

__version__ = "0.1.0"
