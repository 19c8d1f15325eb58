"""Terminal presentation for Meetsum."""

from .status_screen import StatusScreen

__all__ = ["StatusScreen"]
