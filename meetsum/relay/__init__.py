"""Relay of merged transcripts to the summarization workflow."""

from .client import SummaryRelay, decode_summary_link, is_absolute_url

__all__ = [
    "SummaryRelay",
    "decode_summary_link",
    "is_absolute_url",
]
