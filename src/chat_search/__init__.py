"""Hybrid semantic + keyword search over chat session transcripts."""

__version__ = "1.0.0"
