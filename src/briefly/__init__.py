"""Briefly: personalized daily news briefings."""

__version__ = "0.1.0"
