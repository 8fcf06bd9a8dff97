"""Exceptions shared across layers."""


class NonRetryableError(Exception):
    """A failure that running the same job again cannot fix, such as missing configuration."""
