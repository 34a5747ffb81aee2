"""Magda Records - encrypted personal health record store."""

__version__ = "1.0.0"
