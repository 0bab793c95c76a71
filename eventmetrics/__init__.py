"""Classify engineering webhook events into metrics, aggregate them, and derive DORA indicators."""

__version__ = "0.1.0"
