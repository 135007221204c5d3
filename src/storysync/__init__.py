"""Resilient content synchronization for externally published posts."""

__version__ = "0.1.0"
