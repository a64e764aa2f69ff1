"""Diffable: versioned web resources served as deltas."""

__version__ = "0.1.0"
