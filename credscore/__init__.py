"""Credibility scoring and multi-source profile synchronization."""

__version__ = "0.3.0"
