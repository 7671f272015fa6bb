"""Supervised task loop for external AI coding agents."""

__version__ = "0.1.0"
