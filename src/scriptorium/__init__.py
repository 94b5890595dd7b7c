"""Scriptorium - scripture repository discovery and import."""

__version__ = "0.3.0"
