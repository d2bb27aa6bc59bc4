"""Jackometer: AI-assisted academic workspace backend."""

__version__ = "0.1.0"
