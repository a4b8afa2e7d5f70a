"""Persistent task tracker with multi-agent coordination."""

__version__ = "0.1.0"
