"""Replay and render pixel canvas logs."""

__version__ = "0.1.0"
