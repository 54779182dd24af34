"""Companion chat service: conversational memory subsystem."""

__version__ = "0.1.0"
