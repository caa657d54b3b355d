"""Grocery price comparison through session-scoped browser automation."""

__version__ = "1.0.0"
