"""Signylite: local document marking engine."""

__version__ = "1.0.0"
