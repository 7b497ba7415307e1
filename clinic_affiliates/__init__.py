"""Clinic affiliate commission engine."""

__version__ = "1.0.0"
