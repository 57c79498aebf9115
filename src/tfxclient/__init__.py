"""Resilient network access layer for the driving-school mobile client."""

__version__ = "0.1.0"
