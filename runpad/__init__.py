"""Runpad - type code, run it, watch its output."""

__version__ = "1.0.0"
