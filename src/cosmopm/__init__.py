"""Relativistic particle-mesh field engine."""

__version__ = "0.1.0"
