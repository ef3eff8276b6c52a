"""Operational health monitoring for a simulated trading venue."""

__version__ = "0.1.0"
