"""Autonomous iteration controller for long-running agent goals."""

__version__ = "0.1.0"
