"""Levered agent proxy: streams a coding agent's work over HTTP."""

__version__ = "1.0.0"
