"""Guarded execution of externally constructed shell commands."""

__version__ = "0.1.0"
