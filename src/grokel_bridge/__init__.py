"""Grokel bridge: forwards cloud-stored light colors to connected embedded controllers."""

__version__ = "0.6.0"
