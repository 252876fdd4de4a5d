"""Tributary: multi-source sync and reconciliation."""

__version__ = "0.1.0"
