"""Provision a classroom data-science environment with resilient, retrying steps."""

__version__ = "0.1.0"
