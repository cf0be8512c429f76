"""Workspace layout and starter files."""

from .workspace import scaffold_workspace

__all__ = ["scaffold_workspace"]
