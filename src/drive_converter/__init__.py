"""Resumable pre-order OneDrive traversal that converts legacy Office files."""

__version__ = "0.1.0"
