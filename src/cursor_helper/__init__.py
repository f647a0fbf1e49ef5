"""Manage Cursor IDE project metadata and chat history."""

__version__ = "0.1.0"
