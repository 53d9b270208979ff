"""Permit workflow engine for municipal permit portals."""

__version__ = "0.1.0"
