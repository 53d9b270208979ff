"""Database layer for permitflow: SQLAlchemy 2.0 async."""

from __future__ import annotations

from permitflow.db.base import Base
from permitflow.db.engine import DatabaseManager

__all__ = ["Base", "DatabaseManager"]
