"""
TaskPilot Database - asyncpg-based data access.

- Database: shared connection pool manager (one per app)
- Repository: base class for Postgres-backed stores (one per table)
- ensure_schema: apply pending migrations on startup
"""

from .database import Database
from .repository import Repository
from .initialize import ensure_schema

__all__ = ["Database", "Repository", "ensure_schema"]
