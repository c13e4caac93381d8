"""
TaskPilot Database Schema Management.

Lightweight migration system:
- Tracks current schema version in a `schema_version` table
- Only runs migrations that haven't been applied yet
- Each migration is a (version, description, SQL) tuple
- Safe for concurrent startup (uses advisory lock)

Usage:
    db = Database(dsn="postgresql://...")
    await db.initialize()
    await ensure_schema(db)
"""

import logging
from typing import List, Tuple

from .database import Database

logger = logging.getLogger(__name__)

# ──────────────────────────────────────────────────────────────
# Migration registry
#
# Append-only. Never modify or delete existing entries.
# Each entry: (version, description, sql)
# ──────────────────────────────────────────────────────────────
MIGRATIONS: List[Tuple[int, str, str]] = [
    (
        1,
        "Create assistant_threads table",
        """
        CREATE TABLE IF NOT EXISTS assistant_threads (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id TEXT NOT NULL UNIQUE,
            thread_id TEXT NOT NULL,
            last_used TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
        """,
    ),
    (
        2,
        "Create pending_function_calls table",
        """
        CREATE TABLE IF NOT EXISTS pending_function_calls (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id TEXT NOT NULL,
            thread_id TEXT NOT NULL,
            run_id TEXT NOT NULL,
            tool_call_id TEXT NOT NULL,
            function_name TEXT NOT NULL,
            function_args TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
        CREATE INDEX IF NOT EXISTS idx_pending_calls_user_status
            ON pending_function_calls (user_id, status);
        """,
    ),
    (
        3,
        "Create todos table",
        """
        CREATE TABLE IF NOT EXISTS todos (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id TEXT NOT NULL,
            title TEXT NOT NULL,
            description TEXT,
            priority TEXT NOT NULL DEFAULT 'medium',
            due_date TIMESTAMPTZ,
            completed BOOLEAN NOT NULL DEFAULT FALSE,
            completed_at TIMESTAMPTZ,
            is_ai_generated BOOLEAN NOT NULL DEFAULT FALSE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
        CREATE INDEX IF NOT EXISTS idx_todos_user_created
            ON todos (user_id, created_at DESC);
        """,
    ),
    (
        4,
        "Create work_patterns table",
        """
        CREATE TABLE IF NOT EXISTS work_patterns (
            user_id TEXT PRIMARY KEY,
            snapshot JSONB NOT NULL DEFAULT '{}',
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
        """,
    ),
    (
        5,
        "Create user_memory table",
        """
        CREATE TABLE IF NOT EXISTS user_memory (
            user_id TEXT PRIMARY KEY,
            profile JSONB NOT NULL DEFAULT '{}',
            task_preferences JSONB NOT NULL DEFAULT '{}',
            interaction_history JSONB NOT NULL DEFAULT '[]',
            memory_text TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
        """,
    ),
    # ── Future migrations go here ──
]


# ──────────────────────────────────────────────────────────────
# Schema management
# ──────────────────────────────────────────────────────────────

_BOOTSTRAP_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    description TEXT NOT NULL,
    applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

# PostgreSQL advisory lock ID (arbitrary constant, unique to this app)
_LOCK_ID = 7_2658_2001


async def ensure_schema(db: Database) -> None:
    """Apply any pending migrations.

    - Creates the ``schema_version`` tracking table if needed
    - Uses a PostgreSQL advisory lock to prevent concurrent migration runs
    - Skips migrations that have already been applied
    - Each migration runs in its own transaction

    Args:
        db: Initialized Database instance.
    """
    async with db.connection() as conn:
        await conn.execute("SELECT pg_advisory_lock($1)", _LOCK_ID)
        try:
            await conn.execute(_BOOTSTRAP_SQL)

            row = await conn.fetchrow(
                "SELECT COALESCE(MAX(version), 0) AS v FROM schema_version"
            )
            current = row["v"]

            pending = [(v, d, s) for v, d, s in MIGRATIONS if v > current]
            if not pending:
                logger.debug(f"Schema up to date (version {current})")
                return

            for version, description, sql in pending:
                async with conn.transaction():
                    await conn.execute(sql)
                    await conn.execute(
                        "INSERT INTO schema_version (version, description) VALUES ($1, $2)",
                        version,
                        description,
                    )
                logger.info(f"Migration {version}: {description}")

            logger.info(
                f"Schema migrated {current} -> {pending[-1][0]} "
                f"({len(pending)} migration(s))"
            )
        finally:
            await conn.execute("SELECT pg_advisory_unlock($1)", _LOCK_ID)
