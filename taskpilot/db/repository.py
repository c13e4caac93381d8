"""
TaskPilot Repository - Base class for Postgres-backed stores.

Each store subclass defines:
- TABLE_NAME: the table it owns
- the store interface methods it implements (ThreadStore, ApprovalStore, ...)

Usage:
    class ThreadRepository(Repository, ThreadStore):
        TABLE_NAME = "assistant_threads"

        async def get(self, user_id: str):
            row = await self.db.fetchrow(
                "SELECT * FROM assistant_threads WHERE user_id = $1", user_id
            )
            return dict(row) if row else None
"""

import json
import logging
from typing import Any, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .database import Database

logger = logging.getLogger(__name__)


class Repository:
    """
    Base class for table-level data access.

    Subclasses define TABLE_NAME and their store methods. Ownership checks
    (``user_id = $n``) are the subclass's responsibility; the helpers here
    never add them implicitly.
    """

    TABLE_NAME: str = ""
    JSON_COLUMNS: tuple = ()

    def __init__(self, db: "Database"):
        self._db = db

    @property
    def db(self) -> "Database":
        return self._db

    # -- Generic CRUD helpers (subclasses can use or ignore) --

    def _encode(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Serialize JSONB columns to text for asyncpg."""
        encoded = {}
        for key, value in data.items():
            if key in self.JSON_COLUMNS and not isinstance(value, str) and value is not None:
                encoded[key] = json.dumps(value, default=str)
            else:
                encoded[key] = value
        return encoded

    def _decode(self, row: Any) -> Optional[Dict[str, Any]]:
        """Convert a record to a dict, parsing JSONB columns returned as text."""
        if row is None:
            return None
        d = dict(row)
        for col in self.JSON_COLUMNS:
            val = d.get(col)
            if isinstance(val, str):
                try:
                    d[col] = json.loads(val)
                except (json.JSONDecodeError, TypeError):
                    pass
        return d

    async def _insert(
        self,
        data: Dict[str, Any],
        returning: str = "*",
    ) -> Optional[Dict[str, Any]]:
        """Insert a row and return it."""
        data = self._encode(data)
        columns = list(data.keys())
        placeholders = [f"${i+1}" for i in range(len(columns))]
        values = list(data.values())

        query = (
            f"INSERT INTO {self.TABLE_NAME} ({', '.join(columns)}) "
            f"VALUES ({', '.join(placeholders)}) "
            f"RETURNING {returning}"
        )
        row = await self._db.fetchrow(query, *values)
        return self._decode(row)

    async def _update_owned(
        self,
        id_value: Any,
        user_id: str,
        data: Dict[str, Any],
        returning: str = "*",
        expect: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Update a row by id, only if it belongs to ``user_id``.

        ``expect`` adds ``column = value`` guards: nothing is written and
        None is returned unless every guarded column still holds its value.
        """
        data = self._encode(data)
        set_clauses = []
        values = []
        for i, (col, val) in enumerate(data.items(), 1):
            set_clauses.append(f"{col} = ${i}")
            values.append(val)

        values.append(id_value)
        conditions = [f"id = ${len(values)}"]
        values.append(user_id)
        conditions.append(f"user_id = ${len(values)}")
        for col, val in (expect or {}).items():
            values.append(val)
            conditions.append(f"{col} = ${len(values)}")

        query = (
            f"UPDATE {self.TABLE_NAME} "
            f"SET {', '.join(set_clauses)} "
            f"WHERE {' AND '.join(conditions)} "
            f"RETURNING {returning}"
        )
        row = await self._db.fetchrow(query, *values)
        return self._decode(row)

    async def _delete_owned(self, id_value: Any, user_id: str) -> bool:
        """Delete a row by id if it belongs to ``user_id``. Returns True if deleted."""
        result = await self._db.execute(
            f"DELETE FROM {self.TABLE_NAME} WHERE id = $1 AND user_id = $2",
            id_value,
            user_id,
        )
        return result == "DELETE 1"

    async def _fetch_many(
        self,
        where: str = "",
        args: tuple = (),
        order_by: str = "",
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Fetch multiple rows with optional WHERE, ORDER BY, LIMIT."""
        query = f"SELECT * FROM {self.TABLE_NAME}"
        if where:
            query += f" WHERE {where}"
        if order_by:
            query += f" ORDER BY {order_by}"
        if limit:
            query += f" LIMIT {int(limit)}"

        rows = await self._db.fetch(query, *args)
        return [self._decode(r) for r in rows]
