"""Database module for SQLite persistence.

Provides:
- Connection and transaction management
- Schema initialization
- The insert-or-get primitive shared by attempt starts and upserts
- Repository modules for attempts, results, quiz state, certificates
  and the read-only authoring store
"""

from quizcert.db.database import get_db, init_db, insert_or_get

__all__ = ["get_db", "init_db", "insert_or_get"]
