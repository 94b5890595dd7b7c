"""SQLite storage layer: connection, migrations and queries."""

from scriptorium.db.connection import Database, get_connection
from scriptorium.db.migrations import MIGRATIONS, Migration, MigrationError, MigrationRunner
from scriptorium.db.queries import RepositoryRecord, RepositoryStore

__all__ = [
    "Database",
    "get_connection",
    "MIGRATIONS",
    "Migration",
    "MigrationError",
    "MigrationRunner",
    "RepositoryRecord",
    "RepositoryStore",
]
