"""Versioned schema migrations.

Each migration carries idempotent DDL and runs in its own transaction
together with its row in the ``migrations`` tracking table, so re-running
startup is safe and a failed migration leaves no partial schema.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass

logger = logging.getLogger(__name__)


class MigrationError(Exception):
    """Raised when a migration fails to apply or roll back."""

    def __init__(self, message: str, version: int | None = None):
        self.version = version
        full_message = f"[migration {version}] {message}" if version else message
        super().__init__(full_message)


@dataclass(frozen=True)
class Migration:
    """A forward schema change with an optional rollback script."""

    version: int
    name: str
    up: str
    down: str = ""


MIGRATIONS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS migrations (
    version INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);
"""

MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        version=1,
        name="create_repositories_table",
        up="""
        CREATE TABLE IF NOT EXISTS repositories (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            description TEXT,
            language TEXT,
            version TEXT NOT NULL,
            type TEXT NOT NULL DEFAULT 'translation'
                CHECK (type IN ('parent', 'translation')),
            parent_id TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            CHECK (type = 'translation' OR parent_id IS NULL),
            FOREIGN KEY (parent_id) REFERENCES repositories(id) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_repositories_parent ON repositories(parent_id);
        """,
        down="""
        DROP INDEX IF EXISTS idx_repositories_parent;
        DROP TABLE IF EXISTS repositories;
        """,
    ),
    Migration(
        version=2,
        name="create_books_table",
        up="""
        CREATE TABLE IF NOT EXISTS books (
            id INTEGER PRIMARY KEY,
            repository_id TEXT NOT NULL,
            name TEXT NOT NULL,
            abbreviation TEXT NOT NULL,
            testament TEXT NOT NULL CHECK (testament IN ('OT', 'NT')),
            book_order INTEGER NOT NULL CHECK (book_order >= 1),
            chapter_count INTEGER NOT NULL DEFAULT 0,
            FOREIGN KEY (repository_id) REFERENCES repositories(id) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_books_repository ON books(repository_id);
        CREATE INDEX IF NOT EXISTS idx_books_testament ON books(testament);
        CREATE UNIQUE INDEX IF NOT EXISTS idx_books_order
            ON books(repository_id, book_order);
        """,
        down="""
        DROP INDEX IF EXISTS idx_books_order;
        DROP INDEX IF EXISTS idx_books_testament;
        DROP INDEX IF EXISTS idx_books_repository;
        DROP TABLE IF EXISTS books;
        """,
    ),
    Migration(
        version=3,
        name="create_verses_table",
        up="""
        CREATE TABLE IF NOT EXISTS verses (
            id INTEGER PRIMARY KEY,
            repository_id TEXT NOT NULL,
            book_id INTEGER NOT NULL,
            chapter INTEGER NOT NULL,
            verse INTEGER NOT NULL,
            text TEXT NOT NULL,
            FOREIGN KEY (repository_id) REFERENCES repositories(id) ON DELETE CASCADE,
            FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE CASCADE,
            UNIQUE (repository_id, book_id, chapter, verse)
        );

        CREATE INDEX IF NOT EXISTS idx_verses_repository ON verses(repository_id);
        CREATE INDEX IF NOT EXISTS idx_verses_chapter ON verses(book_id, chapter);
        """,
        down="""
        DROP INDEX IF EXISTS idx_verses_chapter;
        DROP INDEX IF EXISTS idx_verses_repository;
        DROP TABLE IF EXISTS verses;
        """,
    ),
    Migration(
        version=4,
        name="create_user_settings_table",
        up="""
        CREATE TABLE IF NOT EXISTS user_settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        );

        INSERT OR IGNORE INTO user_settings (key, value) VALUES
            ('default_repository', ''),
            ('font_size', '16'),
            ('theme', 'system'),
            ('last_read_book', ''),
            ('last_read_chapter', '1'),
            ('last_read_verse', '1');
        """,
        down="DROP TABLE IF EXISTS user_settings;",
    ),
    Migration(
        version=5,
        name="create_repository_translations_table",
        up="""
        CREATE TABLE IF NOT EXISTS repository_translations (
            id INTEGER PRIMARY KEY,
            parent_repository_id TEXT NOT NULL,
            translation_id TEXT NOT NULL,
            directory_name TEXT NOT NULL,
            language_code TEXT,
            status TEXT NOT NULL DEFAULT 'active',
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (parent_repository_id, translation_id),
            FOREIGN KEY (parent_repository_id) REFERENCES repositories(id) ON DELETE CASCADE,
            FOREIGN KEY (translation_id) REFERENCES repositories(id) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_repo_translations_parent
            ON repository_translations(parent_repository_id);
        """,
        down="""
        DROP INDEX IF EXISTS idx_repo_translations_parent;
        DROP TABLE IF EXISTS repository_translations;
        """,
    ),
    Migration(
        version=6,
        name="enforce_translation_parent_kind",
        up="""
        CREATE TRIGGER IF NOT EXISTS trg_repositories_parent_kind_insert
        BEFORE INSERT ON repositories
        WHEN NEW.parent_id IS NOT NULL
            AND (SELECT type FROM repositories WHERE id = NEW.parent_id) IS NOT 'parent'
        BEGIN
            SELECT RAISE(ABORT, 'parent_id must reference a parent repository');
        END;

        CREATE TRIGGER IF NOT EXISTS trg_repositories_parent_kind_update
        BEFORE UPDATE OF parent_id, type ON repositories
        WHEN NEW.parent_id IS NOT NULL
            AND (SELECT type FROM repositories WHERE id = NEW.parent_id) IS NOT 'parent'
        BEGIN
            SELECT RAISE(ABORT, 'parent_id must reference a parent repository');
        END;
        """,
        down="""
        DROP TRIGGER IF EXISTS trg_repositories_parent_kind_update;
        DROP TRIGGER IF EXISTS trg_repositories_parent_kind_insert;
        """,
    ),
    Migration(
        version=7,
        name="guard_repository_hierarchy",
        up="""
        CREATE TRIGGER IF NOT EXISTS trg_repositories_self_parent
        BEFORE UPDATE OF parent_id ON repositories
        WHEN NEW.parent_id = NEW.id
        BEGIN
            SELECT RAISE(ABORT, 'a repository cannot be its own parent');
        END;

        CREATE TRIGGER IF NOT EXISTS trg_repositories_parent_demote
        BEFORE UPDATE OF type ON repositories
        WHEN NEW.type != 'parent'
            AND EXISTS (SELECT 1 FROM repositories WHERE parent_id = NEW.id)
        BEGIN
            SELECT RAISE(ABORT, 'repository still has translations');
        END;

        CREATE TRIGGER IF NOT EXISTS trg_repository_translations_self_link
        BEFORE INSERT ON repository_translations
        WHEN NEW.parent_repository_id = NEW.translation_id
        BEGIN
            SELECT RAISE(ABORT, 'a repository cannot be its own translation');
        END;
        """,
        down="""
        DROP TRIGGER IF EXISTS trg_repository_translations_self_link;
        DROP TRIGGER IF EXISTS trg_repositories_parent_demote;
        DROP TRIGGER IF EXISTS trg_repositories_self_parent;
        """,
    ),
)


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class MigrationRunner:
    """Applies pending migrations in version order.

    Usage:
        runner = MigrationRunner(conn)
        runner.run()
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        migrations: tuple[Migration, ...] | list[Migration] = MIGRATIONS,
    ):
        self._conn = conn
        self._migrations = sorted(migrations, key=lambda m: m.version)
        self._conn.executescript(MIGRATIONS_TABLE_SQL)

    def current_version(self) -> int:
        """Highest applied migration version (0 for a fresh store)."""
        row = self._conn.execute("SELECT MAX(version) FROM migrations").fetchone()
        return row[0] or 0

    def applied(self) -> list[dict]:
        """Applied migrations, oldest first."""
        cursor = self._conn.execute(
            "SELECT version, name, applied_at FROM migrations ORDER BY version"
        )
        return [dict(row) for row in cursor]

    def pending(self) -> list[Migration]:
        """Migrations newer than the current version."""
        current = self.current_version()
        return [m for m in self._migrations if m.version > current]

    def run(self) -> int:
        """Apply every pending migration.

        Returns:
            Number of migrations applied

        Raises:
            MigrationError: If a migration fails (earlier ones stay applied)
        """
        pending = self.pending()
        if not pending:
            logger.debug("Database schema is up to date")
            return 0

        logger.info(f"Running {len(pending)} migrations...")
        for migration in pending:
            logger.info(f"Applying migration {migration.version}: {migration.name}")
            self._execute_in_transaction(
                migration.up,
                "INSERT INTO migrations (version, name) VALUES "
                f"({int(migration.version)}, {_quote(migration.name)});",
                migration.version,
            )
        return len(pending)

    def rollback(self, target_version: int) -> int:
        """Roll back migrations newer than ``target_version``, newest first.

        Returns:
            Number of migrations rolled back

        Raises:
            MigrationError: If a migration has no rollback script or it fails
        """
        current = self.current_version()
        if target_version >= current:
            return 0

        to_rollback = [
            m
            for m in reversed(self._migrations)
            if target_version < m.version <= current
        ]
        for migration in to_rollback:
            if not migration.down:
                raise MigrationError(
                    "Migration has no rollback script", migration.version
                )
            logger.info(f"Rolling back migration {migration.version}: {migration.name}")
            self._execute_in_transaction(
                migration.down,
                f"DELETE FROM migrations WHERE version = {int(migration.version)};",
                migration.version,
            )
        return len(to_rollback)

    def _execute_in_transaction(self, script: str, bookkeeping: str, version: int) -> None:
        # executescript may commit a pending transaction, so BEGIN/COMMIT
        # live inside the script itself
        try:
            self._conn.executescript(f"BEGIN;\n{script}\n{bookkeeping}\nCOMMIT;")
        except sqlite3.Error as e:
            if self._conn.in_transaction:
                self._conn.execute("ROLLBACK")
            raise MigrationError(str(e), version) from e
