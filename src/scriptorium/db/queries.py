"""Query and write operations over the repository store.

Handles:
- Repository rows (parent and translation kinds) and translation links
- Books and verses, including bulk insertion of a parsed book document
- Verse lookup and text search
- User settings and store statistics

Writes never open or commit transactions themselves; the importer wraps
them in ``Database.transaction()`` so one import is all-or-nothing.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone

from scriptorium.repository import canon

SEARCH_LIMIT = 100


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class RepositoryRecord:
    """Row of the repositories table."""

    id: str
    name: str
    version: str
    type: str = "translation"  # parent, translation
    description: str = ""
    language: str | None = None
    parent_id: str | None = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "RepositoryRecord":
        return cls(
            id=row["id"],
            name=row["name"],
            version=row["version"],
            type=row["type"],
            description=row["description"] or "",
            language=row["language"],
            parent_id=row["parent_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict:
        """Serialize to dict."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "language": self.language,
            "version": self.version,
            "type": self.type,
            "parent_id": self.parent_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class RepositoryStore:
    """Database operations for imported repositories.

    Usage:
        store = RepositoryStore(conn)
        store.upsert_repository(record)
        book_id, verses = store.import_book(book_doc, record.id)

        verses = store.get_verses(book_id, chapter=1)
    """

    def __init__(self, conn: sqlite3.Connection):
        """Initialize with database connection.

        Args:
            conn: SQLite connection with migrations applied
        """
        self._conn = conn

    # --- Repositories ---

    def list_repositories(self) -> list[RepositoryRecord]:
        cursor = self._conn.execute("SELECT * FROM repositories ORDER BY name")
        return [RepositoryRecord.from_row(row) for row in cursor]

    def get_repository(self, repository_id: str) -> RepositoryRecord | None:
        row = self._conn.execute(
            "SELECT * FROM repositories WHERE id = ?", (repository_id,)
        ).fetchone()
        return RepositoryRecord.from_row(row) if row else None

    def repository_exists(self, repository_id: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM repositories WHERE id = ?", (repository_id,)
        ).fetchone()
        return row is not None

    def get_parent_repositories(self) -> list[RepositoryRecord]:
        cursor = self._conn.execute(
            "SELECT * FROM repositories WHERE type = 'parent' ORDER BY name"
        )
        return [RepositoryRecord.from_row(row) for row in cursor]

    def get_translations(self, parent_id: str) -> list[dict]:
        """Translations linked to a parent, with link provenance."""
        cursor = self._conn.execute(
            """
            SELECT r.*, t.directory_name, t.language_code AS link_language_code,
                   t.status
            FROM repository_translations t
            JOIN repositories r ON r.id = t.translation_id
            WHERE t.parent_repository_id = ?
            ORDER BY r.name
            """,
            (parent_id,),
        )
        results = []
        for row in cursor:
            data = RepositoryRecord.from_row(row).to_dict()
            data["directory_name"] = row["directory_name"]
            data["language_code"] = row["link_language_code"]
            data["status"] = row["status"]
            results.append(data)
        return results

    def upsert_repository(self, record: RepositoryRecord) -> None:
        """Insert a repository or update it in place, keeping created_at."""
        self._conn.execute(
            """
            INSERT INTO repositories (
                id, name, description, language, version, type, parent_id,
                created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                description = excluded.description,
                language = excluded.language,
                version = excluded.version,
                type = excluded.type,
                parent_id = excluded.parent_id,
                updated_at = excluded.updated_at
            """,
            (
                record.id,
                record.name,
                record.description,
                record.language,
                record.version,
                record.type,
                record.parent_id,
                record.created_at,
                record.updated_at,
            ),
        )

    def delete_repository(self, repository_id: str) -> bool:
        """Delete a repository; books, verses, links and translations cascade."""
        cursor = self._conn.execute(
            "DELETE FROM repositories WHERE id = ?", (repository_id,)
        )
        return cursor.rowcount > 0

    def clear_repository_content(self, repository_id: str) -> int:
        """Delete a repository's books (verses cascade). Returns books removed."""
        cursor = self._conn.execute(
            "DELETE FROM books WHERE repository_id = ?", (repository_id,)
        )
        return cursor.rowcount

    # --- Translation links ---

    def link_translation(
        self,
        parent_id: str,
        translation_id: str,
        directory_name: str,
        language_code: str | None = None,
        status: str = "active",
    ) -> None:
        """Create or refresh the link between a parent and a translation."""
        self._conn.execute(
            """
            INSERT INTO repository_translations (
                parent_repository_id, translation_id, directory_name,
                language_code, status
            ) VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(parent_repository_id, translation_id) DO UPDATE SET
                directory_name = excluded.directory_name,
                language_code = excluded.language_code,
                status = excluded.status
            """,
            (parent_id, translation_id, directory_name, language_code, status),
        )

    def get_translation_links(self, parent_id: str) -> list[dict]:
        cursor = self._conn.execute(
            """
            SELECT parent_repository_id, translation_id, directory_name,
                   language_code, status, created_at
            FROM repository_translations
            WHERE parent_repository_id = ?
            ORDER BY translation_id
            """,
            (parent_id,),
        )
        return [dict(row) for row in cursor]

    def revoke_translation_link(self, parent_id: str, translation_id: str) -> bool:
        cursor = self._conn.execute(
            """
            DELETE FROM repository_translations
            WHERE parent_repository_id = ? AND translation_id = ?
            """,
            (parent_id, translation_id),
        )
        return cursor.rowcount > 0

    # --- Books and verses ---

    def insert_book(
        self,
        repository_id: str,
        name: str,
        abbreviation: str,
        testament: str,
        book_order: int,
        chapter_count: int,
    ) -> int:
        cursor = self._conn.execute(
            """
            INSERT INTO books (
                repository_id, name, abbreviation, testament, book_order, chapter_count
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (repository_id, name, abbreviation, testament, book_order, chapter_count),
        )
        return cursor.lastrowid

    def insert_verses(self, rows: list[tuple[str, int, int, int, str]]) -> int:
        """Bulk insert (repository_id, book_id, chapter, verse, text) rows."""
        self._conn.executemany(
            """
            INSERT INTO verses (repository_id, book_id, chapter, verse, text)
            VALUES (?, ?, ?, ?, ?)
            """,
            rows,
        )
        return len(rows)

    def import_book(self, book_doc: dict, repository_id: str) -> tuple[int, int]:
        """Insert a validated book document and its verses.

        Returns:
            Tuple of (book row id, verses inserted)
        """
        info = book_doc["book"]
        chapters = book_doc["chapters"]
        testament = canon.normalize_testament(info.get("testament")) or (
            canon.testament_for_order(info["order"])
        )

        book_id = self.insert_book(
            repository_id=repository_id,
            name=info["name"],
            abbreviation=info["abbreviation"],
            testament=testament,
            book_order=info["order"],
            chapter_count=len(chapters),
        )

        rows = [
            (repository_id, book_id, chapter["number"], verse["number"], verse["text"])
            for chapter in chapters
            for verse in chapter["verses"]
        ]
        return book_id, self.insert_verses(rows)

    def get_books(self, repository_id: str | None = None) -> list[dict]:
        sql = """
            SELECT id, repository_id, name, abbreviation, testament,
                   book_order, chapter_count
            FROM books
        """
        params: tuple = ()
        if repository_id:
            sql += " WHERE repository_id = ?"
            params = (repository_id,)
        sql += " ORDER BY repository_id, book_order"
        return [dict(row) for row in self._conn.execute(sql, params)]

    def get_book(self, book_id: int) -> dict | None:
        row = self._conn.execute(
            """
            SELECT id, repository_id, name, abbreviation, testament,
                   book_order, chapter_count
            FROM books WHERE id = ?
            """,
            (book_id,),
        ).fetchone()
        return dict(row) if row else None

    def get_verses(self, book_id: int, chapter: int) -> list[dict]:
        cursor = self._conn.execute(
            """
            SELECT id, repository_id, book_id, chapter, verse, text
            FROM verses
            WHERE book_id = ? AND chapter = ?
            ORDER BY verse
            """,
            (book_id, chapter),
        )
        return [dict(row) for row in cursor]

    def get_verse(self, book_id: int, chapter: int, verse: int) -> dict | None:
        row = self._conn.execute(
            """
            SELECT id, repository_id, book_id, chapter, verse, text
            FROM verses
            WHERE book_id = ? AND chapter = ? AND verse = ?
            """,
            (book_id, chapter, verse),
        ).fetchone()
        return dict(row) if row else None

    def search_verses(
        self, query: str, repository_id: str | None = None, limit: int = SEARCH_LIMIT
    ) -> list[dict]:
        """Case-insensitive substring search over verse text."""
        escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        sql = """
            SELECT v.id, v.repository_id, v.book_id, v.chapter, v.verse, v.text,
                   b.name AS book_name, b.abbreviation AS book_abbreviation
            FROM verses v
            JOIN books b ON v.book_id = b.id
            WHERE v.text LIKE ? ESCAPE '\\'
        """
        params: list = [f"%{escaped}%"]
        if repository_id:
            sql += " AND v.repository_id = ?"
            params.append(repository_id)
        sql += " ORDER BY b.book_order, v.chapter, v.verse LIMIT ?"
        params.append(limit)
        return [dict(row) for row in self._conn.execute(sql, params)]

    def repository_counts(self, repository_id: str) -> dict:
        """Book and verse counts for one repository."""
        books = self._conn.execute(
            "SELECT COUNT(*) FROM books WHERE repository_id = ?", (repository_id,)
        ).fetchone()[0]
        verses = self._conn.execute(
            "SELECT COUNT(*) FROM verses WHERE repository_id = ?", (repository_id,)
        ).fetchone()[0]
        return {"books": books, "verses": verses}

    # --- Settings ---

    def get_setting(self, key: str) -> str | None:
        row = self._conn.execute(
            "SELECT value FROM user_settings WHERE key = ?", (key,)
        ).fetchone()
        return row["value"] if row else None

    def set_setting(self, key: str, value: str) -> None:
        self._conn.execute(
            """
            INSERT INTO user_settings (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value, updated_at = excluded.updated_at
            """,
            (key, value, utc_now()),
        )

    def get_all_settings(self) -> dict[str, str]:
        cursor = self._conn.execute("SELECT key, value FROM user_settings ORDER BY key")
        return {row["key"]: row["value"] for row in cursor}

    # --- Statistics ---

    def stats(self) -> dict:
        """Row counts and on-disk size of the store."""
        counts = {}
        for table in ("repositories", "books", "verses"):
            counts[table] = self._conn.execute(
                f"SELECT COUNT(*) FROM {table}"
            ).fetchone()[0]

        page_count = self._conn.execute("PRAGMA page_count").fetchone()[0]
        page_size = self._conn.execute("PRAGMA page_size").fetchone()[0]
        size_bytes = page_count * page_size
        counts["database_size_bytes"] = size_bytes
        counts["database_size"] = f"{size_bytes / (1024 * 1024):.2f} MB"
        return counts
