"""Shared fixtures: temporary stores and on-disk package builders."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from scriptorium.config import Settings
from scriptorium.db.connection import Database
from scriptorium.db.migrations import MigrationRunner
from scriptorium.db.queries import RepositoryStore
from scriptorium.repository import canon
from scriptorium.repository.discovery import DiscoveryService
from scriptorium.repository.importer import Importer
from scriptorium.repository.policy import SecurityPolicy
from scriptorium.repository.validator import compute_checksum


def make_book(order: int, verse_counts: list[int]) -> dict:
    """Build a valid book document with the given verses per chapter."""
    book = canon.book_for_order(order)
    chapters = [
        {
            "number": c,
            "verses": [
                {"number": v, "text": f"Verse {c}.{v} of {book.name}."}
                for v in range(1, count + 1)
            ],
        }
        for c, count in enumerate(verse_counts, start=1)
    ]
    return {
        "book": {
            "id": book.id,
            "name": book.name,
            "abbreviation": book.abbreviation,
            "testament": "old" if book.testament == "OT" else "new",
            "order": order,
            "chapters_count": len(chapters),
            "verses_count": sum(verse_counts),
        },
        "chapters": chapters,
    }


def book_bytes(doc: dict) -> bytes:
    return json.dumps(doc, indent=2).encode("utf-8")


def translation_manifest(
    repo_id: str,
    books: dict[str, bytes],
    list_books: bool = True,
    version: str = "1.0.0",
) -> dict:
    """Valid translation manifest describing the given book files."""
    orders = [canon.order_from_filename(path) for path in books]
    old = sum(1 for order in orders if order in canon.OT_RANGE)
    ordered = [books[path] for path in sorted(books)]

    content = {
        "books_count": len(books),
        "testament": {"old": old, "new": len(books) - old},
        "features": {
            "audio": False,
            "cross_references": False,
            "footnotes": False,
            "study_notes": False,
        },
    }
    if list_books:
        content["books"] = [
            {"path": path, "checksum": compute_checksum(data)}
            for path, data in sorted(books.items())
        ]

    return {
        "format_version": "1.0.0",
        "repository": {
            "id": repo_id,
            "name": f"Test Translation {repo_id}",
            "description": "Fixture translation",
            "version": version,
            "language": {"code": "en", "name": "English", "direction": "ltr"},
            "translation": {
                "type": "formal",
                "year": 1611,
                "copyright": "Public Domain",
                "license": "Public Domain",
                "source": "fixture",
            },
            "publisher": {"name": "Fixture Press", "url": "https://example.org"},
            "created_at": "2024-01-01T00:00:00Z",
            "updated_at": "2024-01-01T00:00:00Z",
        },
        "content": content,
        "technical": {
            "encoding": "UTF-8",
            "compression": "none",
            "checksum": compute_checksum(b"".join(ordered)),
            "size_bytes": sum(len(data) for data in books.values()),
        },
    }


def parent_manifest(parent_id: str, translations: list[dict]) -> dict:
    """Valid parent manifest listing the given translation entries."""
    return {
        "format_version": "1.0.0",
        "repository": {
            "id": parent_id,
            "name": f"Test Collection {parent_id}",
            "description": "Fixture collection",
            "version": "1.0.0",
            "type": "parent",
        },
        "technical": {
            "encoding": "UTF-8",
            "compression": "none",
            "checksum": compute_checksum(json.dumps(translations).encode("utf-8")),
        },
        "translations": translations,
    }


def package_files(repo_id: str, books: list[dict], **manifest_options) -> dict[str, bytes]:
    """All files of a translation package keyed by package-relative path."""
    book_files = {
        canon.book_filename(doc["book"]["order"]): book_bytes(doc) for doc in books
    }
    manifest = translation_manifest(repo_id, book_files, **manifest_options)
    files = dict(book_files)
    files["manifest.json"] = json.dumps(manifest, indent=2).encode("utf-8")
    return files


def default_books() -> list[dict]:
    """Genesis (20 + 10 verses), Exodus (16) and Leviticus (10): 56 verses."""
    return [make_book(1, [20, 10]), make_book(2, [16]), make_book(3, [10])]


class PackageBuilder:
    """Writes translation and parent packages under a directory."""

    def __init__(self, root: Path):
        self.root = root

    def write_files(self, directory: Path, files: dict[str, bytes]) -> Path:
        for path, data in files.items():
            target = directory / path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        return directory

    def translation(
        self,
        repo_id: str,
        books: list[dict] | None = None,
        directory: Path | None = None,
        **manifest_options,
    ) -> Path:
        """Write a translation package and return its directory."""
        books = books if books is not None else default_books()
        directory = directory or self.root / repo_id
        return self.write_files(
            directory, package_files(repo_id, books, **manifest_options)
        )

    def parent(
        self, parent_id: str, translations: dict[str, list[dict]]
    ) -> Path:
        """Write a parent package with one translation per directory.

        Args:
            translations: Translation id -> book documents; the directory
                name equals the translation id
        """
        directory = self.root / parent_id
        directory.mkdir(parents=True, exist_ok=True)
        entries = []
        for translation_id, books in translations.items():
            self.translation(translation_id, books, directory=directory / translation_id)
            entries.append(
                {
                    "id": translation_id,
                    "directory": translation_id,
                    "language_code": "en",
                    "status": "active",
                }
            )
        manifest = parent_manifest(parent_id, entries)
        (directory / "manifest.json").write_text(json.dumps(manifest, indent=2))
        return directory

    make_book = staticmethod(make_book)
    book_bytes = staticmethod(book_bytes)
    package_files = staticmethod(package_files)
    translation_manifest = staticmethod(translation_manifest)
    parent_manifest = staticmethod(parent_manifest)
    default_books = staticmethod(default_books)

    @staticmethod
    def read_manifest(directory: Path) -> dict:
        return json.loads((directory / "manifest.json").read_text())

    @staticmethod
    def write_manifest(directory: Path, manifest: dict) -> None:
        (directory / "manifest.json").write_text(json.dumps(manifest, indent=2))


@pytest.fixture
def builder(tmp_path) -> PackageBuilder:
    """Package builder writing under a temporary directory."""
    packages = tmp_path / "packages"
    packages.mkdir()
    return PackageBuilder(packages)


@pytest.fixture
def db(tmp_path):
    """Migrated temporary store."""
    database = Database(tmp_path / "store" / "scriptorium.db")
    MigrationRunner(database.connect()).run()
    yield database
    database.close()


@pytest.fixture
def store(db) -> RepositoryStore:
    return RepositoryStore(db.conn)


@pytest.fixture
def policy() -> SecurityPolicy:
    return SecurityPolicy()


@pytest.fixture
def discovery(policy) -> DiscoveryService:
    """Discovery without sources (local packages only)."""
    return DiscoveryService(policy)


@pytest.fixture
def importer(db, discovery) -> Importer:
    return Importer(db, discovery)


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings rooted in a temporary directory with no index sources."""
    return Settings(data_root=tmp_path / "data", sources=[])
