"""Repository service: the single entry point for host shells.

Owns construction and lifecycle of the store, discovery and importer,
and exposes the operations the CLI and HTTP adapter call.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from scriptorium.config import Settings
from scriptorium.db.connection import Database
from scriptorium.db.migrations import MigrationRunner
from scriptorium.db.queries import RepositoryStore
from scriptorium.repository.discovery import DiscoveryService
from scriptorium.repository.importer import Importer, ImportRun
from scriptorium.repository.types import (
    ImportOptions,
    ImportResult,
    IndexEntry,
    RepositorySource,
    ScanResult,
    VerificationResult,
)
from scriptorium.repository.validator import PackageValidator

logger = logging.getLogger(__name__)


class ServiceNotInitialized(RuntimeError):
    """Raised when an operation runs before init() or after shutdown()."""


class RepositoryService:
    """Facade over discovery, validation, import and the store.

    Usage:
        service = RepositoryService(Settings.load())
        await service.init()
        result = await service.import_repository(ImportOptions(url))
        await service.shutdown()
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize service (no I/O until init()).

        Args:
            settings: Application settings (defaults if not provided)
            client: HTTP client shared with discovery (owned by discovery if omitted)
        """
        self.settings = settings or Settings()
        self.db = Database(self.settings.db_path)
        self.discovery = DiscoveryService(
            policy=self.settings.security,
            sources=self.settings.sources,
            client=client,
            timeout=self.settings.request_timeout,
        )
        self.importer = Importer(
            self.db,
            self.discovery,
            max_concurrent_downloads=self.settings.max_concurrent_downloads,
        )
        self._validator = PackageValidator(self.settings.security)
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def init(self) -> None:
        """Open the store and apply pending migrations.

        Raises:
            MigrationError: If the schema cannot be brought up to date
        """
        if self._initialized:
            return
        conn = self.db.connect()
        applied = MigrationRunner(conn).run()
        if applied:
            logger.info(f"Applied {applied} migrations")
        self._initialized = True
        logger.info("Repository service initialized")

    async def shutdown(self) -> None:
        """Close network clients and the store."""
        await self.discovery.close()
        self.db.close()
        self._initialized = False
        logger.info("Repository service shut down")

    @property
    def store(self) -> RepositoryStore:
        if not self._initialized:
            raise ServiceNotInitialized("Repository service is not initialized")
        return RepositoryStore(self.db.conn)

    # --- Discovery ---

    async def discover_repositories(self) -> list[IndexEntry]:
        return await self.discovery.discover_repositories()

    async def get_manifest(self, url: str) -> dict:
        return await self.discovery.fetch_manifest(url)

    async def validate_repository_url(self, url: str) -> VerificationResult:
        return await self.discovery.validate_repository(url)

    async def scan_directory(self, path: str) -> ScanResult:
        return await self.discovery.scan_directory(path)

    def get_sources(self) -> list[RepositorySource]:
        return self.discovery.get_sources()

    def add_source(self, source: RepositorySource) -> None:
        self.discovery.add_source(source)

    def remove_source(self, url: str) -> bool:
        return self.discovery.remove_source(url)

    def enable_source(self, url: str, enabled: bool) -> bool:
        return self.discovery.enable_source(url, enabled)

    def clear_cache(self) -> None:
        self.discovery.clear_cache()

    # --- Validation ---

    def validate_manifest(self, doc: Any) -> VerificationResult:
        return self._validator.validate_manifest(doc)

    def validate_book(self, doc: Any, expected_order: int | None = None) -> VerificationResult:
        return self._validator.validate_book(doc, expected_order)

    # --- Import ---

    async def import_repository(self, options: ImportOptions) -> ImportResult:
        self._require_init()
        return await self.importer.import_repository(options)

    def start_import(self, options: ImportOptions) -> ImportRun:
        """Start an import in the background; see ImportRun."""
        self._require_init()
        return self.importer.start(options)

    # --- Stored content ---

    def list_repositories(self) -> list[dict]:
        return [r.to_dict() for r in self.store.list_repositories()]

    def get_repository(self, repository_id: str) -> dict | None:
        record = self.store.get_repository(repository_id)
        return record.to_dict() if record else None

    def get_parent_repositories(self) -> list[dict]:
        return [r.to_dict() for r in self.store.get_parent_repositories()]

    def get_translations(self, parent_id: str) -> list[dict]:
        return self.store.get_translations(parent_id)

    def delete_repository(self, repository_id: str) -> bool:
        """Delete a repository and everything that cascades from it."""
        self._require_init()
        with self.db.transaction() as conn:
            deleted = RepositoryStore(conn).delete_repository(repository_id)
        if deleted:
            logger.info(f"Deleted repository {repository_id}")
        return deleted

    def get_books(self, repository_id: str | None = None) -> list[dict]:
        return self.store.get_books(repository_id)

    def get_verses(self, book_id: int, chapter: int) -> list[dict]:
        return self.store.get_verses(book_id, chapter)

    def search_verses(self, query: str, repository_id: str | None = None) -> list[dict]:
        return self.store.search_verses(query, repository_id)

    def get_setting(self, key: str) -> str | None:
        return self.store.get_setting(key)

    def set_setting(self, key: str, value: str) -> None:
        self.store.set_setting(key, value)

    def get_all_settings(self) -> dict[str, str]:
        return self.store.get_all_settings()

    def get_stats(self) -> dict:
        return self.store.stats()

    def _require_init(self) -> None:
        if not self._initialized:
            raise ServiceNotInitialized("Repository service is not initialized")
