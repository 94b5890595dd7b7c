"""Import pipeline: discover, validate, download and persist a package.

Stages run strictly in order:

    discovering -> validating -> downloading -> processing -> complete

with ``error`` and ``cancelled`` as the other terminal stages. All
database writes for one import happen inside a single transaction under
the importer lock, so a failed or cancelled import leaves the store
exactly as it was.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import sqlite3
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Iterator

from scriptorium.db.connection import Database
from scriptorium.db.queries import RepositoryRecord, RepositoryStore
from scriptorium.repository import canon
from scriptorium.repository.discovery import (
    DiscoveryService,
    join_location,
    package_base,
    parse_document,
)
from scriptorium.repository.errors import (
    ImportAborted,
    ImportCancelled,
    IntegrityError,
    RepositoryConflictError,
    RepositoryError,
    RepositoryExistsError,
    SecurityPolicyError,
)
from scriptorium.repository.policy import SecurityPolicy, is_remote, local_path
from scriptorium.repository.types import (
    ImportOptions,
    ImportProgress,
    ImportResult,
    ImportStage,
)
from scriptorium.repository.validator import (
    CHECKSUM_PATTERN,
    PLACEHOLDER_CHECKSUM,
    PackageValidator,
    compute_checksum,
    is_safe_relative_path,
    manifest_kind,
    verify_checksum,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT_DOWNLOADS = 4

ProgressListener = Callable[[ImportProgress], object]


# --- Package plan ---


@dataclass
class PackageBook:
    """One book file of a package, before and after download."""

    path: str
    location: str
    checksum: str | None = None
    expected_order: int | None = None
    data: bytes = b""
    document: dict | None = None


@dataclass
class Package:
    """A fetched manifest plus everything the pipeline learns about it."""

    url: str
    manifest: dict
    directory: str | None = None
    declared_id: str | None = None
    language_code: str | None = None
    status: str = "active"
    books: list[PackageBook] = field(default_factory=list)
    translations: list["Package"] = field(default_factory=list)

    @property
    def info(self) -> dict:
        repository = self.manifest.get("repository")
        return repository if isinstance(repository, dict) else {}

    @property
    def id(self) -> str:
        return str(self.info.get("id") or "")

    @property
    def kind(self) -> str:
        return manifest_kind(self.manifest)

    @property
    def base(self) -> str:
        return package_base(self.url)

    @property
    def label(self) -> str:
        return self.directory or self.id or self.url

    @property
    def technical(self) -> dict:
        technical = self.manifest.get("technical")
        return technical if isinstance(technical, dict) else {}

    def all_packages(self) -> Iterator["Package"]:
        yield self
        yield from self.translations

    def content_packages(self) -> list["Package"]:
        """Packages that carry books (translations of a parent, or self)."""
        return list(self.translations) if self.kind == "parent" else [self]

    def to_record(self, parent_id: str | None = None) -> RepositoryRecord:
        info = self.info
        language = info.get("language")
        return RepositoryRecord(
            id=self.id,
            name=info["name"],
            version=info["version"],
            type="parent" if self.kind == "parent" else "translation",
            description=info.get("description") or "",
            language=language.get("code") if isinstance(language, dict) else None,
            parent_id=parent_id,
        )


# --- Progress ---


class ProgressReporter:
    """Delivers progress events to listeners.

    Progress is clamped to 0..100, never decreases within a stage and
    restarts from 0 when the stage changes.
    """

    def __init__(self, listeners: list[ProgressListener | None]):
        self._listeners = [listener for listener in listeners if listener is not None]
        self._stage: ImportStage | None = None
        self._progress = 0

    async def emit(
        self,
        stage: ImportStage,
        progress: int,
        message: str,
        current_book: str | None = None,
        total_books: int | None = None,
        processed_books: int | None = None,
    ) -> None:
        if stage != self._stage:
            self._stage = stage
            self._progress = 0
        self._progress = max(self._progress, min(100, max(0, int(progress))))

        event = ImportProgress(
            stage=stage,
            progress=self._progress,
            message=message,
            current_book=current_book,
            total_books=total_books,
            processed_books=processed_books,
        )
        for listener in self._listeners:
            try:
                outcome = listener(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception(f"Progress listener failed on {stage.value} event")


def _check_cancelled(cancel_event: asyncio.Event | None, stage: ImportStage) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise ImportCancelled(f"Import cancelled before {stage.value}")


# --- Importer ---


class Importer:
    """Runs the import pipeline against one store.

    Usage:
        importer = Importer(db, discovery, policy)
        result = await importer.import_repository(ImportOptions(url))

        run = importer.start(ImportOptions(url))
        async for event in run.events():
            print(event.stage, event.progress)
        result = await run.wait()
    """

    def __init__(
        self,
        db: Database,
        discovery: DiscoveryService,
        policy: SecurityPolicy | None = None,
        max_concurrent_downloads: int = DEFAULT_MAX_CONCURRENT_DOWNLOADS,
    ):
        self._db = db
        self._discovery = discovery
        self.policy = policy or discovery.policy
        self.max_concurrent_downloads = max(1, max_concurrent_downloads)
        self._validator = PackageValidator(self.policy)
        # Serializes the commit phase; a second import queues here
        self._lock = asyncio.Lock()

    @property
    def is_committing(self) -> bool:
        return self._lock.locked()

    def start(self, options: ImportOptions) -> "ImportRun":
        """Start an import in the background and return its handle."""
        return ImportRun(self, options)

    async def import_repository(
        self,
        options: ImportOptions,
        cancel_event: asyncio.Event | None = None,
        listener: ProgressListener | None = None,
    ) -> ImportResult:
        """Run the full pipeline for one package URL.

        Args:
            options: Import options
            cancel_event: Checked at every stage boundary
            listener: Extra progress listener (besides options.progress_callback)

        Returns:
            ImportResult; failures are reported, never raised
        """
        started = time.monotonic()
        result = ImportResult()
        reporter = ProgressReporter([options.progress_callback, listener])
        logger.info(f"Importing repository from {options.repository_url}")

        try:
            root = await self._discover(options, reporter, result)
            _check_cancelled(cancel_event, ImportStage.VALIDATING)

            await self._validate(root, options, reporter, result)
            _check_cancelled(cancel_event, ImportStage.DOWNLOADING)

            await self._download(root, options, reporter, cancel_event)
            _check_cancelled(cancel_event, ImportStage.PROCESSING)

            await self._process(root, options, reporter, result, cancel_event)

            result.success = True
            await reporter.emit(
                ImportStage.COMPLETE, 100, "Import completed successfully"
            )
            logger.info(
                f"Imported {result.repository_id}: {result.books_imported} books, "
                f"{result.verses_imported} verses"
            )
        except ImportCancelled as e:
            result.cancelled = True
            result.errors.append(e.summary())
            await reporter.emit(ImportStage.CANCELLED, 0, str(e))
            logger.info(f"Import of {options.repository_url} cancelled")
        except ImportAborted as e:
            result.errors.extend(e.errors)
            result.warnings.extend(e.warnings)
            await reporter.emit(ImportStage.ERROR, 0, str(e))
            logger.warning(f"Import of {options.repository_url} aborted: {e}")
        except RepositoryError as e:
            result.errors.append(e.summary())
            await reporter.emit(ImportStage.ERROR, 0, str(e))
            logger.warning(f"Import of {options.repository_url} failed: {e.summary()}")
        except sqlite3.Error as e:
            result.errors.append(f"DatabaseError: {e}")
            await reporter.emit(ImportStage.ERROR, 0, f"Database error: {e}")
            logger.error(f"Import of {options.repository_url} rolled back: {e}")

        if not result.success:
            result.books_imported = 0
            result.verses_imported = 0
            result.translations_imported = []
        result.duration_ms = int((time.monotonic() - started) * 1000)
        return result

    # --- Stages ---

    async def _discover(
        self, options: ImportOptions, reporter: ProgressReporter, result: ImportResult
    ) -> Package:
        await reporter.emit(
            ImportStage.DISCOVERING, 0, "Fetching repository manifest..."
        )
        manifest = await self._discovery.fetch_manifest(options.repository_url)
        root = Package(url=options.repository_url, manifest=manifest)
        result.repository_id = root.id

        if root.kind != "parent":
            await reporter.emit(ImportStage.DISCOVERING, 100, "Manifest loaded")
            return root

        entries = manifest.get("translations")
        entries = [e for e in entries if isinstance(e, dict)] if isinstance(entries, list) else []
        for i, entry in enumerate(entries):
            translation_id = str(entry.get("id") or "")
            directory = entry.get("directory")
            if not isinstance(directory, str) or not is_safe_relative_path(directory):
                # Reported by manifest validation
                continue
            if (
                options.selected_translations is not None
                and translation_id not in options.selected_translations
            ):
                result.translations_skipped.append(translation_id)
                continue

            await reporter.emit(
                ImportStage.DISCOVERING,
                (i * 100) // len(entries),
                f"Fetching translation manifest {directory}...",
            )
            url = join_location(root.base, directory)
            root.translations.append(
                Package(
                    url=url,
                    manifest=await self._discovery.fetch_manifest(url),
                    directory=directory,
                    declared_id=translation_id,
                    language_code=entry.get("language_code"),
                    status=entry.get("status") or "active",
                )
            )

        await reporter.emit(
            ImportStage.DISCOVERING,
            100,
            f"Found {len(root.translations)} translations",
        )
        return root

    async def _validate(
        self,
        root: Package,
        options: ImportOptions,
        reporter: ProgressReporter,
        result: ImportResult,
    ) -> None:
        await reporter.emit(ImportStage.VALIDATING, 0, "Validating repository manifest...")
        packages = list(root.all_packages())
        errors: list[str] = []

        for i, package in enumerate(packages):
            check = self._validator.validate_manifest(package.manifest)
            errors.extend(self._label(package, m) for m in check.error_messages())
            result.warnings.extend(self._label(package, m) for m in check.warning_messages())

            if package is not root:
                if package.kind != "translation":
                    errors.append(
                        f"TRANSLATION_KIND_MISMATCH: {package.label}: "
                        "expected a translation manifest"
                    )
                if package.declared_id and package.id != package.declared_id:
                    errors.append(
                        f"TRANSLATION_ID_MISMATCH: {package.label}: manifest id "
                        f"'{package.id}' does not match declared id '{package.declared_id}'"
                    )

            await reporter.emit(
                ImportStage.VALIDATING,
                ((i + 1) * 100) // len(packages),
                f"Validated {package.label}",
            )

        if options.download_audio:
            result.warnings.append(
                "AUDIO_NOT_SUPPORTED: Audio download is not supported; audio was skipped"
            )

        if errors:
            raise ImportAborted("Repository validation failed", errors)

    async def _download(
        self,
        root: Package,
        options: ImportOptions,
        reporter: ProgressReporter,
        cancel_event: asyncio.Event | None,
    ) -> None:
        packages = root.content_packages()
        for package in packages:
            package.books = await self._locate_books(package)

        books = [book for package in packages for book in package.books]
        total = len(books)
        await reporter.emit(
            ImportStage.DOWNLOADING,
            0,
            f"Downloading {total} books...",
            total_books=total,
            processed_books=0,
        )

        semaphore = asyncio.Semaphore(self.max_concurrent_downloads)
        downloaded = 0
        total_bytes = 0

        async def fetch(book: PackageBook) -> None:
            nonlocal downloaded, total_bytes
            async with semaphore:
                _check_cancelled(cancel_event, ImportStage.DOWNLOADING)
                book.data = await self._discovery.fetch_bytes(book.location)

            total_bytes += len(book.data)
            if self.policy.exceeds_repository_size(total_bytes):
                raise SecurityPolicyError(
                    f"Repository size ({total_bytes}) exceeds maximum "
                    f"({self.policy.max_repository_size})",
                    book.location,
                )

            if options.validate_checksums and book.checksum:
                check = verify_checksum(book.data, book.checksum, book.path)
                if not check.valid:
                    raise IntegrityError(
                        f"Checksum mismatch for {book.path}",
                        book.path,
                        expected=check.expected_checksum,
                        actual=check.actual_checksum,
                    )

            downloaded += 1
            await reporter.emit(
                ImportStage.DOWNLOADING,
                (downloaded * 100) // total,
                f"Downloaded {book.path}",
                current_book=book.path,
                total_books=total,
                processed_books=downloaded,
            )

        tasks = [asyncio.create_task(fetch(book)) for book in books]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        if options.validate_checksums:
            for package in packages:
                self._verify_package_checksum(package)

        await reporter.emit(
            ImportStage.DOWNLOADING,
            100,
            f"Downloaded {total} books ({total_bytes} bytes)",
            total_books=total,
            processed_books=total,
        )

    async def _process(
        self,
        root: Package,
        options: ImportOptions,
        reporter: ProgressReporter,
        result: ImportResult,
        cancel_event: asyncio.Event | None,
    ) -> None:
        await reporter.emit(ImportStage.PROCESSING, 0, "Validating books...")
        packages = root.content_packages()
        total = sum(len(p.books) for p in packages)
        errors: list[str] = []
        processed = 0

        for package in packages:
            compression = package.technical.get("compression", "none")
            seen_orders: dict[int, str] = {}
            for book in package.books:
                book.document = parse_document(book.data, book.location, compression)
                check = self._validator.validate_book(book.document, book.expected_order)
                errors.extend(f"{book.path}: {m}" for m in check.error_messages())
                result.warnings.extend(f"{book.path}: {m}" for m in check.warning_messages())

                order = (book.document.get("book") or {}).get("order") if check.valid else None
                if order in seen_orders:
                    errors.append(
                        f"DUPLICATE_BOOK_ORDER: {book.path}: order {order} "
                        f"already used by {seen_orders[order]}"
                    )
                elif order is not None:
                    seen_orders[order] = book.path

                processed += 1
                await reporter.emit(
                    ImportStage.PROCESSING,
                    (processed * 50) // max(total, 1),
                    f"Validated {book.path}",
                    current_book=book.path,
                    total_books=total,
                    processed_books=processed,
                )

        if errors:
            raise ImportAborted("Book validation failed", errors)

        _check_cancelled(cancel_event, ImportStage.PROCESSING)
        async with self._lock:
            # Another import may have committed while this one queued
            _check_cancelled(cancel_event, ImportStage.PROCESSING)
            await reporter.emit(ImportStage.PROCESSING, 50, "Writing to database...")
            books, verses = self._commit(root, options.overwrite_existing)

        result.books_imported = books
        result.verses_imported = verses
        result.translations_imported = [t.id for t in root.translations]
        await reporter.emit(
            ImportStage.PROCESSING,
            100,
            f"Stored {books} books and {verses} verses",
            total_books=total,
            processed_books=total,
        )

    # --- Persistence ---

    def _commit(self, root: Package, overwrite: bool) -> tuple[int, int]:
        """Write every repository, link, book and verse in one transaction.

        Runs without awaiting, so no other coroutine observes the open
        transaction.
        """
        books = verses = 0
        with self._db.transaction() as conn:
            store = RepositoryStore(conn)
            stored: dict[str, RepositoryRecord] = {}
            for package in root.all_packages():
                existing = store.get_repository(package.id)
                if existing is None:
                    continue
                if not overwrite:
                    raise RepositoryExistsError(package.id)
                incoming = "parent" if package.kind == "parent" else "translation"
                if existing.type != incoming:
                    raise RepositoryConflictError(
                        package.id,
                        f"Repository '{package.id}' is stored as a {existing.type}; "
                        f"it cannot be replaced by a {incoming} package",
                    )
                stored[package.id] = existing

            if root.kind == "parent":
                store.upsert_repository(root.to_record())
                for translation in root.translations:
                    previous = stored.get(translation.id)
                    if previous and previous.parent_id and previous.parent_id != root.id:
                        store.revoke_translation_link(previous.parent_id, translation.id)
                    store.upsert_repository(translation.to_record(parent_id=root.id))
                    store.link_translation(
                        root.id,
                        translation.id,
                        translation.directory or translation.id,
                        translation.language_code,
                        translation.status,
                    )
            else:
                # A standalone re-import keeps the translation under its parent
                previous = stored.get(root.id)
                store.upsert_repository(
                    root.to_record(parent_id=previous.parent_id if previous else None)
                )

            for package in root.content_packages():
                store.clear_repository_content(package.id)
                for book in package.books:
                    _, count = store.import_book(book.document, package.id)
                    books += 1
                    verses += count
        return books, verses

    # --- Helpers ---

    async def _locate_books(self, package: Package) -> list[PackageBook]:
        content = package.manifest.get("content") or {}
        listed = content.get("books")

        if listed is not None:
            return [
                PackageBook(
                    path=entry["path"],
                    location=join_location(package.base, entry["path"]),
                    checksum=entry.get("checksum"),
                    expected_order=canon.order_from_filename(entry["path"]),
                )
                for entry in listed
            ]

        if is_remote(package.base):
            raise ImportAborted(
                "Cannot locate book files",
                [f"MISSING_BOOK_LIST: {package.label}: remote packages must list content.books"],
            )

        books_dir = local_path(package.base) / "books"
        paths = await asyncio.to_thread(lambda: sorted(books_dir.glob("*.json")))
        declared = content.get("books_count")
        if len(paths) != declared:
            raise ImportAborted(
                "Book files do not match the manifest",
                [
                    f"BOOK_COUNT_MISMATCH: {package.label}: found {len(paths)} book "
                    f"files but manifest declares {declared}"
                ],
            )

        return [
            PackageBook(
                path=f"books/{path.name}",
                location=str(path),
                expected_order=canon.order_from_filename(path.name),
            )
            for path in paths
        ]

    def _verify_package_checksum(self, package: Package) -> None:
        """Compare technical.checksum against the digest of all book bytes.

        The digest covers book files concatenated in sorted path order.
        """
        expected = package.technical.get("checksum")
        if (
            not isinstance(expected, str)
            or not CHECKSUM_PATTERN.match(expected)
            or expected == PLACEHOLDER_CHECKSUM
        ):
            # Malformed or placeholder values were already judged by validation
            return

        ordered = sorted(package.books, key=lambda b: b.path)
        actual = compute_checksum(b"".join(book.data for book in ordered))
        if actual != expected:
            raise IntegrityError(
                f"Package checksum mismatch for {package.label}",
                package.label,
                expected=expected,
                actual=actual,
            )

    @staticmethod
    def _label(package: Package, message: str) -> str:
        if package.directory is None:
            return message
        code, _, detail = message.partition(": ")
        return f"{code}: {package.directory}: {detail}"


class ImportRun:
    """Handle on an import running as a background task.

    Events can be consumed once, by a single reader.

    Usage:
        run = importer.start(options)
        async for event in run.events():
            ...
        result = await run.wait()
    """

    def __init__(self, importer: Importer, options: ImportOptions):
        self.options = options
        self._events: asyncio.Queue[ImportProgress | None] = asyncio.Queue()
        self._cancel_event = asyncio.Event()
        self._task = asyncio.create_task(self._execute(importer))

    async def _execute(self, importer: Importer) -> ImportResult:
        try:
            return await importer.import_repository(
                self.options,
                cancel_event=self._cancel_event,
                listener=self._events.put_nowait,
            )
        finally:
            self._events.put_nowait(None)

    def cancel(self) -> None:
        """Request cancellation; honoured at the next stage boundary."""
        self._cancel_event.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def done(self) -> bool:
        return self._task.done()

    async def events(self) -> AsyncIterator[ImportProgress]:
        """Yield progress events until the run finishes."""
        while True:
            event = await self._events.get()
            if event is None:
                return
            yield event

    async def wait(self) -> ImportResult:
        return await self._task
