"""Package validation for manifest and book documents.

Validates the structural and semantic rules of the package format:
- Manifest: required sections, format version, language direction,
  book counts, technical metadata, integrity checksum, translations
- Book: canonical order and testament, declared vs counted chapters
  and verses, sequential numbering, non-empty text

Validation is pure and never raises. Every defect is reported as an
entry in the returned VerificationResult so the caller decides whether
to abort or continue with warnings.
"""

from __future__ import annotations

import hashlib
import re
from pathlib import PurePosixPath
from typing import Any
from urllib.parse import urlparse

from scriptorium.repository import canon
from scriptorium.repository.policy import SecurityPolicy
from scriptorium.repository.types import IntegrityCheck, VerificationResult

SUPPORTED_MAJOR_VERSION = "1"
VALID_DIRECTIONS = {"ltr", "rtl"}
SUPPORTED_COMPRESSION = {"none", "gzip"}
KNOWN_COMPRESSION = SUPPORTED_COMPRESSION | {"brotli"}

CHECKSUM_PATTERN = re.compile(r"^sha256:[0-9a-f]{64}$")
PLACEHOLDER_CHECKSUM = "sha256:" + "0" * 64
SLUG_PATTERN = re.compile(r"^[a-z0-9][a-z0-9._-]*$")

REQUIRED_SECTIONS_TRANSLATION = ("repository", "content", "technical")
REQUIRED_SECTIONS_PARENT = ("repository", "technical")


# --- Helpers ---


def manifest_kind(doc: Any) -> str:
    """Classify a manifest as 'parent' or 'translation'."""
    if not isinstance(doc, dict):
        return "translation"
    repository = doc.get("repository")
    if isinstance(repository, dict) and repository.get("type") == "parent":
        return "parent"
    if "translations" in doc and "content" not in doc:
        return "parent"
    return "translation"


def is_parent_manifest(doc: Any) -> bool:
    return manifest_kind(doc) == "parent"


def format_version(doc: dict) -> Any:
    """Declared format version; ``zbrs_version`` is a legacy alias."""
    return doc.get("format_version", doc.get("zbrs_version"))


def compute_checksum(data: bytes) -> str:
    """Content digest in the package format's ``sha256:<hex>`` form."""
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def verify_checksum(data: bytes, expected: str, file_path: str = "") -> IntegrityCheck:
    """Compare the digest of ``data`` against an expected checksum."""
    actual = compute_checksum(data)
    return IntegrityCheck(
        file_path=file_path,
        expected_checksum=expected,
        actual_checksum=actual,
        valid=actual == (expected or "").lower(),
    )


def is_safe_relative_path(value: str) -> bool:
    """True for relative POSIX paths that stay inside the package."""
    if not value or "\\" in value:
        return False
    path = PurePosixPath(value)
    if path.is_absolute() or ".." in path.parts:
        return False
    return not urlparse(value).scheme


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


# --- Validator ---


class PackageValidator:
    """Validates manifests and book documents.

    Usage:
        validator = PackageValidator(policy)
        result = validator.validate_manifest(manifest)

        if not result.valid:
            for err in result.errors:
                print(f"ERROR: {err.path}: {err.message}")
    """

    def __init__(self, policy: SecurityPolicy | None = None):
        """Initialize validator.

        Args:
            policy: Security policy (defaults applied if not provided)
        """
        self.policy = policy or SecurityPolicy()

    def validate_manifest(self, doc: Any) -> VerificationResult:
        """Validate a parent or translation manifest."""
        result = VerificationResult()
        try:
            self._validate_manifest(doc, result)
        except Exception as e:
            result.add_error("VALIDATION_EXCEPTION", f"Validation failed: {e}")
        return result

    def validate_book(
        self, doc: Any, expected_order: int | None = None
    ) -> VerificationResult:
        """Validate a book document.

        Args:
            doc: Parsed book document
            expected_order: Canonical position the caller expects this book at

        Returns:
            VerificationResult with errors and warnings
        """
        result = VerificationResult()
        try:
            self._validate_book(doc, expected_order, result)
        except Exception as e:
            result.add_error("VALIDATION_EXCEPTION", f"Book validation failed: {e}")
        return result

    # --- Manifest rules ---

    def _validate_manifest(self, doc: Any, result: VerificationResult) -> None:
        if not isinstance(doc, dict):
            result.add_error("INVALID_DOCUMENT", "Manifest must be a JSON object")
            return

        kind = manifest_kind(doc)
        required = (
            REQUIRED_SECTIONS_PARENT if kind == "parent" else REQUIRED_SECTIONS_TRANSLATION
        )

        version = format_version(doc)
        if version is None:
            result.add_error(
                "MISSING_FIELD", "Missing required field: format_version", "/format_version"
            )
        elif str(version).split(".")[0] != SUPPORTED_MAJOR_VERSION:
            result.add_error(
                "UNSUPPORTED_VERSION",
                f"Unsupported format version: {version}",
                "/format_version",
            )

        for section in required:
            if not isinstance(doc.get(section), dict):
                result.add_error(
                    "MISSING_FIELD", f"Missing required field: {section}", f"/{section}"
                )

        repository = doc.get("repository")
        if isinstance(repository, dict):
            self._validate_repository_info(repository, kind, result)

        content = doc.get("content")
        if isinstance(content, dict):
            self._validate_content(content, result)

        technical = doc.get("technical")
        if isinstance(technical, dict):
            self._validate_technical(technical, result)

        if kind == "parent":
            parent_id = repository.get("id") if isinstance(repository, dict) else None
            self._validate_translations(doc.get("translations"), parent_id, result)

        self._validate_publisher(repository, result)

    def _validate_repository_info(
        self, repository: dict, kind: str, result: VerificationResult
    ) -> None:
        repo_id = repository.get("id")
        if not isinstance(repo_id, str) or not repo_id.strip():
            result.add_error(
                "MISSING_FIELD", "Missing repository id", "/repository/id"
            )
        elif not SLUG_PATTERN.match(repo_id):
            result.add_warning(
                "NON_SLUG_ID",
                f"Repository id '{repo_id}' should be lowercase slug format",
                "/repository/id",
            )

        for name in ("name", "version"):
            value = repository.get(name)
            if not isinstance(value, str) or not value.strip():
                result.add_error(
                    "MISSING_FIELD",
                    f"Missing required field: repository.{name}",
                    f"/repository/{name}",
                )

        language = repository.get("language")
        if language is None:
            if kind == "translation":
                result.add_error(
                    "MISSING_LANGUAGE",
                    "Translation manifest must have language information",
                    "/repository/language",
                )
            return

        if not isinstance(language, dict):
            result.add_error(
                "INVALID_LANGUAGE", "language must be an object", "/repository/language"
            )
            return

        if not language.get("code"):
            result.add_error(
                "MISSING_FIELD",
                "Missing required field: language.code",
                "/repository/language/code",
            )

        direction = language.get("direction")
        if direction not in VALID_DIRECTIONS:
            result.add_error(
                "INVALID_DIRECTION",
                f"Invalid language direction: '{direction}'. "
                f"Must be one of: {', '.join(sorted(VALID_DIRECTIONS))}",
                "/repository/language/direction",
            )

    def _validate_content(self, content: dict, result: VerificationResult) -> None:
        books_count = content.get("books_count")
        testament = content.get("testament")

        if not _is_int(books_count) or books_count < 0:
            result.add_error(
                "MISSING_FIELD",
                "content.books_count must be a non-negative integer",
                "/content/books_count",
            )
            return

        if not isinstance(testament, dict):
            result.add_error(
                "MISSING_FIELD",
                "Missing required field: content.testament",
                "/content/testament",
            )
        else:
            old = testament.get("old", 0)
            new = testament.get("new", 0)
            if not (_is_int(old) and _is_int(new)):
                result.add_error(
                    "INVALID_TESTAMENT_COUNTS",
                    "Testament counts must be integers",
                    "/content/testament",
                )
            else:
                total = old + new
                if total != books_count:
                    result.add_error(
                        "BOOK_COUNT_MISMATCH",
                        f"Testament book counts ({old} + {new} = {total}) "
                        f"don't match total ({books_count})",
                        "/content/testament",
                    )
                elif books_count == canon.CANON_SIZE and (
                    old != canon.STANDARD_OT_COUNT or new != canon.STANDARD_NT_COUNT
                ):
                    result.add_warning(
                        "NON_STANDARD_CANON",
                        "Book counts differ from standard Protestant canon (39 OT + 27 NT)",
                        "/content/testament",
                    )

        books = content.get("books")
        if books is None:
            return
        if not isinstance(books, list):
            result.add_error(
                "INVALID_BOOK_LIST", "content.books must be a list", "/content/books"
            )
            return

        if len(books) != books_count:
            result.add_error(
                "BOOK_COUNT_MISMATCH",
                f"Manifest lists {len(books)} book files but declares "
                f"books_count {books_count}",
                "/content/books",
            )

        for i, entry in enumerate(books):
            path = entry.get("path") if isinstance(entry, dict) else None
            if not isinstance(path, str) or not path:
                result.add_error(
                    "INVALID_BOOK_ENTRY",
                    f"Book entry {i} has no path",
                    f"/content/books/{i}/path",
                )
            elif not is_safe_relative_path(path):
                result.add_error(
                    "UNSAFE_PATH",
                    f"Book path escapes the package: {path}",
                    f"/content/books/{i}/path",
                )
            checksum = entry.get("checksum") if isinstance(entry, dict) else None
            if checksum is not None and not CHECKSUM_PATTERN.match(str(checksum)):
                result.add_error(
                    "INVALID_CHECKSUM",
                    f"Book entry {i} checksum is not a sha256 digest",
                    f"/content/books/{i}/checksum",
                )

    def _validate_technical(self, technical: dict, result: VerificationResult) -> None:
        encoding = technical.get("encoding", "UTF-8")
        if str(encoding).upper() != "UTF-8":
            result.add_error(
                "UNSUPPORTED_ENCODING",
                f"Unsupported encoding: {encoding}",
                "/technical/encoding",
            )

        compression = technical.get("compression", "none")
        if compression not in KNOWN_COMPRESSION:
            result.add_error(
                "INVALID_COMPRESSION",
                f"Unknown compression: {compression}",
                "/technical/compression",
            )
        elif compression not in SUPPORTED_COMPRESSION:
            result.add_error(
                "UNSUPPORTED_COMPRESSION",
                f"Compression '{compression}' is not supported",
                "/technical/compression",
            )

        size_bytes = technical.get("size_bytes")
        if size_bytes is not None:
            if not _is_int(size_bytes) or size_bytes < 0:
                result.add_error(
                    "INVALID_SIZE",
                    "technical.size_bytes must be a non-negative integer",
                    "/technical/size_bytes",
                )
            elif self.policy.exceeds_repository_size(size_bytes):
                result.add_error(
                    "REPOSITORY_TOO_LARGE",
                    f"Repository size ({size_bytes}) exceeds maximum "
                    f"({self.policy.max_repository_size})",
                    "/technical/size_bytes",
                )

        self._validate_checksum(technical.get("checksum"), result)

    def _validate_checksum(self, checksum: Any, result: VerificationResult) -> None:
        # Without the policy flag, checksum defects are downgraded to warnings
        report = result.add_error if self.policy.require_checksums else result.add_warning
        path = "/technical/checksum"

        if not checksum:
            report(
                "MISSING_CHECKSUM", "Package checksum is required by security policy", path
            )
        elif not isinstance(checksum, str) or not CHECKSUM_PATTERN.match(checksum):
            report(
                "INVALID_CHECKSUM",
                f"Checksum is not a well-formed sha256 digest: {checksum}",
                path,
            )
        elif checksum == PLACEHOLDER_CHECKSUM:
            report("PLACEHOLDER_CHECKSUM", "Checksum is a placeholder value", path)

    def _validate_translations(
        self, translations: Any, parent_id: Any, result: VerificationResult
    ) -> None:
        if not isinstance(translations, list):
            result.add_error(
                "INVALID_TRANSLATIONS",
                "Parent repository must have a translations array",
                "/translations",
            )
            return

        if not translations:
            result.add_warning(
                "EMPTY_TRANSLATIONS", "Parent repository has no translations", "/translations"
            )
            return

        seen_ids: set[str] = set()
        seen_dirs: set[str] = set()
        duplicate_ids: list[str] = []
        duplicate_dirs: list[str] = []

        for i, entry in enumerate(translations):
            if not isinstance(entry, dict) or not entry.get("id") or not entry.get("directory"):
                result.add_error(
                    "INVALID_TRANSLATIONS",
                    f"Translation {i} must have an id and a directory",
                    f"/translations/{i}",
                )
                continue

            translation_id = str(entry["id"])
            directory = str(entry["directory"])

            if not is_safe_relative_path(directory):
                result.add_error(
                    "UNSAFE_PATH",
                    f"Translation directory escapes the package: {directory}",
                    f"/translations/{i}/directory",
                )

            if translation_id == parent_id:
                result.add_error(
                    "TRANSLATION_ID_CONFLICT",
                    f"Translation id '{translation_id}' is the parent repository's own id",
                    f"/translations/{i}/id",
                )

            if translation_id in seen_ids:
                duplicate_ids.append(translation_id)
            seen_ids.add(translation_id)

            if directory in seen_dirs:
                duplicate_dirs.append(directory)
            seen_dirs.add(directory)

        if duplicate_ids:
            result.add_error(
                "DUPLICATE_TRANSLATION_IDS",
                f"Duplicate translation IDs found: {', '.join(duplicate_ids)}",
                "/translations",
            )
        if duplicate_dirs:
            result.add_error(
                "DUPLICATE_TRANSLATION_DIRECTORIES",
                f"Duplicate translation directories found: {', '.join(duplicate_dirs)}",
                "/translations",
            )

    def _validate_publisher(self, repository: Any, result: VerificationResult) -> None:
        if not isinstance(repository, dict):
            return
        publisher = repository.get("publisher")
        if not isinstance(publisher, dict) or not publisher.get("url"):
            return

        url = str(publisher["url"])
        parsed = urlparse(url)
        path = "/repository/publisher/url"

        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            result.add_error("INVALID_PUBLISHER_URL", f"Invalid publisher URL: {url}", path)
            return

        if parsed.scheme == "http" and not self.policy.allow_http:
            result.add_warning(
                "INSECURE_URL", "Publisher URL uses insecure HTTP protocol", path
            )

        if self.policy.is_domain_blocked(parsed.hostname):
            result.add_error(
                "BLOCKED_DOMAIN", f"Publisher domain {parsed.hostname} is blocked", path
            )

    # --- Book rules ---

    def _validate_book(
        self, doc: Any, expected_order: int | None, result: VerificationResult
    ) -> None:
        if not isinstance(doc, dict):
            result.add_error("INVALID_DOCUMENT", "Book must be a JSON object")
            return

        info = doc.get("book")
        chapters = doc.get("chapters")
        if not isinstance(info, dict):
            result.add_error("MISSING_FIELD", "Missing required field: book", "/book")
        if not isinstance(chapters, list):
            result.add_error("MISSING_FIELD", "Missing required field: chapters", "/chapters")
        if not result.valid:
            return

        for name in ("id", "name", "abbreviation"):
            if not info.get(name):
                result.add_error(
                    "MISSING_FIELD", f"Missing required field: book.{name}", f"/book/{name}"
                )

        order = info.get("order")
        if not canon.is_valid_order(order):
            result.add_error(
                "INVALID_BOOK_ORDER",
                f"Book order {order!r} is outside the canonical range 1-{canon.CANON_SIZE}",
                "/book/order",
            )
        else:
            if expected_order is not None and order != expected_order:
                result.add_error(
                    "INCORRECT_BOOK_ORDER",
                    f"Book order {order} doesn't match expected {expected_order}",
                    "/book/order",
                )
            testament = canon.normalize_testament(info.get("testament"))
            expected_testament = canon.testament_for_order(order)
            if testament is None:
                result.add_error(
                    "INVALID_TESTAMENT",
                    f"Invalid testament: {info.get('testament')!r}",
                    "/book/testament",
                )
            elif testament != expected_testament:
                result.add_error(
                    "TESTAMENT_MISMATCH",
                    f"Book order {order} belongs to {expected_testament}, "
                    f"not {testament}",
                    "/book/testament",
                )

        if info.get("chapters_count") != len(chapters):
            result.add_error(
                "CHAPTER_COUNT_MISMATCH",
                f"Actual chapters ({len(chapters)}) don't match declared count "
                f"({info.get('chapters_count')})",
                "/book/chapters_count",
            )

        total_verses = 0
        for i, chapter in enumerate(chapters):
            if not isinstance(chapter, dict):
                result.add_error(
                    "INVALID_CHAPTER", f"Chapter {i + 1} must be an object", f"/chapters/{i}"
                )
                continue

            if chapter.get("number") != i + 1:
                result.add_error(
                    "INCORRECT_CHAPTER_NUMBER",
                    f"Chapter {i + 1} has incorrect number {chapter.get('number')}",
                    f"/chapters/{i}/number",
                )

            verses = chapter.get("verses")
            if not isinstance(verses, list):
                result.add_error(
                    "MISSING_FIELD",
                    f"Chapter {i + 1} has no verses list",
                    f"/chapters/{i}/verses",
                )
                continue

            for j, verse in enumerate(verses):
                total_verses += 1
                if not isinstance(verse, dict):
                    result.add_error(
                        "INVALID_VERSE",
                        f"Chapter {i + 1}, verse {j + 1} must be an object",
                        f"/chapters/{i}/verses/{j}",
                    )
                    continue
                if verse.get("number") != j + 1:
                    result.add_error(
                        "INCORRECT_VERSE_NUMBER",
                        f"Chapter {i + 1}, verse {j + 1} has incorrect number "
                        f"{verse.get('number')}",
                        f"/chapters/{i}/verses/{j}/number",
                    )
                text = verse.get("text")
                if not isinstance(text, str) or not text.strip():
                    result.add_error(
                        "EMPTY_VERSE_TEXT",
                        f"Chapter {i + 1}, verse {verse.get('number')} has empty text",
                        f"/chapters/{i}/verses/{j}/text",
                    )

        if info.get("verses_count") != total_verses:
            result.add_error(
                "VERSE_COUNT_MISMATCH",
                f"Actual verses ({total_verses}) don't match declared count "
                f"({info.get('verses_count')})",
                "/book/verses_count",
            )


def validate_manifest(doc: Any, policy: SecurityPolicy | None = None) -> VerificationResult:
    """Convenience function to validate a manifest.

    Args:
        doc: Parsed manifest document
        policy: Security policy (defaults if not provided)

    Returns:
        VerificationResult
    """
    return PackageValidator(policy).validate_manifest(doc)


def validate_book(
    doc: Any,
    expected_order: int | None = None,
    policy: SecurityPolicy | None = None,
) -> VerificationResult:
    """Convenience function to validate a book document."""
    return PackageValidator(policy).validate_book(doc, expected_order)
