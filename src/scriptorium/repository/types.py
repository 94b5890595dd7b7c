"""Value types shared by the repository discovery and import pipeline.

Domain values (verification results, import options and results, scan
results) are plain dataclasses. Documents that cross a wire or an event
stream (index entries, source descriptors, progress events) are pydantic
models so they validate on construction and serialize cleanly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

from pydantic import BaseModel, Field


# --- Verification ---


@dataclass
class ValidationError:
    """A single structural or semantic defect found in a document.

    Never raised; always carried inside a VerificationResult.
    """

    code: str
    message: str
    path: str | None = None
    severity: str = "error"  # error, warning

    def to_dict(self) -> dict:
        """Serialize to dict."""
        data = {
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
        }
        if self.path is not None:
            data["path"] = self.path
        return data


@dataclass
class VerificationResult:
    """Outcome of running validation rules over a document."""

    valid: bool = True
    errors: list[ValidationError] = field(default_factory=list)
    warnings: list[ValidationError] = field(default_factory=list)

    def add_error(self, code: str, message: str, path: str | None = None) -> None:
        """Add an error and mark the result invalid."""
        self.errors.append(ValidationError(code, message, path, "error"))
        self.valid = False

    def add_warning(self, code: str, message: str, path: str | None = None) -> None:
        """Add a non-fatal warning."""
        self.warnings.append(ValidationError(code, message, path, "warning"))

    def merge(self, other: "VerificationResult") -> None:
        """Merge another result into this one."""
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        if not other.valid:
            self.valid = False

    def error_messages(self) -> list[str]:
        """Errors formatted as 'CODE: message' strings."""
        return [f"{e.code}: {e.message}" for e in self.errors]

    def warning_messages(self) -> list[str]:
        """Warnings formatted as 'CODE: message' strings."""
        return [f"{w.code}: {w.message}" for w in self.warnings]

    def to_dict(self) -> dict:
        """Serialize to dict."""
        return {
            "valid": self.valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }

    @classmethod
    def failure(
        cls, code: str, message: str, path: str | None = None
    ) -> "VerificationResult":
        """Build a result holding a single error."""
        result = cls()
        result.add_error(code, message, path)
        return result


@dataclass
class IntegrityCheck:
    """Comparison of a declared digest against the digest of fetched bytes."""

    file_path: str
    expected_checksum: str
    actual_checksum: str
    valid: bool


# --- Sources and index documents ---


class SourceType(str, Enum):
    """Trust level of a repository index source."""

    OFFICIAL = "official"
    THIRD_PARTY = "third-party"
    LOCAL = "local"


class RepositorySource(BaseModel):
    """A named index source consulted by discovery."""

    type: SourceType = Field(SourceType.THIRD_PARTY, description="Trust level")
    url: str = Field(..., description="Index document URL or local path")
    name: str = Field(..., description="Display name")
    enabled: bool = Field(True, description="Consulted by discovery when true")
    last_checked: Optional[str] = Field(None, description="ISO timestamp")

    @property
    def is_trusted(self) -> bool:
        """Entries from official sources are marked verified."""
        return self.type == SourceType.OFFICIAL


class IndexEntry(BaseModel):
    """One repository listed in a source's index document."""

    id: str
    name: str
    url: str
    language: str = ""
    license: str = ""
    verified: bool = False
    last_updated: str = ""
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    source: Optional[str] = Field(None, description="Name of the listing source")


class RepositoryIndex(BaseModel):
    """Index document published by a source."""

    version: str
    repositories: List[IndexEntry]


# --- Import pipeline ---


class ImportStage(str, Enum):
    """Pipeline states, in forward order; error and cancelled are terminal."""

    DISCOVERING = "discovering"
    VALIDATING = "validating"
    DOWNLOADING = "downloading"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ImportStage.COMPLETE, ImportStage.ERROR, ImportStage.CANCELLED)


class ImportProgress(BaseModel):
    """Progress event emitted by the importer."""

    stage: ImportStage
    progress: int = Field(0, ge=0, le=100)
    message: str = ""
    current_book: Optional[str] = None
    total_books: Optional[int] = None
    processed_books: Optional[int] = None


ProgressCallback = Callable[[ImportProgress], Any]


@dataclass
class ImportOptions:
    """Options for one import run."""

    repository_url: str
    validate_checksums: bool = True
    download_audio: bool = False
    overwrite_existing: bool = False
    progress_callback: ProgressCallback | None = None
    # Parent packages only; None imports every declared translation
    selected_translations: list[str] | None = None


@dataclass
class ImportResult:
    """Outcome of one import run.

    success=False implies no transaction was committed.
    """

    success: bool = False
    repository_id: str = ""
    books_imported: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    duration_ms: int = 0
    verses_imported: int = 0
    translations_imported: list[str] = field(default_factory=list)
    translations_skipped: list[str] = field(default_factory=list)
    cancelled: bool = False

    def to_dict(self) -> dict:
        """Serialize to dict."""
        return {
            "success": self.success,
            "repository_id": self.repository_id,
            "books_imported": self.books_imported,
            "verses_imported": self.verses_imported,
            "translations_imported": list(self.translations_imported),
            "translations_skipped": list(self.translations_skipped),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "duration_ms": self.duration_ms,
            "cancelled": self.cancelled,
        }


# --- Directory scans ---


@dataclass
class ScanCandidate:
    """A directory holding a manifest, with its validation verdict."""

    path: str
    manifest: dict
    validation: VerificationResult

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "manifest": self.manifest,
            "validation": self.validation.to_dict(),
        }


@dataclass
class ScanResult:
    """Result of scanning a local directory tree for packages."""

    repositories: list[ScanCandidate] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "repositories": [c.to_dict() for c in self.repositories],
            "errors": list(self.errors),
        }
