"""Pydantic models for API."""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from scriptorium.repository.types import IndexEntry


class HealthModel(BaseModel):
    """Health check response."""

    status: str
    version: str
    db_connected: bool
    schema_version: int = 0


class RepositoryModel(BaseModel):
    """A stored repository."""

    id: str
    name: str
    description: str = ""
    language: Optional[str] = None
    version: str
    type: str = Field(..., description="parent or translation")
    parent_id: Optional[str] = None
    created_at: str
    updated_at: str


class TranslationModel(RepositoryModel):
    """A translation with its link to the parent."""

    directory_name: str
    language_code: Optional[str] = None
    status: str = "active"


class BookModel(BaseModel):
    """A stored book."""

    id: int
    repository_id: str
    name: str
    abbreviation: str
    testament: str = Field(..., description="OT or NT")
    book_order: int
    chapter_count: int


class VerseModel(BaseModel):
    """A stored verse."""

    id: int
    repository_id: str
    book_id: int
    chapter: int
    verse: int
    text: str


class SearchHitModel(VerseModel):
    """A verse matched by text search."""

    book_name: str
    book_abbreviation: str


class DeleteResponse(BaseModel):
    """Result of deleting a repository."""

    id: str
    deleted: bool


class DiscoverResponse(BaseModel):
    """Merged index entries plus per-source failures."""

    repositories: List[IndexEntry]
    errors: Dict[str, str] = Field(
        default_factory=dict, description="Failed source URL -> error message"
    )


class ValidationIssueModel(BaseModel):
    """One validation error or warning."""

    code: str
    message: str
    path: Optional[str] = None
    severity: str = "error"


class ValidationResponse(BaseModel):
    """Validation verdict."""

    valid: bool
    errors: List[ValidationIssueModel] = Field(default_factory=list)
    warnings: List[ValidationIssueModel] = Field(default_factory=list)


class ScanRequest(BaseModel):
    """Request to scan a local directory."""

    path: str = Field(..., description="Directory to walk for manifests")


class ScanCandidateModel(BaseModel):
    """A package found by a scan."""

    path: str
    manifest: dict
    validation: ValidationResponse


class ScanResponse(BaseModel):
    """Scan result."""

    repositories: List[ScanCandidateModel]
    errors: List[str]


class ImportRequest(BaseModel):
    """Request to import a repository."""

    repository_url: str = Field(..., description="Package URL or local directory")
    validate_checksums: bool = True
    download_audio: bool = False
    overwrite_existing: bool = False
    selected_translations: Optional[List[str]] = Field(
        None, description="Translation ids to import from a parent package"
    )


class ImportResponse(BaseModel):
    """Outcome of an import."""

    success: bool
    repository_id: str
    books_imported: int
    verses_imported: int
    translations_imported: List[str]
    translations_skipped: List[str]
    errors: List[str]
    warnings: List[str]
    duration_ms: int
    cancelled: bool


class EnableSourceRequest(BaseModel):
    """Request to enable or disable a source."""

    url: str
    enabled: bool


class SourceChangeResponse(BaseModel):
    """Result of a source management call."""

    url: str
    changed: bool


class SettingModel(BaseModel):
    """A user setting."""

    key: str
    value: str


class SettingUpdateRequest(BaseModel):
    """New value for a user setting."""

    value: str


class StatsModel(BaseModel):
    """Store statistics."""

    repositories: int
    books: int
    verses: int
    database_size_bytes: int
    database_size: str
