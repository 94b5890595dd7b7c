"""API route definitions."""

from __future__ import annotations

from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from scriptorium import __version__
from scriptorium.api.models import (
    BookModel,
    DeleteResponse,
    DiscoverResponse,
    EnableSourceRequest,
    HealthModel,
    ImportRequest,
    ImportResponse,
    RepositoryModel,
    ScanRequest,
    ScanResponse,
    SearchHitModel,
    SettingModel,
    SettingUpdateRequest,
    SourceChangeResponse,
    StatsModel,
    TranslationModel,
    ValidationResponse,
    VerseModel,
)
from scriptorium.db.migrations import MigrationRunner
from scriptorium.repository.service import RepositoryService
from scriptorium.repository.types import ImportOptions, RepositorySource


router = APIRouter()


def get_service(request: Request) -> RepositoryService:
    """Service instance attached to the app by create_app()."""
    return request.app.state.service


Service = Annotated[RepositoryService, Depends(get_service)]


@router.get("/health", response_model=HealthModel)
async def health_check(service: Service):
    """Health check endpoint."""
    schema_version = 0
    if service.is_initialized:
        schema_version = MigrationRunner(service.db.conn).current_version()

    return HealthModel(
        status="ok" if service.is_initialized else "degraded",
        version=__version__,
        db_connected=service.db.is_connected,
        schema_version=schema_version,
    )


# --- Stored repositories ---


@router.get("/repositories", response_model=List[RepositoryModel])
async def list_repositories(service: Service):
    """List every imported repository."""
    return service.list_repositories()


@router.get("/repositories/parents", response_model=List[RepositoryModel])
async def list_parent_repositories(service: Service):
    """List parent repositories."""
    return service.get_parent_repositories()


@router.get(
    "/repositories/{repository_id}/translations",
    response_model=List[TranslationModel],
)
async def list_translations(repository_id: str, service: Service):
    """List the translations linked to a parent repository."""
    if service.get_repository(repository_id) is None:
        raise HTTPException(404, f"Repository not found: {repository_id}")
    return service.get_translations(repository_id)


@router.delete("/repositories/{repository_id}", response_model=DeleteResponse)
async def delete_repository(repository_id: str, service: Service):
    """Delete a repository with its books, verses and translation links."""
    if not service.delete_repository(repository_id):
        raise HTTPException(404, f"Repository not found: {repository_id}")
    return DeleteResponse(id=repository_id, deleted=True)


@router.get("/repositories/{repository_id}/books", response_model=List[BookModel])
async def list_books(repository_id: str, service: Service):
    """List the books of a repository in canonical order."""
    if service.get_repository(repository_id) is None:
        raise HTTPException(404, f"Repository not found: {repository_id}")
    return service.get_books(repository_id)


@router.get("/books/{book_id}/chapters/{chapter}", response_model=List[VerseModel])
async def get_chapter(book_id: int, chapter: int, service: Service):
    """Get the verses of one chapter."""
    if service.store.get_book(book_id) is None:
        raise HTTPException(404, f"Book not found: {book_id}")
    return service.get_verses(book_id, chapter)


@router.get("/search", response_model=List[SearchHitModel])
async def search_verses(
    service: Service,
    q: Annotated[str, Query(min_length=1, description="Text to search for")],
    repository_id: Annotated[
        Optional[str], Query(description="Restrict to one repository")
    ] = None,
):
    """Search verse text (first 100 matches in canonical order)."""
    return service.search_verses(q, repository_id)


# --- Discovery and validation ---


@router.get("/discover", response_model=DiscoverResponse)
async def discover_repositories(service: Service):
    """Merge the indexes of every enabled source."""
    repositories = await service.discover_repositories()
    return DiscoverResponse(
        repositories=repositories, errors=dict(service.discovery.last_errors)
    )


@router.get("/manifest")
async def get_manifest(
    service: Service,
    url: Annotated[str, Query(description="Package URL or local directory")],
):
    """Fetch a package manifest."""
    return await service.get_manifest(url)


@router.get("/validate", response_model=ValidationResponse)
async def validate_repository(
    service: Service,
    url: Annotated[str, Query(description="Package URL or local directory")],
):
    """Fetch and validate a package manifest."""
    result = await service.validate_repository_url(url)
    return result.to_dict()


@router.post("/scan", response_model=ScanResponse)
async def scan_directory(request: ScanRequest, service: Service):
    """Find and validate packages under a local directory."""
    result = await service.scan_directory(request.path)
    return result.to_dict()


@router.post("/import", response_model=ImportResponse)
async def import_repository(request: ImportRequest, service: Service):
    """Import a repository into the store.

    Failures are reported in the response body with success=false.
    """
    options = ImportOptions(
        repository_url=request.repository_url,
        validate_checksums=request.validate_checksums,
        download_audio=request.download_audio,
        overwrite_existing=request.overwrite_existing,
        selected_translations=request.selected_translations,
    )
    result = await service.import_repository(options)
    return result.to_dict()


# --- Sources ---


@router.get("/sources", response_model=List[RepositorySource])
async def list_sources(service: Service):
    """List index sources."""
    return service.get_sources()


@router.post("/sources", response_model=List[RepositorySource])
async def add_source(source: RepositorySource, service: Service):
    """Add a source (replacing one with the same URL)."""
    service.add_source(source)
    return service.get_sources()


@router.delete("/sources", response_model=SourceChangeResponse)
async def remove_source(
    service: Service,
    url: Annotated[str, Query(description="URL of the source to remove")],
):
    """Remove a source."""
    if not service.remove_source(url):
        raise HTTPException(404, f"Source not found: {url}")
    return SourceChangeResponse(url=url, changed=True)


@router.post("/sources/enable", response_model=SourceChangeResponse)
async def enable_source(request: EnableSourceRequest, service: Service):
    """Enable or disable a source."""
    if not service.enable_source(request.url, request.enabled):
        raise HTTPException(404, f"Source not found: {request.url}")
    return SourceChangeResponse(url=request.url, changed=True)


@router.post("/cache/clear")
async def clear_cache(service: Service):
    """Drop cached manifests."""
    service.clear_cache()
    return {"cleared": True}


# --- Store ---


@router.get("/stats", response_model=StatsModel)
async def get_stats(service: Service):
    """Row counts and database size."""
    return service.get_stats()


@router.get("/settings/{key}", response_model=SettingModel)
async def get_setting(key: str, service: Service):
    """Read a user setting."""
    value = service.get_setting(key)
    if value is None:
        raise HTTPException(404, f"Setting not found: {key}")
    return SettingModel(key=key, value=value)


@router.put("/settings/{key}", response_model=SettingModel)
async def put_setting(key: str, request: SettingUpdateRequest, service: Service):
    """Write a user setting."""
    service.set_setting(key, request.value)
    return SettingModel(key=key, value=request.value)
