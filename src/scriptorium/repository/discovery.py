"""Repository discovery: index sources, manifests and local scans.

Handles:
- Fetching index documents from configured sources and merging them
- Fetching (and caching) a single package's manifest by URL or path
- Walking a local directory tree for package manifests
- Streaming downloads bounded by the security policy

Every location passes ``SecurityPolicy.check_url`` before the network
or the filesystem is touched.
"""

from __future__ import annotations

import asyncio
import gzip
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os
import httpx
from pydantic import ValidationError as ModelValidationError

from scriptorium.repository.errors import NetworkError, RepositoryError, SecurityPolicyError
from scriptorium.repository.policy import SecurityPolicy, is_remote, local_path
from scriptorium.repository.types import (
    IndexEntry,
    RepositoryIndex,
    RepositorySource,
    ScanCandidate,
    ScanResult,
    VerificationResult,
)
from scriptorium.repository.validator import PackageValidator

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "manifest.json"
DEFAULT_TIMEOUT = 30.0
CHUNK_SIZE = 64 * 1024


# --- Location helpers ---


def manifest_location(url: str) -> str:
    """Resolve a package URL or directory to its manifest document."""
    if url.endswith(".json"):
        return url
    if is_remote(url):
        return url.rstrip("/") + "/" + MANIFEST_FILENAME
    return str(local_path(url) / MANIFEST_FILENAME)


def package_base(url: str) -> str:
    """Directory (or URL prefix) that book paths are relative to."""
    if not url.endswith(".json"):
        return url.rstrip("/") if is_remote(url) else str(local_path(url))
    if is_remote(url):
        return url.rsplit("/", 1)[0]
    return str(local_path(url).parent)


def join_location(base: str, relative: str) -> str:
    """Join a package-relative POSIX path onto a base URL or directory."""
    if is_remote(base):
        return base.rstrip("/") + "/" + relative.lstrip("/")
    return str(local_path(base).joinpath(*relative.split("/")))


def parse_document(data: bytes, location: str, compression: str = "none") -> Any:
    """Decode (optionally gzip-compressed) UTF-8 JSON bytes.

    Raises:
        NetworkError: If the payload cannot be decompressed or parsed
    """
    if compression == "gzip":
        try:
            data = gzip.decompress(data)
        except (OSError, EOFError) as e:
            raise NetworkError(f"Invalid gzip payload: {e}", location) from e
    try:
        return json.loads(data.decode("utf-8"))
    except UnicodeDecodeError as e:
        raise NetworkError(f"Document is not valid UTF-8: {e}", location) from e
    except json.JSONDecodeError as e:
        raise NetworkError(f"Invalid JSON: {e}", location) from e


def _find_manifests(root: Path, errors: list[str]) -> list[Path]:
    """Walk root for manifest files; unreadable directories go to errors."""

    def on_error(e: OSError) -> None:
        logger.warning(f"Cannot read {e.filename}: {e}")
        errors.append(f"{e.filename}: {e}")

    found = []
    for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
        dirnames.sort()
        if MANIFEST_FILENAME in filenames:
            found.append(Path(dirpath) / MANIFEST_FILENAME)
    return found


# --- Service ---


class DiscoveryService:
    """Locates candidate packages and fetches their documents.

    Usage:
        discovery = DiscoveryService(policy, sources=settings.sources)
        entries = await discovery.discover_repositories()

        manifest = await discovery.fetch_manifest(entries[0].url)
        await discovery.close()
    """

    def __init__(
        self,
        policy: SecurityPolicy | None = None,
        sources: list[RepositorySource] | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """Initialize discovery.

        Args:
            policy: Security policy applied to every location
            sources: Index sources consulted by discover_repositories
            client: Shared HTTP client (created lazily and owned if omitted)
            timeout: Request timeout in seconds for an owned client
        """
        self.policy = policy or SecurityPolicy()
        self._sources: list[RepositorySource] = [
            s.model_copy() for s in (sources or [])
        ]
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self._manifest_cache: dict[str, dict] = {}
        self._validator = PackageValidator(self.policy)
        self.last_errors: dict[str, str] = {}

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                follow_redirects=True, timeout=self._timeout
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this service created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # --- Fetching ---

    def _enforce_policy(self, location: str) -> None:
        result = self.policy.check_url(location)
        if not result.valid:
            raise SecurityPolicyError("; ".join(result.error_messages()), location)

    async def fetch_bytes(self, location: str, max_size: int | None = None) -> bytes:
        """Fetch raw bytes from a URL or local path.

        Args:
            location: http(s) URL, file URL or filesystem path
            max_size: Byte limit (defaults to the policy's max_file_size)

        Raises:
            SecurityPolicyError: If the location or payload size is refused
            NetworkError: On transport, HTTP status or file access failure
        """
        self._enforce_policy(location)
        limit = max_size or self.policy.max_file_size
        if is_remote(location):
            return await self._fetch_remote(location, limit)
        return await self._read_local(local_path(location), limit)

    async def _fetch_remote(self, url: str, limit: int) -> bytes:
        try:
            async with self.client.stream("GET", url) as response:
                if response.status_code >= 400:
                    raise NetworkError(
                        f"HTTP {response.status_code}: {response.reason_phrase}", url
                    )

                declared = response.headers.get("content-length", "")
                if declared.isdigit() and int(declared) > limit:
                    raise SecurityPolicyError(
                        f"File size ({declared}) exceeds maximum ({limit})", url
                    )

                buffer = bytearray()
                async for chunk in response.aiter_bytes(CHUNK_SIZE):
                    buffer.extend(chunk)
                    if len(buffer) > limit:
                        raise SecurityPolicyError(
                            f"Download exceeds maximum file size ({limit})", url
                        )
                return bytes(buffer)
        except httpx.HTTPError as e:
            raise NetworkError(f"Request failed: {e}", url) from e

    async def _read_local(self, path: Path, limit: int) -> bytes:
        try:
            size = await aiofiles.os.path.getsize(path)
            if size > limit:
                raise SecurityPolicyError(
                    f"File size ({size}) exceeds maximum ({limit})", str(path)
                )
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except FileNotFoundError as e:
            raise NetworkError(f"File not found: {path}", str(path)) from e
        except OSError as e:
            raise NetworkError(f"Cannot read {path}: {e}", str(path)) from e

    async def fetch_json(self, location: str, max_size: int | None = None) -> Any:
        """Fetch and parse a JSON document."""
        data = await self.fetch_bytes(location, max_size)
        return parse_document(data, location)

    async def fetch_index(self, url: str) -> list[IndexEntry]:
        """Fetch one source's index document.

        Raises:
            NetworkError: If the index cannot be fetched or is malformed
        """
        doc = await self.fetch_json(url)
        try:
            index = RepositoryIndex.model_validate(doc)
        except ModelValidationError as e:
            raise NetworkError(
                f"Invalid repository index ({e.error_count()} errors)",
                url,
                details=e.errors(),
            ) from e
        return index.repositories

    async def fetch_manifest(self, url: str) -> dict:
        """Fetch a package manifest, served from cache after the first fetch.

        Args:
            url: Package URL or directory, or a direct ``.json`` manifest URL

        Raises:
            NetworkError: If the manifest cannot be fetched or parsed
        """
        location = manifest_location(url)
        cached = self._manifest_cache.get(location)
        if cached is not None:
            logger.debug(f"Manifest cache hit: {location}")
            return cached

        doc = await self.fetch_json(location)
        if not isinstance(doc, dict):
            raise NetworkError("Manifest must be a JSON object", location)

        self._manifest_cache[location] = doc
        return doc

    def clear_cache(self) -> None:
        """Drop every cached manifest."""
        count = len(self._manifest_cache)
        self._manifest_cache.clear()
        logger.info(f"Cleared {count} cached manifests")

    # --- Discovery ---

    async def discover_repositories(self) -> list[IndexEntry]:
        """Merge the indexes of every enabled source.

        Entries are de-duplicated by id; the first source in list order
        wins. A failing source is logged and skipped.
        """
        enabled = [s for s in self._sources if s.enabled]
        self.last_errors = {}

        outcomes = await asyncio.gather(
            *(self.fetch_index(s.url) for s in enabled), return_exceptions=True
        )

        seen: set[str] = set()
        merged: list[IndexEntry] = []
        checked_at = datetime.now(timezone.utc).isoformat()

        for source, outcome in zip(enabled, outcomes):
            if isinstance(outcome, RepositoryError):
                logger.warning(f"Failed to fetch from source {source.name}: {outcome}")
                self.last_errors[source.url] = str(outcome)
                continue
            if isinstance(outcome, BaseException):
                raise outcome

            source.last_checked = checked_at
            for entry in outcome:
                if entry.id in seen:
                    continue
                seen.add(entry.id)
                merged.append(
                    entry.model_copy(
                        update={"verified": source.is_trusted, "source": source.name}
                    )
                )

        logger.info(
            f"Discovered {len(merged)} repositories from {len(enabled)} sources"
        )
        return merged

    async def validate_repository(self, url: str) -> VerificationResult:
        """Fetch and validate a package manifest.

        Never raises: policy refusals and fetch failures are reported in
        the returned result.
        """
        policy_result = self.policy.check_url(url)
        if not policy_result.valid:
            return policy_result

        try:
            manifest = await self.fetch_manifest(url)
        except RepositoryError as e:
            return VerificationResult.failure(
                "FETCH_ERROR", f"Failed to fetch repository: {e}"
            )
        return self._validator.validate_manifest(manifest)

    async def scan_directory(self, path: str | Path) -> ScanResult:
        """Find and validate every package manifest under a directory.

        Per-candidate failures are collected in ``errors``; the scan
        continues past them.
        """
        root = Path(path)
        result = ScanResult()

        if not await aiofiles.os.path.isdir(root):
            result.errors.append(f"Directory not found: {root}")
            return result

        manifests = await asyncio.to_thread(_find_manifests, root, result.errors)
        for manifest_path in manifests:
            try:
                manifest = await self.fetch_json(str(manifest_path))
            except RepositoryError as e:
                logger.warning(f"Skipping {manifest_path}: {e}")
                result.errors.append(f"{manifest_path}: {e}")
                continue

            if not isinstance(manifest, dict):
                result.errors.append(f"{manifest_path}: Manifest must be a JSON object")
                continue

            result.repositories.append(
                ScanCandidate(
                    path=str(manifest_path.parent),
                    manifest=manifest,
                    validation=self._validator.validate_manifest(manifest),
                )
            )

        logger.info(
            f"Scanned {root}: {len(result.repositories)} packages, "
            f"{len(result.errors)} errors"
        )
        return result

    # --- Sources ---

    def get_sources(self) -> list[RepositorySource]:
        return [s.model_copy() for s in self._sources]

    def add_source(self, source: RepositorySource) -> None:
        """Add a source, replacing any existing source with the same URL."""
        for i, existing in enumerate(self._sources):
            if existing.url == source.url:
                self._sources[i] = source.model_copy()
                return
        self._sources.append(source.model_copy())

    def remove_source(self, url: str) -> bool:
        before = len(self._sources)
        self._sources = [s for s in self._sources if s.url != url]
        return len(self._sources) < before

    def enable_source(self, url: str, enabled: bool) -> bool:
        for source in self._sources:
            if source.url == url:
                source.enabled = enabled
                return True
        return False
