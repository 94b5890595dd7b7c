"""Repository discovery, validation and import pipeline.

The importer and the service facade live in ``scriptorium.repository.importer``
and ``scriptorium.repository.service``; they depend on the storage layer and
are imported from there directly.
"""

from scriptorium.repository.discovery import DiscoveryService
from scriptorium.repository.errors import (
    ImportCancelled,
    IntegrityError,
    NetworkError,
    RepositoryError,
    RepositoryExistsError,
    RepositoryConflictError,
    SecurityPolicyError,
)
from scriptorium.repository.policy import SecurityPolicy
from scriptorium.repository.types import (
    ImportOptions,
    ImportProgress,
    ImportResult,
    ImportStage,
    IndexEntry,
    RepositorySource,
    ScanResult,
    SourceType,
    ValidationError,
    VerificationResult,
)
from scriptorium.repository.validator import (
    PackageValidator,
    compute_checksum,
    validate_book,
    validate_manifest,
)

__all__ = [
    "DiscoveryService",
    "ImportCancelled",
    "IntegrityError",
    "NetworkError",
    "RepositoryError",
    "RepositoryExistsError",
    "RepositoryConflictError",
    "SecurityPolicyError",
    "SecurityPolicy",
    "ImportOptions",
    "ImportProgress",
    "ImportResult",
    "ImportStage",
    "IndexEntry",
    "RepositorySource",
    "ScanResult",
    "SourceType",
    "ValidationError",
    "VerificationResult",
    "PackageValidator",
    "compute_checksum",
    "validate_book",
    "validate_manifest",
]
