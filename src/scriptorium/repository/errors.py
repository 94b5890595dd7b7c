"""Exceptions raised by the repository pipeline.

Validation defects are never raised; they are reported as
``ValidationError`` entries inside a ``VerificationResult``.
"""

from __future__ import annotations

from typing import Any


class RepositoryError(Exception):
    """Base class for pipeline failures."""

    code = "REPOSITORY_ERROR"

    def __init__(self, message: str, code: str | None = None, details: Any = None):
        super().__init__(message)
        if code is not None:
            self.code = code
        self.details = details

    def __str__(self) -> str:
        return self.args[0] if self.args else self.code

    def summary(self) -> str:
        """One-line form used in ImportResult.errors."""
        return f"{type(self).__name__}: {self}"


class NetworkError(RepositoryError):
    """Transport, HTTP or file access failure fetching a document."""

    code = "NETWORK_ERROR"

    def __init__(self, message: str, url: str, details: Any = None):
        super().__init__(message, details=details)
        self.url = url


class SecurityPolicyError(NetworkError):
    """A URL, path or payload was refused by the security policy."""

    code = "SECURITY_POLICY"


class IntegrityError(RepositoryError):
    """Downloaded bytes do not match the declared checksum."""

    code = "INTEGRITY_ERROR"

    def __init__(
        self,
        message: str,
        file_path: str,
        expected: str = "",
        actual: str = "",
    ):
        super().__init__(
            message, details={"expected": expected, "actual": actual}
        )
        self.file_path = file_path
        self.expected = expected
        self.actual = actual


class ImportCancelled(RepositoryError):
    """The caller signalled cancellation before the import committed."""

    code = "IMPORT_CANCELLED"


class ImportAborted(RepositoryError):
    """A stage failed validation and the pipeline stopped.

    Carries the error and warning messages gathered so far.
    """

    code = "IMPORT_ABORTED"

    def __init__(self, message: str, errors: list[str], warnings: list[str] | None = None):
        super().__init__(message)
        self.errors = errors
        self.warnings = warnings or []


class RepositoryExistsError(RepositoryError):
    """The repository is already stored and overwriting was not requested."""

    code = "REPOSITORY_EXISTS"

    def __init__(self, repository_id: str):
        super().__init__(
            f"Repository '{repository_id}' already exists "
            "(set overwrite_existing to replace it)"
        )
        self.repository_id = repository_id


class RepositoryConflictError(RepositoryError):
    """The incoming package clashes with how the id is already stored."""

    code = "REPOSITORY_CONFLICT"

    def __init__(self, repository_id: str, message: str):
        super().__init__(message)
        self.repository_id = repository_id
