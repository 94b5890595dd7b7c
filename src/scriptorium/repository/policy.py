"""Security policy consulted before any fetch or traversal.

The policy is a frozen value object: discovery and the importer read it,
nothing mutates it after construction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from scriptorium.repository.types import VerificationResult

DEFAULT_MAX_REPOSITORY_SIZE = 1024 * 1024 * 1024  # 1 GiB
DEFAULT_MAX_FILE_SIZE = 100 * 1024 * 1024  # 100 MiB

SUPPORTED_SCHEMES = {"http", "https", "file"}


def is_remote(location: str) -> bool:
    """True for http(s) URLs, False for file URLs and plain paths."""
    scheme = urlparse(location).scheme.lower()
    return scheme in ("http", "https")


def is_local(location: str) -> bool:
    """True for file URLs and plain filesystem paths."""
    parsed = urlparse(location)
    scheme = parsed.scheme.lower()
    # Single-letter schemes are Windows drive letters
    return scheme in ("", "file") or len(scheme) == 1


def local_path(location: str) -> Path:
    """Convert a file URL or plain path to a Path."""
    parsed = urlparse(location)
    if parsed.scheme.lower() == "file":
        return Path(parsed.path)
    return Path(location)


@dataclass(frozen=True)
class SecurityPolicy:
    """Static limits and allow/deny rules.

    An empty allow-list allows every host; the block-list is always
    enforced.
    """

    allow_http: bool = False
    max_repository_size: int = DEFAULT_MAX_REPOSITORY_SIZE
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    allowed_domains: tuple[str, ...] = field(default_factory=tuple)
    blocked_domains: tuple[str, ...] = field(default_factory=tuple)
    require_checksums: bool = True

    def __post_init__(self) -> None:
        # Accept lists from config files; keep the stored value hashable
        object.__setattr__(
            self, "allowed_domains", tuple(d.lower() for d in self.allowed_domains)
        )
        object.__setattr__(
            self, "blocked_domains", tuple(d.lower() for d in self.blocked_domains)
        )
        if self.max_repository_size <= 0 or self.max_file_size <= 0:
            raise ValueError("Size limits must be positive")

    @classmethod
    def from_dict(cls, data: dict | None) -> "SecurityPolicy":
        """Create from the ``security`` section of a config file."""
        data = data or {}
        return cls(
            allow_http=bool(data.get("allow_http", False)),
            max_repository_size=int(
                data.get("max_repository_size", DEFAULT_MAX_REPOSITORY_SIZE)
            ),
            max_file_size=int(data.get("max_file_size", DEFAULT_MAX_FILE_SIZE)),
            allowed_domains=tuple(data.get("allowed_domains", ()) or ()),
            blocked_domains=tuple(data.get("blocked_domains", ()) or ()),
            require_checksums=bool(data.get("require_checksums", True)),
        )

    def to_dict(self) -> dict:
        """Serialize to dict."""
        return {
            "allow_http": self.allow_http,
            "max_repository_size": self.max_repository_size,
            "max_file_size": self.max_file_size,
            "allowed_domains": list(self.allowed_domains),
            "blocked_domains": list(self.blocked_domains),
            "require_checksums": self.require_checksums,
        }

    def is_domain_blocked(self, host: str) -> bool:
        return host.lower() in self.blocked_domains

    def is_domain_allowed(self, host: str) -> bool:
        if not self.allowed_domains:
            return True
        return host.lower() in self.allowed_domains

    def check_url(self, url: str) -> VerificationResult:
        """Check a URL or local path against the policy.

        Local paths and file URLs are exempt from the transport and
        domain rules.

        Returns:
            VerificationResult; never raises
        """
        result = VerificationResult()

        if not url or not url.strip():
            result.add_error("INVALID_URL", "URL is empty")
            return result

        try:
            parsed = urlparse(url)
        except ValueError as e:
            result.add_error("INVALID_URL", f"Invalid URL format: {e}")
            return result

        if is_local(url):
            return result

        scheme = parsed.scheme.lower()
        if scheme not in SUPPORTED_SCHEMES:
            result.add_error("INVALID_PROTOCOL", f"Unsupported protocol: {scheme}:")
            return result

        host = parsed.hostname or ""
        if not host:
            result.add_error("INVALID_URL", f"URL has no host: {url}")
            return result

        if scheme == "http" and not self.allow_http:
            result.add_error(
                "INSECURE_PROTOCOL", "HTTP protocol not allowed by security policy"
            )

        if self.is_domain_blocked(host):
            result.add_error("BLOCKED_DOMAIN", f"Domain {host} is blocked")

        if not self.is_domain_allowed(host):
            result.add_error(
                "DOMAIN_NOT_ALLOWED", f"Domain {host} is not in allowed list"
            )

        return result

    def exceeds_file_size(self, size: int) -> bool:
        return size > self.max_file_size

    def exceeds_repository_size(self, size: int) -> bool:
        return size > self.max_repository_size

    def check_size(self, size: int, limit_name: str = "file") -> bool:
        """True when ``size`` fits the named limit ('file' or 'repository')."""
        if limit_name == "file":
            return not self.exceeds_file_size(size)
        if limit_name == "repository":
            return not self.exceeds_repository_size(size)
        raise ValueError(f"Unknown size limit: {limit_name}")
