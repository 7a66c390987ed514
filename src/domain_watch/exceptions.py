"""
Exception classes for the domain watch system.

All exceptions inherit from DomainWatchError and carry a machine-readable
code, a human-readable message, and optional details.
"""

from typing import Optional


class DomainWatchError(Exception):
    """Base exception for all domain watch errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(DomainWatchError):
    """Raised when a domain name cannot be normalized into a usable form."""

    pass


class AlreadyExistsError(DomainWatchError):
    """Raised when adding a domain that is already monitored."""

    def __init__(self, name: str, existing_id: str) -> None:
        super().__init__(
            code="already_exists",
            message=f"Domain is already monitored: {name}",
            details={"name": name, "existing_id": existing_id},
        )
        self.name = name
        self.existing_id = existing_id


class NotFoundError(DomainWatchError):
    """Raised by explicit lookups of a domain id that is not registered."""

    def __init__(self, domain_id: str) -> None:
        super().__init__(
            code="not_found",
            message=f"No monitored domain with id: {domain_id}",
            details={"domain_id": domain_id},
        )
        self.domain_id = domain_id


class NetworkError(DomainWatchError):
    """Raised when a single outbound request fails."""

    pass


class ExhaustedRetriesError(NetworkError):
    """Raised when every attempt of a retried request failed."""

    def __init__(
        self,
        url: str,
        attempts: int,
        last_status_code: Optional[int] = None,
        last_error: Optional[str] = None,
    ) -> None:
        if last_status_code is not None:
            reason = f"HTTP {last_status_code}"
        else:
            reason = last_error or "unknown error"
        super().__init__(
            code="exhausted_retries",
            message=f"Request failed after {attempts} attempts: {reason}",
            details={
                "url": url,
                "attempts": attempts,
                "last_status_code": last_status_code,
                "last_error": last_error,
            },
        )
        self.url = url
        self.attempts = attempts
        self.last_status_code = last_status_code
        self.last_error = last_error


class ProtocolError(DomainWatchError):
    """Raised when an upstream response is malformed or has an unexpected shape."""

    pass


class PersistenceError(DomainWatchError):
    """Raised when snapshot persistence fails (file I/O, parsing)."""

    pass


class TamperingError(PersistenceError):
    """Raised when HMAC validation of a snapshot fails."""

    pass


class ConfigurationError(DomainWatchError):
    """Raised when a configuration file or environment cannot be used."""

    pass
