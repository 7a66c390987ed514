"""
Enumeration types for the domain watch system.

These enums provide type-safe constants for verdicts, check kinds,
lifecycle events and logging levels.
"""

from enum import Enum


class SecurityStatus(Enum):
    """Verdict of the hash-prefix threat-matching source."""

    UNKNOWN = "unknown"
    SAFE = "safe"
    UNSAFE = "unsafe"
    PARTIALLY_SAFE = "partially_safe"


class BlocklistStatus(Enum):
    """Verdict of the blocklist lookup source."""

    UNKNOWN = "unknown"
    SAFE = "safe"
    BLACKLISTED = "blacklisted"


class CheckKind(Enum):
    """The verdict source a check result came from."""

    THREAT_MATCH = "threat_match"
    BLOCKLIST = "blocklist"


class SchedulerState(Enum):
    """Sweep state of a check scheduler."""

    IDLE = "idle"
    SWEEPING = "sweeping"


class EventType(Enum):
    """Events reported to the presentation collaborator."""

    DOMAIN_ADDED = "domain_added"
    DOMAIN_REMOVED = "domain_removed"
    CHECK_COMPLETED = "check_completed"
    CHECK_FAILED = "check_failed"
    SWEEP_STARTED = "sweep_started"
    SWEEP_SKIPPED = "sweep_skipped"
    SWEEP_COMPLETED = "sweep_completed"


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class DomainValidationErrorCode(Enum):
    """Error codes for domain normalization failures."""

    EMPTY_INPUT = "empty_input"
    FORBIDDEN_CHARS = "forbidden_chars"
    IDNA_ERROR = "idna_error"
    INVALID_FORMAT = "invalid_format"
