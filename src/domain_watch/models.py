"""
Data models for the domain watch system.

This module defines the monitored domain record, its bounded status history,
cache entries, per-source verdicts, and check/sweep outcomes.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Union

from .enums import BlocklistStatus, CheckKind, SecurityStatus

# Maximum number of history entries kept per domain
MAX_HISTORY_ENTRIES = 20

Verdict = Union[SecurityStatus, BlocklistStatus]


@dataclass(frozen=True)
class HistoryEntry:
    """A recorded change of a domain's status pair."""

    timestamp: datetime
    security_status: SecurityStatus
    blocklist_status: BlocklistStatus


@dataclass
class DomainRecord:
    """A monitored domain and its check lifecycle state."""

    id: str
    name: str  # Normalized form (lowercase, no scheme, no www., no trailing slash)
    security_status: SecurityStatus = SecurityStatus.UNKNOWN
    blocklist_status: BlocklistStatus = BlocklistStatus.UNKNOWN
    last_checked_at: Optional[datetime] = None
    is_checking: bool = False
    last_error: Optional[str] = None
    history: list[HistoryEntry] = field(default_factory=list)
    created_at: Optional[datetime] = None

    @property
    def status_pair(self) -> tuple[SecurityStatus, BlocklistStatus]:
        """The current (security, blocklist) verdict pair."""
        return self.security_status, self.blocklist_status


@dataclass
class CacheEntry:
    """A single verdict stored in a VerdictCache."""

    key: str
    verdict: object
    stored_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        """Check whether the entry has outlived its TTL."""
        return now >= self.expires_at


@dataclass
class CheckVerdict:
    """Result from a single verdict source (threat match or blocklist)."""

    kind: CheckKind
    status: Verdict
    error: Optional[str] = None  # Set when the source could not decide
    cached: bool = False

    @property
    def ok(self) -> bool:
        """True when the source produced a definitive verdict."""
        return self.error is None


@dataclass
class CheckOutcome:
    """Outcome of one completed single-domain check."""

    domain_id: str
    domain: str
    security_status: SecurityStatus
    blocklist_status: BlocklistStatus
    succeeded: bool
    error: Optional[str] = None
    applied: bool = True  # False when the domain was removed mid-check
    verdicts: list[CheckVerdict] = field(default_factory=list)


@dataclass
class SweepResult:
    """Outcome of a full sweep over all monitored domains."""

    skipped: bool
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    outcomes: list[CheckOutcome] = field(default_factory=list)
    reason: Optional[str] = None  # Why the sweep was skipped

    @property
    def checked(self) -> int:
        """Number of domains a check actually ran for."""
        return len(self.outcomes)

    @property
    def failed(self) -> int:
        """Number of checks that ended with an error."""
        return sum(1 for outcome in self.outcomes if not outcome.succeeded)


@dataclass
class StoredSnapshot:
    """Persisted snapshot of the domain list with HMAC protection."""

    version: int
    records: list[DomainRecord]
    last_updated: str
    hmac: str  # HMAC-SHA256 over json.dumps(payload, sort_keys=True)
