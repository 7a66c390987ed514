"""
Domain registry for the domain watch system.

The registry is the only component that mutates DomainRecord state. Every
operation is a synchronous read-modify-write over a single record, so on one
asyncio event loop each operation is atomic with respect to the others.
Callers always receive copies; records held by the registry are never handed
out.
"""

import copy
import uuid
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from .audit_logger import AuditLogger
from .domain_validator import DomainValidator
from .enums import BlocklistStatus, SecurityStatus
from .exceptions import AlreadyExistsError, NotFoundError
from .models import MAX_HISTORY_ENTRIES, DomainRecord, HistoryEntry


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DomainRegistry:
    """
    Owns the set of monitored domains and their check lifecycle state.

    Invariants maintained here:
    - at most one record per normalized name
    - history holds at most MAX_HISTORY_ENTRIES entries, oldest evicted first
    - a history entry is appended only when the status pair changes
    - ``last_checked_at`` never moves backwards
    - updates for ids that are no longer registered are discarded
    """

    def __init__(
        self,
        validator: Optional[DomainValidator] = None,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize an empty registry.

        Args:
            validator: Normalizer for incoming names
            clock: Source of aware UTC timestamps for created_at
            logger: Optional audit logger
        """
        self._validator = validator or DomainValidator()
        self._clock = clock or _utc_now
        self._logger = logger
        self._records: dict[str, DomainRecord] = {}

    def add(self, name: str) -> DomainRecord:
        """
        Register a new domain.

        The record starts as UNKNOWN/UNKNOWN with ``is_checking=True`` since
        its first check is expected to follow immediately.

        Args:
            name: Raw domain input (normalized before storing)

        Returns:
            Copy of the created record

        Raises:
            ValidationError: If the name cannot be normalized
            AlreadyExistsError: If the normalized name is already registered
        """
        normalized = self._validator.normalize(name)
        existing = self._find_by_normalized(normalized)
        if existing is not None:
            raise AlreadyExistsError(normalized, existing.id)

        record = DomainRecord(
            id=uuid.uuid4().hex,
            name=normalized,
            is_checking=True,
            created_at=self._clock(),
        )
        self._records[record.id] = record
        self._log_info(f"Domain added: {normalized}", {"domain_id": record.id, "domain": normalized})
        return copy.deepcopy(record)

    def remove(self, domain_id: str) -> bool:
        """
        Remove a domain. Removing an unknown id is a no-op.

        Returns:
            True if a record was removed
        """
        record = self._records.pop(domain_id, None)
        if record is None:
            return False
        self._log_info(f"Domain removed: {record.name}", {"domain_id": domain_id, "domain": record.name})
        return True

    def update_status(
        self,
        domain_id: str,
        security_status: SecurityStatus,
        blocklist_status: BlocklistStatus,
        timestamp: Optional[datetime] = None,
    ) -> Optional[DomainRecord]:
        """
        Apply a completed check to a domain.

        Args:
            domain_id: Record id
            security_status: New threat-match verdict
            blocklist_status: New blocklist verdict
            timestamp: Completion time (defaults to now)

        Returns:
            Copy of the updated record, or None if the id is not registered
        """
        record = self._records.get(domain_id)
        if record is None:
            return None

        when = timestamp or self._clock()
        new_pair = (security_status, blocklist_status)
        if record.history:
            last = record.history[-1]
            previous_pair = (last.security_status, last.blocklist_status)
        else:
            previous_pair = record.status_pair

        if new_pair != previous_pair:
            record.history.append(HistoryEntry(when, security_status, blocklist_status))
            if len(record.history) > MAX_HISTORY_ENTRIES:
                del record.history[: len(record.history) - MAX_HISTORY_ENTRIES]

        record.security_status = security_status
        record.blocklist_status = blocklist_status
        if record.last_checked_at is None or when > record.last_checked_at:
            record.last_checked_at = when
        record.is_checking = False
        record.last_error = None
        return copy.deepcopy(record)

    def mark_failed(self, domain_id: str, reason: str) -> Optional[DomainRecord]:
        """
        Record a failed check. Statuses keep their previous values.

        Returns:
            Copy of the updated record, or None if the id is not registered
        """
        record = self._records.get(domain_id)
        if record is None:
            return None
        record.is_checking = False
        record.last_error = reason
        return copy.deepcopy(record)

    def mark_checking(self, domain_id: str) -> Optional[DomainRecord]:
        """Flag a domain as having a check in flight."""
        record = self._records.get(domain_id)
        if record is None:
            return None
        record.is_checking = True
        return copy.deepcopy(record)

    def list(self) -> list[DomainRecord]:
        """Copies of all records in insertion order."""
        return [copy.deepcopy(record) for record in self._records.values()]

    def get(self, domain_id: str) -> DomainRecord:
        """
        Get a copy of a record.

        Raises:
            NotFoundError: If the id is not registered
        """
        record = self._records.get(domain_id)
        if record is None:
            raise NotFoundError(domain_id)
        return copy.deepcopy(record)

    def find(self, domain_id: str) -> Optional[DomainRecord]:
        record = self._records.get(domain_id)
        return copy.deepcopy(record) if record is not None else None

    def find_by_name(self, name: str) -> Optional[DomainRecord]:
        """Look up a record by raw or normalized name; invalid names find nothing."""
        result = self._validator.validate(name)
        if not result.valid:
            return None
        record = self._find_by_normalized(result.canonical_domain)
        return copy.deepcopy(record) if record is not None else None

    def restore(self, records: Iterable[DomainRecord]) -> int:
        """
        Replace the registry contents with previously saved records.

        Duplicate names keep the first occurrence, history is clamped to the
        most recent entries and no record is left in the checking state.

        Returns:
            Number of records restored
        """
        self._records.clear()
        seen: set[str] = set()
        for saved in records:
            name = saved.name.lower()
            if name in seen or saved.id in self._records:
                self._log_info(f"Skipping duplicate snapshot entry: {name}", {"domain_id": saved.id})
                continue
            seen.add(name)
            record = copy.deepcopy(saved)
            record.name = name
            record.is_checking = False
            record.history = record.history[-MAX_HISTORY_ENTRIES:]
            self._records[record.id] = record
        return len(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, domain_id: object) -> bool:
        return domain_id in self._records

    def _find_by_normalized(self, normalized: str) -> Optional[DomainRecord]:
        for record in self._records.values():
            if record.name == normalized:
                return record
        return None

    def _log_info(self, message: str, data: dict) -> None:
        if self._logger:
            self._logger.info("DomainRegistry", message, data)
