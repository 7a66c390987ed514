"""
State Store module for the monitored domain list.

Persists snapshots of the registry as JSON protected by an HMAC-SHA256, so a
modified or corrupted file is detected on load instead of silently restoring
wrong statuses.
"""

import hashlib
import hmac
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .enums import BlocklistStatus, SecurityStatus
from .exceptions import PersistenceError, TamperingError
from .models import DomainRecord, HistoryEntry, StoredSnapshot


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def record_to_dict(record: DomainRecord) -> dict:
    """Serialize a DomainRecord. The in-flight flag is not persisted."""
    return {
        "id": record.id,
        "name": record.name,
        "security_status": record.security_status.value,
        "blocklist_status": record.blocklist_status.value,
        "last_checked_at": _format_datetime(record.last_checked_at),
        "last_error": record.last_error,
        "created_at": _format_datetime(record.created_at),
        "history": [
            {
                "timestamp": _format_datetime(entry.timestamp),
                "security_status": entry.security_status.value,
                "blocklist_status": entry.blocklist_status.value,
            }
            for entry in record.history
        ],
    }


def record_from_dict(data: dict) -> DomainRecord:
    """
    Deserialize a DomainRecord.

    Raises:
        KeyError, ValueError: If required fields are missing or invalid
    """
    return DomainRecord(
        id=data["id"],
        name=data["name"],
        security_status=SecurityStatus(data["security_status"]),
        blocklist_status=BlocklistStatus(data["blocklist_status"]),
        last_checked_at=_parse_datetime(data.get("last_checked_at")),
        last_error=data.get("last_error"),
        created_at=_parse_datetime(data.get("created_at")),
        history=[
            HistoryEntry(
                timestamp=_parse_datetime(entry["timestamp"]),
                security_status=SecurityStatus(entry["security_status"]),
                blocklist_status=BlocklistStatus(entry["blocklist_status"]),
            )
            for entry in data.get("history", [])
        ],
    )


class StateStore:
    """
    Snapshot storage with HMAC protection.

    The stored document has the form
    ``{"version", "records", "last_updated", "hmac"}`` where the HMAC covers
    the other three fields serialized with sorted keys.
    """

    VERSION = 1

    def __init__(self, file_path: Path, hmac_secret: str) -> None:
        """
        Initialize the state store.

        Args:
            file_path: Path to the snapshot file (JSON format)
            hmac_secret: Secret key for HMAC computation
        """
        self._file_path = Path(file_path)
        self._hmac_secret = hmac_secret.encode("utf-8")
        self._snapshot: Optional[StoredSnapshot] = None

    @property
    def file_path(self) -> Path:
        return self._file_path

    @property
    def snapshot(self) -> Optional[StoredSnapshot]:
        """The snapshot most recently loaded or saved."""
        return self._snapshot

    def load(self) -> Optional[list[DomainRecord]]:
        """
        Load the snapshot and validate its HMAC.

        Returns:
            The stored records, or None if no snapshot file exists

        Raises:
            TamperingError: If HMAC validation fails
            PersistenceError: If the file cannot be read or parsed
        """
        if not self._file_path.exists():
            return None

        try:
            with open(self._file_path, "r", encoding="utf-8") as f:
                raw_data = json.load(f)
        except json.JSONDecodeError as e:
            raise PersistenceError(
                code="parse_error",
                message=f"Failed to parse snapshot file: {e}",
                details={"file_path": str(self._file_path)},
            )
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to read snapshot file: {e}",
                details={"file_path": str(self._file_path)},
            )

        if not isinstance(raw_data, dict):
            raise PersistenceError(
                code="parse_error",
                message="Snapshot file does not contain a JSON object",
                details={"file_path": str(self._file_path)},
            )

        stored_hmac = raw_data.get("hmac", "")
        computed_hmac = self.compute_hmac({
            "version": raw_data.get("version"),
            "records": raw_data.get("records", []),
            "last_updated": raw_data.get("last_updated"),
        })
        if not isinstance(stored_hmac, str) or not self.validate_hmac(stored_hmac, computed_hmac):
            raise TamperingError(
                code="hmac_mismatch",
                message="HMAC validation failed - snapshot may have been tampered with",
                details={"file_path": str(self._file_path)},
            )

        try:
            records = [record_from_dict(item) for item in raw_data.get("records", [])]
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError(
                code="parse_error",
                message=f"Invalid record in snapshot: {e}",
                details={"file_path": str(self._file_path)},
            )

        self._snapshot = StoredSnapshot(
            version=raw_data.get("version", self.VERSION),
            records=records,
            last_updated=raw_data.get("last_updated", ""),
            hmac=stored_hmac,
        )
        return records

    def save(self, records: list[DomainRecord]) -> StoredSnapshot:
        """
        Write a snapshot of ``records``.

        The file is written to a temporary sibling first and then moved into
        place, so a crash never leaves a half-written snapshot behind.

        Raises:
            PersistenceError: If the file cannot be written
        """
        now = datetime.now(timezone.utc).isoformat()
        serialized = [record_to_dict(record) for record in records]
        computed_hmac = self.compute_hmac({
            "version": self.VERSION,
            "records": serialized,
            "last_updated": now,
        })
        output_data = {
            "version": self.VERSION,
            "records": serialized,
            "last_updated": now,
            "hmac": computed_hmac,
        }

        temp_path = self._file_path.with_name(self._file_path.name + ".tmp")
        try:
            self._file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(output_data, f, indent=2, sort_keys=True)
            os.replace(temp_path, self._file_path)
        except OSError as e:
            self._discard(temp_path)
            raise PersistenceError(
                code="io_error",
                message=f"Failed to write snapshot file: {e}",
                details={"file_path": str(self._file_path)},
            )

        self._snapshot = StoredSnapshot(
            version=self.VERSION,
            records=list(records),
            last_updated=now,
            hmac=computed_hmac,
        )
        return self._snapshot

    def compute_hmac(self, data: dict) -> str:
        """Compute the hex HMAC-SHA256 over compact, key-sorted JSON."""
        serialized = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hmac.new(
            self._hmac_secret,
            serialized.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def validate_hmac(self, stored_hmac: str, computed_hmac: str) -> bool:
        """Constant-time HMAC comparison."""
        return hmac.compare_digest(stored_hmac, computed_hmac)

    @staticmethod
    def _discard(temp_path: Path) -> None:
        try:
            temp_path.unlink()
        except OSError:
            # Missing or undeletable; the write error is what gets reported
            pass
