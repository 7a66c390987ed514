"""
Domain Watch - Threat monitoring for a list of domain names.

This package keeps a list of monitored domains and periodically checks each
against a hash-prefix threat-matching service and a blocklist lookup, with
jittered retries, verdict caching and non-overlapping sweeps.
"""

__version__ = "0.1.0"
__author__ = "Domain Watch Team"

from domain_watch.exceptions import (
    DomainWatchError,
    ValidationError,
    AlreadyExistsError,
    NotFoundError,
    NetworkError,
    ExhaustedRetriesError,
    ProtocolError,
    PersistenceError,
    TamperingError,
    ConfigurationError,
)
from domain_watch.enums import (
    SecurityStatus,
    BlocklistStatus,
    CheckKind,
    SchedulerState,
    EventType,
    LogLevel,
    DomainValidationErrorCode,
)
from domain_watch.models import (
    MAX_HISTORY_ENTRIES,
    HistoryEntry,
    DomainRecord,
    CacheEntry,
    CheckVerdict,
    CheckOutcome,
    SweepResult,
    StoredSnapshot,
)
from domain_watch.config import (
    RetryConfig,
    CacheConfig,
    ThreatMatchConfig,
    BlocklistConfig,
    SchedulerConfig,
    PersistenceConfig,
    LoggingConfig,
    SystemConfig,
    create_default_config,
    load_config_from_file,
    load_config_from_env,
    save_config_to_file,
)
from domain_watch.audit_logger import (
    AuditLogger,
    LogEntry,
)
from domain_watch.domain_validator import (
    DomainValidator,
    DomainValidationResult,
    DomainValidationError,
)
from domain_watch.transport import (
    RetryingTransport,
    TransportRequest,
)
from domain_watch.verdict_cache import (
    VerdictCache,
)
from domain_watch.threat_match_client import (
    ThreatMatchClient,
)
from domain_watch.blocklist_client import (
    BlocklistClient,
)
from domain_watch.registry import (
    DomainRegistry,
)
from domain_watch.events import (
    MonitorEvent,
    DeliveryResult,
    EventListener,
    CallbackListener,
    WebhookListener,
    EventRouter,
)
from domain_watch.scheduler import (
    CheckScheduler,
)
from domain_watch.state_store import (
    StateStore,
)
from domain_watch.engine import (
    MonitorEngine,
    BulkAddResult,
)

__all__ = [
    # Exceptions
    "DomainWatchError",
    "ValidationError",
    "AlreadyExistsError",
    "NotFoundError",
    "NetworkError",
    "ExhaustedRetriesError",
    "ProtocolError",
    "PersistenceError",
    "TamperingError",
    "ConfigurationError",
    # Enums
    "SecurityStatus",
    "BlocklistStatus",
    "CheckKind",
    "SchedulerState",
    "EventType",
    "LogLevel",
    "DomainValidationErrorCode",
    # Models
    "MAX_HISTORY_ENTRIES",
    "HistoryEntry",
    "DomainRecord",
    "CacheEntry",
    "CheckVerdict",
    "CheckOutcome",
    "SweepResult",
    "StoredSnapshot",
    # Configuration
    "RetryConfig",
    "CacheConfig",
    "ThreatMatchConfig",
    "BlocklistConfig",
    "SchedulerConfig",
    "PersistenceConfig",
    "LoggingConfig",
    "SystemConfig",
    "create_default_config",
    "load_config_from_file",
    "load_config_from_env",
    "save_config_to_file",
    # Audit Logger
    "AuditLogger",
    "LogEntry",
    # Domain Validator
    "DomainValidator",
    "DomainValidationResult",
    "DomainValidationError",
    # Transport
    "RetryingTransport",
    "TransportRequest",
    # Cache
    "VerdictCache",
    # Verdict sources
    "ThreatMatchClient",
    "BlocklistClient",
    # Registry
    "DomainRegistry",
    # Events
    "MonitorEvent",
    "DeliveryResult",
    "EventListener",
    "CallbackListener",
    "WebhookListener",
    "EventRouter",
    # Scheduler
    "CheckScheduler",
    # State Store
    "StateStore",
    # Engine
    "MonitorEngine",
    "BulkAddResult",
]
