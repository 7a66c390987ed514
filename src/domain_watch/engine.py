"""
Monitor engine for the domain watch system.

This module wires all components into one facade used by the presentation
layer:
- Domain registry with validation and normalization
- Shared retrying transport with jittered pacing
- Hash-prefix threat matching and blocklist lookup
- Hash-level and per-domain verdict caches
- Check scheduler with periodic sweeps
- Event routing to presentation listeners
- Optional HMAC-protected snapshot persistence
"""

import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Iterable, Optional, Union

import httpx

from .audit_logger import AuditLogger
from .blocklist_client import BlocklistClient
from .config import SystemConfig
from .enums import CheckKind, EventType, LogLevel, SchedulerState
from .events import CallbackListener, EventListener, EventRouter, MonitorEvent
from .exceptions import AlreadyExistsError, PersistenceError, ValidationError
from .models import CheckOutcome, DomainRecord, SweepResult
from .registry import DomainRegistry
from .scheduler import CheckScheduler, result_cache_key
from .state_store import StateStore
from .threat_match_client import ThreatMatchClient
from .transport import RetryingTransport
from .verdict_cache import VerdictCache

SNAPSHOT_LISTENER_NAME = "snapshot"
SWEEP_BATCHED_EVENTS = frozenset({EventType.CHECK_COMPLETED, EventType.CHECK_FAILED})


@dataclass
class BulkAddResult:
    """Outcome of adding several domains at once."""

    added: list[DomainRecord] = field(default_factory=list)
    invalid: list[str] = field(default_factory=list)
    duplicates: list[str] = field(default_factory=list)


class MonitorEngine:
    """
    Facade coordinating the domain watch components.

    Every change applied to the registry is published to the registered
    listeners and, when a StateStore is configured, written to the snapshot.
    Check results inside a sweep are written once, when the sweep completes.
    Persistence is best effort: failures are logged and never raised.
    """

    def __init__(
        self,
        config: Optional[SystemConfig] = None,
        state_store: Optional[StateStore] = None,
        logger: Optional[AuditLogger] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        transport_sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        scheduler_sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        rng: Optional[random.Random] = None,
        cache_clock: Optional[Callable[[], float]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            config: System configuration (defaults apply when omitted)
            state_store: Optional snapshot store
            logger: Optional audit logger
            http_client: Optional httpx client shared by both verdict sources
            transport_sleep: Coroutine used for retry and jitter waits
            scheduler_sleep: Coroutine used between periodic sweeps
            rng: Random source for the transport jitter
            cache_clock: Monotonic clock for both verdict caches
            clock: Source of aware UTC timestamps for records
        """
        self._config = config or SystemConfig()
        self._state_store = state_store
        self._logger = logger
        self._started = False

        self._registry = DomainRegistry(clock=clock, logger=logger)
        self._router = EventRouter(logger=logger)
        self._transport = RetryingTransport(
            config=self._config.retry,
            client=http_client,
            logger=logger,
            sleep=transport_sleep,
            rng=rng,
        )
        self._hash_cache = VerdictCache(self._config.cache.ttl_seconds, clock=cache_clock)
        self._result_cache = VerdictCache(self._config.cache.ttl_seconds, clock=cache_clock)

        self._threat_client = ThreatMatchClient(
            self._transport,
            self._hash_cache,
            config=self._config.threat_match,
            cache_config=self._config.cache,
            logger=logger,
        )
        self._blocklist_client = BlocklistClient(
            self._transport,
            config=self._config.blocklist,
            logger=logger,
        )
        self._scheduler = CheckScheduler(
            self._registry,
            self._threat_client,
            self._blocklist_client,
            self._result_cache,
            config=self._config.scheduler,
            router=self._router,
            logger=logger,
            clock=clock,
            sleep=scheduler_sleep,
            caches=[self._hash_cache],
        )

        if self._state_store is not None:
            self._router.register_listener(
                CallbackListener(self._on_record_event, name=SNAPSHOT_LISTENER_NAME)
            )

    @classmethod
    def from_config(cls, config: SystemConfig) -> "MonitorEngine":
        """Build an engine with the logger and snapshot store described by ``config``."""
        logger = AuditLogger(
            output_format=config.logging.output_format,
            level=config.logging.level,
        )
        state_store = None
        if config.persistence.enabled:
            state_store = StateStore(
                config.persistence.state_file_path,
                config.persistence.hmac_secret,
            )
        return cls(config=config, state_store=state_store, logger=logger)

    async def __aenter__(self) -> "MonitorEngine":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    @property
    def config(self) -> SystemConfig:
        return self._config

    @property
    def registry(self) -> DomainRegistry:
        return self._registry

    @property
    def scheduler(self) -> CheckScheduler:
        return self._scheduler

    @property
    def router(self) -> EventRouter:
        return self._router

    @property
    def hash_cache(self) -> VerdictCache:
        return self._hash_cache

    @property
    def result_cache(self) -> VerdictCache:
        return self._result_cache

    async def start(self) -> None:
        """Restore the saved domain list and start periodic sweeps."""
        if self._started:
            return
        self._restore_snapshot()
        self._scheduler.start()
        self._started = True
        self._log_info("Engine started", {"domains": len(self._registry)})

    async def stop(self) -> None:
        """
        Stop periodic sweeps, let running checks finish and release the
        HTTP client.
        """
        await self._scheduler.stop()
        await self._scheduler.wait_idle()
        await self._transport.aclose()
        self._started = False
        self._log_info("Engine stopped", {})

    async def add_domain(self, name: str) -> DomainRecord:
        """
        Start monitoring a domain.

        The returned record is in the checking state; its first check runs
        in the background.

        Raises:
            ValidationError: If the name is not a usable domain
            AlreadyExistsError: If the domain is already monitored
        """
        record = self._registry.add(name)
        await self._router.publish(MonitorEvent.for_record(EventType.DOMAIN_ADDED, record))
        self._scheduler.notify_domain_added(record.id)
        return record

    async def add_domains(self, entries: Union[str, Iterable[str]]) -> BulkAddResult:
        """
        Add several domains, one per line or one per item.

        Blank entries are ignored. Invalid and already monitored entries are
        collected instead of aborting the batch.
        """
        lines = entries.splitlines() if isinstance(entries, str) else entries
        result = BulkAddResult()
        for line in lines:
            entry = line.strip()
            if not entry:
                continue
            try:
                result.added.append(await self.add_domain(entry))
            except ValidationError:
                result.invalid.append(entry)
            except AlreadyExistsError:
                result.duplicates.append(entry)
        self._log_info(
            "Bulk add finished",
            {
                "added": len(result.added),
                "invalid": len(result.invalid),
                "duplicates": len(result.duplicates),
            },
        )
        return result

    async def remove_domain(self, domain_id: str) -> bool:
        """
        Stop monitoring a domain. A running check for it is not cancelled,
        but its result is discarded.

        Returns:
            True if the domain was registered
        """
        record = self._registry.find(domain_id)
        if record is None or not self._registry.remove(domain_id):
            return False
        for kind in CheckKind:
            self._result_cache.invalidate(result_cache_key(kind, record.name))
        await self._router.publish(MonitorEvent.for_record(EventType.DOMAIN_REMOVED, record))
        return True

    async def check_domain(self, domain_id: str) -> Optional[CheckOutcome]:
        """Check one domain now. Returns None if it is unknown or already being checked."""
        return await self._scheduler.check_one(domain_id)

    async def check_all(self) -> SweepResult:
        return await self._scheduler.check_all()

    def list_domains(self) -> list[DomainRecord]:
        return self._registry.list()

    def get_domain(self, domain_id: str) -> DomainRecord:
        """
        Raises:
            NotFoundError: If the id is not registered
        """
        return self._registry.get(domain_id)

    def find_domain(self, name: str) -> Optional[DomainRecord]:
        return self._registry.find_by_name(name)

    def register_listener(
        self,
        listener: Union[EventListener, Callable[[MonitorEvent], object]],
        name: Optional[str] = None,
    ) -> EventListener:
        """
        Subscribe to engine events.

        Args:
            listener: An EventListener, or a plain or async callable
            name: Listener name when wrapping a callable

        Returns:
            The registered listener
        """
        if not isinstance(listener, EventListener):
            listener = CallbackListener(listener, name=name or getattr(listener, "__name__", "callback"))
        self._router.register_listener(listener)
        return listener

    def unregister_listener(self, name: str) -> bool:
        return self._router.unregister_listener(name)

    def save_snapshot(self) -> bool:
        """
        Write the current domain list to the StateStore.

        Returns:
            True if a snapshot was written
        """
        if self._state_store is None:
            return False
        try:
            self._state_store.save(self._registry.list())
        except PersistenceError as e:
            self._log_error("Failed to save snapshot", e)
            return False
        return True

    def _restore_snapshot(self) -> None:
        if self._state_store is None:
            return
        try:
            records = self._state_store.load()
        except PersistenceError as e:
            self._log_error("Failed to load snapshot; starting with an empty list", e)
            return
        if records and len(self._registry) == 0:
            restored = self._registry.restore(records)
            self._log_info("Restored domains from snapshot", {"domains": restored})

    def _on_record_event(self, event: MonitorEvent) -> bool:
        # Check results inside a sweep are written once, when the sweep completes
        if event.domain_id is None:
            if event.type is EventType.SWEEP_COMPLETED:
                return self.save_snapshot()
            return True
        if event.type in SWEEP_BATCHED_EVENTS and self._scheduler.state is SchedulerState.SWEEPING:
            return True
        return self.save_snapshot()

    def _log_info(self, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(LogLevel.INFO, "MonitorEngine", message, data)

    def _log_error(self, message: str, error: Exception) -> None:
        if self._logger:
            self._logger.log_error("MonitorEngine", message, error=error)
