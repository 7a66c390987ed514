"""
Check scheduler for the domain watch system.

Drives single-domain checks and full sweeps:

- ``check_one`` runs both verdict sources for one domain concurrently and
  hands the outcome to the registry. A domain never has more than one check
  in flight.
- ``check_all`` walks a snapshot of the registry one domain at a time. Only
  one sweep runs at a time; a second request while sweeping is reported as
  skipped rather than queued.
- ``start`` launches the periodic sweep loop and, when domains are already
  registered, an initial sweep.
"""

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Optional, Protocol

from .audit_logger import AuditLogger
from .config import SchedulerConfig
from .enums import (
    BlocklistStatus,
    CheckKind,
    EventType,
    LogLevel,
    SchedulerState,
    SecurityStatus,
)
from .events import EventRouter, MonitorEvent
from .models import CheckOutcome, CheckVerdict, SweepResult
from .registry import DomainRegistry
from .verdict_cache import VerdictCache

SWEEP_ALREADY_RUNNING = "sweep_already_running"

UNKNOWN_STATUS = {
    CheckKind.THREAT_MATCH: SecurityStatus.UNKNOWN,
    CheckKind.BLOCKLIST: BlocklistStatus.UNKNOWN,
}


class VerdictSource(Protocol):
    """A client producing one kind of verdict for a domain."""

    kind: CheckKind

    async def check(self, domain: str) -> CheckVerdict:
        ...


def result_cache_key(kind: CheckKind, domain: str) -> str:
    """Key of a per-domain verdict in the result cache."""
    return f"{kind.value}:{domain}"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CheckScheduler:
    """Schedules and runs domain checks without overlapping work."""

    def __init__(
        self,
        registry: DomainRegistry,
        threat_source: VerdictSource,
        blocklist_source: VerdictSource,
        result_cache: VerdictCache,
        config: Optional[SchedulerConfig] = None,
        router: Optional[EventRouter] = None,
        logger: Optional[AuditLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        caches: Iterable[VerdictCache] = (),
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            registry: Registry receiving check outcomes
            threat_source: Hash-prefix threat-matching client
            blocklist_source: Blocklist lookup client
            result_cache: Per-domain verdict cache consulted before each source
            config: Interval and bootstrap behavior
            router: Event router for presentation listeners
            logger: Optional audit logger
            clock: Source of aware UTC timestamps
            sleep: Coroutine used by the periodic loop (defaults to asyncio.sleep)
            caches: Further caches purged of expired entries after every sweep
        """
        self._registry = registry
        self._sources = (threat_source, blocklist_source)
        self._result_cache = result_cache
        self._caches = [result_cache, *caches]
        self._config = config or SchedulerConfig()
        self._router = router
        self._logger = logger
        self._clock = clock or _utc_now
        self._sleep = sleep or asyncio.sleep

        self._state = SchedulerState.IDLE
        self._in_flight: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        self._periodic_task: Optional[asyncio.Task] = None
        self._bootstrapped = False

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        """True while the periodic loop is active."""
        return self._periodic_task is not None and not self._periodic_task.done()

    def is_in_flight(self, domain_id: str) -> bool:
        return domain_id in self._in_flight

    async def check_one(self, domain_id: str) -> Optional[CheckOutcome]:
        """
        Check a single domain against both verdict sources.

        If either source fails, the domain keeps its previous statuses and
        records the failure reason. If the domain is removed while the check
        is running, the outcome is discarded.

        Args:
            domain_id: Id of the domain to check

        Returns:
            The CheckOutcome, or None if the id is unknown or a check for it
            is already running
        """
        if domain_id in self._in_flight:
            return None
        record = self._registry.mark_checking(domain_id)
        if record is None:
            return None

        self._in_flight.add(domain_id)
        try:
            results = await asyncio.gather(
                *(self._run_source(source, record.name) for source in self._sources),
                return_exceptions=True,
            )
        except asyncio.CancelledError:
            self._registry.mark_failed(domain_id, "check cancelled")
            raise
        finally:
            self._in_flight.discard(domain_id)

        verdicts = [
            self._as_verdict(source, result) for source, result in zip(self._sources, results)
        ]
        threat, blocklist = verdicts
        errors = [verdict.error for verdict in verdicts if verdict.error]

        if errors:
            reason = "; ".join(errors)
            updated = self._registry.mark_failed(domain_id, reason)
        else:
            reason = None
            updated = self._registry.update_status(
                domain_id, threat.status, blocklist.status, self._clock()
            )

        if updated is None:
            self._log(
                LogLevel.INFO,
                f"Discarding check result for removed domain {record.name}",
                {"domain_id": domain_id},
            )
            return CheckOutcome(
                domain_id=domain_id,
                domain=record.name,
                security_status=threat.status,
                blocklist_status=blocklist.status,
                succeeded=not errors,
                error=reason,
                applied=False,
                verdicts=verdicts,
            )

        if errors:
            self._log(LogLevel.WARN, f"Check failed for {record.name}", {"domain_id": domain_id, "error": reason})
            await self._publish(MonitorEvent.for_record(EventType.CHECK_FAILED, updated))
        else:
            await self._publish(MonitorEvent.for_record(EventType.CHECK_COMPLETED, updated))

        return CheckOutcome(
            domain_id=domain_id,
            domain=updated.name,
            security_status=updated.security_status,
            blocklist_status=updated.blocklist_status,
            succeeded=not errors,
            error=reason,
            verdicts=verdicts,
        )

    async def check_all(self) -> SweepResult:
        """
        Sweep every registered domain, one after another.

        Returns:
            SweepResult with one outcome per domain actually checked, or a
            skipped result if a sweep is already running
        """
        if self._state is SchedulerState.SWEEPING:
            self._log(LogLevel.INFO, "Sweep requested while another is running; skipping", {})
            await self._publish(MonitorEvent.for_sweep(EventType.SWEEP_SKIPPED, {"reason": SWEEP_ALREADY_RUNNING}))
            return SweepResult(skipped=True, reason=SWEEP_ALREADY_RUNNING)

        self._state = SchedulerState.SWEEPING
        started_at = self._clock()
        outcomes: list[CheckOutcome] = []
        try:
            snapshot = self._registry.list()
            self._log(LogLevel.INFO, "Sweep started", {"domains": len(snapshot)})
            await self._publish(MonitorEvent.for_sweep(EventType.SWEEP_STARTED, {"domains": len(snapshot)}))
            for record in snapshot:
                outcome = await self.check_one(record.id)
                if outcome is not None:
                    outcomes.append(outcome)
        finally:
            self._state = SchedulerState.IDLE
            self._purge_caches()

        result = SweepResult(
            skipped=False,
            started_at=started_at,
            finished_at=self._clock(),
            outcomes=outcomes,
        )
        self._log(
            LogLevel.INFO,
            "Sweep completed",
            {"checked": result.checked, "failed": result.failed},
        )
        await self._publish(
            MonitorEvent.for_sweep(
                EventType.SWEEP_COMPLETED,
                {"checked": result.checked, "failed": result.failed},
            )
        )
        return result

    def start(self) -> None:
        """
        Start the periodic sweep loop.

        Must be called from a running event loop. If domains are already
        registered an initial sweep is started right away.
        """
        if self.is_running:
            return
        self._periodic_task = asyncio.create_task(self._run_periodic())
        if len(self._registry) > 0 and not self._bootstrapped:
            self._bootstrapped = True
            if self._config.bootstrap_sweep:
                self._spawn(self.check_all())

    async def stop(self) -> None:
        """Cancel the periodic loop. Checks already running finish on their own."""
        task, self._periodic_task = self._periodic_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            self._report_crash("Periodic loop ended with an error", e)

    def notify_domain_added(self, domain_id: str) -> asyncio.Task:
        """
        React to a newly added domain.

        The first domain ever added triggers a full sweep; later additions
        are checked on their own.

        Returns:
            The background task running the check
        """
        first = not self._bootstrapped
        self._bootstrapped = True
        if first and self._config.bootstrap_sweep and self._state is SchedulerState.IDLE:
            return self._spawn(self.check_all())
        return self._spawn(self.check_one(domain_id))

    async def wait_idle(self) -> None:
        """Wait until every background check started by the scheduler is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run_periodic(self) -> None:
        while True:
            await self._sleep(self._config.interval_seconds)
            try:
                await self.check_all()
            except Exception as e:
                # A failed sweep never ends the loop
                self._report_crash("Periodic sweep failed", e)

    async def _run_source(self, source: VerdictSource, domain: str) -> CheckVerdict:
        key = result_cache_key(source.kind, domain)
        cached = self._result_cache.get(key)
        if cached is not None:
            return CheckVerdict(source.kind, cached, cached=True)

        verdict = await source.check(domain)
        if verdict.ok:
            self._result_cache.put(key, verdict.status)
        return verdict

    def _as_verdict(self, source: VerdictSource, result) -> CheckVerdict:
        if isinstance(result, CheckVerdict):
            return result
        # The source raised instead of returning an UNKNOWN verdict
        return CheckVerdict(
            source.kind,
            UNKNOWN_STATUS[source.kind],
            error=f"{type(result).__name__}: {result}",
        )

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._report_crash("Background check crashed", error)

    def _purge_caches(self) -> None:
        removed = sum(cache.purge_expired() for cache in self._caches)
        if removed:
            self._log(LogLevel.DEBUG, "Purged expired cache entries", {"removed": removed})

    def _report_crash(self, message: str, error: Exception) -> None:
        if not self._logger:
            return
        try:
            self._logger.log_error("CheckScheduler", message, error=error)
        except OSError:
            # The log stream itself is broken; there is nowhere left to report
            pass

    async def _publish(self, event: MonitorEvent) -> None:
        if self._router is not None:
            await self._router.publish(event)

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, "CheckScheduler", message, data)

