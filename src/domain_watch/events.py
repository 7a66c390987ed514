"""
Event routing for the domain watch system.

The presentation layer is not part of this package. Whatever renders the
domain list subscribes here instead: the engine publishes a MonitorEvent for
every applied change, and the router hands it to each registered listener.
A failing listener is logged and skipped; it never affects the check that
produced the event or the remaining listeners.
"""

import inspect
from abc import abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Protocol, Union, runtime_checkable

import httpx

from .audit_logger import AuditLogger
from .enums import BlocklistStatus, EventType, SecurityStatus
from .models import DomainRecord


@dataclass
class MonitorEvent:
    """A change reported to presentation listeners."""

    type: EventType
    timestamp: datetime
    domain_id: Optional[str] = None
    domain: Optional[str] = None
    security_status: Optional[SecurityStatus] = None
    blocklist_status: Optional[BlocklistStatus] = None
    last_checked_at: Optional[datetime] = None
    last_error: Optional[str] = None
    data: dict = field(default_factory=dict)

    @classmethod
    def for_record(
        cls,
        event_type: EventType,
        record: DomainRecord,
        data: Optional[dict] = None,
    ) -> "MonitorEvent":
        """Build an event carrying the visible fields of a domain record."""
        return cls(
            type=event_type,
            timestamp=datetime.now(timezone.utc),
            domain_id=record.id,
            domain=record.name,
            security_status=record.security_status,
            blocklist_status=record.blocklist_status,
            last_checked_at=record.last_checked_at,
            last_error=record.last_error,
            data=data or {},
        )

    @classmethod
    def for_sweep(cls, event_type: EventType, data: Optional[dict] = None) -> "MonitorEvent":
        return cls(type=event_type, timestamp=datetime.now(timezone.utc), data=data or {})

    def to_dict(self) -> dict:
        """Convert to a JSON-serializable dictionary."""
        return {
            "type": self.type.value,
            "timestamp": self.timestamp.isoformat(),
            "domain_id": self.domain_id,
            "domain": self.domain,
            "security_status": self.security_status.value if self.security_status else None,
            "blocklist_status": self.blocklist_status.value if self.blocklist_status else None,
            "last_checked_at": self.last_checked_at.isoformat() if self.last_checked_at else None,
            "last_error": self.last_error,
            "data": self.data,
        }


@dataclass
class DeliveryResult:
    """Result of delivering one event to one listener."""

    listener: str
    success: bool
    error: Optional[str] = None


@runtime_checkable
class EventListener(Protocol):
    """Protocol defining the interface for event listeners."""

    @abstractmethod
    async def handle(self, event: MonitorEvent) -> bool:
        """
        Handle an event.

        Returns:
            True if the event was handled successfully
        """
        ...

    @abstractmethod
    def get_name(self) -> str:
        ...


EventCallback = Callable[[MonitorEvent], Union[None, bool, Awaitable[Optional[bool]]]]


class CallbackListener:
    """Adapts a plain or async callable into an EventListener."""

    def __init__(self, callback: EventCallback, name: str = "callback") -> None:
        self._callback = callback
        self._name = name

    async def handle(self, event: MonitorEvent) -> bool:
        result = self._callback(event)
        if inspect.isawaitable(result):
            result = await result
        return result is not False

    def get_name(self) -> str:
        return self._name


class WebhookListener:
    """Posts each event as JSON to an HTTP endpoint."""

    def __init__(
        self,
        url: str,
        headers: Optional[dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        """
        Initialize the webhook listener.

        Args:
            url: Endpoint receiving the events
            headers: Extra request headers (e.g. authorization)
            client: Optional shared httpx client; a short-lived one is used otherwise
            timeout_seconds: Request timeout
        """
        self._url = url
        self._headers = dict(headers or {})
        self._client = client
        self._timeout = timeout_seconds

    async def handle(self, event: MonitorEvent) -> bool:
        headers = {"Content-Type": "application/json"}
        headers.update(self._headers)

        if self._client is not None:
            return await self._post(self._client, event, headers)
        async with httpx.AsyncClient() as client:
            return await self._post(client, event, headers)

    async def _post(self, client: httpx.AsyncClient, event: MonitorEvent, headers: dict) -> bool:
        try:
            response = await client.post(
                self._url,
                json=event.to_dict(),
                headers=headers,
                timeout=self._timeout,
            )
        except httpx.HTTPError:
            return False
        return response.is_success

    def get_name(self) -> str:
        return "webhook"


class EventRouter:
    """Delivers events to the registered listeners in registration order."""

    def __init__(self, logger: Optional[AuditLogger] = None) -> None:
        self._listeners: list[EventListener] = []
        self._logger = logger

    def register_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def unregister_listener(self, name: str) -> bool:
        """
        Unregister the first listener with the given name.

        Returns:
            True if a listener was found and removed
        """
        for i, listener in enumerate(self._listeners):
            if listener.get_name() == name:
                self._listeners.pop(i)
                return True
        return False

    @property
    def listeners(self) -> list[EventListener]:
        return self._listeners.copy()

    async def publish(self, event: MonitorEvent) -> list[DeliveryResult]:
        """
        Deliver an event to every listener.

        Listener exceptions are caught and logged so one broken subscriber
        cannot interrupt the others or the caller.

        Returns:
            One DeliveryResult per listener
        """
        results = []
        for listener in list(self._listeners):
            name = listener.get_name()
            try:
                handled = await listener.handle(event)
            except Exception as e:
                self._log_failure(name, event, e)
                results.append(DeliveryResult(name, False, f"{type(e).__name__}: {e}"))
                continue

            if not handled:
                self._log_failure(name, event, None)
            results.append(DeliveryResult(name, bool(handled)))
        return results

    def _log_failure(self, name: str, event: MonitorEvent, error: Optional[Exception]) -> None:
        if self._logger:
            self._logger.log_error(
                "EventRouter",
                f"Listener '{name}' failed to handle {event.type.value}",
                error=error,
                additional_data={"listener": name, "domain": event.domain},
            )
