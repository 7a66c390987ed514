"""
Blocklist lookup client.

Fetches the public lookup page of the blocklist provider and classifies the
domain from its content. The page is HTML meant for humans, so the parsing
strategy is kept in one place (``classify``) and can be replaced without
touching the retry or caching logic.
"""

from typing import Optional

from .audit_logger import AuditLogger
from .config import BlocklistConfig
from .enums import BlocklistStatus, CheckKind
from .exceptions import ExhaustedRetriesError
from .models import CheckVerdict
from .transport import RetryingTransport, TransportRequest


class BlocklistClient:
    """Query the blocklist lookup page for a domain."""

    kind = CheckKind.BLOCKLIST

    def __init__(
        self,
        transport: RetryingTransport,
        config: Optional[BlocklistConfig] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._transport = transport
        self._config = config or BlocklistConfig()
        self._logger = logger

    def build_request(self, domain: str) -> TransportRequest:
        """Build the GET request for the lookup page of ``domain``."""
        return TransportRequest(
            method="GET",
            url=self._config.url_template.format(domain=domain),
            headers=dict(self._config.headers),
        )

    def classify(self, page_text: str) -> BlocklistStatus:
        """
        Classify a lookup page.

        The page is SAFE when it contains the "not listed" indicator
        (case-insensitive) and BLACKLISTED otherwise.
        """
        if self._config.not_listed_indicator.lower() in page_text.lower():
            return BlocklistStatus.SAFE
        return BlocklistStatus.BLACKLISTED

    async def check(self, domain: str) -> CheckVerdict:
        """
        Look up ``domain`` on the blocklist.

        Args:
            domain: Normalized domain name

        Returns:
            CheckVerdict with a BlocklistStatus; a transport failure yields
            UNKNOWN with ``error`` set, never SAFE
        """
        request = self.build_request(domain)
        try:
            response = await self._transport.execute(request)
        except ExhaustedRetriesError as e:
            reason = f"Blocklist lookup failed: {e.message}"
            if self._logger:
                self._logger.log_error(
                    "BlocklistClient",
                    reason,
                    error=e,
                    request_url=request.url,
                    response_status_code=e.last_status_code,
                )
            return CheckVerdict(self.kind, BlocklistStatus.UNKNOWN, error=reason)

        status = self.classify(response.text)
        if self._logger:
            self._logger.info(
                "BlocklistClient",
                f"Blocklist verdict for {domain}: {status.value}",
                {"domain": domain, "status": status.value},
            )
        return CheckVerdict(self.kind, status)
