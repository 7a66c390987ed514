"""
Threat-matching client using a hash-prefix lookup protocol.

The client never sends a domain to the upstream service in clear text.
Instead it derives every URL expression the service could have listed for
the domain, hashes each with SHA-256 and sends only 4-byte hash prefixes.
The service answers with candidate full hashes; a domain is declared unsafe
only when one of those candidates equals a locally computed digest.

Verdict policy:
- any confirmed full-hash match -> UNSAFE
- no confirmed match after a successful lookup -> SAFE
- exhausted retries, malformed or unexpected response -> UNKNOWN (never SAFE)
"""

import base64
import binascii
import hashlib
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

from .audit_logger import AuditLogger
from .config import CacheConfig, ThreatMatchConfig
from .enums import CheckKind, LogLevel, SecurityStatus
from .exceptions import ExhaustedRetriesError, ProtocolError
from .models import CheckVerdict
from .transport import RetryingTransport, TransportRequest
from .verdict_cache import VerdictCache

PREFIX_BYTES = 4  # 8 hex characters


def candidate_urls(domain: str) -> list[str]:
    """Build the http/https, bare/www URL variants checked for a domain."""
    hosts = [domain] if domain.startswith("www.") else [domain, f"www.{domain}"]
    return [f"{scheme}://{host}" for host in hosts for scheme in ("http", "https")]


def url_expressions(url: str) -> list[str]:
    """
    Derive the host and path-prefix expressions of a URL.

    ``http://evil.example/a/b/c`` yields ``evil.example``,
    ``evil.example/a``, ``evil.example/a/b`` and ``evil.example/a/b/c``.
    """
    parts = urlsplit(url if "://" in url else f"http://{url}")
    host = (parts.hostname or "").rstrip(".")
    if not host:
        return []

    expressions = [host]
    segments = [segment for segment in parts.path.split("/") if segment]
    for end in range(1, len(segments) + 1):
        expressions.append(host + "/" + "/".join(segments[:end]))
    return expressions


def digest(expression: str) -> bytes:
    """SHA-256 digest of a URL expression."""
    return hashlib.sha256(expression.encode("utf-8")).digest()


def hash_prefix(full_hash: bytes) -> str:
    """The hex lookup prefix of a full digest."""
    return full_hash[:PREFIX_BYTES].hex()


@dataclass
class ExpressionHash:
    """A URL expression with its digest and lookup prefix."""

    expression: str
    full_hash: bytes
    prefix: str


def expression_hashes(domain: str) -> list[ExpressionHash]:
    """All unique expression digests for a domain, in candidate-URL order."""
    seen: set[str] = set()
    hashes = []
    for url in candidate_urls(domain):
        for expression in url_expressions(url):
            if expression in seen:
                continue
            seen.add(expression)
            full = digest(expression)
            hashes.append(ExpressionHash(expression, full, hash_prefix(full)))
    return hashes


class ThreatMatchClient:
    """
    Hash-prefix threat lookup with full-hash confirmation.

    Safe prefixes and confirmed-unsafe full hashes are remembered in the
    injected VerdictCache so repeated checks within the TTL issue no request.
    """

    kind = CheckKind.THREAT_MATCH

    def __init__(
        self,
        transport: RetryingTransport,
        cache: VerdictCache,
        config: Optional[ThreatMatchConfig] = None,
        cache_config: Optional[CacheConfig] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            transport: Shared retrying transport
            cache: Hash-level verdict cache
            config: Endpoint and client identification
            cache_config: Lifetimes for safe prefixes and unsafe full hashes
            logger: Optional audit logger
        """
        self._transport = transport
        self._cache = cache
        self._config = config or ThreatMatchConfig()
        self._cache_config = cache_config or CacheConfig()
        self._logger = logger

    async def check(self, domain: str) -> CheckVerdict:
        """
        Determine whether any expression of ``domain`` is a known threat.

        Args:
            domain: Normalized domain name

        Returns:
            CheckVerdict with a SecurityStatus; ``error`` is set for UNKNOWN
        """
        hashes = expression_hashes(domain)
        local = {item.full_hash: item for item in hashes}

        for item in hashes:
            if self._cache.get(self._full_key(item.full_hash)) is SecurityStatus.UNSAFE:
                self._log_info(
                    f"Cached unsafe match for {domain}",
                    {"domain": domain, "expression": item.expression},
                )
                return CheckVerdict(self.kind, SecurityStatus.UNSAFE, cached=True)

        outstanding = sorted({
            item.prefix for item in hashes
            if self._cache.get(self._prefix_key(item.prefix)) is None
        })
        if not outstanding:
            return CheckVerdict(self.kind, SecurityStatus.SAFE, cached=True)

        try:
            response = await self._transport.execute(self.build_request(outstanding))
            matches = self.parse_matches(response.json())
        except ExhaustedRetriesError as e:
            return self._unknown(domain, f"Threat lookup failed: {e.message}")
        except ValueError as e:
            return self._unknown(domain, f"Malformed threat lookup response: {e}")
        except ProtocolError as e:
            return self._unknown(domain, e.message)

        confirmed = [local[full] for full in self.confirm_matches(matches, local)]
        if confirmed:
            for item in confirmed:
                self._cache.put(
                    self._full_key(item.full_hash),
                    SecurityStatus.UNSAFE,
                    ttl=self._cache_config.unsafe_ttl_seconds,
                )
            self._log(
                LogLevel.WARN,
                f"Confirmed threat match for {domain}",
                {"domain": domain, "expressions": [item.expression for item in confirmed]},
            )
            return CheckVerdict(self.kind, SecurityStatus.UNSAFE)

        for prefix in outstanding:
            self._cache.put(
                self._prefix_key(prefix),
                SecurityStatus.SAFE,
                ttl=self._cache_config.ttl_seconds,
            )
        return CheckVerdict(self.kind, SecurityStatus.SAFE)

    def build_request(self, prefixes: list[str]) -> TransportRequest:
        """
        Build the lookup request for the given hex prefixes.

        The body follows the Safe Browsing v4 ``fullHashes:find`` shape; the
        prefixes travel base64-encoded.
        """
        params = {"key": self._config.api_key} if self._config.api_key else None
        body = {
            "client": {
                "clientId": self._config.client_id,
                "clientVersion": self._config.client_version,
            },
            "clientStates": [],
            "threatInfo": {
                "threatTypes": list(self._config.threat_types),
                "platformTypes": ["ANY_PLATFORM"],
                "threatEntryTypes": ["URL"],
                "threatEntries": [
                    {"hash": base64.b64encode(bytes.fromhex(prefix)).decode("ascii")}
                    for prefix in prefixes
                ],
            },
        }
        return TransportRequest(
            method="POST",
            url=self._config.endpoint,
            headers={"Content-Type": "application/json"},
            params=params,
            json=body,
        )

    @staticmethod
    def parse_matches(payload) -> list[dict]:
        """
        Extract the match list from a lookup response body.

        An empty object means no matches.

        Raises:
            ProtocolError: If the body does not have the expected shape
        """
        if not isinstance(payload, dict):
            raise ProtocolError(
                code="malformed_response",
                message="Threat lookup response is not a JSON object",
            )
        matches = payload.get("matches", [])
        if not isinstance(matches, list) or not all(isinstance(m, dict) for m in matches):
            raise ProtocolError(
                code="malformed_response",
                message="Threat lookup response has an invalid 'matches' field",
            )
        return matches

    @staticmethod
    def confirm_matches(matches: list[dict], local: dict[bytes, ExpressionHash]) -> list[bytes]:
        """
        Return the local digests confirmed by the returned matches.

        A match carries either the full hash (base64) or the threat URL,
        whose full expression is re-hashed locally. A listing for a path under
        the domain does not confirm the domain itself, and a shared prefix
        alone confirms nothing.
        """
        confirmed: list[bytes] = []
        for match in matches:
            threat = match.get("threat")
            if not isinstance(threat, dict):
                continue

            candidates: list[bytes] = []
            if isinstance(threat.get("hash"), str):
                decoded = _decode_hash(threat["hash"])
                if decoded is not None:
                    candidates.append(decoded)
            if isinstance(threat.get("url"), str):
                expressions = url_expressions(threat["url"])
                if expressions:
                    candidates.append(digest(expressions[-1]))

            for candidate in candidates:
                if candidate in local and candidate not in confirmed:
                    confirmed.append(candidate)
        return confirmed

    @staticmethod
    def _full_key(full_hash: bytes) -> str:
        return f"full:{full_hash.hex()}"

    @staticmethod
    def _prefix_key(prefix: str) -> str:
        return f"prefix:{prefix}"

    def _unknown(self, domain: str, reason: str) -> CheckVerdict:
        self._log(LogLevel.ERROR, reason, {"domain": domain})
        return CheckVerdict(self.kind, SecurityStatus.UNKNOWN, error=reason)

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, "ThreatMatchClient", message, data)

    def _log_info(self, message: str, data: dict) -> None:
        self._log(LogLevel.INFO, message, data)


def _decode_hash(value: str) -> Optional[bytes]:
    # Accept both the standard and the URL-safe base64 alphabet
    normalized = value.strip().replace("-", "+").replace("_", "/")
    normalized += "=" * (-len(normalized) % 4)
    try:
        return base64.b64decode(normalized, validate=True)
    except (binascii.Error, ValueError):
        return None
