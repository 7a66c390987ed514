"""
Property-based tests for the hash-prefix threat-matching client.

The upstream service is replaced by ``httpx.MockTransport`` handlers that
answer the ``fullHashes:find`` request with scripted matches.
"""

import asyncio
import base64
import json
import random

import httpx
from hypothesis import given, settings
from hypothesis import strategies as st

from domain_watch.config import CacheConfig, RetryConfig, ThreatMatchConfig
from domain_watch.enums import SecurityStatus
from domain_watch.threat_match_client import (
    ThreatMatchClient,
    candidate_urls,
    digest,
    expression_hashes,
    hash_prefix,
    url_expressions,
)
from domain_watch.transport import RetryingTransport
from domain_watch.verdict_cache import VerdictCache

ENDPOINT = "https://threats.test/v4/fullHashes:find"


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


async def no_sleep(seconds: float) -> None:
    return None


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class Upstream:
    """Scripted threat-matching service recording the prefixes it receives."""

    def __init__(self, matches=None, status_code: int = 200, body=None) -> None:
        self.matches = matches or []
        self.status_code = status_code
        self.body = body
        self.requests: list[dict] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        if self.status_code != 200:
            return httpx.Response(self.status_code)
        if self.body is not None:
            return httpx.Response(200, text=self.body)
        payload = {"matches": self.matches} if self.matches else {}
        return httpx.Response(200, json=payload)

    def sent_prefixes(self, index: int = -1) -> set[str]:
        entries = self.requests[index]["threatInfo"]["threatEntries"]
        return {base64.b64decode(entry["hash"]).hex() for entry in entries}


def run_checks(upstream: Upstream, domains: list[str], clock=None, advance=None, api_key=None):
    """Run consecutive checks against one client, optionally advancing the clock between them."""
    clock = clock or FakeClock()

    async def run_test():
        http = httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler))
        transport = RetryingTransport(config=RetryConfig(), client=http, sleep=no_sleep, rng=random.Random(0))
        client = ThreatMatchClient(
            transport,
            VerdictCache(CacheConfig().ttl_seconds, clock=clock),
            config=ThreatMatchConfig(endpoint=ENDPOINT, api_key=api_key),
            cache_config=CacheConfig(),
        )
        verdicts = []
        try:
            for i, domain in enumerate(domains):
                if advance and i > 0:
                    clock.now += advance[i - 1]
                verdicts.append(await client.check(domain))
        finally:
            await http.aclose()
        return verdicts

    return asyncio.run(run_test())


@st.composite
def domain_strategy(draw) -> str:
    sld = draw(st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789", min_size=1, max_size=15).filter(lambda s: s != "www"))
    tld = draw(st.sampled_from(["com", "net", "org", "example"]))
    return f"{sld}.{tld}"


class TestExpressionDerivationProperty:
    """Candidate URLs and expressions cover the domain with and without www."""

    @given(domain=domain_strategy())
    @settings(max_examples=100, deadline=None)
    def test_candidate_urls(self, domain: str) -> None:
        assert candidate_urls(domain) == [
            f"http://{domain}",
            f"https://{domain}",
            f"http://www.{domain}",
            f"https://www.{domain}",
        ]

    @given(
        host=domain_strategy(),
        segments=st.lists(st.text(alphabet="abcdefghij", min_size=1, max_size=5), max_size=4),
    )
    @settings(max_examples=100, deadline=None)
    def test_path_prefix_expansion(self, host: str, segments: list[str]) -> None:
        url = f"http://{host}/" + "/".join(segments)
        expressions = url_expressions(url)

        assert expressions[0] == host
        assert len(expressions) == len(segments) + 1
        for i in range(1, len(segments) + 1):
            assert expressions[i] == host + "/" + "/".join(segments[:i])

    @given(domain=domain_strategy())
    @settings(max_examples=100, deadline=None)
    def test_expression_hashes_are_unique_sha256(self, domain: str) -> None:
        hashes = expression_hashes(domain)
        expressions = [item.expression for item in hashes]

        assert expressions == [domain, f"www.{domain}"]
        for item in hashes:
            assert item.full_hash == digest(item.expression)
            assert len(item.full_hash) == 32
            assert item.prefix == item.full_hash[:4].hex()
            assert len(item.prefix) == 8


class TestVerdictProperty:
    """Only byte-for-byte confirmed matches make a domain unsafe."""

    def test_confirmed_full_hash_is_unsafe(self) -> None:
        upstream = Upstream(matches=[{
            "threatType": "MALWARE",
            "platformType": "ANY_PLATFORM",
            "threat": {"hash": b64(digest("evil.example"))},
        }])
        [verdict] = run_checks(upstream, ["evil.example"])

        assert verdict.status is SecurityStatus.UNSAFE
        assert verdict.error is None
        assert hash_prefix(digest("evil.example")) in upstream.sent_prefixes()

    def test_confirmed_threat_url_is_unsafe(self) -> None:
        upstream = Upstream(matches=[{"threat": {"url": "http://www.evil.example/"}}])
        [verdict] = run_checks(upstream, ["evil.example"])
        assert verdict.status is SecurityStatus.UNSAFE

    @given(segments=st.lists(st.text(alphabet="abcdefghij", min_size=1, max_size=8), min_size=1, max_size=4))
    @settings(max_examples=50, deadline=None)
    def test_listed_path_does_not_flag_domain(self, segments: list[str]) -> None:
        """Only the listed URL's own expression is compared, not its host or parent paths."""
        url = "http://evil.example/" + "/".join(segments)
        upstream = Upstream(matches=[{"threat": {"url": url}}])
        [verdict] = run_checks(upstream, ["evil.example"])
        assert verdict.status is SecurityStatus.SAFE, f"{url} must not mark the bare domain unsafe"

    def test_listed_payload_url_is_safe_for_domain(self) -> None:
        upstream = Upstream(matches=[{"threat": {"url": "http://evil.example/malware/payload.exe"}}])
        [verdict] = run_checks(upstream, ["evil.example"])
        assert verdict.status is SecurityStatus.SAFE
        assert verdict.error is None

    def test_zero_matches_is_safe(self) -> None:
        upstream = Upstream()
        [verdict] = run_checks(upstream, ["good.example"])
        assert verdict.status is SecurityStatus.SAFE
        assert verdict.ok

    @given(tail=st.binary(min_size=28, max_size=28))
    @settings(max_examples=100, deadline=None)
    def test_prefix_collision_is_not_a_match(self, tail: bytes) -> None:
        """A returned hash sharing only the 4-byte prefix confirms nothing."""
        real = digest("good.example")
        candidate = real[:4] + tail
        if candidate == real:
            return
        upstream = Upstream(matches=[{"threat": {"hash": b64(candidate)}}])
        [verdict] = run_checks(upstream, ["good.example"])
        assert verdict.status is SecurityStatus.SAFE

    def test_only_prefixes_leave_the_process(self) -> None:
        upstream = Upstream()
        run_checks(upstream, ["private.example"], api_key="k-123")

        body = json.dumps(upstream.requests[0])
        assert "private.example" not in body
        expected = {item.prefix for item in expression_hashes("private.example")}
        assert upstream.sent_prefixes() == expected
        assert upstream.requests[0]["threatInfo"]["threatEntryTypes"] == ["URL"]


class TestFailureProperty:
    """Lookup failures yield UNKNOWN with a reason, never SAFE."""

    @given(status=st.sampled_from([400, 403, 429, 500, 503]))
    @settings(max_examples=20, deadline=None)
    def test_exhausted_retries_is_unknown(self, status: int) -> None:
        upstream = Upstream(status_code=status)
        [verdict] = run_checks(upstream, ["evil.example"])

        assert verdict.status is SecurityStatus.UNKNOWN
        assert f"HTTP {status}" in verdict.error
        assert len(upstream.requests) == 4

    def test_invalid_json_is_unknown(self) -> None:
        [verdict] = run_checks(Upstream(body="<html>oops</html>"), ["evil.example"])
        assert verdict.status is SecurityStatus.UNKNOWN
        assert verdict.error

    def test_wrong_shape_is_unknown(self) -> None:
        for body in ('{"matches": "nope"}', "[]", '{"matches": [1, 2]}'):
            [verdict] = run_checks(Upstream(body=body), ["evil.example"])
            assert verdict.status is SecurityStatus.UNKNOWN, body
            assert verdict.error

    def test_failure_is_not_cached(self) -> None:
        upstream = Upstream(status_code=503)
        run_checks(upstream, ["evil.example", "evil.example"])
        assert len(upstream.requests) == 8


class TestHashCacheProperty:
    """Cached prefixes and unsafe hashes suppress repeated lookups within their lifetime."""

    def test_safe_prefixes_cached_for_fifteen_minutes(self) -> None:
        upstream = Upstream()
        verdicts = run_checks(upstream, ["good.example"] * 3, advance=[60, 900])

        assert [v.status for v in verdicts] == [SecurityStatus.SAFE] * 3
        assert [v.cached for v in verdicts] == [False, True, False]
        assert len(upstream.requests) == 2, "Expired prefixes must be queried again"

    def test_unsafe_hash_cached_for_thirty_minutes(self) -> None:
        upstream = Upstream(matches=[{"threat": {"hash": b64(digest("evil.example"))}}])
        verdicts = run_checks(upstream, ["evil.example"] * 3, advance=[20 * 60, 11 * 60])

        assert [v.status for v in verdicts] == [SecurityStatus.UNSAFE] * 3
        assert [v.cached for v in verdicts] == [False, True, False]
        assert len(upstream.requests) == 2
