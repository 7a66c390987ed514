"""
Property-based tests for Audit Logger module.

Uses Hypothesis for property-based testing to verify output formats, level
filtering, masking of sensitive values and error context.
"""

import json
from io import StringIO

import pytest
from hypothesis import given, settings, assume
from hypothesis import strategies as st

from domain_watch.enums import LogLevel
from domain_watch.audit_logger import MAX_RECORDED_ENTRIES, AuditLogger, parse_level


# Strategies for generating valid test data

SENSITIVE_WORDS = [
    'token', 'secret', 'password', 'api_key', 'apikey', 'hmac_secret',
    'auth', 'authorization', 'credential', 'private_key',
]


@st.composite
def log_level_strategy(draw) -> LogLevel:
    """Generate valid LogLevel values."""
    return draw(st.sampled_from(list(LogLevel)))


@st.composite
def component_name_strategy(draw) -> str:
    """Generate valid component names."""
    return draw(st.text(
        alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_-"),
        min_size=1,
        max_size=50,
    ))


@st.composite
def message_strategy(draw) -> str:
    """Generate single-line log messages."""
    return draw(st.text(
        alphabet=st.characters(
            whitelist_categories=('L', 'N', 'P', 'S', 'Zs'),
            blacklist_characters='\x00\n\r',
        ),
        min_size=1,
        max_size=200,
    ))


@st.composite
def non_sensitive_key_strategy(draw) -> str:
    """Generate keys that are NOT sensitive."""
    key = draw(st.text(
        alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyz_"),
        min_size=1,
        max_size=20,
    ))
    for word in SENSITIVE_WORDS:
        assume(word not in key)
    return key


@st.composite
def sensitive_key_strategy(draw) -> str:
    """Generate keys that ARE sensitive."""
    base = draw(st.sampled_from(SENSITIVE_WORDS + ['access_token', 'credentials']))
    prefix = draw(st.sampled_from(['', 'my_', 'threat_', 'app_']))
    suffix = draw(st.sampled_from(['', '_value', '_data', '_1']))
    return f"{prefix}{base}{suffix}"


@st.composite
def simple_value_strategy(draw):
    """Generate simple JSON-serializable values."""
    return draw(st.one_of(
        st.text(min_size=0, max_size=50),
        st.integers(min_value=-1000, max_value=1000),
        st.booleans(),
        st.none(),
    ))


@st.composite
def non_sensitive_data_strategy(draw) -> dict:
    """Generate data dictionaries without sensitive keys."""
    return draw(st.dictionaries(non_sensitive_key_strategy(), simple_value_strategy(), max_size=5))


class TestOutputFormatProperty:
    """Entries are written as JSON lines, text lines, or both."""

    @given(
        level=log_level_strategy(),
        component=component_name_strategy(),
        message=message_strategy(),
        data=non_sensitive_data_strategy(),
    )
    @settings(max_examples=100)
    def test_both_format_produces_json_and_text(
        self,
        level: LogLevel,
        component: str,
        message: str,
        data: dict,
    ) -> None:
        output = StringIO()
        logger = AuditLogger(output_format="both", output_stream=output, level="debug")

        logger.log(level, component, message, data)

        lines = output.getvalue().rstrip("\n").split('\n')
        assert len(lines) == 2, f"Expected 2 lines, got {len(lines)}"

        parsed_json = json.loads(lines[0])
        assert parsed_json["level"] == level.value
        assert parsed_json["component"] == component
        assert parsed_json["message"] == message
        assert parsed_json["data"] == data

        prefix = f"[{parsed_json['timestamp']}] {level.value.upper()} [{component}] {message}"
        assert lines[1].startswith(prefix), "Text line must lead with timestamp, level, component and message"
        assert json.loads(lines[1][len(prefix):] or "{}") == data

    @given(
        level=log_level_strategy(),
        component=component_name_strategy(),
        message=message_strategy(),
    )
    @settings(max_examples=100)
    def test_json_only_format(self, level: LogLevel, component: str, message: str) -> None:
        output = StringIO()
        logger = AuditLogger(output_format="json", output_stream=output, level="debug")

        logger.log(level, component, message)

        lines = [line for line in output.getvalue().split('\n') if line]
        assert len(lines) == 1
        assert json.loads(lines[0])["message"] == message

    def test_invalid_format_rejected(self) -> None:
        with pytest.raises(ValueError):
            AuditLogger(output_format="xml")


class TestLevelFilteringProperty:
    """Entries below the minimum level are neither recorded nor written."""

    @given(minimum=log_level_strategy(), level=log_level_strategy())
    @settings(max_examples=100)
    def test_filtering_follows_level_order(self, minimum: LogLevel, level: LogLevel) -> None:
        order = [LogLevel.DEBUG, LogLevel.INFO, LogLevel.WARN, LogLevel.ERROR]
        output = StringIO()
        logger = AuditLogger(output_format="text", output_stream=output, level=minimum)

        entry = logger.log(level, "Test", "message")

        if order.index(level) >= order.index(minimum):
            assert entry is not None
            assert logger.entries == [entry]
        else:
            assert entry is None
            assert logger.entries == []
            assert output.getvalue() == ""

    def test_shortcut_levels(self) -> None:
        logger = AuditLogger(output_stream=StringIO(), level="debug")
        assert logger.debug("C", "m").level is LogLevel.DEBUG
        assert logger.info("C", "m").level is LogLevel.INFO
        assert logger.warn("C", "m").level is LogLevel.WARN
        assert logger.log_error("C", "m").level is LogLevel.ERROR

    @pytest.mark.parametrize("name,expected", [
        ("DEBUG", LogLevel.DEBUG),
        ("info", LogLevel.INFO),
        ("warning", LogLevel.WARN),
        (" Error ", LogLevel.ERROR),
    ])
    def test_parse_level(self, name: str, expected: LogLevel) -> None:
        assert parse_level(name) is expected

    def test_clear_entries(self) -> None:
        logger = AuditLogger(output_stream=StringIO())
        logger.info("C", "m")
        logger.clear_entries()
        assert logger.entries == []

    def test_recorded_entries_are_bounded(self) -> None:
        logger = AuditLogger(output_format="json", output_stream=StringIO())
        for i in range(MAX_RECORDED_ENTRIES + 500):
            logger.info("C", f"m{i}")

        entries = logger.entries
        assert len(entries) == MAX_RECORDED_ENTRIES
        assert entries[0].message == "m500"
        assert entries[-1].message == f"m{MAX_RECORDED_ENTRIES + 499}"

    @given(limit=st.integers(min_value=1, max_value=20), count=st.integers(min_value=0, max_value=60))
    @settings(max_examples=50)
    def test_custom_entry_limit(self, limit: int, count: int) -> None:
        logger = AuditLogger(output_stream=StringIO(), max_entries=limit)
        for i in range(count):
            logger.info("C", str(i))
        assert [e.message for e in logger.entries] == [str(i) for i in range(max(0, count - limit), count)]


class TestSensitiveDataMaskingProperty:
    """Values under sensitive keys never reach the output."""

    @given(
        sensitive_key=sensitive_key_strategy(),
        sensitive_value=st.text(
            alphabet=st.sampled_from("QWXYZ"),
            min_size=5,
            max_size=20,
        ),
        component=component_name_strategy(),
    )
    @settings(max_examples=100)
    def test_sensitive_data_masked(
        self,
        sensitive_key: str,
        sensitive_value: str,
        component: str,
    ) -> None:
        output = StringIO()
        logger = AuditLogger(output_format="json", output_stream=output)

        entry = logger.info(component, "lookup", {sensitive_key: sensitive_value})

        assert entry.data[sensitive_key] == AuditLogger.MASK_VALUE
        parsed = json.loads(output.getvalue().strip())
        assert parsed["data"][sensitive_key] == "***MASKED***"
        assert sensitive_value not in json.dumps(parsed["data"])

    @given(
        non_sensitive_key=non_sensitive_key_strategy(),
        value=st.text(min_size=1, max_size=50),
    )
    @settings(max_examples=100)
    def test_non_sensitive_data_not_masked(self, non_sensitive_key: str, value: str) -> None:
        logger = AuditLogger(output_format="json", output_stream=StringIO())
        entry = logger.info("Test", "message", {non_sensitive_key: value})
        assert entry.data[non_sensitive_key] == value

    @given(sensitive_key=sensitive_key_strategy(), sensitive_value=st.text(min_size=1, max_size=50))
    @settings(max_examples=100)
    def test_nested_sensitive_data_masked(self, sensitive_key: str, sensitive_value: str) -> None:
        logger = AuditLogger(output_format="json", output_stream=StringIO())

        data = {
            "config": {sensitive_key: sensitive_value, "other": "visible"},
            "items": [{sensitive_key: sensitive_value}],
        }
        entry = logger.info("Test", "message", data)

        assert entry.data["config"][sensitive_key] == "***MASKED***"
        assert entry.data["config"]["other"] == "visible"
        assert entry.data["items"][0][sensitive_key] == "***MASKED***"

    @pytest.mark.parametrize("key", ["cache_key", "prefix_key", "keyword", "domain"])
    def test_word_boundaries_respected(self, key: str) -> None:
        logger = AuditLogger(output_stream=StringIO())
        assert not logger._is_sensitive_key(key)

    def test_input_data_not_mutated(self) -> None:
        logger = AuditLogger(output_stream=StringIO())
        data = {"api_key": "k-123"}
        logger.info("Test", "message", data)
        assert data == {"api_key": "k-123"}


class TestErrorContextProperty:
    """Error entries carry the error and request context."""

    @given(
        component=component_name_strategy(),
        message=message_strategy(),
        error_message=message_strategy(),
        status_code=st.sampled_from([400, 404, 429, 500, 502, 503]),
    )
    @settings(max_examples=100)
    def test_error_logs_include_full_context(
        self,
        component: str,
        message: str,
        error_message: str,
        status_code: int,
    ) -> None:
        logger = AuditLogger(output_format="json", output_stream=StringIO())

        entry = logger.log_error(
            component=component,
            message=message,
            error=RuntimeError(error_message),
            request_url="https://threats.test/v4/fullHashes:find",
            response_status_code=status_code,
            additional_data={"attempts": 4},
        )

        assert entry.level == LogLevel.ERROR
        assert entry.data["error_message"] == error_message
        assert entry.data["error_type"] == "RuntimeError"
        assert entry.data["request_url"] == "https://threats.test/v4/fullHashes:find"
        assert entry.data["response_status_code"] == status_code
        assert entry.data["attempts"] == 4

    def test_error_logs_with_minimal_context(self) -> None:
        logger = AuditLogger(output_format="json", output_stream=StringIO())

        entry = logger.log_error("Test", "failed")

        assert entry.level == LogLevel.ERROR
        assert "error_message" not in entry.data
        assert "request_url" not in entry.data
        assert "response_status_code" not in entry.data
