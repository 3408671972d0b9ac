"""Integration-style tests for robots.txt parsing, caching and fail-closed behavior."""

from __future__ import annotations

import pytest
import requests

from core.models import RobotsCacheStatus, RobotsReason, RobotsRule
from fetcher.robots import (
    RobotsValidator,
    decide_allowed,
    parse_robots_txt,
    robots_cache_key,
)
from storage.cache import InMemoryTTLCache


class DummyResponse:
    """Minimal response object for exercising robots logic."""

    def __init__(self, status_code: int, body: str = "") -> None:
        self.status_code = status_code
        self._body = body

    @property
    def text(self) -> str:
        return self._body


class BrokenTextResponse:
    """Response whose body cannot be decoded."""

    status_code = 200

    @property
    def text(self) -> str:
        raise UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")


class DummySession:
    """Sequence-driven session for deterministic HTTP behavior."""

    def __init__(self, responses: list[object] | None = None) -> None:
        self.responses = list(responses or [])
        self.calls: list[tuple[str, dict]] = []

    def get(self, url: str, **kwargs: object):
        self.calls.append((url, kwargs))
        if not self.responses:
            raise AssertionError("No more stubbed responses available")
        next_item = self.responses.pop(0)
        if isinstance(next_item, Exception):
            raise next_item
        return next_item


class FailingCache:
    """Cache backend that is down for reads and writes."""

    def get(self, key: str):
        raise ConnectionError("cache unavailable")

    def set(self, key: str, value, ttl_seconds: int) -> None:
        raise ConnectionError("cache unavailable")


@pytest.mark.unit
def test_parse_keeps_only_wildcard_block():
    content = (
        "User-agent: Googlebot\n"
        "Disallow: /\n"
        "\n"
        "User-agent: *\n"
        "Disallow: /private  # internal\n"
        "Allow: /private/open\n"
        "Disallow:\n"
    )

    rules = parse_robots_txt(content)

    assert rules == [
        RobotsRule(allow=False, path="/private"),
        RobotsRule(allow=True, path="/private/open"),
    ]


@pytest.mark.unit
@pytest.mark.parametrize(
    ("target", "expected"),
    [
        ("/public/x", True),
        ("/public", False),
        ("/other", True),
        ("/", True),
    ],
)
def test_longest_matching_rule_wins(target: str, expected: bool):
    rules = [
        RobotsRule(allow=False, path="/pub"),
        RobotsRule(allow=True, path="/public/"),
    ]
    assert decide_allowed(rules, target) is expected


@pytest.mark.unit
def test_specific_allow_beats_root_disallow():
    rules = [
        RobotsRule(allow=False, path="/"),
        RobotsRule(allow=True, path="/public"),
    ]
    assert decide_allowed(rules, "/public/x") is True
    assert decide_allowed(rules, "/private") is False


@pytest.mark.unit
def test_equal_length_tie_keeps_first_rule():
    rules = [
        RobotsRule(allow=False, path="/a"),
        RobotsRule(allow=True, path="/a"),
    ]
    assert decide_allowed(rules, "/a/b") is False


@pytest.mark.integration
def test_disallowed_path_is_denied_and_cached():
    session = DummySession([DummyResponse(200, "User-agent: *\nDisallow: /private\n")])
    cache = InMemoryTTLCache()
    validator = RobotsValidator(cache=cache, session=session, user_agent="TestBot/1.0")

    denied = validator.can_fetch("https://example.com/private/page")
    allowed = validator.can_fetch("https://example.com/public/page")

    assert denied.allowed is False
    assert denied.reason == RobotsReason.DISALLOWED
    assert denied.cache_status == RobotsCacheStatus.MISS
    assert denied.robots_url == "https://example.com/robots.txt"
    assert allowed.allowed is True
    assert allowed.cache_status == RobotsCacheStatus.HIT
    assert len(session.calls) == 1
    assert cache.get(robots_cache_key("example.com")) == {
        "rules": [{"allow": False, "path": "/private"}]
    }


@pytest.mark.integration
def test_request_carries_identifying_headers():
    session = DummySession([DummyResponse(404)])
    validator = RobotsValidator(session=session, user_agent="TestBot/1.0")

    validator.can_fetch("https://example.com/a")

    url, kwargs = session.calls[0]
    assert url == "https://example.com/robots.txt"
    assert kwargs["headers"]["User-Agent"] == "TestBot/1.0"
    assert kwargs["headers"]["DNT"] == "1"
    assert kwargs["timeout"] == 8.0


@pytest.mark.integration
def test_missing_robots_is_permissive():
    validator = RobotsValidator(session=DummySession([DummyResponse(404)]))

    result = validator.can_fetch("https://example.com/anything")

    assert result.allowed is True
    assert result.reason == RobotsReason.NO_ROBOTS
    assert result.cache_status == RobotsCacheStatus.MISS


@pytest.mark.integration
def test_network_error_fails_closed():
    session = DummySession([requests.ConnectionError("connection refused")])
    validator = RobotsValidator(session=session)

    result = validator.can_fetch("https://example.com/a")

    assert result.allowed is False
    assert result.reason == RobotsReason.FETCH_ERROR
    assert result.cache_status == RobotsCacheStatus.ERROR


@pytest.mark.integration
def test_unreadable_body_fails_closed():
    validator = RobotsValidator(session=DummySession([BrokenTextResponse()]))

    result = validator.can_fetch("https://example.com/a")

    assert result.allowed is False
    assert result.reason == RobotsReason.PARSE_ERROR


@pytest.mark.integration
def test_url_without_host_is_denied():
    validator = RobotsValidator(session=DummySession())

    result = validator.can_fetch("not a url")

    assert result.allowed is False
    assert result.reason == RobotsReason.FETCH_ERROR
    assert result.robots_url == ""


@pytest.mark.integration
def test_disabled_validator_allows_without_network():
    session = DummySession()
    validator = RobotsValidator(session=session, enabled=False)

    result = validator.can_fetch("https://example.com/private")

    assert result.allowed is True
    assert result.cache_status == RobotsCacheStatus.DISABLED
    assert session.calls == []


@pytest.mark.integration
def test_disabled_validator_skips_host_check():
    validator = RobotsValidator(session=DummySession(), enabled=False)

    result = validator.can_fetch("not a url")

    assert result.allowed is True
    assert result.cache_status == RobotsCacheStatus.DISABLED
    assert result.robots_url == ""


@pytest.mark.integration
def test_cache_failures_do_not_change_decision(captured_events):
    session = DummySession([DummyResponse(200, "User-agent: *\nDisallow: /x\n")])
    validator = RobotsValidator(cache=FailingCache(), session=session)

    result = validator.can_fetch("https://example.com/x/1")

    assert result.allowed is False
    assert result.reason == RobotsReason.DISALLOWED
    events = captured_events()
    event_types = [event["event_type"] for event in events]
    assert "robots_cache_read_failed" in event_types
    assert "robots_cache_write_failed" in event_types
    failures = [event for event in events if event["event_type"].startswith("robots_cache_")]
    assert {event["error_kind"] for event in failures} == {"sink_failure"}


@pytest.mark.integration
def test_port_is_part_of_cache_key():
    session = DummySession(
        [
            DummyResponse(200, "User-agent: *\nDisallow: /\n"),
            DummyResponse(404),
        ]
    )
    validator = RobotsValidator(session=session)

    first = validator.can_fetch("http://example.com:8080/a")
    second = validator.can_fetch("http://example.com/a")

    assert first.robots_url == "http://example.com:8080/robots.txt"
    assert first.allowed is False
    assert second.allowed is True
    assert len(session.calls) == 2


@pytest.mark.unit
def test_cache_entries_expire():
    now = [1000.0]
    cache = InMemoryTTLCache(clock_fn=lambda: now[0])
    cache.set("k", {"rules": []}, ttl_seconds=10)

    assert cache.get("k") == {"rules": []}
    now[0] += 11
    assert cache.get("k") is None
    assert len(cache) == 0
