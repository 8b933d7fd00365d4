import asyncio
import json

from _fakes import FakeClient, RecordingNotifier, html, page, redirect
from linktitler.workflows.errors import NetworkError
from linktitler.workflows.fallbacks import (
    NO_FALLBACK_MESSAGE,
    ArchiveProvider,
    FallbackOrchestrator,
    MicrolinkProvider,
)
from linktitler.workflows.settings import TitlerSettings

TARGET = "https://blocked.example/post"
ARCHIVE_LOOKUP = f"https://archive.org/wayback/available?url={TARGET}"
MICROLINK = f"https://api.microlink.io?url={TARGET}"
SNAPSHOT = "http://web.archive.org/web/20240101000000/https://blocked.example/post"
SNAPSHOT_HTTPS = SNAPSHOT.replace("http://", "https://", 1)


def _snapshot_lookup(url=SNAPSHOT):
    return page(200, json.dumps({"archived_snapshots": {"closest": {"url": url, "timestamp": "20240101000000"}}}))


def _microlink_ok(title):
    return page(200, json.dumps({"status": "success", "data": {"title": title}}))


def _microlink_fail(code, message="nope", status=400):
    return page(status, json.dumps({"status": "fail", "code": code, "message": message}))


def _settings(**overrides):
    base = {"use_archive_fallback": True, "use_microlink_fallback": True}
    base.update(overrides)
    return TitlerSettings(**base)


def test_archive_provider_titles_from_https_snapshot():
    client = FakeClient({ARCHIVE_LOOKUP: _snapshot_lookup(), SNAPSHOT_HTTPS: page(200, html("Archived &amp; Safe"))})
    result = asyncio.run(ArchiveProvider(client).fetch_title(TARGET))
    assert result.kind == "ok"
    assert result.title == "Archived & Safe"
    assert result.provider == "Archive.org"
    assert SNAPSHOT not in client.urls()


def test_archive_provider_failure_kinds():
    cases = [
        ({ARCHIVE_LOOKUP: page(503, "")}, "unavailable", "Archive.org API unavailable"),
        ({ARCHIVE_LOOKUP: NetworkError("down")}, "unavailable", "Archive.org API unavailable"),
        ({ARCHIVE_LOOKUP: page(200, "not json")}, "failed", "Invalid JSON from Archive.org API"),
        ({ARCHIVE_LOOKUP: page(200, '{"archived_snapshots": {}}')}, "no_snapshot", "No archived version found"),
        ({ARCHIVE_LOOKUP: _snapshot_lookup(), SNAPSHOT_HTTPS: page(404, "")}, "failed", "Could not fetch archived page"),
        ({ARCHIVE_LOOKUP: _snapshot_lookup(), SNAPSHOT_HTTPS: page(200, "<p>no title</p>")}, "failed", "Unable to parse"),
    ]
    for routes, kind, message in cases:
        result = asyncio.run(ArchiveProvider(FakeClient(routes)).fetch_title(TARGET))
        assert result.kind == kind
        assert result.message.startswith(message)
        assert result.title is None


def test_microlink_provider_success_strips_markdown_links():
    client = FakeClient({MICROLINK: _microlink_ok("Read [the post](https://x.example) now")})
    result = asyncio.run(MicrolinkProvider(client).fetch_title(TARGET))
    assert result.kind == "ok"
    assert result.title == "Read the post now"


def test_microlink_provider_sends_api_key_header():
    client = FakeClient({MICROLINK: _microlink_ok("Keyed")})
    asyncio.run(MicrolinkProvider(client, TitlerSettings(microlink_api_key="secret-key")).fetch_title(TARGET))
    assert client.calls[0]["headers"] == {"x-api-key": "secret-key"}


def test_microlink_provider_without_key_sends_no_headers():
    client = FakeClient({MICROLINK: _microlink_ok("Free")})
    asyncio.run(MicrolinkProvider(client).fetch_title(TARGET))
    assert client.calls[0]["headers"] == {}


def test_microlink_provider_failure_kinds():
    cases = [
        (page(429, "Too Many Requests"), "rate_limited"),
        (_microlink_fail("ERATE_LIMIT_EXCEEDED"), "rate_limited"),
        (_microlink_fail("EPROXYNEEDED", "Proxy required"), "tier_insufficient"),
        (_microlink_fail("EINVALURL", "bad url"), "failed"),
        (page(200, "<html>"), "failed"),
        (page(200, json.dumps({"status": "success", "data": {}})), "failed"),
        (NetworkError("reset"), "unavailable"),
    ]
    for response, kind in cases:
        result = asyncio.run(MicrolinkProvider(FakeClient({MICROLINK: response})).fetch_title(TARGET))
        assert result.kind == kind, response


def test_generic_microlink_failure_carries_provider_message():
    client = FakeClient({MICROLINK: _microlink_fail("EINVALURL", "The URL is invalid")})
    result = asyncio.run(MicrolinkProvider(client).fetch_title(TARGET))
    assert result.message == "Microlink error: The URL is invalid"


def test_microlink_first_order():
    client = FakeClient({MICROLINK: _microlink_ok("From Microlink"), ARCHIVE_LOOKUP: _snapshot_lookup()})
    orchestrator = FallbackOrchestrator.from_settings(client, _settings(fallback_priority="microlink-first"))
    result = asyncio.run(orchestrator.resolve(TARGET))
    assert result.title == "From Microlink"
    assert client.urls() == [MICROLINK]


def test_archive_first_order():
    client = FakeClient(
        {
            MICROLINK: _microlink_ok("From Microlink"),
            ARCHIVE_LOOKUP: _snapshot_lookup(),
            SNAPSHOT_HTTPS: page(200, html("From Archive")),
        }
    )
    orchestrator = FallbackOrchestrator.from_settings(client, _settings(fallback_priority="archive-first"))
    result = asyncio.run(orchestrator.resolve(TARGET))
    assert result.title == "From Archive"
    assert result.provider == "Archive.org"
    assert MICROLINK not in client.urls()


def test_rate_limit_warns_and_falls_through_to_archive():
    notifier = RecordingNotifier()
    client = FakeClient(
        {
            MICROLINK: page(429, ""),
            ARCHIVE_LOOKUP: _snapshot_lookup(),
            SNAPSHOT_HTTPS: page(200, html("From Archive")),
        }
    )
    orchestrator = FallbackOrchestrator.from_settings(client, _settings(), notifier)
    result = asyncio.run(orchestrator.resolve(TARGET))
    assert result.kind == "ok"
    assert result.title == "From Archive"
    assert [a.kind for a in result.attempts] == ["rate_limited", "ok"]
    [warning] = notifier.of("warning")
    assert "daily limit" in warning
    assert "Trying next fallback" in warning
    assert notifier.of("info") == ["Title fetched via Archive.org"]


def test_no_enabled_provider():
    orchestrator = FallbackOrchestrator.from_settings(FakeClient(), TitlerSettings())
    result = asyncio.run(orchestrator.resolve(TARGET))
    assert result.kind == "no_fallback"
    assert result.message == NO_FALLBACK_MESSAGE
    assert not result.ok


def test_all_failed_reports_last_message():
    client = FakeClient({MICROLINK: _microlink_fail("EPROXYNEEDED", "Proxy required"), ARCHIVE_LOOKUP: page(200, "{}")})
    orchestrator = FallbackOrchestrator.from_settings(client, _settings(), RecordingNotifier())
    result = asyncio.run(orchestrator.resolve(TARGET))
    assert result.kind == "all_failed"
    assert result.message.endswith("Last error: No archived version found")
    assert [a.kind for a in result.attempts] == ["tier_insufficient", "no_snapshot"]
    assert result.to_dict()["attempts"][0]["provider"] == "Microlink"


def test_archive_snapshot_redirect_to_http_is_blocked():
    client = FakeClient(
        {
            ARCHIVE_LOOKUP: _snapshot_lookup(),
            SNAPSHOT_HTTPS: redirect("http://web.archive.org/web/2024/https://blocked.example/post"),
        }
    )
    result = asyncio.run(ArchiveProvider(client).fetch_title(TARGET))
    assert result.kind == "failed"
    assert result.message == "Could not fetch archived page"
    assert len(client.calls) == 2
    assert client.calls[1]["allow_redirects"] is False


def test_archive_snapshot_redirects_are_followed_within_the_hop_limit():
    final = "https://web.archive.org/web/20240101000000id_/https://blocked.example/post"
    client = FakeClient(
        {
            ARCHIVE_LOOKUP: _snapshot_lookup(),
            SNAPSHOT_HTTPS: redirect(final, status=302),
            final: page(200, html("Archived Post")),
        }
    )
    result = asyncio.run(ArchiveProvider(client).fetch_title(TARGET))
    assert result.title == "Archived Post"
