import asyncio

import pytest

from _fakes import FakeClient, html, page, redirect
from linktitler.workflows.errors import InvalidUrlError, NetworkError, RedirectError
from linktitler.workflows.redirect_cache import RedirectCache
from linktitler.workflows.settings import TitlerSettings
from linktitler.workflows.web_fetch import PageFetcher


def _fetch(client, url, settings=None, cache=None):
    fetcher = PageFetcher(client, settings or TitlerSettings(), cache)
    return asyncio.run(fetcher.fetch(url))


def test_plain_fetch_uses_minimal_request():
    client = FakeClient({"https://example.com/page": page(200, html("Example Page"))})
    outcome = _fetch(client, "https://example.com/page")
    assert outcome.status == 200
    assert outcome.final_url == "https://example.com/page"
    assert outcome.redirect_chain == ("https://example.com/page",)
    assert outcome.escalated is False
    assert client.calls[0]["headers"] == {}
    assert client.calls[0]["allow_redirects"] is False


def test_bare_host_gets_http_scheme():
    client = FakeClient({"http://example.com": page(200, html("Bare"))})
    outcome = _fetch(client, "example.com")
    assert outcome.url == "http://example.com"


@pytest.mark.parametrize("url", ["http://", "https://", "not a url"])
def test_invalid_urls_fail_before_any_request(url):
    client = FakeClient()
    with pytest.raises(InvalidUrlError) as excinfo:
        _fetch(client, url)
    assert excinfo.value.kind == "validation"
    assert client.calls == []


def test_non_2xx_status_is_a_completed_fetch():
    client = FakeClient({"https://example.com/gone": page(404, "<title>Not Found</title>")})
    outcome = _fetch(client, "https://example.com/gone")
    assert outcome.status == 404
    assert not outcome.ok


def test_relative_redirect_is_resolved_against_current_url():
    client = FakeClient(
        {
            "https://example.com/a": redirect("/b", status=302),
            "https://example.com/b": page(200, html("B")),
        }
    )
    outcome = _fetch(client, "https://example.com/a")
    assert outcome.final_url == "https://example.com/b"
    assert outcome.redirect_chain == ("https://example.com/a", "https://example.com/b")
    assert outcome.url == "https://example.com/a"


def test_circular_redirect_fails_instead_of_looping():
    client = FakeClient(
        {
            "https://example.com/a": redirect("https://example.com/b"),
            "https://example.com/b": redirect("https://example.com/a"),
        }
    )
    with pytest.raises(RedirectError) as excinfo:
        _fetch(client, "https://example.com/a")
    assert excinfo.value.reason == "circular"
    assert "https://example.com/a → https://example.com/b → https://example.com/a" in str(excinfo.value)
    assert len(client.calls) == 2


def test_too_many_redirects_reports_chain():
    client = FakeClient(
        {
            "https://example.com/1": redirect("https://example.com/2"),
            "https://example.com/2": redirect("https://example.com/3"),
            "https://example.com/3": redirect("https://example.com/4"),
            "https://example.com/4": page(200, html("never")),
        }
    )
    with pytest.raises(RedirectError) as excinfo:
        _fetch(client, "https://example.com/1", TitlerSettings(max_redirects=2))
    assert excinfo.value.reason == "too_many"
    assert str(excinfo.value).startswith("Too many redirects (3). Chain: https://example.com/1 →")
    assert "https://example.com/4" not in client.urls()


def test_redirects_up_to_the_limit_succeed():
    client = FakeClient(
        {
            "https://example.com/1": redirect("https://example.com/2"),
            "https://example.com/2": redirect("https://example.com/3"),
            "https://example.com/3": page(200, html("Three")),
        }
    )
    outcome = _fetch(client, "https://example.com/1", TitlerSettings(max_redirects=2))
    assert outcome.final_url == "https://example.com/3"


def test_redirect_with_following_disabled_names_target():
    client = FakeClient({"https://example.com/a": redirect("https://example.com/b")})
    with pytest.raises(RedirectError) as excinfo:
        _fetch(client, "https://example.com/a", TitlerSettings(follow_redirects=False))
    assert excinfo.value.reason == "disabled"
    assert "https://example.com/b" in str(excinfo.value)


def test_redirect_without_location():
    client = FakeClient({"https://example.com/a": page(302, "")})
    with pytest.raises(RedirectError) as excinfo:
        _fetch(client, "https://example.com/a")
    assert excinfo.value.reason == "missing_location"
    assert str(excinfo.value) == "Redirect (302) without Location header."


def test_https_to_http_downgrade_is_blocked():
    client = FakeClient({"https://example.com/a": redirect("http://example.com/a")})
    with pytest.raises(RedirectError) as excinfo:
        _fetch(client, "https://example.com/a")
    assert excinfo.value.reason == "insecure"
    assert excinfo.value.kind == "redirect"


def _needs_browser_headers(body):
    def respond(headers):
        if not headers or "User-Agent" not in headers:
            return NetworkError("connection reset")
        return body

    return respond


def test_network_error_escalates_to_browser_headers():
    client = FakeClient({"https://example.com/a": _needs_browser_headers(page(200, html("A")))})
    outcome = _fetch(client, "https://example.com/a")
    assert outcome.escalated is True
    assert len(client.calls) == 2
    assert client.calls[0]["headers"] == {}
    assert "User-Agent" in client.calls[1]["headers"]
    assert client.calls[1]["headers"]["Referer"] == "https://www.google.com/"


def test_escalation_sticks_for_the_rest_of_the_chain():
    client = FakeClient(
        {
            "https://example.com/a": _needs_browser_headers(redirect("https://example.com/b")),
            "https://example.com/b": page(200, html("B")),
        }
    )
    outcome = _fetch(client, "https://example.com/a")
    assert outcome.final_url == "https://example.com/b"
    assert client.urls() == ["https://example.com/a", "https://example.com/a", "https://example.com/b"]
    assert "User-Agent" in client.calls[2]["headers"]


def test_network_error_after_escalation_propagates():
    client = FakeClient({"https://example.com/a": NetworkError("dns failure")})
    with pytest.raises(NetworkError):
        _fetch(client, "https://example.com/a")
    assert len(client.calls) == 2


def test_redirect_is_cached_and_reused():
    cache = RedirectCache(capacity=10)
    client = FakeClient(
        {
            "http://short.example/x": redirect("https://long.example/article"),
            "https://long.example/article": page(200, html("Article")),
        }
    )
    first = _fetch(client, "http://short.example/x", cache=cache)
    assert first.from_cache is False
    assert cache.get("http://short.example/x") == "https://long.example/article"

    client.calls.clear()
    second = _fetch(client, "http://short.example/x", cache=cache)
    assert client.urls() == ["https://long.example/article"]
    assert second.from_cache is True
    assert second.url == "http://short.example/x"
    assert len(cache) == 1


def test_failed_redirect_target_is_not_cached():
    cache = RedirectCache(capacity=10)
    client = FakeClient(
        {
            "https://example.com/a": redirect("https://example.com/b"),
            "https://example.com/b": page(500, "oops"),
        }
    )
    _fetch(client, "https://example.com/a", cache=cache)
    assert len(cache) == 0


def test_relative_location_starting_with_http_is_not_treated_as_absolute():
    client = FakeClient(
        {
            "https://example.com/a/": redirect("httpdocs/b", status=302),
            "https://example.com/a/httpdocs/b": page(200, html("Docs")),
        }
    )
    outcome = _fetch(client, "https://example.com/a/")
    assert outcome.final_url == "https://example.com/a/httpdocs/b"
