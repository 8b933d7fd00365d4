import json

import pytest

from linktitler.workflows.errors import ConfigurationError
from linktitler.workflows.settings import (
    SitePattern,
    TitlerSettings,
    load_settings,
    parse_site_pattern_lines,
    save_settings,
    setting_attr,
    update_settings,
)


def test_defaults():
    settings = TitlerSettings.from_mapping({})
    assert settings.url_regex == r"https?:\/\/[^\s\]\)]+"
    assert settings.use_archive_fallback is False
    assert settings.use_microlink_fallback is False
    assert settings.fallback_priority == "microlink-first"
    assert settings.request_delay_ms == 500
    assert settings.follow_redirects is True
    assert settings.max_redirects == 5
    assert settings.priority_applies is False


def test_values_are_clamped():
    settings = TitlerSettings.from_mapping(
        {"requestDelayMs": 99999, "maxRedirects": 0, "timeoutSeconds": 0.1}
    )
    assert settings.request_delay_ms == 5000
    assert settings.max_redirects == 1
    assert settings.timeout_seconds == 1.0
    assert TitlerSettings.from_mapping({"requestDelayMs": -5}).request_delay_ms == 0
    assert TitlerSettings.from_mapping({"maxRedirects": "junk"}).max_redirects == 5


def test_plugin_style_mapping_is_accepted():
    settings = TitlerSettings.from_mapping(
        {
            "useArchiveFallback": True,
            "useMicrolinkFallback": "true",
            "fallbackPriority": "archive-first",
            "sitePatterns": [{"urlMatch": "github.com", "titleRegex": "<h1>(.*?)</h1>"}],
        }
    )
    assert settings.priority_applies is True
    assert settings.fallback_priority == "archive-first"
    assert settings.site_patterns == (SitePattern("github.com", "<h1>(.*?)</h1>"),)


def test_unknown_priority_falls_back_to_default():
    assert TitlerSettings.from_mapping({"fallbackPriority": "random"}).fallback_priority == "microlink-first"


def test_site_pattern_lines_split_on_first_bar():
    [pattern] = parse_site_pattern_lines("example.com|<h1>(a|b)</h1>\n\n")
    assert pattern.url_match == "example.com"
    assert pattern.title_regex == "<h1>(a|b)</h1>"
    assert pattern.to_line() == "example.com|<h1>(a|b)</h1>"


def test_site_pattern_lines_reject_malformed_lines():
    with pytest.raises(ConfigurationError):
        parse_site_pattern_lines("no separator here")
    with pytest.raises(ConfigurationError):
        parse_site_pattern_lines("example.com|(unclosed")


def test_update_settings_validates_regexes():
    settings = TitlerSettings()
    with pytest.raises(ConfigurationError):
        update_settings(settings, url_regex="https?://[")
    with pytest.raises(ConfigurationError):
        update_settings(settings, site_patterns=[{"urlMatch": "x", "titleRegex": "("}])
    with pytest.raises(ConfigurationError):
        update_settings(settings, fallback_priority="sideways")
    assert settings == TitlerSettings()


def test_update_settings_returns_new_clamped_copy():
    settings = TitlerSettings()
    updated = update_settings(settings, max_redirects=50, use_archive_fallback="yes")
    assert updated.max_redirects == 10
    assert updated.use_archive_fallback is True
    assert settings.max_redirects == 5


def test_setting_attr_accepts_both_spellings():
    assert setting_attr("maxRedirects") == "max_redirects"
    assert setting_attr("max_redirects") == "max_redirects"
    with pytest.raises(ConfigurationError):
        setting_attr("colour")


def test_save_and_load_round_trip(tmp_path, monkeypatch):
    monkeypatch.delenv("LINKTITLER_MICROLINK_API_KEY", raising=False)
    monkeypatch.delenv("LINKTITLER_REQUEST_DELAY_MS", raising=False)
    path = tmp_path / "nested" / "settings.json"
    settings = TitlerSettings.from_mapping(
        {"useArchiveFallback": True, "sitePatterns": "example.com|<h2>([^<]+)</h2>", "requestDelayMs": 0}
    )
    saved = save_settings(settings, path)
    assert saved == path
    on_disk = json.loads(path.read_text(encoding="utf-8"))
    assert on_disk["useArchiveFallback"] is True
    assert on_disk["sitePatterns"] == [{"urlMatch": "example.com", "titleRegex": "<h2>([^<]+)</h2>"}]
    assert load_settings(path) == settings


def test_load_settings_tolerates_bad_file(tmp_path, monkeypatch):
    monkeypatch.delenv("LINKTITLER_MICROLINK_API_KEY", raising=False)
    monkeypatch.delenv("LINKTITLER_REQUEST_DELAY_MS", raising=False)
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")
    assert load_settings(path) == TitlerSettings()
    path.write_text("[1, 2]", encoding="utf-8")
    assert load_settings(path) == TitlerSettings()


def test_env_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("LINKTITLER_SETTINGS_PATH", str(tmp_path / "env.json"))
    monkeypatch.setenv("LINKTITLER_MICROLINK_API_KEY", "env-key")
    monkeypatch.setenv("LINKTITLER_REQUEST_DELAY_MS", "42")
    (tmp_path / "env.json").write_text(json.dumps({"maxRedirects": 3}), encoding="utf-8")
    settings = load_settings()
    assert settings.max_redirects == 3
    assert settings.microlink_api_key == "env-key"
    assert settings.request_delay_ms == 42
    assert load_settings(apply_env=False).microlink_api_key == ""


def test_rule_with_empty_url_match_survives_file_round_trip(tmp_path, monkeypatch):
    monkeypatch.delenv("LINKTITLER_MICROLINK_API_KEY", raising=False)
    monkeypatch.delenv("LINKTITLER_REQUEST_DELAY_MS", raising=False)
    [pattern] = parse_site_pattern_lines("|<h1>([^<]+)</h1>")
    assert pattern == SitePattern("", "<h1>([^<]+)</h1>")
    path = tmp_path / "settings.json"
    save_settings(TitlerSettings(site_patterns=(pattern,)), path)
    assert load_settings(path).site_patterns == (pattern,)
