from __future__ import annotations

import json
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .settings import ENV_MICROLINK_API_KEY, TitlerSettings, load_settings, resolve_settings_path
from .titler_utils import collect_environment_warnings


_SECRET_TOKENS = ("key", "token", "secret", "password", "pass")


def _is_secret_name(name: str) -> bool:
    lowered = (name or "").lower()
    return any(token in lowered for token in _SECRET_TOKENS)


def redact_value(value: str, keep: int = 4) -> str:
    raw = (value or "").strip()
    if not raw:
        return ""
    if len(raw) <= keep * 2:
        return "*" * len(raw)
    return f"{raw[:keep]}...{raw[-keep:]}"


def _redacted_value(name: str, value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return redact_value(value) if _is_secret_name(name) else value


def _settings_file_state(path: Path) -> Optional[str]:
    """Return a problem description for the settings file, or None when usable."""

    if not path.exists():
        return None
    try:
        loaded = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        return f"unreadable: {exc}"
    if not isinstance(loaded, dict):
        return "not a JSON object"
    return None


def build_doctor_report(
    *,
    settings_path: Optional[Path] = None,
    settings: Optional[TitlerSettings] = None,
) -> Dict[str, Any]:
    path = resolve_settings_path(settings_path)
    settings = settings or load_settings(path)
    report: Dict[str, Any] = {
        "generated_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "ok": True,
        "checks": [],
        "environment_warnings": collect_environment_warnings(settings),
    }

    def add_check(
        name: str,
        status: bool,
        *,
        detail: Optional[str] = None,
        remedy: Optional[str] = None,
        level: str = "warn",
        value: Optional[str] = None,
    ) -> None:
        entry = {
            "name": name,
            "status": "ok" if status else "missing",
            "level": level,
            "detail": detail,
        }
        if remedy:
            entry["remedy"] = remedy
        if value is not None:
            entry["value"] = _redacted_value(name, value)
        report["checks"].append(entry)
        if not status and level == "warn":
            report["ok"] = False

    problem = _settings_file_state(path)
    if path.exists():
        add_check(
            "settings_file",
            problem is None,
            detail=str(path) if problem is None else f"{path}: {problem}",
            remedy="Fix the JSON or remove the file to fall back to defaults.",
            level="warn",
        )
    else:
        add_check("settings_file", False, detail=f"{path} (defaults in use)", level="info")

    try:
        re.compile(settings.url_regex, re.IGNORECASE | re.MULTILINE)
        regex_error = None
    except re.error as exc:
        regex_error = str(exc)
    add_check(
        "urlRegex",
        regex_error is None,
        detail=settings.url_regex if regex_error is None else f"Invalid regex pattern: {regex_error}",
        remedy="Run `linktitler config set urlRegex <pattern>` with a valid pattern.",
        level="warn",
    )

    bad_patterns: List[str] = []
    for pattern in settings.site_patterns:
        try:
            re.compile(pattern.title_regex, re.IGNORECASE | re.MULTILINE)
        except re.error as exc:
            bad_patterns.append(f"{pattern.url_match}: {exc}")
    add_check(
        "sitePatterns",
        not bad_patterns,
        detail=f"{len(settings.site_patterns)} rule(s)" if not bad_patterns else "; ".join(bad_patterns),
        remedy="Fix or remove the listed site patterns.",
        level="warn",
    )

    enabled = [
        name
        for name, flag in (
            ("Archive.org", settings.use_archive_fallback),
            ("Microlink", settings.use_microlink_fallback),
        )
        if flag
    ]
    add_check(
        "fallbacks",
        bool(enabled),
        detail=(
            ", ".join(enabled) + (f" ({settings.fallback_priority})" if settings.priority_applies else "")
            if enabled
            else "No fallback enabled"
        ),
        level="info",
    )

    api_key = settings.microlink_api_key or os.getenv(ENV_MICROLINK_API_KEY) or ""
    add_check(
        "microlinkApiKey",
        bool(api_key),
        detail="Microlink Pro key configured" if api_key else "Microlink free tier",
        level="info",
        value=api_key or None,
    )

    add_check(
        "redirects",
        True,
        detail=(
            f"follow up to {settings.max_redirects} hop(s)" if settings.follow_redirects else "redirect following disabled"
        ),
        level="info",
    )
    return report


def format_doctor_report(report: Dict[str, Any]) -> str:
    lines: List[str] = []
    lines.append("linktitler doctor")
    lines.append(f"Generated: {report.get('generated_at')}")
    lines.append("Values are redacted where applicable.")
    lines.append("")
    for check in report.get("checks", []):
        name = check.get("name", "check")
        status = check.get("status", "unknown")
        level = check.get("level", "info")
        detail = check.get("detail")
        value = check.get("value")
        label = f"{name}: {status}"
        if value:
            label = f"{label} ({value})"
        lines.append(f"- [{level}] {label}")
        if detail:
            lines.append(f"  detail: {detail}")
        remedy = check.get("remedy")
        if remedy and status != "ok":
            lines.append(f"  remedy: {remedy}")
    warnings = report.get("environment_warnings") or []
    if warnings:
        lines.append("")
        lines.append("Environment warnings:")
        for warning in warnings:
            code = warning.get("code", "warning")
            message = warning.get("message", "")
            remedy = warning.get("remedy", "")
            lines.append(f"- {code}: {message}")
            if remedy:
                lines.append(f"  remedy: {remedy}")
    return "\n".join(lines).rstrip() + "\n"
