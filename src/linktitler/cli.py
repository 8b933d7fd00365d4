from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional

import typer

from .runner import BufferedTextSource, open_text_source, resolve_titles, run_tagging
from .workflows.doctor import build_doctor_report, format_doctor_report, redact_value
from .workflows.errors import ConfigurationError
from .workflows.notify import EchoNotifier, LoggingNotifier
from .workflows.settings import (
    load_settings,
    resolve_settings_path,
    save_settings,
    setting_attr,
    update_settings,
)

app = typer.Typer(add_help_option=False, no_args_is_help=False)
config_app = typer.Typer(add_help_option=True, no_args_is_help=True, help="Show or edit settings.")
app.add_typer(config_app, name="config")


def _minimal_help() -> str:
    return """linktitler (markdown link titler)

Usage:
  linktitler tag <file|-> [--in-place] [--json] [--strict]
  linktitler title <url>... [--json] [--strict]
  linktitler config show | config set <key> <value>
  linktitler doctor

Common options:
  --in-place      Rewrite the input file instead of printing the result.
  --json          Print a JSON run summary to stdout only.
  --strict        Exit 3 when any URL is left unchanged.
  --settings <P>  Use this settings file.

Discoverability:
  --help-full     Expanded help + settings keys + env vars.
  --find <query>  Search commands, flags, settings, env vars.
  --verbose       Debug logging on stderr.
"""


def _help_full() -> str:
    return """linktitler: replace bare URLs with [page title](url) links

Commands:
  tag           Title every bare URL in a file or stdin.
  title         Resolve titles for the given URLs only.
  config show   Print effective settings (API key redacted).
  config set    Validate and persist one setting.
  doctor        Print settings and environment diagnostics.

Behaviour:
  - URLs already used as a markdown link target are left alone.
  - A page that cannot be titled keeps its literal URL.
  - Bot-protected pages are retried through Archive.org and/or Microlink
    when enabled (fallbackPriority decides the order).

Settings keys (settings.json):
  urlRegex              Pattern that finds URLs.
  sitePatterns          [{"urlMatch": ..., "titleRegex": ...}] overrides.
  useArchiveFallback    Use Archive.org snapshots for blocked pages.
  useMicrolinkFallback  Use the Microlink API for blocked pages.
  microlinkApiKey       Optional Microlink Pro key.
  fallbackPriority      microlink-first | archive-first.
  requestDelayMs        Pause between URLs (0-5000).
  followRedirects       Follow HTTP redirects.
  maxRedirects          Redirect hop limit (1-10).
  timeoutSeconds        Per-request timeout (1-120).

Env vars:
  LINKTITLER_SETTINGS_PATH
  LINKTITLER_MICROLINK_API_KEY
  LINKTITLER_REQUEST_DELAY_MS

Exit codes:
  0 ok, 2 invalid settings or input, 3 some URLs left unchanged (--strict).
"""


_FIND_INDEX = [
    ("command", "tag", "Title every bare URL in a file or stdin."),
    ("command", "title", "Resolve titles for the given URLs only."),
    ("command", "config show", "Print effective settings."),
    ("command", "config set", "Validate and persist one setting."),
    ("command", "doctor", "Print settings and environment diagnostics."),
    ("flag", "--in-place", "Rewrite the input file."),
    ("flag", "--json", "Print a JSON run summary to stdout only."),
    ("flag", "--strict", "Exit 3 when any URL is left unchanged."),
    ("flag", "--settings", "Use this settings file."),
    ("flag", "--help-full", "Expanded help, settings keys, env vars."),
    ("flag", "--find", "Search commands, flags, settings, env vars."),
    ("flag", "--verbose", "Debug logging on stderr."),
    ("setting", "urlRegex", "Pattern that finds URLs."),
    ("setting", "sitePatterns", "Per-site title regex overrides."),
    ("setting", "useArchiveFallback", "Archive.org fallback for blocked pages."),
    ("setting", "useMicrolinkFallback", "Microlink fallback for blocked pages."),
    ("setting", "microlinkApiKey", "Optional Microlink Pro key."),
    ("setting", "fallbackPriority", "microlink-first or archive-first."),
    ("setting", "requestDelayMs", "Pause between URLs."),
    ("setting", "followRedirects", "Follow HTTP redirects."),
    ("setting", "maxRedirects", "Redirect hop limit."),
    ("setting", "timeoutSeconds", "Per-request timeout."),
    ("env", "LINKTITLER_SETTINGS_PATH", "Override settings file path."),
    ("env", "LINKTITLER_MICROLINK_API_KEY", "Microlink key without storing it."),
    ("env", "LINKTITLER_REQUEST_DELAY_MS", "Override request pacing."),
]


def _run_find(query: str) -> str:
    needle = (query or "").strip().lower()
    if not needle:
        return ""
    lines = []
    for category, name, desc in _FIND_INDEX:
        haystack = f"{category} {name} {desc}".lower()
        if needle in haystack:
            lines.append(f"{category} {name} - {desc}")
    return "\n".join(lines)


def _parse_setting_value(attr: str, raw: str) -> Any:
    if attr in {"url_regex", "microlink_api_key", "fallback_priority"}:
        return raw
    if attr == "site_patterns":
        stripped = raw.strip()
        if stripped.startswith("["):
            try:
                return json.loads(stripped)
            except json.JSONDecodeError as exc:
                raise ConfigurationError(f"Invalid JSON for sitePatterns: {exc}") from exc
        return raw.replace("\\n", "\n")
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _settings_path(ctx: typer.Context) -> Optional[Path]:
    obj = ctx.find_root().obj or {}
    return obj.get("settings_path")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    help: bool = typer.Option(False, "--help", "-h", is_eager=True, help="Show minimal help."),
    help_full: bool = typer.Option(False, "--help-full", is_eager=True, help="Show expanded help."),
    find: Optional[str] = typer.Option(None, "--find", is_eager=True, help="Search commands, flags, settings, env vars."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging on stderr."),
    settings_path: Optional[Path] = typer.Option(None, "--settings", help="Use this settings file."),
) -> None:
    if help_full:
        typer.echo(_help_full())
        raise typer.Exit(code=0)
    if find is not None:
        output = _run_find(find)
        if output:
            typer.echo(output)
        raise typer.Exit(code=0)
    if help or ctx.invoked_subcommand is None:
        typer.echo(_minimal_help())
        raise typer.Exit(code=0)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.obj = {"settings_path": settings_path}


@app.command("doctor", add_help_option=True)
def doctor_cmd(ctx: typer.Context) -> None:
    """Print settings and environment diagnostics."""
    report = build_doctor_report(settings_path=_settings_path(ctx))
    typer.echo(format_doctor_report(report))
    raise typer.Exit(code=0 if report.get("ok", True) else 2)


@app.command("tag", add_help_option=True)
def tag_cmd(
    ctx: typer.Context,
    path_or_dash: str = typer.Argument("-", help="File to tag, or '-' for stdin."),
    in_place: bool = typer.Option(False, "--in-place", help="Rewrite the input file."),
    json_out: bool = typer.Option(False, "--json", help="Print a JSON run summary to stdout only."),
    strict: bool = typer.Option(False, "--strict", help="Exit 3 when any URL is left unchanged."),
) -> None:
    """Title every bare URL in a file or stdin."""
    try:
        settings = load_settings(_settings_path(ctx))
        source = open_text_source(path_or_dash, in_place=in_place)
        if json_out and not in_place:
            source = BufferedTextSource(source)
    except (ConfigurationError, ValueError) as exc:
        if not json_out:
            typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2)
    notifier = LoggingNotifier() if json_out else EchoNotifier()
    try:
        summary, exit_code = run_tagging(source, settings=settings, notifier=notifier, soft_fail=not strict)
    except FileNotFoundError as exc:
        if not json_out:
            typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2)
    if json_out:
        if isinstance(source, BufferedTextSource):
            summary["text"] = source.text
        sys.stdout.write(json.dumps(summary, ensure_ascii=False) + "\n")
    raise typer.Exit(code=exit_code)


@app.command("title", add_help_option=True)
def title_cmd(
    ctx: typer.Context,
    urls: List[str] = typer.Argument(..., help="URLs to resolve."),
    json_out: bool = typer.Option(False, "--json", help="Print results as JSON."),
    strict: bool = typer.Option(False, "--strict", help="Exit 3 when any URL fails."),
) -> None:
    """Resolve titles for the given URLs and print markdown links."""
    settings = load_settings(_settings_path(ctx))
    notifier = LoggingNotifier() if json_out else EchoNotifier(quiet=True)
    resolutions = resolve_titles(urls, settings=settings, notifier=notifier)
    if json_out:
        sys.stdout.write(json.dumps([r.to_dict() for r in resolutions], ensure_ascii=False) + "\n")
    else:
        for resolution in resolutions:
            typer.echo(resolution.markdown())
            if not resolution.ok:
                typer.echo(f"{resolution.url}: {resolution.error}", err=True)
    failed = sum(1 for r in resolutions if not r.ok)
    raise typer.Exit(code=3 if failed and strict else 0)


@config_app.command("show")
def config_show(ctx: typer.Context) -> None:
    """Print effective settings as JSON."""
    settings = load_settings(_settings_path(ctx))
    payload = settings.to_mapping()
    if payload.get("microlinkApiKey"):
        payload["microlinkApiKey"] = redact_value(payload["microlinkApiKey"])
    payload["_path"] = str(resolve_settings_path(_settings_path(ctx)))
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


@config_app.command("set")
def config_set(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Setting key, e.g. maxRedirects."),
    value: str = typer.Argument(..., help="New value (JSON literals accepted)."),
) -> None:
    """Validate and persist one setting."""
    path = _settings_path(ctx)
    try:
        attr = setting_attr(key)
        current = load_settings(path, apply_env=False)
        updated = update_settings(current, **{attr: _parse_setting_value(attr, value)})
    except ConfigurationError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2)
    saved = save_settings(updated, path)
    typer.echo(f"Saved {key} to {saved}")


if __name__ == "__main__":
    app()
