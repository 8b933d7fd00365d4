"""User-facing notification sinks."""

from __future__ import annotations

import logging
from typing import Protocol

import typer

logger = logging.getLogger("linktitler.notify")


class Notifier(Protocol):
    def info(self, message: str) -> None: ...

    def warning(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...


class LoggingNotifier:
    """Routes notifications to the ``linktitler.notify`` logger."""

    def __init__(self, log: logging.Logger = logger) -> None:
        self._log = log

    def info(self, message: str) -> None:
        self._log.info(message)

    def warning(self, message: str) -> None:
        self._log.warning(message)

    def error(self, message: str) -> None:
        self._log.error(message)


class EchoNotifier:
    """Echo notifications to stderr for interactive CLI use."""

    def __init__(self, *, quiet: bool = False) -> None:
        self.quiet = quiet

    def info(self, message: str) -> None:
        if not self.quiet:
            typer.echo(message, err=True)

    def warning(self, message: str) -> None:
        typer.secho(message, err=True, fg=typer.colors.YELLOW)

    def error(self, message: str) -> None:
        typer.secho(message, err=True, fg=typer.colors.RED)


__all__ = ["Notifier", "LoggingNotifier", "EchoNotifier"]
