# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/observers/console.py
import typer

from .events import (
    BaseEvent,
    BootstrapPollFailed,
    BootstrapPollStarted,
    BootstrapPollSucceeded,
    CredentialRewriteNoop,
    CredentialRewritten,
    DeploySummary,
    PlanComputed,
    PlanFailed,
    ResourceApplied,
    ResourceFailed,
    ResourceStarted,
    TeardownStep,
)

_CTX_KEYS = ("ts", "run_id", "env", "deployment")

_STATUS_COLORS = {
    "DELETED": typer.colors.GREEN,
    "MISSING": typer.colors.YELLOW,
    "DROPPED": typer.colors.BRIGHT_BLACK,
    "KEPT": typer.colors.CYAN,
    "FAILED": typer.colors.RED,
}


class ConsoleObserver:
    """One short line per event on stdout; ResourceStarted is only shown with verbose=True."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def _line(self, event: BaseEvent):
        if isinstance(event, ResourceStarted):
            if self.verbose:
                return f"  ... {event.name} [{event.kind}]", None
            return None
        if isinstance(event, ResourceApplied):
            ref = f" -> {event.ref}" if event.ref else ""
            return f"  ok  {event.name}{ref} ({event.duration_ms} ms)", typer.colors.GREEN
        if isinstance(event, ResourceFailed):
            return f"  ERR {event.name} [{event.kind}]: {event.error}", typer.colors.RED
        if isinstance(event, PlanComputed):
            return f"Plan: {len(event.order)} resources", None
        if isinstance(event, PlanFailed):
            return f"Plan failed: {event.error}", typer.colors.RED
        if isinstance(event, BootstrapPollStarted):
            return (
                f"  Waiting for {event.path} on {event.host} "
                f"(up to {event.retries} x {event.interval_s:g}s)"
            ), None
        if isinstance(event, BootstrapPollSucceeded):
            return f"  Fetched {event.bytes} bytes from {event.host}", None
        if isinstance(event, BootstrapPollFailed):
            return f"  Bootstrap on {event.host} failed: {event.error}", typer.colors.RED
        if isinstance(event, CredentialRewritten):
            return f"  Kubeconfig now points at {event.to_endpoint}", None
        if isinstance(event, CredentialRewriteNoop):
            return f"  Kubeconfig has no {event.from_endpoint}; left unchanged", typer.colors.YELLOW
        if isinstance(event, DeploySummary):
            color = typer.colors.RED if event.failed else typer.colors.GREEN
            return f"applied={event.applied} failed={event.failed} skipped={event.skipped}", color
        if isinstance(event, TeardownStep):
            err = f": {event.error}" if event.error else ""
            return f"  {event.status:<8}{event.name}{err}", _STATUS_COLORS.get(event.status)

        d = event.dict()
        data = ", ".join(f"{k}={v}" for k, v in d.items() if k not in _CTX_KEYS)
        return f"[{d['ts']}] {type(event).__name__} {data}", None

    def notify(self, event: BaseEvent) -> None:
        line = self._line(event)
        if line is None:
            return
        text, color = line
        typer.secho(text, fg=color)
