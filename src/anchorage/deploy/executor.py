# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

from .graph import Ack, ResourceGraph
from ..errors import AnchorageError, ApplyError

# Observer bits
from ..observers.dispatcher import EventBus
from ..observers.events import (
    DeploySummary,
    ResourceApplied,
    ResourceFailed,
    ResourceStarted,
)

log = logging.getLogger("anchorage")


@dataclass
class ResourceOutcome:
    name: str
    kind: str
    status: str                 # "APPLIED" | "FAILED" | "SKIPPED"
    ref: Optional[str] = None
    duration_ms: int = 0
    error: Optional[str] = None


@dataclass
class ApplyReport:
    outcomes: List[ResourceOutcome] = field(default_factory=list)

    def add(self, outcome: ResourceOutcome) -> None:
        self.outcomes.append(outcome)

    def count(self, status: str) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    def applied(self) -> List[str]:
        return [o.name for o in self.outcomes if o.status == "APPLIED"]

    def summary(self) -> str:
        return (
            f"APPLIED={self.count('APPLIED')} "
            f"FAILED={self.count('FAILED')} "
            f"SKIPPED={self.count('SKIPPED')}"
        )


class GraphExecutor:
    """
    Applies a ResourceGraph one resource at a time in topological order.

    A resource is started only after every resource it depends on has been
    acknowledged. The first failure stops the run: nothing is retried or
    rolled back, and everything not yet applied is reported as SKIPPED.
    Errors that are already AnchorageErrors propagate unchanged; anything
    else is wrapped in ApplyError.
    """

    def __init__(self, bus: Optional[EventBus] = None, run_ctx: Optional[dict] = None):
        self.bus = bus or EventBus()
        self.run_ctx = run_ctx or {}
        self.report = ApplyReport()

    def _emit(self, event_cls, **fields) -> None:
        if self.run_ctx:
            self.bus.emit(event_cls(**fields, **self.run_ctx))

    def _summarize(self) -> None:
        self._emit(
            DeploySummary,
            applied=self.report.count("APPLIED"),
            failed=self.report.count("FAILED"),
            skipped=self.report.count("SKIPPED"),
        )
        log.info("[apply] %s", self.report.summary())

    def run(self, graph: ResourceGraph) -> ApplyReport:
        self.report = ApplyReport()
        ordered = graph.order(bus=self.bus if self.run_ctx else None, run_ctx=self.run_ctx or None)

        for idx, node in enumerate(ordered):
            self._emit(ResourceStarted, name=node.name, kind=node.kind, layer=node.layer)
            log.info("[apply] %s (%s)", node.name, node.kind)

            t0 = time.time()
            try:
                ack = node.apply() or Ack()
            except Exception as e:
                self.report.add(ResourceOutcome(
                    name=node.name, kind=node.kind, status="FAILED", error=str(e),
                ))
                for rest in ordered[idx + 1:]:
                    self.report.add(ResourceOutcome(name=rest.name, kind=rest.kind, status="SKIPPED"))
                self._emit(ResourceFailed, name=node.name, kind=node.kind, error=str(e))
                log.error("[apply] %s failed: %s", node.name, e)
                self._summarize()
                if isinstance(e, AnchorageError):
                    raise
                raise ApplyError(node.name, e) from e

            duration_ms = int((time.time() - t0) * 1000)
            self.report.add(ResourceOutcome(
                name=node.name, kind=node.kind, status="APPLIED",
                ref=ack.ref, duration_ms=duration_ms,
            ))
            self._emit(
                ResourceApplied, name=node.name, kind=node.kind,
                ref=ack.ref, duration_ms=duration_ms,
            )

        self._summarize()
        return self.report

