# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/observers/events.py

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single invocation
    env: str          # dev/staging/prod
    deployment: str   # deployment name from the config

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(env: str, deployment: str, run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
        "run_id": run_id or str(uuid.uuid4()),
        "env": env,
        "deployment": deployment,
    }


# ----- Planner -----

@dataclass(frozen=True)
class PlanComputed(BaseEvent):
    order: List[str]

@dataclass(frozen=True)
class PlanFailed(BaseEvent):
    error: str


# ----- Per-resource lifecycle -----

@dataclass(frozen=True)
class ResourceStarted(BaseEvent):
    name: str
    kind: str
    layer: str

@dataclass(frozen=True)
class ResourceApplied(BaseEvent):
    name: str
    kind: str
    ref: Optional[str]
    duration_ms: int

@dataclass(frozen=True)
class ResourceFailed(BaseEvent):
    name: str
    kind: str
    error: str


# ----- Remote bootstrap -----

@dataclass(frozen=True)
class BootstrapPollStarted(BaseEvent):
    host: str
    path: str
    retries: int
    interval_s: float

@dataclass(frozen=True)
class BootstrapPollSucceeded(BaseEvent):
    host: str
    bytes: int

@dataclass(frozen=True)
class BootstrapPollFailed(BaseEvent):
    host: str
    error: str


# ----- Credential rewrite -----

@dataclass(frozen=True)
class CredentialRewritten(BaseEvent):
    from_endpoint: str
    to_endpoint: str
    occurrences: int

@dataclass(frozen=True)
class CredentialRewriteNoop(BaseEvent):
    from_endpoint: str


# ----- Summary & teardown -----

@dataclass(frozen=True)
class DeploySummary(BaseEvent):
    applied: int
    failed: int
    skipped: int

@dataclass(frozen=True)
class TeardownStep(BaseEvent):
    name: str
    kind: str
    status: str       # "DELETED" | "MISSING" | "DROPPED" | "KEPT" | "FAILED"
    error: Optional[str] = None
