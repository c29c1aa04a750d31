# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/deploy/registry.py

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

log = logging.getLogger("anchorage")

STATE_FORMAT = 1


def _utc_ts() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class ResourceRecord:
    name: str                     # stable logical name, e.g. "network/vpc"
    kind: str                     # "aws:ec2/vpc", "helm:release", "k8s:ConfigMap"...
    id: Optional[str]             # identifier assigned by the target API
    version: int = 1
    attributes: Dict[str, Any] = field(default_factory=dict)
    updated_at: str = field(default_factory=_utc_ts)


class ResourceRegistry:
    """
    The deployment's record of everything it has created, keyed by logical name.

    upsert() is idempotent: writing the same kind/id/attributes again keeps the
    version; any change bumps it. Records keep their first-creation order,
    which teardown walks in reverse. With a path, every change is persisted
    as JSON.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else None
        self._records: Dict[str, ResourceRecord] = {}
        if self.path and self.path.is_file():
            self._load()

    # ------------------------- persistence -------------------------

    def _load(self) -> None:
        data = json.loads(self.path.read_text())
        fmt = data.get("format")
        if fmt != STATE_FORMAT:
            raise ValueError(f"{self.path}: unsupported state format {fmt!r}")
        for raw in data.get("resources", []):
            rec = ResourceRecord(**raw)
            self._records[rec.name] = rec
        log.debug("[registry] Loaded %d records from %s", len(self._records), self.path)

    def save(self) -> None:
        if not self.path:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "format": STATE_FORMAT,
            "resources": [asdict(r) for r in self._records.values()],
        }
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2, sort_keys=True, default=str))
        os.replace(tmp, self.path)

    # ------------------------- queries -------------------------

    def get(self, name: str) -> Optional[ResourceRecord]:
        return self._records.get(name)

    def require(self, name: str) -> ResourceRecord:
        rec = self._records.get(name)
        if rec is None:
            raise KeyError(f"No resource '{name}' in registry")
        return rec

    def records(self) -> List[ResourceRecord]:
        """All records in first-creation order."""
        return list(self._records.values())

    def __contains__(self, name: str) -> bool:
        return name in self._records

    def __len__(self) -> int:
        return len(self._records)

    # ------------------------- mutations -------------------------

    def upsert(
        self,
        name: str,
        *,
        kind: str,
        id: Optional[str],
        attributes: Optional[Dict[str, Any]] = None,
    ) -> ResourceRecord:
        attributes = dict(attributes or {})
        existing = self._records.get(name)

        if existing is None:
            rec = ResourceRecord(name=name, kind=kind, id=id, attributes=attributes)
            self._records[name] = rec
            log.debug("[registry] + %s (%s) id=%s", name, kind, id)
        elif existing.kind == kind and existing.id == id and existing.attributes == attributes:
            return existing
        else:
            existing.kind = kind
            existing.id = id
            existing.attributes = attributes
            existing.version += 1
            existing.updated_at = _utc_ts()
            rec = existing
            log.debug("[registry] ~ %s (%s) id=%s v%d", name, kind, id, rec.version)

        self.save()
        return rec

    def remove(self, name: str) -> None:
        if self._records.pop(name, None) is not None:
            log.debug("[registry] - %s", name)
            self.save()
