# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/observers/jsonfile.py
from __future__ import annotations

import json
from pathlib import Path

from .events import BaseEvent
from .interface import Observer


class JsonFileObserver(Observer):
    """
    Appends one JSON object per event to a JSONL file, e.g.
    {"event": "ResourceApplied", "ts": ..., "run_id": ..., "name": "network/vpc", ...}.
    Fields that are None are left out.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def notify(self, event: BaseEvent) -> None:
        record = {"event": type(event).__name__}
        record.update((k, v) for k, v in event.dict().items() if v is not None)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, default=str) + "\n")
