# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/observers/logger.py
from __future__ import annotations

import logging

from .events import (
    BaseEvent,
    BootstrapPollFailed,
    CredentialRewriteNoop,
    PlanFailed,
    ResourceFailed,
    TeardownStep,
)

_CTX_KEYS = ("ts", "env", "deployment")


def _level(event: BaseEvent) -> int:
    if isinstance(event, (ResourceFailed, PlanFailed, BootstrapPollFailed)):
        return logging.ERROR
    if isinstance(event, TeardownStep) and event.status == "FAILED":
        return logging.ERROR
    if isinstance(event, CredentialRewriteNoop):
        return logging.WARNING
    return logging.DEBUG


class LoggerObserver:
    """Mirrors events into the run log file. Failures are logged at ERROR, the rest at DEBUG."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def notify(self, event: BaseEvent) -> None:
        fields = " ".join(f"{k}={v}" for k, v in event.dict().items() if k not in _CTX_KEYS)
        self.logger.log(_level(event), "[event] %s %s", type(event).__name__, fields)
