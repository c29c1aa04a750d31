# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/logging/log.py

from __future__ import annotations

import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path

LOG_DIR_ENV = "ANCHORAGE_LOG_DIR"
FORMAT = "%(asctime)s | %(levelname)-7s | %(message)s"
DATEFMT = "%Y-%m-%d %H:%M:%S"


def default_log_dir() -> Path:
    env = os.environ.get(LOG_DIR_ENV)
    return Path(env) if env else Path.home() / ".anchorage" / "logs"


def _prune(base_dir: Path, name: str, keep: int) -> None:
    runs = sorted(base_dir.glob(f"{name}-*.log"), key=lambda p: p.stat().st_mtime)
    for old in runs[:max(len(runs) - keep, 0)]:
        old.unlink(missing_ok=True)


def init_logging(
    *,
    base_dir: Path | None = None,
    name: str = "anchorage",
    verbose: bool = False,
    keep: int = 50,
) -> tuple[logging.Logger, str, Path]:
    """
    Set up the "anchorage" logger for one CLI run.

    Everything goes to <base_dir>/<name>-<utc ts>-<run_id>.log at DEBUG; the
    console gets INFO, or DEBUG with verbose=True. Only the newest `keep` run
    logs are kept. Returns (logger, run_id, log_path); run_id is shared with
    the observers so events and log lines can be correlated.
    """
    run_id = str(uuid.uuid4())
    base_dir = Path(base_dir) if base_dir is not None else default_log_dir()
    base_dir.mkdir(parents=True, exist_ok=True)
    _prune(base_dir, name, keep - 1)

    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    log_path = base_dir / f"{name}-{ts}-{run_id}.log"

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.propagate = False

    formatter = logging.Formatter(FORMAT, datefmt=DATEFMT)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    console = logging.StreamHandler()
    console.setLevel(logging.DEBUG if verbose else logging.INFO)
    console.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(console)

    logger.debug("run %s started, logging to %s", run_id, log_path)
    return logger, run_id, log_path
