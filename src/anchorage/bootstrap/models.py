# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/bootstrap/models.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import paramiko


@dataclass
class Host:
    """
    The instance we SSH into.
    """
    address: str                  # IP or DNS to connect
    username: str                 # SSH username (the AMI's default user)
    pkey: Optional[paramiko.PKey] = None
    port: int = 22


@dataclass(frozen=True)
class ProbeSpec:
    """
    What the remote probe waits for and for how long.
    retries x interval_seconds is the remote wait budget.
    """
    path: str = "/etc/rancher/k3s/k3s.yaml"
    retries: int = 20
    interval_seconds: float = 5.0
    use_sudo: bool = True

    @property
    def budget_seconds(self) -> float:
        return self.retries * self.interval_seconds
