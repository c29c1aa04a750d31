# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/helm/interface.py

from __future__ import annotations

from typing import Protocol

from anchorage.config.models import AddonRelease


class IHelm(Protocol):
    def add_repo(self, name: str, url: str) -> None: ...
    def update_repos(self) -> None: ...
    def upgrade_install(self, rel: AddonRelease) -> None: ...
