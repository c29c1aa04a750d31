# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/deploy/context.py

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from anchorage.config.models import DeploymentConfig
from anchorage.credentials.keypair import KeyPair
from anchorage.deploy.registry import ResourceRegistry
from anchorage.provision.models import (
    ComputeInstance,
    ContainerRepository,
    NetworkResources,
    StaticAddress,
)


@dataclass
class RunContext:
    """
    Values produced while a deployment runs. Graph nodes read what earlier
    nodes wrote here; the dependency edges guarantee it is already set.
    """
    cfg: DeploymentConfig
    registry: ResourceRegistry
    run_ctx: dict = field(default_factory=dict)
    cancel: threading.Event = field(default_factory=threading.Event)

    key_pair: Optional[KeyPair] = None
    network: Optional[NetworkResources] = None
    address: Optional[StaticAddress] = None
    instance: Optional[ComputeInstance] = None
    repository: Optional[ContainerRepository] = None

    artifact: Optional[str] = None           # kubeconfig as fetched (loopback endpoint)
    kubeconfig: Optional[str] = None         # rewritten kubeconfig
    kubeconfig_path: Optional[Path] = None

    api_client: Any = None
    applier: Any = None                      # KubeApplier
    helm: Any = None                         # IHelm

    @property
    def public_ip(self) -> str:
        if self.address is None:
            raise RuntimeError("static address has not been allocated yet")
        return self.address.ip

    @property
    def private_key_path(self) -> Path:
        return self.cfg.outputs_dir / "id_rsa"
