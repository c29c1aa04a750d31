# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/provision/models.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class NetworkResources:
    vpc_id: str
    subnet_id: str
    internet_gateway_id: str
    route_table_id: str
    security_group_id: Optional[str] = None


@dataclass
class StaticAddress:
    """
    An elastic IP. It outlives any instance it is attached to and has at most
    one association at a time.
    """
    allocation_id: str
    ip: str
    association_id: Optional[str] = None
    instance_id: Optional[str] = None


@dataclass
class ComputeInstance:
    id: str
    public_address: Optional[str]
    private_address: Optional[str]
    boot_script: str = ""
    state: str = "pending"


@dataclass
class ContainerRepository:
    name: str
    arn: str
    url: str                      # <account>.dkr.ecr.<region>.amazonaws.com/<name>

    @property
    def registry(self) -> str:
        return self.url.split("/", 1)[0]
