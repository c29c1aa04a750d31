# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/provision/provisioner.py

from __future__ import annotations

import logging
from typing import List, Tuple

from anchorage.credentials.keypair import load_or_generate
from anchorage.deploy.context import RunContext
from anchorage.deploy.graph import Ack, ResourceGraph, ResourceNode
from anchorage.provision.address import StaticAddressBinder
from anchorage.provision.ec2 import CloudProvider
from anchorage.provision.models import NetworkResources
from anchorage.provision.userdata import render_boot_script

log = logging.getLogger("anchorage")

LAYER_CREDENTIALS = "credentials"
LAYER_NETWORK = "network"
LAYER_COMPUTE = "compute"

# well-known ports opened to the world besides SSH and the API server
_WEB_PORTS = (80, 443)


def ingress_rules(ctx: RunContext) -> List[Tuple[int, str]]:
    net = ctx.cfg.network
    rules = [(22, net.ssh_cidr), (ctx.cfg.bootstrap.api_port, net.api_cidr)]
    for port in (*_WEB_PORTS, *net.extra_ports):
        if (port, "0.0.0.0/0") not in rules:
            rules.append((port, "0.0.0.0/0"))
    return rules


def add_provisioning(graph: ResourceGraph, ctx: RunContext, provider: CloudProvider) -> List[str]:
    """
    Add the cloud-side resources: key pair, network, static address,
    instance and the address association. Returns the names the cluster
    bootstrap should wait for.
    """
    cfg = ctx.cfg
    reg = ctx.registry
    binder = StaticAddressBinder(provider)

    def node(name: str, kind: str, layer: str, depends_on=()):
        def deco(fn):
            graph.add(ResourceNode(name=name, kind=kind, apply=fn, depends_on=list(depends_on), layer=layer))
            return fn
        return deco

    # ---- credentials ----

    @node("credentials/keypair", "local:keypair", LAYER_CREDENTIALS)
    def _keypair() -> Ack:
        ctx.key_pair = load_or_generate(
            ctx.private_key_path, bits=cfg.instance.key_bits, comment=f"anchorage-{cfg.name}",
        )
        reg.upsert(
            "credentials/keypair", kind="local:keypair", id=ctx.key_pair.fingerprint,
            attributes={"path": str(ctx.private_key_path)},
        )
        return Ack(ref=ctx.key_pair.fingerprint)

    # ---- network ----

    @node("network/vpc", "aws:ec2/vpc", LAYER_NETWORK)
    def _vpc() -> Ack:
        vpc_id = provider.ensure_vpc(cfg.tag("vpc"), cfg.network.vpc_cidr)
        reg.upsert("network/vpc", kind="aws:ec2/vpc", id=vpc_id, attributes={"cidr": cfg.network.vpc_cidr})
        ctx.network = NetworkResources(vpc_id=vpc_id, subnet_id="", internet_gateway_id="", route_table_id="")
        return Ack(ref=vpc_id)

    @node("network/internet-gateway", "aws:ec2/internet-gateway", LAYER_NETWORK, ["network/vpc"])
    def _igw() -> Ack:
        igw_id = provider.ensure_internet_gateway(cfg.tag("igw"), ctx.network.vpc_id)
        reg.upsert(
            "network/internet-gateway", kind="aws:ec2/internet-gateway", id=igw_id,
            attributes={"vpc_id": ctx.network.vpc_id},
        )
        ctx.network.internet_gateway_id = igw_id
        return Ack(ref=igw_id)

    @node("network/subnet", "aws:ec2/subnet", LAYER_NETWORK, ["network/vpc"])
    def _subnet() -> Ack:
        subnet_id = provider.ensure_subnet(
            cfg.tag("subnet"), ctx.network.vpc_id, cfg.network.subnet_cidr, cfg.network.availability_zone,
        )
        reg.upsert("network/subnet", kind="aws:ec2/subnet", id=subnet_id, attributes={"cidr": cfg.network.subnet_cidr})
        ctx.network.subnet_id = subnet_id
        return Ack(ref=subnet_id)

    @node("network/route-table", "aws:ec2/route-table", LAYER_NETWORK,
          ["network/internet-gateway", "network/subnet"])
    def _route_table() -> Ack:
        rt_id = provider.ensure_route_table(
            cfg.tag("rt"), ctx.network.vpc_id, ctx.network.internet_gateway_id, ctx.network.subnet_id,
        )
        reg.upsert("network/route-table", kind="aws:ec2/route-table", id=rt_id)
        ctx.network.route_table_id = rt_id
        return Ack(ref=rt_id)

    @node("network/security-group", "aws:ec2/security-group", LAYER_NETWORK, ["network/vpc"])
    def _security_group() -> Ack:
        rules = ingress_rules(ctx)
        sg_id = provider.ensure_security_group(cfg.tag("sg"), ctx.network.vpc_id, rules)
        reg.upsert(
            "network/security-group", kind="aws:ec2/security-group", id=sg_id,
            attributes={"ingress": [f"{p}:{c}" for p, c in rules]},
        )
        ctx.network.security_group_id = sg_id
        return Ack(ref=sg_id)

    @node("network/address", "aws:ec2/eip", LAYER_NETWORK)
    def _address() -> Ack:
        ctx.address = provider.ensure_address(cfg.tag("eip"))
        reg.upsert("network/address", kind="aws:ec2/eip", id=ctx.address.allocation_id,
                   attributes={"ip": ctx.address.ip})
        return Ack(ref=ctx.address.ip)

    # ---- compute ----

    @node("compute/key-pair", "aws:ec2/key-pair", LAYER_COMPUTE, ["credentials/keypair"])
    def _key_import() -> Ack:
        name = provider.ensure_key_pair(cfg.tag("key"), ctx.key_pair.public_material)
        reg.upsert("compute/key-pair", kind="aws:ec2/key-pair", id=name,
                   attributes={"fingerprint": ctx.key_pair.fingerprint})
        return Ack(ref=name)

    @node("compute/instance", "aws:ec2/instance", LAYER_COMPUTE,
          ["compute/key-pair", "network/route-table", "network/security-group", "network/address"])
    def _instance() -> Ack:
        inst = cfg.instance
        ami_id = inst.ami_id or provider.find_ami(inst.ami_name_filter, inst.ami_owner)
        script = render_boot_script(
            k3s_version=inst.k3s_version,
            tls_san=ctx.address.ip,
            extra_args=inst.k3s_extra_args,
        )
        ctx.instance = provider.ensure_instance(
            cfg.tag("node"),
            ami_id=ami_id,
            instance_type=inst.instance_type,
            key_name=cfg.tag("key"),
            subnet_id=ctx.network.subnet_id,
            security_group_id=ctx.network.security_group_id,
            user_data=script,
            root_volume_gb=inst.root_volume_gb,
        )
        reg.upsert(
            "compute/instance", kind="aws:ec2/instance", id=ctx.instance.id,
            attributes={"ami": ami_id, "type": inst.instance_type, "private_ip": ctx.instance.private_address},
        )
        return Ack(ref=ctx.instance.id)

    @node("network/address-association", "aws:ec2/eip-association", LAYER_COMPUTE,
          ["compute/instance", "network/address"])
    def _associate() -> Ack:
        ctx.address = binder.bind(ctx.address, ctx.instance.id)
        reg.upsert(
            "network/address-association", kind="aws:ec2/eip-association", id=ctx.address.association_id,
            attributes={"allocation_id": ctx.address.allocation_id, "instance_id": ctx.instance.id},
        )
        return Ack(ref=ctx.address.association_id)

    tail = ["network/address-association"]

    # ---- image registry ----

    repo_name = cfg.registry.repository
    if repo_name:
        @node("registry/repository", "aws:ecr/repository", LAYER_NETWORK)
        def _repository() -> Ack:
            ctx.repository = provider.ensure_repository(repo_name, scan_on_push=cfg.registry.scan_on_push)
            reg.upsert("registry/repository", kind="aws:ecr/repository", id=repo_name,
                       attributes={"url": ctx.repository.url})
            return Ack(ref=ctx.repository.url)

        tail.append("registry/repository")

    return tail
