# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/orchestrator.py

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from anchorage.bootstrap.models import Host, ProbeSpec
from anchorage.bootstrap.poller import RemoteBootstrapPoller
from anchorage.config.models import DeploymentConfig
from anchorage.credentials.keypair import delete_key_files
from anchorage.credentials.rewrite import endpoint_for, rewrite_credential
from anchorage.deploy.context import RunContext
from anchorage.deploy.executor import ApplyReport, GraphExecutor
from anchorage.deploy.graph import Ack, ResourceGraph, ResourceNode
from anchorage.deploy.registry import ResourceRegistry
from anchorage.errors import AnchorageError, BootstrapConnectionError, ProvisioningError
from anchorage.gitops.pipeline import add_sync_pipeline
from anchorage.helm.cli_runner import HelmCliRunner
from anchorage.kube.applier import KubeApplier
from anchorage.kube.client import api_client_from_kubeconfig, save_kubeconfig, wait_for_api
from anchorage.observers.dispatcher import EventBus
from anchorage.observers.events import (
    CredentialRewriteNoop,
    CredentialRewritten,
    TeardownStep,
    new_ctx,
)
from anchorage.provision.ec2 import CloudProvider, Ec2Provider
from anchorage.provision.provisioner import add_provisioning
from anchorage.refresh.cronjob import add_refresh_job
from anchorage.utils.files import write_secret
from anchorage.utils.ssh_runner import wait_for_port

log = logging.getLogger("anchorage")

LAYER_BOOTSTRAP = "bootstrap"
LAYER_CLUSTER = "cluster"

OUTPUTS_FILE = "outputs.json"
SECRET_OUTPUTS = ("private_key_path", "kubeconfig_path")


@dataclass
class DeploymentOutputs:
    public_ip: str
    private_key_path: str
    kubeconfig_path: str
    api_endpoint: str
    instance_id: str
    allocation_id: str
    ssh_command: str
    repository_url: Optional[str] = None

    def to_dict(self, *, show_secrets: bool = False) -> dict:
        data = asdict(self)
        if not show_secrets:
            for key in SECRET_OUTPUTS:
                data[key] = "<sensitive>"
        return data


def write_outputs(outputs: DeploymentOutputs, outputs_dir: Path) -> Path:
    return write_secret(Path(outputs_dir) / OUTPUTS_FILE, json.dumps(asdict(outputs), indent=2) + "\n")


def read_outputs(cfg: DeploymentConfig) -> DeploymentOutputs:
    path = cfg.outputs_dir / OUTPUTS_FILE
    if not path.is_file():
        raise AnchorageError(f"No outputs at {path}; run 'anchorage up' first")
    return DeploymentOutputs(**json.loads(path.read_text()))


class Orchestrator:
    """
    Builds the whole deployment as one ResourceGraph and runs it:
    cloud resources, remote bootstrap, credential rewrite, cluster client,
    the GitOps layers and the credential refresh job.

    Every collaborator can be swapped for tests.
    """

    def __init__(
        self,
        cfg: DeploymentConfig,
        *,
        provider: Optional[CloudProvider] = None,
        poller: Optional[RemoteBootstrapPoller] = None,
        port_waiter: Callable[..., int] = wait_for_port,
        api_client_factory: Callable[[str], object] = api_client_from_kubeconfig,
        api_waiter: Optional[Callable[[object], object]] = wait_for_api,
        applier_factory: Callable[[object], object] = KubeApplier,
        helm_factory: Optional[Callable[[Path], object]] = None,
        observers: Optional[List] = None,
        run_id: Optional[str] = None,
        debug: bool = False,
    ):
        self.cfg = cfg
        self._provider = provider
        self.port_waiter = port_waiter
        self.api_client_factory = api_client_factory
        self.api_waiter = api_waiter
        self.applier_factory = applier_factory
        self.helm_factory = helm_factory or (lambda kc: HelmCliRunner(kubeconfig=kc, debug=debug))

        self.bus = EventBus(observers or [])
        self.run_ctx = new_ctx(env=cfg.environment, deployment=cfg.name, run_id=run_id)
        self.poller = poller or RemoteBootstrapPoller(
            connect_timeout=cfg.bootstrap.connect_timeout,
            bus=self.bus,
            run_ctx=self.run_ctx,
        )

        self.registry = ResourceRegistry(cfg.state_file)
        self.ctx = RunContext(cfg=cfg, registry=self.registry, run_ctx=self.run_ctx)
        self.report: Optional[ApplyReport] = None

    @property
    def provider(self) -> CloudProvider:
        if self._provider is None:
            self._provider = Ec2Provider(region=self.cfg.aws.region, profile=self.cfg.aws.profile)
        return self._provider

    # ------------------------- graph -------------------------

    def _add_bootstrap(self, graph: ResourceGraph, after: List[str]) -> List[str]:
        cfg = self.cfg
        boot = cfg.bootstrap
        ctx = self.ctx

        def _ssh_ready() -> Ack:
            try:
                attempt = self.port_waiter(
                    ctx.public_ip, boot.ssh_port,
                    attempts=boot.ssh_wait_attempts, interval=boot.ssh_wait_interval,
                )
            except TimeoutError as e:
                raise BootstrapConnectionError(str(e)) from e
            return Ack(ref=f"{ctx.public_ip}:{boot.ssh_port}", detail={"attempt": attempt})

        def _fetch() -> Ack:
            host = Host(
                address=ctx.public_ip,
                username=cfg.instance.ssh_user,
                pkey=ctx.key_pair.pkey(),
                port=boot.ssh_port,
            )
            spec = ProbeSpec(
                path=boot.kubeconfig_path,
                retries=boot.retries,
                interval_seconds=boot.interval_seconds,
                use_sudo=boot.use_sudo,
            )
            ctx.artifact = self.poller.fetch(host, spec, cancel=ctx.cancel)
            return Ack(ref=boot.kubeconfig_path, detail={"bytes": len(ctx.artifact)})

        def _rewrite() -> Ack:
            target = endpoint_for(ctx.public_ip, boot.api_port)
            text, n = rewrite_credential(
                ctx.artifact, boot.loopback_endpoint, target, strict=boot.require_loopback_match,
            )
            if n:
                self.bus.emit(CredentialRewritten(
                    from_endpoint=boot.loopback_endpoint, to_endpoint=target, occurrences=n, **self.run_ctx,
                ))
            else:
                self.bus.emit(CredentialRewriteNoop(from_endpoint=boot.loopback_endpoint, **self.run_ctx))
            ctx.kubeconfig = text
            ctx.kubeconfig_path = save_kubeconfig(text, cfg.outputs_dir / "kubeconfig")
            return Ack(ref=target, detail={"occurrences": n})

        def _client() -> Ack:
            ctx.api_client = self.api_client_factory(ctx.kubeconfig)
            version = self.api_waiter(ctx.api_client) if self.api_waiter else None
            ctx.applier = self.applier_factory(ctx.api_client)
            ctx.helm = self.helm_factory(ctx.kubeconfig_path)
            return Ack(ref=endpoint_for(ctx.public_ip, boot.api_port), detail={"version": version})

        graph.add(ResourceNode("bootstrap/ssh-ready", "gate:tcp", _ssh_ready, list(after), LAYER_BOOTSTRAP))
        graph.add(ResourceNode("bootstrap/kubeconfig", "ssh:file", _fetch, ["bootstrap/ssh-ready"], LAYER_BOOTSTRAP))
        graph.add(ResourceNode("bootstrap/kubeconfig-rewrite", "local:kubeconfig", _rewrite,
                               ["bootstrap/kubeconfig"], LAYER_BOOTSTRAP))
        graph.add(ResourceNode("cluster/client", "local:client", _client,
                               ["bootstrap/kubeconfig-rewrite"], LAYER_CLUSTER))
        return ["cluster/client"]

    def build_graph(self) -> ResourceGraph:
        graph = ResourceGraph()
        tail = add_provisioning(graph, self.ctx, self.provider)
        tail = self._add_bootstrap(graph, tail)
        tail = add_sync_pipeline(graph, self.ctx, after=tail)

        reg = self.cfg.registry
        if reg.refresh_enabled and (reg.registry or reg.repository):
            add_refresh_job(graph, self.ctx, after=tail)
        elif reg.refresh_enabled:
            log.info("[refresh] No registry configured, skipping the credential refresh job")
        return graph

    # ------------------------- commands -------------------------

    def plan(self) -> List[List[ResourceNode]]:
        graph = self.build_graph()
        graph.order(bus=self.bus, run_ctx=self.run_ctx)
        return graph.layers()

    def up(self) -> DeploymentOutputs:
        graph = self.build_graph()
        executor = GraphExecutor(bus=self.bus, run_ctx=self.run_ctx)
        try:
            executor.run(graph)
        finally:
            self.report = executor.report

        ctx = self.ctx
        outputs = DeploymentOutputs(
            public_ip=ctx.public_ip,
            private_key_path=str(ctx.private_key_path),
            kubeconfig_path=str(ctx.kubeconfig_path),
            api_endpoint=endpoint_for(ctx.public_ip, self.cfg.bootstrap.api_port),
            instance_id=ctx.instance.id,
            allocation_id=ctx.address.allocation_id,
            ssh_command=f"ssh -i {ctx.private_key_path} {self.cfg.instance.ssh_user}@{ctx.public_ip}",
            repository_url=ctx.repository.url if ctx.repository else None,
        )
        path = write_outputs(outputs, self.cfg.outputs_dir)
        log.info("[outputs] Wrote %s", path)
        return outputs

    def down(self, *, delete_repository: bool = False) -> List[Tuple[str, str]]:
        """
        Delete everything the registry recorded, newest first. In-cluster
        objects go away with the instance and are only dropped from the
        registry. Stops at the first failure; a re-run picks up from there.
        """
        results: List[Tuple[str, str]] = []

        def _step(name: str, kind: str, status: str, error: Optional[str] = None) -> None:
            results.append((name, status))
            self.bus.emit(TeardownStep(name=name, kind=kind, status=status, error=error, **self.run_ctx))
            log.info("[down] %-32s %s", name, status)

        for rec in reversed(self.registry.records()):
            if rec.kind.startswith(("k8s:", "helm:")):
                self.registry.remove(rec.name)
                _step(rec.name, rec.kind, "DROPPED")
                continue

            if rec.kind == "aws:ecr/repository" and not delete_repository:
                _step(rec.name, rec.kind, "KEPT")
                continue

            if rec.kind == "local:keypair":
                delete_key_files(Path(rec.attributes.get("path", self.ctx.private_key_path)))
                for leftover in (self.cfg.outputs_dir / "kubeconfig", self.cfg.outputs_dir / OUTPUTS_FILE):
                    if leftover.exists():
                        leftover.unlink()
                self.registry.remove(rec.name)
                _step(rec.name, rec.kind, "DELETED")
                continue

            try:
                existed = self.provider.delete(rec.kind, rec.id, rec.attributes)
            except ProvisioningError as e:
                _step(rec.name, rec.kind, "FAILED", str(e))
                raise
            self.registry.remove(rec.name)
            _step(rec.name, rec.kind, "DELETED" if existed else "MISSING")

        return results
