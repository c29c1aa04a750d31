# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/config/models.py

from pathlib import Path
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, HttpUrl, model_validator


class AwsSettings(BaseModel):
    region: str = "us-east-1"
    profile: Optional[str] = None


class NetworkSpec(BaseModel):
    vpc_cidr: str = "10.0.0.0/16"
    subnet_cidr: str = "10.0.1.0/24"
    availability_zone: Optional[str] = None   # let EC2 pick when unset
    ssh_cidr: str = "0.0.0.0/0"
    api_cidr: str = "0.0.0.0/0"
    extra_ports: List[int] = Field(default_factory=list)


class InstanceSpec(BaseModel):
    instance_type: str = "t3.medium"
    ami_id: Optional[str] = None
    ami_name_filter: str = "ubuntu/images/hvm-ssd/ubuntu-jammy-22.04-amd64-server-*"
    ami_owner: str = "099720108577"          # Canonical
    root_volume_gb: int = 30
    ssh_user: str = "ubuntu"
    key_bits: int = 4096
    k3s_version: str = "v1.29.4+k3s1"
    k3s_extra_args: List[str] = Field(default_factory=list)


class BootstrapSpec(BaseModel):
    """How the kubeconfig produced by the boot script is fetched and rewritten."""

    kubeconfig_path: str = "/etc/rancher/k3s/k3s.yaml"
    retries: int = Field(default=20, ge=1)
    interval_seconds: float = Field(default=5.0, ge=0)
    use_sudo: bool = True
    loopback_endpoint: str = "https://127.0.0.1:6443"
    api_port: int = 6443
    require_loopback_match: bool = True
    ssh_port: int = 22
    connect_timeout: float = 30.0
    # TCP readiness wait before the probe channel is opened
    ssh_wait_attempts: int = 30
    ssh_wait_interval: float = 10.0


class AddonRelease(BaseModel):
    """Helm release of the GitOps operator."""

    name: str = "flux"
    namespace: str = "flux-system"
    repo_name: str = "fluxcd-community"
    repo_url: HttpUrl = "https://fluxcd-community.github.io/helm-charts"
    chart: str = "flux2"
    version: Optional[str] = "2.12.4"
    values: Dict = Field(default_factory=dict)
    create_namespace: bool = True
    atomic: bool = True
    wait: bool = True
    timeout_seconds: int = 600
    crds: List[str] = Field(
        default_factory=lambda: [
            "gitrepositories.source.toolkit.fluxcd.io",
            "kustomizations.kustomize.toolkit.fluxcd.io",
        ]
    )
    crd_wait_attempts: int = 60
    crd_wait_interval: float = 5.0

    @property
    def chart_ref(self) -> str:
        return f"{self.repo_name}/{self.chart}"


class SourceSpec(BaseModel):
    """Flux GitRepository. Exactly one revision selector is used."""

    name: str = "platform"
    url: str
    branch: Optional[str] = None
    tag: Optional[str] = None
    semver: Optional[str] = None
    commit: Optional[str] = None
    interval: str = "1m"
    secret_ref: Optional[str] = None

    @model_validator(mode="after")
    def _one_revision(self):
        chosen = [v for v in (self.branch, self.tag, self.semver, self.commit) if v]
        if len(chosen) > 1:
            raise ValueError("source: set only one of branch, tag, semver or commit")
        if not chosen:
            self.branch = "main"
        return self


class SubstitutionSpec(BaseModel):
    name: str = "cluster-vars"
    data: Dict[str, str] = Field(default_factory=dict)


class DeploymentSpec(BaseModel):
    """One Flux Kustomization reconciling an application path."""

    name: str
    path: str
    target_namespace: str
    interval: str = "5m"
    prune: bool = True
    wait: bool = True
    timeout: str = "3m"
    create_namespace: bool = True


class SyncSpec(BaseModel):
    source: SourceSpec
    substitutions: SubstitutionSpec = SubstitutionSpec()
    deployments: List[DeploymentSpec] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_names(self):
        names = [d.name for d in self.deployments]
        dupes = {n for n in names if names.count(n) > 1}
        if dupes:
            raise ValueError(f"sync.deployments: duplicate names {sorted(dupes)}")
        return self


class RegistrySpec(BaseModel):
    """ECR repository and the in-cluster pull-secret refresh job."""

    repository: Optional[str] = None          # ensure this ECR repository exists
    scan_on_push: bool = True
    registry: Optional[str] = None            # <account>.dkr.ecr.<region>.amazonaws.com
    refresh_enabled: bool = True
    namespaces: List[str] = Field(default_factory=lambda: ["default"])
    schedule: str = "0 */6 * * *"
    secret_name: str = "ecr-pull-secret"
    service_account: str = "default"          # identity patched in every namespace
    job_name: str = "ecr-credential-refresh"
    image: str = "alpine/k8s:1.29.2"
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None


class DeploymentConfig(BaseModel):
    name: str
    environment: Literal["dev", "staging", "prod"] = "dev"
    state_dir: Path = Path(".anchorage")
    aws: AwsSettings = AwsSettings()
    network: NetworkSpec = NetworkSpec()
    instance: InstanceSpec = InstanceSpec()
    bootstrap: BootstrapSpec = BootstrapSpec()
    addon: AddonRelease = AddonRelease()
    sync: SyncSpec
    registry: RegistrySpec = RegistrySpec()

    @property
    def state_file(self) -> Path:
        return self.state_dir / "state.json"

    @property
    def outputs_dir(self) -> Path:
        return self.state_dir / "outputs"

    def tag(self, logical: str) -> str:
        """Stable provider-side name for a logical resource."""
        return f"{self.name}-{logical}"
