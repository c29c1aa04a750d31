from pathlib import Path

import pytest

from anchorage.config.models import DeploymentConfig
from anchorage.kube.applier import KubeApplyError
from anchorage.provision.models import ComputeInstance, ContainerRepository, StaticAddress


def _base_config(state_dir: Path, **overrides) -> dict:
    data = {
        "name": "demo",
        "environment": "dev",
        "state_dir": str(state_dir),
        "instance": {"ami_id": "ami-123", "key_bits": 1024},
        "bootstrap": {"retries": 3, "interval_seconds": 0, "ssh_wait_attempts": 1, "ssh_wait_interval": 0},
        "addon": {"crd_wait_attempts": 1, "crd_wait_interval": 0},
        "sync": {
            "source": {"name": "platform", "url": "https://github.com/example/platform", "branch": "main"},
            "substitutions": {"name": "cluster-vars", "data": {"DOMAIN": "example.test"}},
            "deployments": [
                {"name": "web", "path": "./apps/web", "target_namespace": "web"},
                {"name": "api", "path": "./apps/api", "target_namespace": "api"},
            ],
        },
        "registry": {"refresh_enabled": False},
    }
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(data.get(key), dict):
            data[key] = {**data[key], **value}
        else:
            data[key] = value
    return data


@pytest.fixture
def make_config(tmp_path: Path):
    def _make(**overrides) -> DeploymentConfig:
        return DeploymentConfig.model_validate(_base_config(tmp_path / ".anchorage", **overrides))
    return _make


@pytest.fixture
def config_data(tmp_path: Path):
    def _data(**overrides) -> dict:
        return _base_config(tmp_path / ".anchorage", **overrides)
    return _data


class FakeProvider:
    """In-memory CloudProvider. Records every call in self.calls."""

    region = "us-east-1"

    def __init__(self, ip: str = "203.0.113.10", log=None):
        self.ip = ip
        self.calls = []
        self.log = log if log is not None else []
        self.addresses = {}
        self.deleted = []
        self._n = 0

    def _id(self, prefix):
        self._n += 1
        return f"{prefix}-{self._n:04d}"

    def _rec(self, *call):
        self.calls.append(call)
        self.log.append(("provider",) + call)

    def ensure_vpc(self, name, cidr):
        self._rec("vpc", name)
        return "vpc-1"

    def ensure_internet_gateway(self, name, vpc_id):
        self._rec("igw", name)
        return "igw-1"

    def ensure_subnet(self, name, vpc_id, cidr, availability_zone=None):
        self._rec("subnet", name)
        return "subnet-1"

    def ensure_route_table(self, name, vpc_id, igw_id, subnet_id):
        self._rec("rt", name)
        return "rtb-1"

    def ensure_security_group(self, name, vpc_id, rules):
        self._rec("sg", name, tuple(rules))
        return "sg-1"

    def ensure_key_pair(self, name, public_material):
        self._rec("key", name)
        return name

    def ensure_address(self, name):
        self._rec("eip", name)
        if "eipalloc-1" not in self.addresses:
            self.addresses["eipalloc-1"] = StaticAddress(allocation_id="eipalloc-1", ip=self.ip)
        return self.addresses["eipalloc-1"]

    def describe_address(self, allocation_id):
        a = self.addresses[allocation_id]
        return StaticAddress(a.allocation_id, a.ip, a.association_id, a.instance_id)

    def associate_address(self, allocation_id, instance_id):
        self._rec("associate", allocation_id, instance_id)
        a = self.addresses[allocation_id]
        a.instance_id = instance_id
        a.association_id = f"eipassoc-{instance_id}"
        return a.association_id

    def find_ami(self, name_filter, owner):
        return "ami-found"

    def ensure_instance(self, name, **kwargs):
        self._rec("instance", name, kwargs["user_data"])
        return ComputeInstance(
            id="i-1", public_address=None, private_address="10.0.1.5",
            boot_script=kwargs["user_data"], state="running",
        )

    def ensure_repository(self, name, *, scan_on_push=True):
        self._rec("repository", name)
        return ContainerRepository(
            name=name, arn=f"arn:aws:ecr:us-east-1:123456789012:repository/{name}",
            url=f"123456789012.dkr.ecr.us-east-1.amazonaws.com/{name}",
        )

    def delete(self, kind, resource_id, attributes):
        self._rec("delete", kind, resource_id)
        self.deleted.append((kind, resource_id))
        return True


@pytest.fixture
def fake_provider():
    return FakeProvider()


class FakeApplier:
    """Stands in for KubeApplier; appends ("apply", kind, name) to log."""

    def __init__(self, log=None, reject=None):
        self.log = log if log is not None else []
        self.applied = []
        self.crd_waits = []
        self.reject = reject or set()

    def apply(self, manifest):
        kind, name = manifest["kind"], manifest["metadata"]["name"]
        self.log.append(("apply", kind, name))
        if kind in self.reject:
            raise KubeApplyError(f"{kind}/{name} rejected")
        self.applied.append(manifest)
        return f"uid-{kind.lower()}-{name}"

    def wait_for_crds(self, names, *, attempts, interval):
        self.log.append(("crds", tuple(names)))
        self.crd_waits.append(list(names))

    def by_kind(self, kind):
        return [m for m in self.applied if m["kind"] == kind]


class FakeHelm:
    def __init__(self, log=None):
        self.log = log if log is not None else []
        self.releases = []

    def add_repo(self, name, url):
        self.log.append(("helm", "repo-add", name))

    def update_repos(self):
        self.log.append(("helm", "repo-update"))

    def upgrade_install(self, rel):
        self.log.append(("helm", "install", rel.name))
        self.releases.append(rel)
