import json
from pathlib import Path

import pytest

from anchorage.deploy.registry import ResourceRegistry


def test_upsert_creates_then_is_idempotent():
    reg = ResourceRegistry()
    a = reg.upsert("network/vpc", kind="aws:ec2/vpc", id="vpc-1", attributes={"cidr": "10.0.0.0/16"})
    b = reg.upsert("network/vpc", kind="aws:ec2/vpc", id="vpc-1", attributes={"cidr": "10.0.0.0/16"})
    assert a is b
    assert b.version == 1


def test_changed_attributes_bump_version():
    reg = ResourceRegistry()
    reg.upsert("network/sg", kind="aws:ec2/security-group", id="sg-1", attributes={"ingress": ["22"]})
    rec = reg.upsert("network/sg", kind="aws:ec2/security-group", id="sg-1", attributes={"ingress": ["22", "443"]})
    assert rec.version == 2
    assert rec.attributes == {"ingress": ["22", "443"]}


def test_records_keep_creation_order():
    reg = ResourceRegistry()
    for name in ("a", "b", "c"):
        reg.upsert(name, kind="k", id=name)
    reg.upsert("a", kind="k", id="a2")
    assert [r.name for r in reg.records()] == ["a", "b", "c"]


def test_persists_and_reloads(tmp_path: Path):
    path = tmp_path / "state" / "state.json"
    reg = ResourceRegistry(path)
    reg.upsert("compute/instance", kind="aws:ec2/instance", id="i-1", attributes={"type": "t3.medium"})
    reg.upsert("network/address", kind="aws:ec2/eip", id="eipalloc-1")

    again = ResourceRegistry(path)
    assert [r.name for r in again.records()] == ["compute/instance", "network/address"]
    assert again.require("compute/instance").attributes == {"type": "t3.medium"}

    again.remove("compute/instance")
    assert "compute/instance" not in ResourceRegistry(path)


def test_unknown_state_format_rejected(tmp_path: Path):
    path = tmp_path / "state.json"
    path.write_text(json.dumps({"format": 99, "resources": []}))
    with pytest.raises(ValueError):
        ResourceRegistry(path)


def test_require_missing_raises():
    with pytest.raises(KeyError):
        ResourceRegistry().require("nope")
