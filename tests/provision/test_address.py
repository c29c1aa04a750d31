import threading

from anchorage.provision.address import StaticAddressBinder
from anchorage.provision.models import StaticAddress


def _binder(fake_provider):
    addr = fake_provider.ensure_address("demo-eip")
    return StaticAddressBinder(fake_provider), addr


def test_bind_associates_unbound_address(fake_provider):
    binder, addr = _binder(fake_provider)
    bound = binder.bind(addr, "i-x")
    assert bound.instance_id == "i-x"
    assert bound.ip == "203.0.113.10"
    assert bound.association_id == "eipassoc-i-x"


def test_bind_to_current_holder_is_noop(fake_provider):
    binder, addr = _binder(fake_provider)
    binder.bind(addr, "i-x")
    before = len(fake_provider.calls)

    again = binder.bind(addr, "i-x")

    assert again.instance_id == "i-x"
    assert not any(c[0] == "associate" for c in fake_provider.calls[before:])


def test_rebind_moves_address_without_reallocating(fake_provider):
    binder, addr = _binder(fake_provider)
    binder.bind(addr, "i-x")
    moved = binder.bind(addr, "i-y")

    assert moved.instance_id == "i-y"
    assert moved.allocation_id == addr.allocation_id
    assert moved.ip == addr.ip
    # only one address exists and it is attached to Y alone
    assert list(fake_provider.addresses) == ["eipalloc-1"]
    assert fake_provider.describe_address("eipalloc-1").instance_id == "i-y"
    assert sum(1 for c in fake_provider.calls if c[0] == "eip") == 1


def test_concurrent_binds_are_serialized(fake_provider):
    binder, addr = _binder(fake_provider)
    active = []
    overlap = []
    original = fake_provider.associate_address

    def slow_associate(allocation_id, instance_id):
        active.append(instance_id)
        if len(active) > 1:
            overlap.append(tuple(active))
        threading.Event().wait(0.01)
        try:
            return original(allocation_id, instance_id)
        finally:
            active.remove(instance_id)

    fake_provider.associate_address = slow_associate
    threads = [threading.Thread(target=binder.bind, args=(addr, f"i-{n}")) for n in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert overlap == []
    final = fake_provider.describe_address("eipalloc-1")
    assert final.instance_id in {f"i-{n}" for n in range(5)}


def test_static_address_defaults():
    a = StaticAddress(allocation_id="eipalloc-9", ip="198.51.100.1")
    assert a.association_id is None and a.instance_id is None
