from types import SimpleNamespace

import pytest
from kubernetes.client.rest import ApiException
from kubernetes.dynamic.exceptions import DynamicApiError, NotFoundError, ResourceNotFoundError

from anchorage.kube import applier as applier_mod
from anchorage.kube.applier import CRDNotReadyError, KubeApplyError, KubeApplier


def _api_error(cls, status, reason):
    return cls(ApiException(status=status, reason=reason))


class FakeResource:
    def __init__(self, namespaced=True, existing=(), reject=None):
        self.namespaced = namespaced
        self.existing = set(existing)
        self.reject = reject
        self.calls = []

    def _obj(self, name):
        return SimpleNamespace(metadata=SimpleNamespace(uid=f"uid-{name}"))

    def get(self, name, namespace=None):
        self.calls.append(("get", name, namespace))
        if name not in self.existing:
            raise _api_error(NotFoundError, 404, "Not Found")
        return self._obj(name)

    def create(self, body, namespace=None):
        self.calls.append(("create", body["metadata"]["name"], namespace))
        if self.reject:
            raise self.reject
        self.existing.add(body["metadata"]["name"])
        return self._obj(body["metadata"]["name"])

    def patch(self, body, name, namespace=None, content_type=None):
        self.calls.append(("patch", name, namespace, content_type))
        if self.reject:
            raise self.reject
        return self._obj(name)


class FakeResources:
    def __init__(self, served, appear_after_invalidate=None):
        self.served = dict(served)
        self.late = dict(appear_after_invalidate or {})
        self.invalidations = 0

    def get(self, api_version, kind):
        try:
            return self.served[(api_version, kind)]
        except KeyError:
            raise ResourceNotFoundError(f"No matches found for {api_version}/{kind}")

    def invalidate_cache(self):
        self.invalidations += 1
        self.served.update(self.late)


def _applier(resources):
    return KubeApplier(api_client=None, dyn=SimpleNamespace(resources=resources))


GITREPO = {
    "apiVersion": "source.toolkit.fluxcd.io/v1",
    "kind": "GitRepository",
    "metadata": {"name": "platform", "namespace": "flux-system"},
    "spec": {"url": "https://github.com/example/platform"},
}


def test_missing_object_is_created():
    res = FakeResource()
    uid = _applier(FakeResources({("source.toolkit.fluxcd.io/v1", "GitRepository"): res})).apply(GITREPO)

    assert uid == "uid-platform"
    assert [c[0] for c in res.calls] == ["get", "create"]
    assert res.calls[1][2] == "flux-system"


def test_existing_object_is_merge_patched():
    res = FakeResource(existing={"platform"})
    _applier(FakeResources({("source.toolkit.fluxcd.io/v1", "GitRepository"): res})).apply(GITREPO)

    assert res.calls[-1] == ("patch", "platform", "flux-system", "application/merge-patch+json")


def test_cluster_scoped_kind_drops_namespace():
    res = FakeResource(namespaced=False)
    manifest = {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": "web", "namespace": "ignored"}}
    _applier(FakeResources({("v1", "Namespace"): res})).apply(manifest)

    assert res.calls[0] == ("get", "web", None)
    assert res.calls[1] == ("create", "web", None)


def test_rejection_raises_apply_error():
    res = FakeResource(reject=_api_error(DynamicApiError, 422, "Unprocessable Entity"))
    with pytest.raises(KubeApplyError) as ei:
        _applier(FakeResources({("source.toolkit.fluxcd.io/v1", "GitRepository"): res})).apply(GITREPO)
    assert "GitRepository/flux-system/platform" in str(ei.value)
    assert "422" in str(ei.value)


def test_newly_installed_kind_found_after_cache_refresh():
    res = FakeResource()
    resources = FakeResources({}, appear_after_invalidate={("source.toolkit.fluxcd.io/v1", "GitRepository"): res})

    assert _applier(resources).apply(GITREPO) == "uid-platform"
    assert resources.invalidations == 1


def test_unserved_kind_is_apply_error():
    with pytest.raises(KubeApplyError, match="does not serve"):
        _applier(FakeResources({})).apply(GITREPO)


# ----------------- CRD readiness gate -----------------

def _crd(established):
    cond = SimpleNamespace(type="Established", status="True" if established else "False")
    return SimpleNamespace(status=SimpleNamespace(conditions=[cond]))


class FakeExtensions:
    def __init__(self, script):
        self.script = {k: list(v) for k, v in script.items()}
        self.reads = []

    def read_custom_resource_definition(self, name):
        self.reads.append(name)
        step = self.script[name].pop(0) if len(self.script[name]) > 1 else self.script[name][0]
        if isinstance(step, Exception):
            raise step
        return step


def _patch_ext(monkeypatch, ext):
    monkeypatch.setattr(applier_mod.client, "ApiextensionsV1Api", lambda api_client: ext)


def test_crds_wait_until_established(monkeypatch):
    ext = FakeExtensions({
        "gitrepositories.source.toolkit.fluxcd.io": [ApiException(status=404, reason="Not Found"), _crd(False), _crd(True)],
        "kustomizations.kustomize.toolkit.fluxcd.io": [_crd(True)],
    })
    _patch_ext(monkeypatch, ext)

    _applier(FakeResources({})).wait_for_crds(
        ["gitrepositories.source.toolkit.fluxcd.io", "kustomizations.kustomize.toolkit.fluxcd.io"],
        attempts=5, interval=0,
    )
    assert ext.reads.count("gitrepositories.source.toolkit.fluxcd.io") == 3
    assert ext.reads.count("kustomizations.kustomize.toolkit.fluxcd.io") == 1


def test_crd_never_established(monkeypatch):
    ext = FakeExtensions({"gitrepositories.source.toolkit.fluxcd.io": [_crd(False)]})
    _patch_ext(monkeypatch, ext)

    with pytest.raises(CRDNotReadyError):
        _applier(FakeResources({})).wait_for_crds(["gitrepositories.source.toolkit.fluxcd.io"], attempts=3, interval=0)
    assert len(ext.reads) == 3


def test_crd_read_forbidden(monkeypatch):
    ext = FakeExtensions({"gitrepositories.source.toolkit.fluxcd.io": [ApiException(status=403, reason="Forbidden")]})
    _patch_ext(monkeypatch, ext)

    with pytest.raises(KubeApplyError, match="Forbidden"):
        _applier(FakeResources({})).wait_for_crds(["gitrepositories.source.toolkit.fluxcd.io"], attempts=3, interval=0)
