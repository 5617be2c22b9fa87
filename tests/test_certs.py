"""Tests for trusted CA bundle aggregation and mounting."""

import pytest

from odh_notebook_operator import constants as C
from odh_notebook_operator.certs import (
    collect_certificates,
    create_trusted_ca_bundle,
    inject_cert_config,
    is_valid_certificate,
    unset_cert_config,
)
from odh_notebook_operator.errors import ContainerNotFound

from .support.data import NAMESPACE, make_certificate, make_configmap, make_notebook, no_sleep
from .support.store import FakeStore


def sources(global_data, self_signed_data=None):
    objects = [make_configmap(C.GLOBAL_CA_CONFIGMAP, global_data)]
    if self_signed_data is not None:
        objects.append(make_configmap(C.SELF_SIGNED_CA_CONFIGMAP, self_signed_data))
    return objects


def test_is_valid_certificate():
    assert is_valid_certificate(make_certificate())
    assert is_valid_certificate(make_certificate("a") + make_certificate("b"))
    assert not is_valid_certificate("-----BEGIN CERTIFICATE-----\nnope\n-----END CERTIFICATE-----")
    assert not is_valid_certificate("")


def test_collect_in_source_order_skipping_malformed():
    first, second, root = make_certificate("first"), make_certificate("second"), make_certificate("root")
    store = FakeStore(*sources(
        {"ca-bundle.crt": first + "\n", "odh-ca-bundle.crt": "garbage\n"},
        {"ca.crt": root},
    ))
    assert collect_certificates(store, NAMESPACE) == [first.strip(), root.strip()]

    store = FakeStore(*sources({"ca-bundle.crt": first, "odh-ca-bundle.crt": second}))
    assert collect_certificates(store, NAMESPACE) == [first.strip(), second.strip()]


def test_collect_disabled_without_primary_entry():
    assert collect_certificates(FakeStore(), NAMESPACE) is None
    store = FakeStore(*sources({"ca-bundle.crt": "\n", "odh-ca-bundle.crt": make_certificate()}))
    assert collect_certificates(store, NAMESPACE) is None


def test_create_bundle_is_idempotent():
    cert, root = make_certificate("user"), make_certificate("root")
    store = FakeStore(*sources({"ca-bundle.crt": cert + "\n"}, {"ca.crt": root}))
    nb = make_notebook()

    create_trusted_ca_bundle(store, nb, sleep=no_sleep)
    bundle = store.find("ConfigMap", NAMESPACE, C.WORKBENCH_CA_CONFIGMAP)
    assert bundle["data"] == {C.CA_BUNDLE_KEY: cert.strip() + "\n" + root.strip()}
    assert bundle["metadata"]["labels"] == {C.LABEL_MANAGED_BY: C.LABEL_MANAGED_BY_VALUE}

    create_trusted_ca_bundle(store, nb, sleep=no_sleep)
    assert store.verbs("create", "ConfigMap") == [("create", "ConfigMap", NAMESPACE, C.WORKBENCH_CA_CONFIGMAP)]
    assert store.verbs("update", "ConfigMap") == []


def test_create_bundle_refreshes_stale_data():
    cert = make_certificate("user")
    store = FakeStore(
        *sources({"ca-bundle.crt": cert}),
        make_configmap(C.WORKBENCH_CA_CONFIGMAP, {C.CA_BUNDLE_KEY: "old"}),
    )
    store.conflicts[("update", "ConfigMap")] = 1

    create_trusted_ca_bundle(store, make_notebook(), sleep=no_sleep)

    bundle = store.find("ConfigMap", NAMESPACE, C.WORKBENCH_CA_CONFIGMAP)
    assert bundle["data"] == {C.CA_BUNDLE_KEY: cert.strip()}
    assert len(store.verbs("update", "ConfigMap")) == 2


def test_create_bundle_noop_when_disabled():
    store = FakeStore(*sources({"ca-bundle.crt": ""}))
    create_trusted_ca_bundle(store, make_notebook(), sleep=no_sleep)
    assert store.find("ConfigMap", NAMESPACE, C.WORKBENCH_CA_CONFIGMAP) is None
    assert store.verbs("create") == []


def test_inject_and_unset_cert_config():
    nb = make_notebook(env=[
        {"name": "SSL_CERT_FILE", "value": "/somewhere/else"},
        {"name": "KEEP", "value": "1"},
    ])
    inject_cert_config(nb)
    inject_cert_config(nb)

    spec = nb["spec"]["template"]["spec"]
    container = spec["containers"][0]
    assert [v["name"] for v in spec["volumes"]] == [C.CA_VOLUME_NAME]
    assert spec["volumes"][0]["configMap"]["name"] == C.WORKBENCH_CA_CONFIGMAP
    assert [m["name"] for m in container["volumeMounts"]] == [C.CA_VOLUME_NAME]
    env = {e["name"]: e["value"] for e in container["env"]}
    assert [e["name"] for e in container["env"]][:2] == ["SSL_CERT_FILE", "KEEP"]
    for key in C.CA_ENV_VARS:
        assert env[key] == C.CA_MOUNT_PATH

    assert unset_cert_config(nb)
    assert container["env"] == [{"name": "KEEP", "value": "1"}]
    assert container["volumeMounts"] == []
    assert spec["volumes"] == []
    assert not unset_cert_config(nb)


def test_primary_container_required():
    nb = make_notebook()
    nb["spec"]["template"]["spec"]["containers"][0]["name"] = "other"
    with pytest.raises(ContainerNotFound):
        inject_cert_config(nb)
    with pytest.raises(ContainerNotFound):
        unset_cert_config(nb)


def test_repeated_volume_mounts_survive():
    nb = make_notebook(env=[
        {"name": "EXTRA", "value": "1"},
        {"name": "EXTRA", "value": "2"},
    ])
    container = nb["spec"]["template"]["spec"]["containers"][0]
    container["volumeMounts"] = [
        {"name": "data", "mountPath": "/opt/app-root/src"},
        {"name": "data", "mountPath": "/opt/app-root/.local", "subPath": ".local"},
    ]

    inject_cert_config(nb)
    assert [m["mountPath"] for m in container["volumeMounts"]] == [
        "/opt/app-root/src", "/opt/app-root/.local", C.CA_MOUNT_PATH,
    ]
    assert [e["value"] for e in container["env"][:2]] == ["1", "2"]

    assert unset_cert_config(nb)
    assert [m["mountPath"] for m in container["volumeMounts"]] == ["/opt/app-root/src", "/opt/app-root/.local"]
    assert container["env"] == [{"name": "EXTRA", "value": "1"}, {"name": "EXTRA", "value": "2"}]
