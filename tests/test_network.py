"""Tests for network policy reconciliation."""

from odh_notebook_operator import constants as C
from odh_notebook_operator.network import reconcile_all_network_policies, reconcile_object
from odh_notebook_operator.resources import build_notebook_network_policy

from .support.data import CONTROLLER_NAMESPACE, NAMESPACE, make_notebook, no_sleep
from .support.store import FakeStore


def test_creates_both_policies():
    store = FakeStore()
    reconcile_all_network_policies(store, make_notebook(), CONTROLLER_NAMESPACE, sleep=no_sleep)

    ctrl = store.find("NetworkPolicy", NAMESPACE, "wb-ctrl-np")
    oauth = store.find("NetworkPolicy", NAMESPACE, "wb-oauth-np")
    ingress = ctrl["spec"]["ingress"][0]
    assert ingress["ports"] == [{"protocol": "TCP", "port": C.NOTEBOOK_PORT}]
    assert ingress["from"][0]["namespaceSelector"]["matchLabels"] == {
        C.LABEL_NAMESPACE_NAME: CONTROLLER_NAMESPACE,
    }
    assert oauth["spec"]["ingress"] == [{"ports": [{"protocol": "TCP", "port": C.NOTEBOOK_OAUTH_PORT}]}]
    assert ctrl["metadata"]["ownerReferences"][0]["uid"] == "uid-wb"


def test_service_mesh_skips_oauth_policy():
    store = FakeStore()
    nb = make_notebook(annotations={C.ANNOTATION_SERVICE_MESH: "true"})
    reconcile_all_network_policies(store, nb, CONTROLLER_NAMESPACE, sleep=no_sleep)
    assert store.find("NetworkPolicy", NAMESPACE, "wb-ctrl-np") is not None
    assert store.find("NetworkPolicy", NAMESPACE, "wb-oauth-np") is None


def test_label_drift_is_corrected_after_conflict():
    nb = make_notebook()
    desired = build_notebook_network_policy(nb, CONTROLLER_NAMESPACE)
    drifted = dict(desired, metadata=dict(desired["metadata"], labels={"foo": "bar"}))
    store = FakeStore(drifted)
    store.conflicts[("update", "NetworkPolicy")] = 1

    assert reconcile_object(store, desired, sleep=no_sleep)

    found = store.find("NetworkPolicy", NAMESPACE, "wb-ctrl-np")
    assert found["metadata"]["labels"] == {C.LABEL_NOTEBOOK_NAME: "wb"}
    assert len(store.verbs("update", "NetworkPolicy")) == 2


def test_no_update_without_drift():
    nb = make_notebook()
    desired = build_notebook_network_policy(nb, CONTROLLER_NAMESPACE)
    store = FakeStore(desired)
    assert not reconcile_object(store, desired, sleep=no_sleep)
    assert store.verbs("update") == []
