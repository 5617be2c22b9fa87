"""Tests for error translation in the kubernetes-backed store."""

import pytest
from kubernetes.client.rest import ApiException
from urllib3.exceptions import MaxRetryError, ReadTimeoutError

from odh_notebook_operator.errors import ConflictError, NotFoundError, StoreError
from odh_notebook_operator.store import KubernetesStore


class FailingCore:
    def __init__(self, error):
        self.error = error
        self.kwargs = None

    def read_namespaced_config_map(self, name, namespace, **kwargs):
        self.kwargs = kwargs
        raise self.error


def get_config_map(error, **store_kwargs):
    store = KubernetesStore(clients={"core": FailingCore(error)}, **store_kwargs)
    store.get("ConfigMap", "project", "cm")


@pytest.mark.parametrize("error", [
    MaxRetryError(None, "/api/v1/namespaces/project/configmaps/cm"),
    ReadTimeoutError(None, "/api/v1/namespaces/project/configmaps/cm", "read timed out"),
    ApiException(status=0, reason="connection reset"),
])
def test_transport_failures_become_store_errors(error):
    with pytest.raises(StoreError) as exc_info:
        get_config_map(error, request_timeout=2.0)
    assert not isinstance(exc_info.value, (NotFoundError, ConflictError))
    assert exc_info.value.__cause__ is error


def test_api_status_mapping():
    with pytest.raises(NotFoundError):
        get_config_map(ApiException(status=404, reason="Not Found"))
    with pytest.raises(ConflictError):
        get_config_map(ApiException(status=409, reason="Conflict"))


def test_request_timeout_is_passed():
    core = FailingCore(ApiException(status=404, reason="Not Found"))
    store = KubernetesStore(clients={"core": core}, request_timeout=2.0)
    with pytest.raises(NotFoundError):
        store.get("ConfigMap", "project", "cm")
    assert core.kwargs == {"_request_timeout": 2.0}
