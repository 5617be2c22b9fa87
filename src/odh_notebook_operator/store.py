"""Cluster object store used by the reconciler and the webhook.

Objects go in and come out as plain dicts shaped like the API server's JSON
(camelCase keys). Updates carry ``metadata.resourceVersion`` so the API server
rejects stale writes with a conflict, which callers retry through
:func:`retry_on_conflict`.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional, TypeVar

import kubernetes
import urllib3
from kubernetes import client
from kubernetes.client.rest import ApiException
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
    wait_random,
)

from . import constants as C
from .errors import ConflictError, NotFoundError, StoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")

MERGE_PATCH = "application/merge-patch+json"

# Same budget as client-go's retry.DefaultRetry
CONFLICT_RETRY_STEPS = 5
CONFLICT_RETRY_WAIT_S = 0.01


class ObjectStore:
    """Get/list/create/update/patch/delete of namespaced objects by kind."""

    def get(self, kind: str, namespace: str, name: str) -> Dict[str, Any]:
        raise NotImplementedError

    def list(self, kind: str, namespace: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def update(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def patch(self, kind: str, namespace: str, name: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a JSON merge patch."""
        raise NotImplementedError

    def delete(self, kind: str, namespace: str, name: str) -> None:
        raise NotImplementedError

    def exists(self, kind: str, namespace: str, name: str) -> bool:
        try:
            self.get(kind, namespace, name)
        except NotFoundError:
            return False
        return True


def translate_api_exception(e: ApiException, what: str) -> StoreError:
    """Map an ApiException onto the store error taxonomy."""
    if e.status == 404:
        return NotFoundError(f"{what} not found", e.status)
    if e.status == 409:
        return ConflictError(f"{what} conflict: {e.reason}", e.status)
    return StoreError(f"{what} failed: {e.status} {e.reason}", e.status or 0)


def retry_on_conflict(fn: Callable[[], T], sleep: Optional[Callable[[float], None]] = None) -> T:
    """Run a read-modify-write function, retrying it on conflicts."""
    retrying = Retrying(
        retry=retry_if_exception_type(ConflictError),
        stop=stop_after_attempt(CONFLICT_RETRY_STEPS),
        wait=wait_fixed(CONFLICT_RETRY_WAIT_S) + wait_random(0, CONFLICT_RETRY_WAIT_S / 10),
        sleep=sleep or time.sleep,
        reraise=True,
    )
    return retrying(fn)


# kind -> (api, resource suffix) for built-in kinds
_TYPED_KINDS = {
    "ConfigMap": ("core", "config_map"),
    "Secret": ("core", "secret"),
    "Service": ("core", "service"),
    "ServiceAccount": ("core", "service_account"),
    "NetworkPolicy": ("networking", "network_policy"),
    "Role": ("rbac", "role"),
    "RoleBinding": ("rbac", "role_binding"),
}

# kind -> (group, version, plural) for custom resources
_CUSTOM_KINDS = {
    C.KIND: (C.API_GROUP, C.API_VERSION, C.PLURAL),
    "Route": ("route.openshift.io", "v1", "routes"),
    "ImageStream": (C.IMAGESTREAM_GROUP, C.IMAGESTREAM_VERSION, C.IMAGESTREAM_PLURAL),
}


def get_k8s_clients() -> Dict[str, Any]:
    """Get Kubernetes API clients."""
    try:
        kubernetes.config.load_incluster_config()
    except kubernetes.config.ConfigException:
        kubernetes.config.load_kube_config()

    return {
        "core": client.CoreV1Api(),
        "networking": client.NetworkingV1Api(),
        "custom": client.CustomObjectsApi(),
        "rbac": client.RbacAuthorizationV1Api(),
    }


class KubernetesStore(ObjectStore):
    """ObjectStore backed by the official kubernetes client."""

    def __init__(self, clients: Optional[Dict[str, Any]] = None, request_timeout: Optional[float] = None):
        self.clients = clients if clients is not None else get_k8s_clients()
        self.api_client = client.ApiClient()
        self.request_timeout = request_timeout

    def _to_dict(self, obj: Any) -> Dict[str, Any]:
        if isinstance(obj, dict):
            return obj
        return self.api_client.sanitize_for_serialization(obj)

    def _call(self, what: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        if self.request_timeout is not None:
            kwargs["_request_timeout"] = self.request_timeout
        try:
            return fn(*args, **kwargs)
        except ApiException as e:
            raise translate_api_exception(e, what) from e
        except urllib3.exceptions.HTTPError as e:
            # Connection failures and read timeouts never reach the API server
            raise StoreError(f"{what} failed: {e}") from e

    def _typed(self, kind: str, verb: str) -> Callable[..., Any]:
        api, suffix = _TYPED_KINDS[kind]
        return getattr(self.clients[api], f"{verb}_namespaced_{suffix}")

    def get(self, kind: str, namespace: str, name: str) -> Dict[str, Any]:
        what = f"get {kind} {namespace}/{name}"
        if kind in _CUSTOM_KINDS:
            group, version, plural = _CUSTOM_KINDS[kind]
            return self._call(
                what, self.clients["custom"].get_namespaced_custom_object,
                group, version, namespace, plural, name,
            )
        return self._to_dict(self._call(what, self._typed(kind, "read"), name, namespace))

    def list(self, kind: str, namespace: str) -> List[Dict[str, Any]]:
        what = f"list {kind} in {namespace}"
        if kind in _CUSTOM_KINDS:
            group, version, plural = _CUSTOM_KINDS[kind]
            result = self._call(
                what, self.clients["custom"].list_namespaced_custom_object,
                group, version, namespace, plural,
            )
        else:
            result = self._to_dict(self._call(what, self._typed(kind, "list"), namespace))
        return result.get("items") or []

    def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        kind = obj["kind"]
        namespace = obj["metadata"]["namespace"]
        what = f"create {kind} {namespace}/{obj['metadata']['name']}"
        if kind in _CUSTOM_KINDS:
            group, version, plural = _CUSTOM_KINDS[kind]
            return self._call(
                what, self.clients["custom"].create_namespaced_custom_object,
                group, version, namespace, plural, obj,
            )
        return self._to_dict(self._call(what, self._typed(kind, "create"), namespace, obj))

    def update(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        kind = obj["kind"]
        namespace = obj["metadata"]["namespace"]
        name = obj["metadata"]["name"]
        what = f"update {kind} {namespace}/{name}"
        if kind in _CUSTOM_KINDS:
            group, version, plural = _CUSTOM_KINDS[kind]
            return self._call(
                what, self.clients["custom"].replace_namespaced_custom_object,
                group, version, namespace, plural, name, obj,
            )
        return self._to_dict(self._call(what, self._typed(kind, "replace"), name, namespace, obj))

    def patch(self, kind: str, namespace: str, name: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        what = f"patch {kind} {namespace}/{name}"
        if kind in _CUSTOM_KINDS:
            group, version, plural = _CUSTOM_KINDS[kind]
            return self._call(
                what, self.clients["custom"].patch_namespaced_custom_object,
                group, version, namespace, plural, name, patch,
                _content_type=MERGE_PATCH,
            )
        return self._to_dict(self._call(
            what, self._typed(kind, "patch"), name, namespace, patch,
            _content_type=MERGE_PATCH,
        ))

    def delete(self, kind: str, namespace: str, name: str) -> None:
        what = f"delete {kind} {namespace}/{name}"
        if kind in _CUSTOM_KINDS:
            group, version, plural = _CUSTOM_KINDS[kind]
            self._call(
                what, self.clients["custom"].delete_namespaced_custom_object,
                group, version, namespace, plural, name,
            )
            return
        self._call(what, self._typed(kind, "delete"), name, namespace)
