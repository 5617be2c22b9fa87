"""Trusted CA bundle aggregation and mounting.

The platform operator publishes user-provided CAs in the
``odh-trusted-ca-bundle`` ConfigMap of every namespace. Notebooks get a merged
``workbench-trusted-ca-bundle`` holding those certificates plus the cluster's
self-signed root from ``kube-root-ca.crt``, mounted into the primary container
with the usual CA environment variables pointing at it.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from cryptography import x509

from . import constants as C
from .errors import ConflictError, ContainerNotFound, NotFoundError
from .keyed import NamedList, remove_matching, replace_or_append
from .notebook import pod_spec, primary_container, semantically_equal
from .resources import build_trusted_ca_configmap
from .store import ObjectStore, retry_on_conflict

logger = logging.getLogger(__name__)


def is_valid_certificate(data: str) -> bool:
    """True if ``data`` holds one or more well-formed PEM certificates."""
    try:
        certs = x509.load_pem_x509_certificates(data.encode("utf-8"))
    except ValueError:
        return False
    return bool(certs)


def collect_certificates(store: ObjectStore, namespace: str) -> Optional[List[str]]:
    """Read the CA sources and return the valid PEM entries, in source order.

    Returns None when the feature is disabled: the global source is missing,
    or its primary entry is empty because the bundle is injected some other
    way.
    """
    collected: List[str] = []
    for source, keys in C.CA_SOURCE_KEYS.items():
        try:
            configmap = store.get("ConfigMap", namespace, source)
        except NotFoundError:
            if source == C.GLOBAL_CA_CONFIGMAP:
                return None
            logger.info(f"ConfigMap {namespace}/{source} not found, skipping")
            continue

        data = configmap.get("data") or {}
        for key in keys:
            # The platform operator appends a trailing newline unconditionally
            cert = (data.get(key) or "").strip()
            if source == C.GLOBAL_CA_CONFIGMAP and key == keys[0] and not cert:
                return None
            if not cert:
                continue
            if not is_valid_certificate(cert):
                logger.error(f"Invalid certificate in ConfigMap {namespace}/{source} key {key}, skipping")
                continue
            collected.append(cert)
    return collected


def create_trusted_ca_bundle(
    store: ObjectStore,
    notebook: Dict[str, Any],
    sleep: Optional[Callable[[float], None]] = None,
) -> None:
    """Create or refresh the merged trusted CA bundle of the notebook's namespace."""
    namespace = notebook["metadata"]["namespace"]
    certs = collect_certificates(store, namespace)
    if not certs:
        return

    desired = build_trusted_ca_configmap(namespace, "\n".join(certs))
    try:
        store.get("ConfigMap", namespace, C.WORKBENCH_CA_CONFIGMAP)
    except NotFoundError:
        logger.info(f"Creating ConfigMap {namespace}/{C.WORKBENCH_CA_CONFIGMAP}")
        try:
            store.create(desired)
        except ConflictError:
            logger.info(f"ConfigMap {namespace}/{C.WORKBENCH_CA_CONFIGMAP} already exists")
        return

    def update() -> None:
        found = store.get("ConfigMap", namespace, C.WORKBENCH_CA_CONFIGMAP)
        if semantically_equal(found.get("data"), desired["data"]):
            return
        logger.info(f"Updating ConfigMap {namespace}/{C.WORKBENCH_CA_CONFIGMAP}")
        found["data"] = desired["data"]
        store.update(found)

    retry_on_conflict(update, sleep=sleep)


def trusted_ca_volume() -> Dict[str, Any]:
    return {
        "name": C.CA_VOLUME_NAME,
        "configMap": {
            "name": C.WORKBENCH_CA_CONFIGMAP,
            "optional": True,
            "items": [{"key": C.CA_BUNDLE_KEY, "path": C.CA_BUNDLE_KEY}],
        },
    }


def trusted_ca_volume_mount() -> Dict[str, Any]:
    return {
        "name": C.CA_VOLUME_NAME,
        "readOnly": True,
        "mountPath": C.CA_MOUNT_PATH,
        "subPath": C.CA_BUNDLE_KEY,
    }


def _primary(notebook: Dict[str, Any]) -> Dict[str, Any]:
    container = primary_container(notebook)
    if container is None:
        raise ContainerNotFound(f"notebook image container not found {notebook['metadata']['name']}")
    return container


def inject_cert_config(notebook: Dict[str, Any]) -> None:
    """Mount the merged bundle into the primary container."""
    container = _primary(notebook)
    spec = pod_spec(notebook)

    volumes = NamedList(spec.get("volumes"))
    volumes.upsert(trusted_ca_volume())
    spec["volumes"] = volumes.to_list()

    if container.get("env") is None:
        container["env"] = []
    env = container["env"]
    for key in C.CA_ENV_VARS:
        replace_or_append(env, {"name": key, "value": C.CA_MOUNT_PATH})

    if container.get("volumeMounts") is None:
        container["volumeMounts"] = []
    replace_or_append(container["volumeMounts"], trusted_ca_volume_mount())


def unset_cert_config(notebook: Dict[str, Any]) -> bool:
    """Remove the bundle mount and CA env vars. Returns True if anything changed."""
    container = _primary(notebook)
    spec = pod_spec(notebook)
    changed = False

    if container.get("env"):
        changed |= remove_matching(container["env"], lambda e: e.get("name") in C.CA_ENV_VARS)
    if container.get("volumeMounts"):
        changed |= remove_matching(container["volumeMounts"], lambda m: m.get("name") == C.CA_VOLUME_NAME)
    if spec.get("volumes"):
        changed |= remove_matching(
            spec["volumes"],
            lambda v: (v.get("configMap") or {}).get("name") == C.WORKBENCH_CA_CONFIGMAP,
        )
    return changed
