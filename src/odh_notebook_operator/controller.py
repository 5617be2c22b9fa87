"""Notebook reconciliation.

One call to :meth:`NotebookReconciler.reconcile` converges everything that
hangs off a single Notebook. Steps run in a fixed order and the first error
aborts the cycle; the caller requeues it.
"""

import copy
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from . import constants as C
from .certs import create_trusted_ca_bundle, unset_cert_config
from .config import Config
from .context import ReconcileContext
from .errors import ConflictError, NotFoundError, OperatorError, ReconcileCancelled, StoreError
from .network import reconcile_all_network_policies, reconcile_object
from .notebook import (
    oauth_injection_enabled,
    reconciliation_lock_enabled,
    semantically_equal,
    service_mesh_enabled,
    uses_configmap_volume,
)
from .resources import (
    build_oauth_route,
    build_oauth_secret,
    build_oauth_service,
    build_oauth_service_account,
    build_pipeline_role_binding,
    build_route,
)
from .store import ObjectStore

logger = logging.getLogger(__name__)

# Wait for the image pull secret: 1s, then 5s, three attempts in total
LOCK_POLL_ATTEMPTS = 3
LOCK_POLL_INITIAL_S = 1
LOCK_POLL_FACTOR = 5

TRIGGER_ATTEMPTS = 3
TRIGGER_INITIAL_S = 0.2

Request = Tuple[str, str]


@dataclass
class Result:
    requeue: bool = False
    requeue_after: float = 0.0


class PullSecretNotMounted(OperatorError):
    """The notebook service account has no image pull secrets yet."""


def make_merge_patch(original: Dict[str, Any], modified: Dict[str, Any]) -> Dict[str, Any]:
    """JSON merge patch (RFC 7386) turning ``original`` into ``modified``."""
    patch: Dict[str, Any] = {}
    for key in original:
        if key not in modified:
            patch[key] = None
    for key, value in modified.items():
        if key not in original:
            patch[key] = value
            continue
        old = original[key]
        if isinstance(old, dict) and isinstance(value, dict):
            nested = make_merge_patch(old, value)
            if nested:
                patch[key] = nested
        elif old != value:
            patch[key] = value
    return patch


def route_fields(route: Dict[str, Any]) -> Dict[str, Any]:
    # spec.host is filled in by the router, leave it alone
    spec = route.get("spec") or {}
    return {
        "labels": (route.get("metadata") or {}).get("labels") or {},
        "to": spec.get("to"),
        "port": spec.get("port"),
        "tls": spec.get("tls"),
    }


def overwrite_route_fields(found: Dict[str, Any], desired: Dict[str, Any]) -> None:
    found["metadata"]["labels"] = desired["metadata"]["labels"]
    spec = found.setdefault("spec", {})
    for key in ("to", "port", "tls"):
        spec[key] = desired["spec"][key]


def subjects_and_labels(binding: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "labels": (binding.get("metadata") or {}).get("labels") or {},
        "subjects": binding.get("subjects") or [],
    }


def overwrite_subjects_and_labels(found: Dict[str, Any], desired: Dict[str, Any]) -> None:
    found["metadata"]["labels"] = desired["metadata"]["labels"]
    found["subjects"] = desired["subjects"]


class NotebookReconciler:
    """Drives the objects derived from a Notebook toward their desired state."""

    def __init__(self, store: ObjectStore, config: Config):
        self.store = store
        self.config = config

    def reconcile(self, namespace: str, name: str, ctx: Optional[ReconcileContext] = None) -> Result:
        ctx = ctx if ctx is not None else ReconcileContext()
        store = ctx.bind(self.store)

        try:
            notebook = store.get(C.KIND, namespace, name)
        except NotFoundError:
            logger.info(f"Notebook {namespace}/{name} not found, stop reconciliation")
            return Result()

        create_trusted_ca_bundle(store, notebook, sleep=ctx.sleep)
        if self.trusted_ca_bundle_deleted(store, notebook):
            self.unset_notebook_cert_config(store, notebook)

        reconcile_all_network_policies(store, notebook, self.config.namespace, sleep=ctx.sleep)

        if self.config.set_pipeline_rbac:
            try:
                self.reconcile_role_bindings(store, notebook, ctx)
            except OperatorError:
                logger.error(f"Unable to reconcile RoleBinding for {namespace}/{name}")
                raise

        if not service_mesh_enabled(notebook):
            if oauth_injection_enabled(notebook):
                self.reconcile_oauth(store, notebook)
            else:
                reconcile_object(
                    store, build_route(notebook),
                    project=route_fields, apply=overwrite_route_fields, sleep=ctx.sleep,
                )

        if reconciliation_lock_enabled(notebook):
            logger.info(f"Removing reconciliation lock from {namespace}/{name}")
            self.remove_reconciliation_lock(store, notebook, ctx)

        return Result()

    def trusted_ca_bundle_deleted(self, store: ObjectStore, notebook: Dict[str, Any]) -> bool:
        """True if the merged bundle is gone but the notebook still mounts it."""
        namespace = notebook["metadata"]["namespace"]
        if store.exists("ConfigMap", namespace, C.WORKBENCH_CA_CONFIGMAP):
            return False
        if uses_configmap_volume(notebook, C.WORKBENCH_CA_CONFIGMAP):
            logger.info(
                f"ConfigMap {namespace}/{C.WORKBENCH_CA_CONFIGMAP} is deleted and "
                f"used by notebook {notebook['metadata']['name']} as a volume"
            )
            return True
        return False

    def unset_notebook_cert_config(self, store: ObjectStore, notebook: Dict[str, Any]) -> None:
        """Merge-patch the CA mount and env vars out of the notebook."""
        namespace = notebook["metadata"]["namespace"]
        name = notebook["metadata"]["name"]
        modified = copy.deepcopy(notebook)
        if not unset_cert_config(modified):
            return
        patch = make_merge_patch(notebook, modified)
        try:
            store.patch(C.KIND, namespace, name, patch)
        except OperatorError:
            logger.error(f"Unable to remove the CA env variables from notebook {namespace}/{name}")
            raise
        logger.info(f"Removed the CA env variables from notebook {namespace}/{name}")

    def reconcile_role_bindings(self, store: ObjectStore, notebook: Dict[str, Any], ctx: ReconcileContext) -> None:
        """Let the notebook service account run data science pipelines."""
        namespace = notebook["metadata"]["namespace"]
        if not store.exists("Role", namespace, C.PIPELINE_ROLE_NAME):
            logger.info(f"Role {namespace}/{C.PIPELINE_ROLE_NAME} not found, skipping RoleBinding")
            return

        desired = build_pipeline_role_binding(notebook)
        binding_name = desired["metadata"]["name"]
        try:
            found = store.get("RoleBinding", namespace, binding_name)
        except NotFoundError:
            found = None

        if found is not None and not semantically_equal(found.get("roleRef"), desired["roleRef"]):
            # roleRef is immutable
            logger.info(f"RoleBinding {namespace}/{binding_name} has a stale roleRef, recreating")
            store.delete("RoleBinding", namespace, binding_name)

        reconcile_object(
            store, desired,
            project=subjects_and_labels, apply=overwrite_subjects_and_labels, sleep=ctx.sleep,
        )

    def reconcile_oauth(self, store: ObjectStore, notebook: Dict[str, Any]) -> None:
        """Create the objects the OAuth proxy sidecar needs, if missing.

        Drift on these objects after creation is not corrected.
        """
        for builder in (
            build_oauth_service_account,
            build_oauth_service,
            build_oauth_secret,
            build_oauth_route,
        ):
            self.create_if_absent(store, builder(notebook))

    @staticmethod
    def create_if_absent(store: ObjectStore, desired: Dict[str, Any]) -> bool:
        kind = desired["kind"]
        namespace = desired["metadata"]["namespace"]
        name = desired["metadata"]["name"]
        if store.exists(kind, namespace, name):
            return False
        logger.info(f"Creating {kind} {namespace}/{name}")
        try:
            store.create(desired)
        except ConflictError:
            return False
        return True

    def remove_reconciliation_lock(self, store: ObjectStore, notebook: Dict[str, Any], ctx: ReconcileContext) -> None:
        """Drop the lock once the pull secret reached the service account.

        The wait is best effort: the annotation is removed even if the secret
        never shows up within the poll budget.
        """
        namespace = notebook["metadata"]["namespace"]
        name = notebook["metadata"]["name"]

        def pull_secret_mounted() -> None:
            account = store.get("ServiceAccount", namespace, name)
            if not account.get("imagePullSecrets"):
                raise PullSecretNotMounted(f"pull secret not mounted on {namespace}/{name}")

        retrying = Retrying(
            retry=retry_if_exception(
                lambda e: isinstance(e, OperatorError) and not isinstance(e, ReconcileCancelled)
            ),
            stop=stop_after_attempt(LOCK_POLL_ATTEMPTS),
            wait=wait_exponential(multiplier=LOCK_POLL_INITIAL_S, exp_base=LOCK_POLL_FACTOR),
            sleep=ctx.sleep,
            reraise=True,
        )
        try:
            retrying(pull_secret_mounted)
        except ReconcileCancelled:
            raise
        except OperatorError as e:
            logger.warning(f"Gave up waiting for the pull secret: {e}")

        patch = {"metadata": {"annotations": {C.ANNOTATION_STOPPED: None}}}
        store.patch(C.KIND, namespace, name, patch)


# ============================================================================
# Watch fan-out
# ============================================================================

def requests_for_config_map(store: ObjectStore, configmap: Dict[str, Any]) -> List[Request]:
    """Map a ConfigMap change onto the notebooks that must be reconciled."""
    name = configmap["metadata"]["name"]
    namespace = configmap["metadata"]["namespace"]
    if name not in (C.GLOBAL_CA_CONFIGMAP, C.SELF_SIGNED_CA_CONFIGMAP, C.WORKBENCH_CA_CONFIGMAP):
        return []

    try:
        notebooks = store.list(C.KIND, namespace)
    except OperatorError as e:
        logger.error(f"Unable to list notebooks in {namespace} to handle ConfigMap {name}: {e}")
        return []

    if name == C.WORKBENCH_CA_CONFIGMAP:
        return [
            (namespace, nb["metadata"]["name"])
            for nb in notebooks
            if uses_configmap_volume(nb, name)
        ]

    # The merged bundle is shared by the whole namespace, one notebook is enough
    for nb in notebooks:
        return [(namespace, nb["metadata"]["name"])]
    return []


def requests_for_owned_object(obj: Dict[str, Any]) -> List[Request]:
    """Map a dependent object change onto its controlling Notebook."""
    metadata = obj.get("metadata") or {}
    for ref in metadata.get("ownerReferences") or []:
        if (
            ref.get("kind") == C.KIND
            and ref.get("apiVersion") == f"{C.API_GROUP}/{C.API_VERSION}"
            and ref.get("controller")
        ):
            return [(metadata["namespace"], ref["name"])]
    return []


def trigger_reconciles(
    store: ObjectStore,
    requests: List[Request],
    trigger: str,
    now: Optional[datetime] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> List[Request]:
    """Stamp the reconcile-requested annotation on each mapped Notebook.

    The resulting update event runs the Notebook's own handler, serialized per
    object and retried by kopf. Failed patches are retried a few times,
    notebooks deleted in the meantime are skipped. Returns the requests that
    could not be stamped.
    """
    stamp = (now or datetime.now(timezone.utc)).isoformat()
    patch = {"metadata": {"annotations": {C.ANNOTATION_RECONCILE_REQUESTED: stamp}}}
    failed: List[Request] = []
    for namespace, name in requests:
        logger.info(f"Requesting reconcile of Notebook {namespace}/{name} after change to {trigger}")
        retrying = Retrying(
            retry=retry_if_exception(
                lambda e: isinstance(e, StoreError) and not isinstance(e, NotFoundError)
            ),
            stop=stop_after_attempt(TRIGGER_ATTEMPTS),
            wait=wait_exponential(multiplier=TRIGGER_INITIAL_S),
            sleep=sleep or time.sleep,
            reraise=True,
        )
        try:
            retrying(store.patch, C.KIND, namespace, name, patch)
        except NotFoundError:
            logger.info(f"Notebook {namespace}/{name} is gone, nothing to reconcile")
        except OperatorError as e:
            logger.error(f"Unable to request reconcile of Notebook {namespace}/{name}: {e}")
            failed.append((namespace, name))
    return failed
