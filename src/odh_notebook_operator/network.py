"""Network policies guarding notebook pods."""

import logging
from typing import Any, Callable, Dict, Optional

from .errors import ConflictError, NotFoundError
from .notebook import semantically_equal, service_mesh_enabled
from .resources import build_notebook_network_policy, build_oauth_network_policy
from .store import ObjectStore, retry_on_conflict

logger = logging.getLogger(__name__)

Projection = Callable[[Dict[str, Any]], Dict[str, Any]]
Apply = Callable[[Dict[str, Any], Dict[str, Any]], None]


def labels_and_spec(obj: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "labels": (obj.get("metadata") or {}).get("labels") or {},
        "spec": obj.get("spec") or {},
    }


def overwrite_labels_and_spec(found: Dict[str, Any], desired: Dict[str, Any]) -> None:
    found["metadata"]["labels"] = desired["metadata"].get("labels")
    found["spec"] = desired["spec"]


def reconcile_object(
    store: ObjectStore,
    desired: Dict[str, Any],
    project: Projection = labels_and_spec,
    apply: Apply = overwrite_labels_and_spec,
    sleep: Optional[Callable[[float], None]] = None,
) -> bool:
    """Create ``desired`` if missing, otherwise converge the projected fields.

    Drift is corrected by a re-read/overwrite/update loop retried on conflict,
    so that a concurrent writer (e.g. the ingress controller) does not fail
    the reconcile. Returns True if anything was written.
    """
    kind = desired["kind"]
    namespace = desired["metadata"]["namespace"]
    name = desired["metadata"]["name"]
    try:
        found = store.get(kind, namespace, name)
    except NotFoundError:
        logger.info(f"Creating {kind} {namespace}/{name}")
        try:
            store.create(desired)
        except ConflictError:
            logger.info(f"{kind} {namespace}/{name} already exists")
            return False
        return True

    if semantically_equal(project(found), project(desired)):
        return False

    logger.info(f"Reconciling {kind} {namespace}/{name}")

    def update() -> None:
        latest = store.get(kind, namespace, name)
        apply(latest, desired)
        store.update(latest)

    retry_on_conflict(update, sleep=sleep)
    return True


def reconcile_all_network_policies(
    store: ObjectStore,
    notebook: Dict[str, Any],
    controller_namespace: str,
    sleep: Optional[Callable[[float], None]] = None,
) -> None:
    """Reconcile the notebook port policy and, without service mesh, the OAuth port policy."""
    namespace = notebook["metadata"]["namespace"]
    name = notebook["metadata"]["name"]

    desired = build_notebook_network_policy(notebook, controller_namespace)
    try:
        reconcile_object(store, desired, sleep=sleep)
    except Exception:
        logger.error(f"Error reconciling notebook network policy for {namespace}/{name}")
        raise

    if not service_mesh_enabled(notebook):
        desired = build_oauth_network_policy(notebook)
        try:
            reconcile_object(store, desired, sleep=sleep)
        except Exception:
            logger.error(f"Error reconciling OAuth network policy for {namespace}/{name}")
            raise
