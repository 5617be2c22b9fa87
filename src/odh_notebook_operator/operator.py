"""Main Kopf operator for Notebook resources."""

import logging
import threading
from typing import Any, Dict

import kopf

from . import constants as C
from .config import Config
from .context import ReconcileContext
from .controller import (
    NotebookReconciler,
    requests_for_config_map,
    requests_for_owned_object,
    trigger_reconciles,
)
from .errors import OperatorError
from .store import KubernetesStore
from .webhook import NotebookWebhook, start_webhook_server

logger = logging.getLogger(__name__)

RECONCILE_TIMEOUT_S = 300.0
REQUEUE_DELAY_S = 10.0

CA_CONFIGMAPS = (C.GLOBAL_CA_CONFIGMAP, C.SELF_SIGNED_CA_CONFIGMAP, C.WORKBENCH_CA_CONFIGMAP)

# Dependent kinds whose changes are mapped back to the owning Notebook
OWNED_RESOURCES = (
    ("route.openshift.io", "v1", "routes"),
    ("", "v1", "serviceaccounts"),
    ("", "v1", "services"),
    ("", "v1", "secrets"),
    ("networking.k8s.io", "v1", "networkpolicies"),
    ("rbac.authorization.k8s.io", "v1", "rolebindings"),
)

# Set on shutdown, aborts in-flight reconciles
stopping = threading.Event()

_state: Dict[str, Any] = {}


def get_reconciler() -> NotebookReconciler:
    """Reconciler built at startup, or lazily when handlers run standalone."""
    if "reconciler" not in _state:
        config = _state.setdefault("config", Config.from_env())
        store = _state.setdefault("store", KubernetesStore(request_timeout=config.request_timeout))
        _state["reconciler"] = NotebookReconciler(store, config)
    return _state["reconciler"]


def reconcile_notebook(namespace: str, name: str) -> None:
    """Run one reconcile cycle and turn failures into kopf retries."""
    ctx = ReconcileContext(cancelled=stopping, timeout=RECONCILE_TIMEOUT_S)
    try:
        result = get_reconciler().reconcile(namespace, name, ctx)
    except OperatorError as e:
        logger.error(f"Failed to reconcile Notebook {namespace}/{name}: {e}", exc_info=True)
        raise kopf.TemporaryError(str(e), delay=REQUEUE_DELAY_S) from e
    if result.requeue:
        raise kopf.TemporaryError("requeue requested", delay=result.requeue_after or REQUEUE_DELAY_S)


# ============================================================================
# Lifecycle
# ============================================================================

@kopf.on.startup()
async def startup(settings: kopf.OperatorSettings, **kwargs):
    """Configure kopf and start the admission webhook server."""
    # Notebook status belongs to the kubeflow notebook controller
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix="notebooks.opendatahub.io")
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(
        prefix="notebooks.opendatahub.io", key="last-handled-configuration",
    )
    settings.posting.level = logging.WARNING

    config = Config.from_env()
    store = KubernetesStore(request_timeout=config.request_timeout)
    _state.update(config=config, store=store, reconciler=NotebookReconciler(store, config))
    logger.info(f"Controller is running in namespace {config.namespace}")

    if config.enable_webhook:
        _state["runner"] = await start_webhook_server(NotebookWebhook(store, config), config)


@kopf.on.cleanup()
async def cleanup(**kwargs):
    stopping.set()
    runner = _state.pop("runner", None)
    if runner is not None:
        await runner.cleanup()
        logger.info("Webhook server stopped")


# ============================================================================
# Notebook Handlers
# ============================================================================

@kopf.on.resume(C.API_GROUP, C.API_VERSION, C.PLURAL)
@kopf.on.create(C.API_GROUP, C.API_VERSION, C.PLURAL)
@kopf.on.update(C.API_GROUP, C.API_VERSION, C.PLURAL)
def reconcile(name, namespace, **kwargs):
    """Reconcile a Notebook resource."""
    logger.info(f"Reconciling Notebook {namespace}/{name}")
    reconcile_notebook(namespace, name)


@kopf.on.delete(C.API_GROUP, C.API_VERSION, C.PLURAL, optional=True)
def delete_notebook(name, namespace, **kwargs):
    """Handle Notebook deletion.

    Resources are cleaned up automatically via ownerReferences.
    """
    logger.info(f"Notebook {namespace}/{name} deleted - resources will be garbage collected")


# ============================================================================
# Watch fan-out
# ============================================================================

def _fan_out(requests, trigger: str) -> None:
    failed = trigger_reconciles(get_reconciler().store, requests, trigger)
    if failed:
        logger.warning(f"Reconcile not requested for {len(failed)} Notebook(s) after change to {trigger}")


@kopf.on.event("", "v1", "configmaps", when=lambda name, **_: name in CA_CONFIGMAPS)
def on_ca_configmap_event(event, body, name, namespace, **kwargs):
    """Trusted CA sources and the merged bundle fan out to notebooks."""
    # The initial listing is covered by resuming every Notebook
    if event.get("type") is None:
        return
    requests = requests_for_config_map(get_reconciler().store, body)
    _fan_out(requests, f"ConfigMap {namespace}/{name}")


def on_owned_object_event(event, body, name, namespace, **kwargs):
    """A dependent object changed or went away, reconcile the Notebook controlling it."""
    # ADDED is our own create
    if event.get("type") not in ("MODIFIED", "DELETED"):
        return
    requests = requests_for_owned_object(body)
    _fan_out(requests, f"{body.get('kind', 'object')} {namespace}/{name}")


for _group, _version, _plural in OWNED_RESOURCES:
    kopf.on.event(
        _group, _version, _plural,
        labels={C.LABEL_NOTEBOOK_NAME: kopf.PRESENT},
        id=f"owned-{_plural}",
    )(on_owned_object_event)


def main():
    """Entry point for the operator."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    # Kopf takes over from here
    kopf.run(clusterwide=True)


if __name__ == "__main__":
    main()
