"""Mutating admission webhook for Notebooks.

Every create and update of a Notebook passes through
:meth:`NotebookWebhook.handle`, which injects the reconciliation lock, resolves
the notebook image, mounts the trusted CA bundle and injects the OAuth proxy.

Running notebooks restart whenever their pod template changes, so on updates
the webhook holds back its own template edits unless the update restarts the
pod anyway (see :func:`maybe_restart_running_notebook`). Held-back edits are
recorded in the update-pending annotation and applied on the next restart.
"""

import asyncio
import base64
import copy
import enum
import json
import logging
import os
import ssl
from dataclasses import dataclass, field
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Any, Dict, List, Optional, Tuple

import jsonpatch
from aiohttp import web

from . import constants as C
from .certs import inject_cert_config
from .config import Config
from .errors import InvalidImageSelection, OperatorError
from .notebook import (
    annotations,
    canonical,
    get_annotation,
    has_annotation,
    oauth_injection_enabled,
    pod_spec,
    primary_container,
    semantically_equal,
    service_mesh_enabled,
)
from .proxy import inject_oauth_proxy
from .store import ObjectStore

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/mutate-notebook-v1"

CREATE = "CREATE"
UPDATE = "UPDATE"


class RestartState(enum.Enum):
    ALLOW = "Allow"
    DEFERRED = "Deferred"


@dataclass
class RestartDecision:
    state: RestartState
    reason: str = ""


@dataclass
class AdmissionResponse:
    uid: str
    allowed: bool
    patch: List[Dict[str, Any]] = field(default_factory=list)
    code: int = HTTPStatus.OK
    reason: str = ""
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        response: Dict[str, Any] = {"uid": self.uid, "allowed": self.allowed}
        if self.patch:
            response["patchType"] = "JSONPatch"
            response["patch"] = base64.b64encode(json.dumps(self.patch).encode()).decode()
        if not self.allowed:
            status: Dict[str, Any] = {"code": int(self.code), "message": self.message}
            if self.reason:
                status["reason"] = self.reason
            response["status"] = status
        return response


def denied(uid: str, message: str) -> AdmissionResponse:
    return AdmissionResponse(
        uid=uid, allowed=False, code=HTTPStatus.FORBIDDEN, reason="Forbidden", message=message,
    )


def errored(uid: str, code: int, message: str) -> AdmissionResponse:
    return AdmissionResponse(uid=uid, allowed=False, code=code, message=message)


# ============================================================================
# Mutations
# ============================================================================

def inject_reconciliation_lock(notebook: Dict[str, Any]) -> None:
    """Keep the culling controller from starting the pod until we are done.

    Otherwise the pod may come up before the image pull secret is mounted in
    its service account. The reconciler removes the lock afterwards.
    """
    annotations(notebook)[C.ANNOTATION_STOPPED] = C.RECONCILIATION_LOCK_VALUE


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def newest_image_reference(items: List[Dict[str, Any]]) -> Optional[str]:
    """``dockerImageReference`` of the most recently created tag item."""
    newest: Optional[Tuple[datetime, str]] = None
    for item in items:
        created = parse_timestamp(item.get("created"))
        reference = item.get("dockerImageReference")
        if created is None or not reference:
            logger.warning(f"Skipping ImageStream tag item with created={item.get('created')!r}")
            continue
        if newest is None or created > newest[0]:
            newest = (created, reference)
    return newest[1] if newest else None


def find_image_reference(imagestreams: List[Dict[str, Any]], name: str, tag: str) -> Optional[str]:
    for imagestream in imagestreams:
        if (imagestream.get("metadata") or {}).get("name") != name:
            continue
        for tag_status in (imagestream.get("status") or {}).get("tags") or []:
            if tag_status.get("tag") != tag:
                continue
            reference = newest_image_reference(tag_status.get("items") or [])
            if reference:
                return reference
    return None


def set_container_image_from_registry(store: ObjectStore, notebook: Dict[str, Any], namespace: str) -> None:
    """Point the primary container at the image picked in the dashboard.

    Images from the internal registry are kept as they are. Otherwise the
    ``name:tag`` in the last-image-selection annotation is looked up in the
    ImageStreams of the controller namespace.
    """
    selection = get_annotation(notebook, C.ANNOTATION_LAST_IMAGE_SELECTION)
    if selection is None:
        return

    container = primary_container(notebook)
    if container is None:
        logger.error(f"No container found matching the notebook name {notebook['metadata']['name']}")
        return

    if C.INTERNAL_REGISTRY in (container.get("image") or ""):
        logger.info("Internal registry found, keeping the image field")
        return

    parts = selection.split(":")
    if len(parts) != 2:
        raise InvalidImageSelection(f"invalid image selection format: {selection!r}")
    name, tag = parts

    reference = find_image_reference(store.list("ImageStream", namespace), name, tag)
    if reference is None:
        logger.error(f"ImageStream {namespace}/{name} with tag {tag} not found")
        return

    container["image"] = reference
    for env in container.get("env") or []:
        if env.get("name") == "JUPYTER_IMAGE":
            env["value"] = selection
            env.pop("valueFrom", None)
            break


def check_and_mount_ca_cert_bundle(store: ObjectStore, notebook: Dict[str, Any]) -> None:
    """Mount the merged CA bundle if the feature is on and the bundle exists."""
    namespace = notebook["metadata"]["namespace"]
    if not store.exists("ConfigMap", namespace, C.GLOBAL_CA_CONFIGMAP):
        logger.info(f"ConfigMap {namespace}/{C.GLOBAL_CA_CONFIGMAP} is not present, not mounting CA bundle")
        return
    if not store.exists("ConfigMap", namespace, C.WORKBENCH_CA_CONFIGMAP):
        logger.info(f"ConfigMap {namespace}/{C.WORKBENCH_CA_CONFIGMAP} is not present yet, not mounting CA bundle")
        return
    inject_cert_config(notebook)


# ============================================================================
# Restart guard
# ============================================================================

def template_spec(notebook: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    spec = (notebook or {}).get("spec") or {}
    return (spec.get("template") or {}).get("spec") or {}


def struct_diff(requested: Dict[str, Any], mutated: Dict[str, Any]) -> str:
    """Human readable summary of how ``mutated`` differs from ``requested``."""
    ops = jsonpatch.make_patch(canonical(requested), canonical(mutated)).patch
    lines = []
    for op in ops:
        if op["op"] == "remove":
            lines.append(f"remove {op['path']}")
        elif op["op"] in ("move", "copy"):
            lines.append(f"{op['op']} {op['from']} -> {op['path']}")
        else:
            value = json.dumps(op["value"], sort_keys=True, separators=(",", ":"))
            lines.append(f"{op['op']} {op['path']}: {value}")
    return "; ".join(lines)


def maybe_restart_running_notebook(
    operation: str,
    old: Optional[Dict[str, Any]],
    requested: Dict[str, Any],
    mutated: Dict[str, Any],
) -> RestartDecision:
    """Decide whether the webhook's pod template edits may go through now.

    On ``Deferred`` the mutated notebook gets the requested pod template back.
    """
    name = mutated["metadata"].get("name")

    if operation == CREATE:
        logger.info(f"Not blocking update of {name}, notebook is being newly created")
        return RestartDecision(RestartState.ALLOW)

    if has_annotation(mutated, C.ANNOTATION_STOPPED):
        logger.info(f"Not blocking update of {name}, notebook is (to be) stopped")
        return RestartDecision(RestartState.ALLOW)

    if has_annotation(mutated, C.ANNOTATION_NOTEBOOK_RESTART):
        logger.info(f"Not blocking update of {name}, notebook is (to be) restarted")
        return RestartDecision(RestartState.ALLOW)

    old_spec = template_spec(old)
    requested_spec = template_spec(requested)

    if not semantically_equal(old_spec, requested_spec):
        logger.info(f"Not blocking update of {name}, the requested update already modifies the pod template")
        return RestartDecision(RestartState.ALLOW)

    if semantically_equal(old_spec, template_spec(mutated)):
        logger.info(f"Not blocking update of {name}, the pod template is not being modified")
        return RestartDecision(RestartState.ALLOW)

    reason = struct_diff(requested_spec, template_spec(mutated))
    logger.info(f"Update of {name} blocked, the webhook would change the pod template: {reason}")
    mutated["spec"]["template"]["spec"] = copy.deepcopy(requested_spec)
    return RestartDecision(RestartState.DEFERRED, reason)


# ============================================================================
# Handler
# ============================================================================

class NotebookWebhook:
    """The admission pipeline. Stateless between requests."""

    def __init__(self, store: ObjectStore, config: Config):
        self.store = store
        self.config = config

    def handle(self, request: Dict[str, Any]) -> AdmissionResponse:
        uid = request.get("uid", "")
        operation = request.get("operation")
        raw = request.get("object")
        if not isinstance(raw, dict) or not (raw.get("metadata") or {}).get("name"):
            return errored(uid, HTTPStatus.BAD_REQUEST, "request does not contain a Notebook object")

        old = request.get("oldObject")
        if operation == UPDATE and not isinstance(old, dict):
            return errored(uid, HTTPStatus.BAD_REQUEST, "update request does not contain the old Notebook object")

        notebook = copy.deepcopy(raw)
        metadata = notebook["metadata"]
        if not metadata.get("namespace"):
            metadata["namespace"] = request.get("namespace")
        namespace, name = metadata["namespace"], metadata["name"]

        try:
            if operation == CREATE:
                inject_reconciliation_lock(notebook)

            if operation in (CREATE, UPDATE):
                set_container_image_from_registry(self.store, notebook, self.config.namespace)
                check_and_mount_ca_cert_bundle(self.store, notebook)

            if oauth_injection_enabled(notebook):
                if service_mesh_enabled(notebook):
                    return denied(uid, (
                        f"Cannot have both {C.ANNOTATION_SERVICE_MESH} and "
                        f"{C.ANNOTATION_INJECT_OAUTH} set to true. Pick one."
                    ))
                inject_oauth_proxy(notebook, self.config.oauth_proxy_image)

            decision = maybe_restart_running_notebook(operation, old, raw, notebook)
        except OperatorError as e:
            logger.error(f"Failed to mutate notebook {namespace}/{name}: {e}")
            return errored(uid, HTTPStatus.INTERNAL_SERVER_ERROR, str(e))

        if decision.state is RestartState.DEFERRED:
            annotations(notebook)[C.ANNOTATION_UPDATE_PENDING] = decision.reason
        elif has_annotation(notebook, C.ANNOTATION_UPDATE_PENDING):
            del annotations(notebook)[C.ANNOTATION_UPDATE_PENDING]

        patch = jsonpatch.make_patch(raw, notebook).patch
        return AdmissionResponse(uid=uid, allowed=True, patch=patch)

    def review(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """AdmissionReview in, AdmissionReview out."""
        request = body.get("request")
        if not isinstance(request, dict):
            response = errored("", HTTPStatus.BAD_REQUEST, "No request information provided")
        else:
            response = self.handle(request)
        return {
            "apiVersion": body.get("apiVersion", "admission.k8s.io/v1"),
            "kind": "AdmissionReview",
            "response": response.to_dict(),
        }


def create_app(webhook: NotebookWebhook) -> web.Application:
    """aiohttp application serving the mutating webhook endpoint."""

    async def mutate(request: web.Request) -> web.Response:
        try:
            body = await request.json()
        except ValueError:
            review = webhook.review({})
            return web.json_response(review, status=HTTPStatus.BAD_REQUEST)
        if not isinstance(body, dict):
            body = {}
        loop = asyncio.get_running_loop()
        review = await loop.run_in_executor(None, webhook.review, body)
        return web.json_response(review)

    app = web.Application()
    app.router.add_post(WEBHOOK_PATH, mutate)
    return app


async def start_webhook_server(webhook: NotebookWebhook, config: Config) -> web.AppRunner:
    """Serve the webhook, over TLS when the serving certificate is mounted."""
    ssl_context = None
    if os.path.exists(config.webhook_cert_path) and os.path.exists(config.webhook_key_path):
        ssl_context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
        ssl_context.load_cert_chain(config.webhook_cert_path, config.webhook_key_path)
    else:
        logger.warning("Webhook serving certificate not found, serving plain HTTP")

    runner = web.AppRunner(create_app(webhook))
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", config.webhook_port, ssl_context=ssl_context)
    await site.start()
    logger.info(f"Webhook server started on port {config.webhook_port}")
    return runner
