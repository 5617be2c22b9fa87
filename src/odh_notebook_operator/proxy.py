"""OAuth proxy sidecar builders and injection."""

import json
from typing import Any, Dict

from . import constants as C
from .keyed import NamedList
from .notebook import get_annotation, pod_spec

OAUTH_CONTAINER_NAME = "oauth-proxy"
OAUTH_CONFIG_VOLUME = "oauth-config"
TLS_VOLUME = "tls-certificates"
HEALTH_PATH = "/oauth/healthz"


def _probe(initial_delay: int) -> Dict[str, Any]:
    return {
        "httpGet": {
            "path": HEALTH_PATH,
            "port": C.OAUTH_PORT_NAME,
            "scheme": "HTTPS",
        },
        "initialDelaySeconds": initial_delay,
        "timeoutSeconds": 1,
        "periodSeconds": 5,
        "successThreshold": 1,
        "failureThreshold": 3,
    }


def build_oauth_proxy_container(notebook: Dict[str, Any], image: str) -> Dict[str, Any]:
    """Build the oauth-proxy sidecar for a notebook.

    Access is granted to users who may ``get`` this very notebook, checked by
    a subject access review in the notebook's namespace.
    """
    name = notebook["metadata"]["name"]
    sar = json.dumps({
        "verb": "get",
        "resource": C.PLURAL,
        "resourceAPIGroup": C.API_GROUP,
        "resourceName": name,
        "namespace": "$(NAMESPACE)",
    }, separators=(",", ":"))
    args = [
        "--provider=openshift",
        f"--https-address=:{C.NOTEBOOK_OAUTH_PORT}",
        "--http-address=",
        f"--openshift-service-account={name}",
        "--cookie-secret-file=/etc/oauth/config/cookie_secret",
        "--cookie-expire=24h0m0s",
        "--tls-cert=/etc/tls/private/tls.crt",
        "--tls-key=/etc/tls/private/tls.key",
        f"--upstream=http://localhost:{C.NOTEBOOK_PORT}",
        "--upstream-ca=/var/run/secrets/kubernetes.io/serviceaccount/ca.crt",
        "--email-domain=*",
        "--skip-provider-button",
        f"--openshift-sar={sar}",
    ]
    logout_url = get_annotation(notebook, C.ANNOTATION_LOGOUT_URL)
    if logout_url:
        args.append(f"--logout-url={logout_url}")

    return {
        "name": OAUTH_CONTAINER_NAME,
        "image": image,
        "imagePullPolicy": "Always",
        "env": [{
            "name": "NAMESPACE",
            "valueFrom": {"fieldRef": {"fieldPath": "metadata.namespace"}},
        }],
        "args": args,
        "ports": [{
            "name": C.OAUTH_PORT_NAME,
            "containerPort": C.NOTEBOOK_OAUTH_PORT,
            "protocol": "TCP",
        }],
        "livenessProbe": _probe(30),
        "readinessProbe": _probe(5),
        "resources": {
            "requests": {"cpu": "100m", "memory": "64Mi"},
            "limits": {"cpu": "100m", "memory": "64Mi"},
        },
        "volumeMounts": [
            {"name": OAUTH_CONFIG_VOLUME, "mountPath": "/etc/oauth/config"},
            {"name": TLS_VOLUME, "mountPath": "/etc/tls/private"},
        ],
    }


def _secret_volume(volume_name: str, secret_name: str) -> Dict[str, Any]:
    return {
        "name": volume_name,
        "secret": {"secretName": secret_name, "defaultMode": 420},
    }


def inject_oauth_proxy(notebook: Dict[str, Any], image: str) -> None:
    """Add or replace the sidecar and its volumes, and pin the service account."""
    name = notebook["metadata"]["name"]
    spec = pod_spec(notebook)

    containers = NamedList(spec.get("containers"))
    containers.upsert(build_oauth_proxy_container(notebook, image))
    spec["containers"] = containers.to_list()

    volumes = NamedList(spec.get("volumes"))
    volumes.upsert(_secret_volume(OAUTH_CONFIG_VOLUME, f"{name}-oauth-config"))
    volumes.upsert(_secret_volume(TLS_VOLUME, f"{name}-tls"))
    spec["volumes"] = volumes.to_list()

    # Dedicated service account, never "default"
    spec["serviceAccountName"] = name
