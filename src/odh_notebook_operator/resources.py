"""Resource builders for objects managed on behalf of a Notebook."""

import base64
import json
import secrets
from typing import Any, Dict, List

from . import constants as C


def build_labels(name: str) -> Dict[str, str]:
    """Build standard labels for a resource."""
    return {C.LABEL_NOTEBOOK_NAME: name}


def build_owner_reference(owner: Dict[str, Any]) -> Dict[str, Any]:
    """Build owner reference for garbage collection."""
    return {
        "apiVersion": f"{C.API_GROUP}/{C.API_VERSION}",
        "kind": C.KIND,
        "name": owner["metadata"]["name"],
        "uid": owner["metadata"]["uid"],
        "controller": True,
        "blockOwnerDeletion": True,
    }


def _metadata(name: str, notebook: Dict[str, Any], **extra: Any) -> Dict[str, Any]:
    metadata = {
        "name": name,
        "namespace": notebook["metadata"]["namespace"],
        "labels": build_labels(notebook["metadata"]["name"]),
        "ownerReferences": [build_owner_reference(notebook)],
    }
    metadata.update(extra)
    return metadata


def build_trusted_ca_configmap(namespace: str, bundle: str) -> Dict[str, Any]:
    """Build the namespace-wide merged CA bundle. Not owned by any notebook."""
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {
            "name": C.WORKBENCH_CA_CONFIGMAP,
            "namespace": namespace,
            "labels": {C.LABEL_MANAGED_BY: C.LABEL_MANAGED_BY_VALUE},
        },
        "data": {C.CA_BUNDLE_KEY: bundle},
    }


def build_notebook_network_policy(notebook: Dict[str, Any], controller_namespace: str) -> Dict[str, Any]:
    """Allow traffic to the notebook port from the controller namespace."""
    name = notebook["metadata"]["name"]
    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "NetworkPolicy",
        "metadata": _metadata(f"{name}-ctrl-np", notebook),
        "spec": {
            "podSelector": {"matchLabels": {C.LABEL_NOTEBOOK_NAME: name}},
            "ingress": [{
                "ports": [{"protocol": "TCP", "port": C.NOTEBOOK_PORT}],
                "from": [{
                    "namespaceSelector": {
                        "matchLabels": {C.LABEL_NAMESPACE_NAME: controller_namespace},
                    },
                }],
            }],
            "policyTypes": ["Ingress"],
        },
    }


def build_oauth_network_policy(notebook: Dict[str, Any]) -> Dict[str, Any]:
    """Allow all traffic to the OAuth proxy port of a notebook."""
    name = notebook["metadata"]["name"]
    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "NetworkPolicy",
        "metadata": _metadata(f"{name}-oauth-np", notebook),
        "spec": {
            "podSelector": {"matchLabels": {C.LABEL_NOTEBOOK_NAME: name}},
            "ingress": [{
                "ports": [{"protocol": "TCP", "port": C.NOTEBOOK_OAUTH_PORT}],
            }],
            "policyTypes": ["Ingress"],
        },
    }


def build_oauth_service_account(notebook: Dict[str, Any]) -> Dict[str, Any]:
    """Build the ServiceAccount the OAuth proxy authenticates as."""
    name = notebook["metadata"]["name"]
    redirect = {
        "kind": "OAuthRedirectReference",
        "apiVersion": "v1",
        "reference": {"kind": "Route", "name": name},
    }
    return {
        "apiVersion": "v1",
        "kind": "ServiceAccount",
        "metadata": _metadata(name, notebook, annotations={
            "serviceaccounts.openshift.io/oauth-redirectreference.first": json.dumps(redirect),
        }),
    }


def build_oauth_service(notebook: Dict[str, Any]) -> Dict[str, Any]:
    """Build the TLS Service in front of the OAuth proxy.

    The serving-cert annotation makes OpenShift generate the ``<name>-tls``
    secret mounted by the sidecar.
    """
    name = notebook["metadata"]["name"]
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": _metadata(f"{name}-tls", notebook, annotations={
            "service.beta.openshift.io/serving-cert-secret-name": f"{name}-tls",
        }),
        "spec": {
            "selector": {"statefulset": name},
            "ports": [{
                "name": C.OAUTH_PORT_NAME,
                "port": C.OAUTH_SERVICE_PORT,
                "targetPort": C.OAUTH_PORT_NAME,
                "protocol": "TCP",
            }],
        },
    }


def build_oauth_secret(notebook: Dict[str, Any]) -> Dict[str, Any]:
    """Build the Secret holding the OAuth proxy cookie secret."""
    name = notebook["metadata"]["name"]
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": _metadata(f"{name}-oauth-config", notebook),
        "type": "Opaque",
        "stringData": {
            "cookie_secret": base64.b64encode(secrets.token_bytes(16)).decode("ascii"),
        },
    }


def _route(notebook: Dict[str, Any], service: str, target_port: str, termination: str) -> Dict[str, Any]:
    name = notebook["metadata"]["name"]
    return {
        "apiVersion": "route.openshift.io/v1",
        "kind": "Route",
        "metadata": _metadata(name, notebook),
        "spec": {
            "to": {"kind": "Service", "name": service, "weight": 100},
            "port": {"targetPort": target_port},
            "tls": {
                "termination": termination,
                "insecureEdgeTerminationPolicy": "Redirect",
            },
            "wildcardPolicy": "None",
        },
    }


def build_oauth_route(notebook: Dict[str, Any]) -> Dict[str, Any]:
    """Route re-encrypting to the OAuth proxy Service."""
    name = notebook["metadata"]["name"]
    return _route(notebook, f"{name}-tls", C.OAUTH_PORT_NAME, "reencrypt")


def build_route(notebook: Dict[str, Any]) -> Dict[str, Any]:
    """Edge-terminated Route straight to the notebook Service."""
    name = notebook["metadata"]["name"]
    return _route(notebook, name, f"http-{name}", "edge")


def build_pipeline_role_binding(notebook: Dict[str, Any]) -> Dict[str, Any]:
    """Bind the pipelines user Role to the notebook's ServiceAccount."""
    name = notebook["metadata"]["name"]
    subjects: List[Dict[str, Any]] = [{
        "kind": "ServiceAccount",
        "name": name,
        "namespace": notebook["metadata"]["namespace"],
    }]
    return {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "RoleBinding",
        "metadata": _metadata(f"{C.PIPELINE_ROLEBINDING_PREFIX}{name}", notebook),
        "subjects": subjects,
        "roleRef": {
            "apiGroup": "rbac.authorization.k8s.io",
            "kind": "Role",
            "name": C.PIPELINE_ROLE_NAME,
        },
    }
