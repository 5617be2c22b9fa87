"""Operator configuration, read once from the environment."""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from . import constants as C

NAMESPACE_FILE = "/var/run/secrets/kubernetes.io/serviceaccount/namespace"
DEFAULT_NAMESPACE = "opendatahub"


def env_flag(value: Optional[str]) -> bool:
    """Trimmed, case-insensitive comparison against ``"true"``."""
    return (value or "").strip().lower() == "true"


def read_controller_namespace(path: str = NAMESPACE_FILE) -> str:
    """Namespace the operator runs in, from the service account mount."""
    try:
        with open(path) as f:
            namespace = f.read().strip()
    except OSError:
        return DEFAULT_NAMESPACE
    return namespace or DEFAULT_NAMESPACE


@dataclass(frozen=True)
class Config:
    """Settings threaded into the reconciler and the webhook."""

    namespace: str = DEFAULT_NAMESPACE
    oauth_proxy_image: str = C.DEFAULT_OAUTH_PROXY_IMAGE
    set_pipeline_rbac: bool = False
    enable_webhook: bool = True
    webhook_port: int = 8443
    request_timeout: float = 10.0
    webhook_cert_path: str = "/tmp/k8s-webhook-server/serving-certs/tls.crt"
    webhook_key_path: str = "/tmp/k8s-webhook-server/serving-certs/tls.key"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        env = os.environ if environ is None else environ
        namespace = env.get("CONTROLLER_NAMESPACE") or read_controller_namespace()
        return cls(
            namespace=namespace,
            oauth_proxy_image=env.get("OAUTH_PROXY_IMAGE", C.DEFAULT_OAUTH_PROXY_IMAGE),
            set_pipeline_rbac=env_flag(env.get("SET_PIPELINE_RBAC")),
            enable_webhook=env_flag(env.get("ENABLE_WEBHOOK", "true")),
            webhook_port=int(env.get("WEBHOOK_PORT", "8443")),
            request_timeout=float(env.get("KUBE_REQUEST_TIMEOUT", "10")),
            webhook_cert_path=env.get("WEBHOOK_CERT_PATH", cls.webhook_cert_path),
            webhook_key_path=env.get("WEBHOOK_KEY_PATH", cls.webhook_key_path),
        )
