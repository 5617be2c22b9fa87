"""Builders for the objects the tests feed to the reconciler and webhook."""

import datetime
import functools
from typing import Any, Dict, List, Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from odh_notebook_operator import constants as C
from odh_notebook_operator.config import Config

NAMESPACE = "project"
CONTROLLER_NAMESPACE = "opendatahub"


def make_config(**overrides: Any) -> Config:
    values: Dict[str, Any] = {
        "namespace": CONTROLLER_NAMESPACE,
        "oauth_proxy_image": "registry.example.com/oauth-proxy:v1",
    }
    values.update(overrides)
    return Config(**values)


def make_notebook(
    name: str = "wb",
    namespace: str = NAMESPACE,
    annotations: Optional[Dict[str, str]] = None,
    image: str = "quay.io/example/jupyter:latest",
    env: Optional[List[Dict[str, Any]]] = None,
    volumes: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    container: Dict[str, Any] = {"name": name, "image": image}
    if env is not None:
        container["env"] = env
    pod: Dict[str, Any] = {"containers": [container]}
    if volumes is not None:
        pod["volumes"] = volumes
    return {
        "apiVersion": f"{C.API_GROUP}/{C.API_VERSION}",
        "kind": C.KIND,
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": f"uid-{name}",
            "annotations": dict(annotations or {}),
        },
        "spec": {"template": {"spec": pod}},
    }


def make_configmap(name: str, data: Dict[str, str], namespace: str = NAMESPACE) -> Dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": name, "namespace": namespace},
        "data": data,
    }


def make_service_account(name: str, namespace: str = NAMESPACE, pull_secret: bool = False) -> Dict[str, Any]:
    account: Dict[str, Any] = {
        "apiVersion": "v1",
        "kind": "ServiceAccount",
        "metadata": {"name": name, "namespace": namespace},
    }
    if pull_secret:
        account["imagePullSecrets"] = [{"name": f"{name}-dockercfg-x"}]
    return account


def make_role(name: str = C.PIPELINE_ROLE_NAME, namespace: str = NAMESPACE) -> Dict[str, Any]:
    return {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "Role",
        "metadata": {"name": name, "namespace": namespace},
        "rules": [],
    }


def make_imagestream(
    name: str,
    tag: str,
    items: List[Dict[str, str]],
    namespace: str = CONTROLLER_NAMESPACE,
) -> Dict[str, Any]:
    return {
        "apiVersion": "image.openshift.io/v1",
        "kind": "ImageStream",
        "metadata": {"name": name, "namespace": namespace},
        "status": {"tags": [{"tag": tag, "items": items}]},
    }


@functools.lru_cache(maxsize=None)
def make_certificate(common_name: str = "test-ca") -> str:
    """A self-signed PEM certificate."""
    key = ec.generate_private_key(ec.SECP256R1())
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


def no_sleep(seconds: float) -> None:
    pass
