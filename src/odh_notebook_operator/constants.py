"""Default values and constants for odh-notebook-operator."""

import os

# API Group and Version
API_GROUP = "kubeflow.org"
API_VERSION = "v1"
PLURAL = "notebooks"
KIND = "Notebook"

# Operator name
OPERATOR_NAME = "odh-notebook-operator"

# =============================================================================
# Component Images (configurable via environment variables)
# =============================================================================

# OAuth proxy sidecar injected into notebooks
DEFAULT_OAUTH_PROXY_IMAGE = os.getenv(
    "OAUTH_PROXY_IMAGE",
    "registry.redhat.io/openshift4/ose-oauth-proxy:latest"
)

INTERNAL_REGISTRY = "image-registry.openshift-image-registry.svc:5000"

# =============================================================================
# Annotations (persisted, read back on every reconcile and admission)
# =============================================================================

ANNOTATION_INJECT_OAUTH = "notebooks.opendatahub.io/inject-oauth"
ANNOTATION_SERVICE_MESH = "opendatahub.io/service-mesh"
ANNOTATION_LOGOUT_URL = "notebooks.opendatahub.io/oauth-logout-url"
ANNOTATION_LAST_IMAGE_SELECTION = "notebooks.opendatahub.io/last-image-selection"
ANNOTATION_UPDATE_PENDING = "notebooks.opendatahub.io/update-pending"
ANNOTATION_NOTEBOOK_RESTART = "notebooks.opendatahub.io/notebook-restart"

# Bumped to hand a notebook back to its own reconcile handler
ANNOTATION_RECONCILE_REQUESTED = "notebooks.opendatahub.io/reconcile-requested"

# Culling controller stop annotation, doubles as the reconciliation lock
ANNOTATION_STOPPED = "kubeflow-resource-stopped"
RECONCILIATION_LOCK_VALUE = "odh-notebook-controller-lock"

# =============================================================================
# Trusted CA bundles
# =============================================================================

GLOBAL_CA_CONFIGMAP = "odh-trusted-ca-bundle"
SELF_SIGNED_CA_CONFIGMAP = "kube-root-ca.crt"
WORKBENCH_CA_CONFIGMAP = "workbench-trusted-ca-bundle"

CA_BUNDLE_KEY = "ca-bundle.crt"

# Entries read from each source, in order. The first global entry is primary.
CA_SOURCE_KEYS = {
    GLOBAL_CA_CONFIGMAP: ("ca-bundle.crt", "odh-ca-bundle.crt"),
    SELF_SIGNED_CA_CONFIGMAP: ("ca.crt",),
}

CA_VOLUME_NAME = "trusted-ca"
CA_MOUNT_PATH = "/etc/pki/tls/custom-certs/ca-bundle.crt"
CA_ENV_VARS = (
    "PIP_CERT",
    "REQUESTS_CA_BUNDLE",
    "SSL_CERT_FILE",
    "PIPELINES_SSL_SA_CERTS",
    "GIT_SSL_CAINFO",
)

# =============================================================================
# RBAC
# =============================================================================

PIPELINE_ROLE_NAME = "ds-pipeline-user-access-dspa"
PIPELINE_ROLEBINDING_PREFIX = "elyra-pipelines-"

# =============================================================================
# Image catalog
# =============================================================================

IMAGESTREAM_GROUP = "image.openshift.io"
IMAGESTREAM_VERSION = "v1"
IMAGESTREAM_PLURAL = "imagestreams"

# =============================================================================
# Ports
# =============================================================================

NOTEBOOK_PORT = 8888
NOTEBOOK_OAUTH_PORT = 8443
OAUTH_SERVICE_PORT = 443
OAUTH_PORT_NAME = "oauth-proxy"

# =============================================================================
# Labels
# =============================================================================

LABEL_NOTEBOOK_NAME = "notebook-name"
LABEL_MANAGED_BY = "opendatahub.io/managed-by"
LABEL_MANAGED_BY_VALUE = "workbenches"
LABEL_NAMESPACE_NAME = "kubernetes.io/metadata.name"
