"""Accessors and annotation predicates for Notebook dicts."""

import json
from typing import Any, Dict, List, Optional

from . import constants as C

_TRUE_VALUES = {"1", "t", "T", "TRUE", "true", "True"}


def parse_bool(value: Optional[str]) -> bool:
    """Boolean annotation parsing; anything unrecognised is false."""
    return value in _TRUE_VALUES


def annotations(notebook: Dict[str, Any]) -> Dict[str, str]:
    """Annotations of the notebook, created if missing."""
    metadata = notebook.setdefault("metadata", {})
    if metadata.get("annotations") is None:
        metadata["annotations"] = {}
    return metadata["annotations"]


def get_annotation(notebook: Dict[str, Any], key: str) -> Optional[str]:
    return ((notebook.get("metadata") or {}).get("annotations") or {}).get(key)


def has_annotation(notebook: Dict[str, Any], key: str) -> bool:
    return key in ((notebook.get("metadata") or {}).get("annotations") or {})


def oauth_injection_enabled(notebook: Dict[str, Any]) -> bool:
    return parse_bool(get_annotation(notebook, C.ANNOTATION_INJECT_OAUTH))


def service_mesh_enabled(notebook: Dict[str, Any]) -> bool:
    return parse_bool(get_annotation(notebook, C.ANNOTATION_SERVICE_MESH))


def reconciliation_lock_enabled(notebook: Dict[str, Any]) -> bool:
    return get_annotation(notebook, C.ANNOTATION_STOPPED) == C.RECONCILIATION_LOCK_VALUE


def pod_spec(notebook: Dict[str, Any]) -> Dict[str, Any]:
    """``spec.template.spec``, created if missing."""
    spec = notebook.setdefault("spec", {})
    template = spec.setdefault("template", {})
    if template.get("spec") is None:
        template["spec"] = {}
    return template["spec"]


def containers(notebook: Dict[str, Any]) -> List[Dict[str, Any]]:
    return pod_spec(notebook).get("containers") or []


def primary_container(notebook: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """The container named like the notebook."""
    name = notebook["metadata"]["name"]
    for container in containers(notebook):
        if container.get("name") == name:
            return container
    return None


def uses_configmap_volume(notebook: Dict[str, Any], configmap_name: str) -> bool:
    for volume in pod_spec(notebook).get("volumes") or []:
        configmap = volume.get("configMap")
        if configmap and configmap.get("name") == configmap_name:
            return True
    return False


def canonical(value: Any) -> Any:
    """Drop None, empty lists and empty maps recursively.

    The API server omits empty optional fields, so a field that is absent and
    one that is present but empty mean the same thing.
    """
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            item = canonical(item)
            if item is None or item == [] or item == {}:
                continue
            result[key] = item
        return result
    if isinstance(value, list):
        return [canonical(item) for item in value]
    return value


def canonical_json(value: Any) -> str:
    return json.dumps(canonical(value), sort_keys=True, separators=(",", ":"))


def semantically_equal(a: Any, b: Any) -> bool:
    """Structural equality over the canonical serialization."""
    return canonical_json(a) == canonical_json(b)
