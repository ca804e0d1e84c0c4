"""
K8s shared constants and low-level helpers.

Imported by all other service modules. Must NOT import from any sibling
service module to avoid circular imports.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
from typing import Any

import yaml

from kubeverify.adapters.shell.command import CommandError, run_command, stderr_text

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════
#  Constants
# ═══════════════════════════════════════════════════════════════════


KUBECTL_ENV_VAR = "KUBEVERIFY_KUBECTL"

CRD_KIND = "CustomResourceDefinition"

# Kinds whose pod template lives at spec.template.spec
POD_TEMPLATE_KINDS = frozenset({
    "Deployment", "StatefulSet", "DaemonSet", "ReplicaSet",
    "ReplicationController", "Job",
})


class KubectlError(CommandError):
    """kubectl ran but reported a failure."""


# ═══════════════════════════════════════════════════════════════════
#  kubectl
# ═══════════════════════════════════════════════════════════════════


def _kubectl_binary() -> str:
    return os.environ.get(KUBECTL_ENV_VAR, "kubectl")


def _run_kubectl(
    *args: str,
    input_data: bytes | None = None,
    timeout: int = 30,
) -> subprocess.CompletedProcess[bytes]:
    """Run a kubectl command and return the result."""
    return run_command([_kubectl_binary(), *args], input_data=input_data, timeout=timeout)


def kubectl_json(*args: str, input_data: bytes | None = None, timeout: int = 30) -> bytes:
    """Run kubectl, require success, return stdout.

    Raises:
        KubectlError: Non-zero exit status.
        CommandError: kubectl missing or timed out.
    """
    result = _run_kubectl(*args, input_data=input_data, timeout=timeout)
    if result.returncode != 0:
        raise KubectlError(f"kubectl {args[0]} failed: {stderr_text(result)}")
    return result.stdout


def get_resource(resource_kind: str, resource_name: str, ns: str = "") -> dict[str, Any]:
    """Fetch one live object from the cluster."""
    args = ["get", resource_kind, resource_name, "-o", "json"]
    if ns:
        args.extend(["-n", ns])
    data = json.loads(kubectl_json(*args))
    if not isinstance(data, dict):
        raise KubectlError(f"unexpected kubectl output for {resource_kind}/{resource_name}")
    return data


# ═══════════════════════════════════════════════════════════════════
#  YAML
# ═══════════════════════════════════════════════════════════════════


class _StringTimestampLoader(yaml.SafeLoader):
    """SafeLoader that keeps timestamps as strings, as the API server sends them."""


_StringTimestampLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:timestamp"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def load_yaml(data: bytes | str) -> Any:
    """Parse one YAML (or JSON) document."""
    return yaml.load(data, Loader=_StringTimestampLoader)  # noqa: S506


def load_yaml_all(data: bytes | str) -> list[Any]:
    """Parse a multi-document YAML stream, dropping empty documents."""
    return [
        doc for doc in yaml.load_all(data, Loader=_StringTimestampLoader)  # noqa: S506
        if doc is not None
    ]


def to_yaml_bytes(obj: Any) -> bytes:
    return yaml.safe_dump(obj, default_flow_style=False, sort_keys=False).encode("utf-8")


def to_json_bytes(obj: Any) -> bytes:
    return json.dumps(obj).encode("utf-8")


# ═══════════════════════════════════════════════════════════════════
#  Object accessors
# ═══════════════════════════════════════════════════════════════════


def _metadata(obj: dict[str, Any]) -> dict[str, Any]:
    metadata = obj.get("metadata")
    return metadata if isinstance(metadata, dict) else {}


def api_version(obj: dict[str, Any]) -> str:
    return str(obj.get("apiVersion", "") or "")


def kind(obj: dict[str, Any]) -> str:
    return str(obj.get("kind", "") or "")


def name(obj: dict[str, Any]) -> str:
    return str(_metadata(obj).get("name", "") or "")


def namespace(obj: dict[str, Any]) -> str:
    """Object namespace; empty means cluster-scoped."""
    return str(_metadata(obj).get("namespace", "") or "")


def annotations(obj: dict[str, Any]) -> dict[str, str]:
    found = _metadata(obj).get("annotations")
    return dict(found) if isinstance(found, dict) else {}


def describe(obj: dict[str, Any]) -> str:
    """Short ``Kind ns/name`` label for logs and CLI output."""
    ns = namespace(obj)
    return f"{kind(obj)} {ns + '/' if ns else ''}{name(obj)}"
