"""
kubectl admission simulator — server-side dry-run through kubectl.

Both operations run admission (defaulting, mutating webhooks) on the
API server without persisting anything:

    dry_run_create         kubectl create --dry-run=server -o json -f -
    get_apply_patch_bytes  kubectl apply  --dry-run=server -o json -f -

The manifest is fed on stdin as JSON. Any timeout or retry policy is
this adapter's business; the matching engine calls it once per tier.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import yaml

from kubeverify.adapters.base import AdmissionSimulator, SimulationError
from kubeverify.adapters.shell.command import CommandError
from kubeverify.core.services.k8s_common import kubectl_json, load_yaml

logger = logging.getLogger(__name__)

DRY_RUN_NAME_SUFFIX = "-dryrun"


def _load_manifest(manifest: bytes) -> dict[str, Any]:
    try:
        data = load_yaml(manifest)
    except yaml.YAMLError as e:
        raise SimulationError(f"cannot parse manifest for simulation: {e}") from e
    if not isinstance(data, dict):
        raise SimulationError("manifest for simulation is not a mapping")
    return data


class KubectlSimulator(AdmissionSimulator):
    """Admission simulator backed by the kubectl CLI.

    Args:
        timeout: Seconds allowed per kubectl call.
    """

    def __init__(self, timeout: int = 30):
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "kubectl"

    def _run(self, verb: str, payload: dict[str, Any], namespace: str) -> bytes:
        args = [verb, "--dry-run=server", "-o", "json", "-f", "-"]
        if namespace:
            args.extend(["-n", namespace])
        try:
            return kubectl_json(
                *args,
                input_data=json.dumps(payload).encode("utf-8"),
                timeout=self._timeout,
            )
        except CommandError as e:
            raise SimulationError(f"dry-run {verb} failed: {e}") from e

    def dry_run_create(self, manifest: bytes, namespace: str = "") -> bytes:
        """Dry-run create under a derived name so it never collides with the live object."""
        obj = _load_manifest(manifest)
        metadata = obj.setdefault("metadata", {})
        name = metadata.get("name")
        if name:
            metadata["name"] = f"{name}{DRY_RUN_NAME_SUFFIX}"
        logger.debug("Dry-run create %s %s in %r", obj.get("kind"), metadata.get("name"), namespace)
        return self._run("create", obj, namespace)

    def get_apply_patch_bytes(self, manifest: bytes, namespace: str) -> tuple[bytes, bytes]:
        """Server-merge the manifest onto the live object it names."""
        obj = _load_manifest(manifest)
        if namespace:
            obj.setdefault("metadata", {})["namespace"] = namespace
        intermediate = json.dumps(obj).encode("utf-8")
        logger.debug("Dry-run apply %s in %r", obj.get("kind"), namespace)
        patched = self._run("apply", obj, namespace)
        return intermediate, patched
