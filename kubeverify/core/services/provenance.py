"""
Provenance — attestations for the manifest image and container images.

``cosign download attestation <artifact>`` prints one DSSE envelope per
line. Its base64 payload is an in-toto statement, kept decoded on the
``Provenance`` record.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Any

from kubeverify.adapters.base import CollaboratorError, ProvenanceSource
from kubeverify.adapters.shell.command import run_command, stderr_text
from kubeverify.core.models.result import Provenance
from kubeverify.core.services.k8s_images import get_all_images_from_object
from kubeverify.core.services.manifest_fetch import (
    SIG_REF_EMBEDDED_IN_ANNOTATION,
    SIG_REF_RESOURCE_PREFIX,
)

logger = logging.getLogger(__name__)

_NO_ATTESTATION_MARKERS = ("found no attestations", "no attestations found")


def provenance_artifacts(obj: dict[str, Any], sig_ref: str) -> list[str]:
    """Artifacts to look up: the manifest image, then container images."""
    artifacts: list[str] = []
    if sig_ref and sig_ref != SIG_REF_EMBEDDED_IN_ANNOTATION and not sig_ref.startswith(SIG_REF_RESOURCE_PREFIX):
        artifacts.append(sig_ref)
    for image in get_all_images_from_object(obj):
        if image.image not in artifacts:
            artifacts.append(image.image)
    return artifacts


def parse_attestation_line(artifact: str, line: str) -> Provenance:
    """Decode one DSSE envelope into a provenance record."""
    try:
        envelope = json.loads(line)
        statement = json.loads(base64.b64decode(envelope["payload"]))
    except (ValueError, KeyError, TypeError, binascii.Error) as e:
        raise CollaboratorError(f"malformed attestation for {artifact}: {e}") from e
    if not isinstance(statement, dict):
        raise CollaboratorError(f"malformed attestation for {artifact}: not a statement")

    digest = ""
    subjects = statement.get("subject") or []
    if subjects and isinstance(subjects[0], dict):
        digest = str((subjects[0].get("digest") or {}).get("sha256", ""))

    return Provenance(
        artifact=artifact,
        hash=digest,
        sig_ref=artifact,
        attestation=statement,
        raw_attestation=line,
    )


class CosignProvenanceSource(ProvenanceSource):
    """Downloads attestations for each artifact with cosign."""

    def __init__(self, artifacts: list[str], timeout: int = 120):
        self.artifacts = artifacts
        self.timeout = timeout

    def _download(self, artifact: str) -> list[Provenance]:
        result = run_command(
            ["cosign", "download", "attestation", artifact],
            timeout=self.timeout,
        )
        if result.returncode != 0:
            err = stderr_text(result)
            if any(marker in err.lower() for marker in _NO_ATTESTATION_MARKERS):
                logger.debug("No attestations for %s", artifact)
                return []
            raise CollaboratorError(f"cosign download attestation {artifact} failed: {err}")

        lines = result.stdout.decode("utf-8", errors="replace").splitlines()
        return [parse_attestation_line(artifact, line) for line in lines if line.strip()]

    def get(self) -> list[Provenance]:
        records: list[Provenance] = []
        for artifact in self.artifacts:
            records.extend(self._download(artifact))
        logger.debug("Retrieved %d provenance records for %d artifacts", len(records), len(self.artifacts))
        return records
