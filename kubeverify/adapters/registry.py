"""
Collaborator registry — resolves the concrete collaborators for a call.

The orchestrator never constructs a manifest source, a signature
verifier or a provenance source itself; it asks the registry. By
default the registry dispatches on the references involved:

    image ref set              ImageManifestSource / ImageSignatureVerifier
    signature resource ref set ResourceManifestSource / blob verifier on its data
    neither                    AnnotationManifestSource / blob verifier on annotations

Any collaborator passed to the constructor is returned as-is instead,
which is how tests inject the doubles from ``kubeverify.adapters.mock``.
"""

from __future__ import annotations

import logging
from typing import Any

from kubeverify.adapters.base import (
    AdmissionSimulator,
    ManifestSource,
    ProvenanceSource,
    SignatureVerifier,
)
from kubeverify.core.models.option import AnnotationConfig
from kubeverify.core.services.k8s_common import annotations, load_yaml
from kubeverify.core.services.manifest_fetch import (
    SIG_REF_EMBEDDED_IN_ANNOTATION,
    SIG_REF_RESOURCE_PREFIX,
    AnnotationManifestSource,
    ImageManifestSource,
    ResourceManifestSource,
    load_signature_resource,
    parse_resource_ref,
)
from kubeverify.core.services.provenance import CosignProvenanceSource, provenance_artifacts
from kubeverify.core.services.signature_verify import (
    BlobSignatureVerifier,
    ImageSignatureVerifier,
)

logger = logging.getLogger(__name__)


class CollaboratorRegistry:
    """Central resolver for the verifier's external collaborators.

    Args:
        simulator: Admission simulator; defaults to ``KubectlSimulator``.
        manifest_source: Fixed manifest source (overrides dispatch).
        signature_verifier: Fixed signature verifier (overrides dispatch).
        provenance_source: Fixed provenance source (overrides dispatch).
    """

    def __init__(
        self,
        simulator: AdmissionSimulator | None = None,
        manifest_source: ManifestSource | None = None,
        signature_verifier: SignatureVerifier | None = None,
        provenance_source: ProvenanceSource | None = None,
    ):
        if simulator is None:
            from kubeverify.adapters.kubectl import KubectlSimulator

            simulator = KubectlSimulator()
        self._simulator = simulator
        self._manifest_source = manifest_source
        self._signature_verifier = signature_verifier
        self._provenance_source = provenance_source

    @property
    def simulator(self) -> AdmissionSimulator:
        return self._simulator

    def manifest_source(
        self,
        image_ref: str,
        signature_resource_ref: str,
        annotation_config: AnnotationConfig,
        ignore_fields: list[str],
        max_count: int,
    ) -> ManifestSource:
        if self._manifest_source is not None:
            return self._manifest_source

        kwargs: dict[str, Any] = {
            "annotation_config": annotation_config,
            "ignore_fields": ignore_fields,
            "max_count": max_count,
        }
        if image_ref:
            logger.debug("Using image manifest source %s", image_ref)
            return ImageManifestSource(image_ref, **kwargs)
        if signature_resource_ref:
            logger.debug("Using resource manifest source %s", signature_resource_ref)
            return ResourceManifestSource(signature_resource_ref, **kwargs)
        logger.debug("Using annotation manifest source")
        return AnnotationManifestSource(**kwargs)

    def signature_verifier(
        self,
        obj_bytes: bytes,
        sig_ref: str,
        key_path: str | None,
        annotation_config: AnnotationConfig,
    ) -> SignatureVerifier:
        if self._signature_verifier is not None:
            return self._signature_verifier

        if sig_ref == SIG_REF_EMBEDDED_IN_ANNOTATION:
            obj = load_yaml(obj_bytes)
            found = annotations(obj) if isinstance(obj, dict) else {}
            return BlobSignatureVerifier(
                message=found.get(annotation_config.message_annotation_key()),
                signature=found.get(annotation_config.signature_annotation_key()),
                certificate=found.get(annotation_config.certificate_annotation_key()),
                key_path=key_path,
            )
        if sig_ref.startswith(SIG_REF_RESOURCE_PREFIX):
            ns, ref_name = parse_resource_ref(sig_ref)
            data = load_signature_resource(ns, ref_name)
            return BlobSignatureVerifier(
                message=data.get("message"),
                signature=data.get("signature"),
                certificate=data.get("certificate"),
                key_path=key_path,
            )
        return ImageSignatureVerifier(sig_ref, key_path=key_path)

    def provenance_source(self, obj: dict[str, Any], sig_ref: str) -> ProvenanceSource:
        if self._provenance_source is not None:
            return self._provenance_source
        return CosignProvenanceSource(provenance_artifacts(obj, sig_ref))
