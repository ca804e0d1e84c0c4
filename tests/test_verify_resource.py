"""
Tests for verify_resource — the verification orchestrator.

All collaborators are doubles from kubeverify.adapters.mock, injected
through a CollaboratorRegistry.
"""

from __future__ import annotations

import copy
from datetime import UTC, datetime

import pytest

from kubeverify.adapters.base import (
    CollaboratorError,
    ManifestNotFoundError,
    ManifestSource,
    ProvenanceSource,
    SignatureMaterialError,
    SignatureVerdict,
    SignatureVerifier,
)
from kubeverify.adapters.mock import (
    StaticManifestSource,
    StaticProvenanceSource,
    StaticSignatureVerifier,
)
from kubeverify.adapters.registry import CollaboratorRegistry
from kubeverify.core.models.option import (
    ObjectFieldBinding,
    ObjectFieldBindingList,
    ObjectReference,
    ObjectReferenceList,
    SignerList,
    VerifyResourceOption,
)
from kubeverify.core.models.result import Provenance, VerifyResourceResult
from kubeverify.core.services.verify_errors import (
    EnrichmentError,
    FetchError,
    ImageExtractionError,
    MatchError,
    ProvenanceError,
    SignatureError,
    VerifyResourceError,
)
from kubeverify.core.services.verify_resource import get_time, verify_resource


class _FailingManifestSource(ManifestSource):
    def fetch(self, obj_bytes):
        raise ManifestNotFoundError("annotation cosign.sigstore.dev/message not found")


class _FailingVerifier(SignatureVerifier):
    def verify(self):
        raise SignatureMaterialError("invalid public key")


class _FailingProvenance(ProvenanceSource):
    def get(self):
        raise CollaboratorError("cosign download attestation failed")


def _option(**kwargs) -> VerifyResourceOption:
    return VerifyResourceOption(**kwargs)


# ═══════════════════════════════════════════════════════════════════
#  Verdict
# ═══════════════════════════════════════════════════════════════════


class TestVerdict:
    def test_verified(self, configmap, make_registry):
        result = verify_resource(configmap, _option(), make_registry(configmap))
        assert result.verified is True
        assert result.in_scope is True
        assert result.signer == "signer@example.com"
        assert result.sig_ref == "registry.example.com/manifests:v1"
        assert result.diff is None

    def test_default_option(self, configmap, make_registry):
        assert verify_resource(configmap, None, make_registry(configmap)).verified is True

    def test_mismatch_not_verified_with_diff(self, configmap, make_registry):
        live = copy.deepcopy(configmap)
        live["data"]["a"] = "tampered"
        result = verify_resource(live, _option(), make_registry(configmap))
        assert result.verified is False
        assert result.in_scope is True
        assert result.diff.keys() == ["data.a"]
        # the signature is still reported
        assert result.signer == "signer@example.com"

    def test_invalid_signature_not_verified(self, configmap, make_registry):
        registry = make_registry(configmap, verifier=StaticSignatureVerifier(SignatureVerdict(valid=False)))
        result = verify_resource(configmap, _option(), registry)
        assert result.verified is False
        assert result.diff is None

    def test_signer_allowed(self, configmap, make_registry):
        option = _option(signers=SignerList(["*@example.com"]))
        assert verify_resource(configmap, option, make_registry(configmap)).verified is True

    def test_signer_not_allowed(self, configmap, make_registry):
        option = _option(signers=SignerList(["release@acme.io"]))
        result = verify_resource(configmap, option, make_registry(configmap))
        assert result.verified is False
        assert result.signer == "signer@example.com"

    def test_signed_time_is_utc(self, configmap, make_registry):
        verdict = SignatureVerdict(valid=True, signer="a@b.c", signed_at=1700000000)
        registry = make_registry(configmap, verifier=StaticSignatureVerifier(verdict))
        result = verify_resource(configmap, _option(), registry)
        assert result.signed_time == datetime(2023, 11, 14, 22, 13, 20, tzinfo=UTC)

    def test_no_signing_time(self, configmap, make_registry):
        assert verify_resource(configmap, _option(), make_registry(configmap)).signed_time is None

    def test_input_object_not_modified(self, configmap, make_registry):
        before = copy.deepcopy(configmap)
        verify_resource(configmap, _option(), make_registry(configmap))
        assert configmap == before


# ═══════════════════════════════════════════════════════════════════
#  Candidates
# ═══════════════════════════════════════════════════════════════════


class TestCandidates:
    def test_second_candidate_matches(self, configmap, make_registry):
        other = copy.deepcopy(configmap)
        other["data"]["a"] = "other"
        result = verify_resource(configmap, _option(), make_registry(other, configmap))
        assert result.verified is True
        assert result.diff is None

    def test_first_candidate_diff_reported(self, configmap, make_registry):
        first = copy.deepcopy(configmap)
        first["data"] = {"a": "first", "b": "extra", "c": "extra"}
        second = copy.deepcopy(configmap)
        second["data"]["a"] = "second"
        live = copy.deepcopy(configmap)
        live["data"]["a"] = "live"

        result = verify_resource(live, _option(), make_registry(first, second))
        assert result.verified is False
        # the second candidate differs only at data.a, yet the first is reported
        assert result.diff.keys() == ["data.a", "data.b", "data.c"]
        assert result.diff.items[0].after == "first"

    def test_stops_at_first_match(self, configmap, make_registry, simulator):
        verify_resource(configmap, _option(), make_registry(configmap, configmap))
        assert simulator.call_count == 0


# ═══════════════════════════════════════════════════════════════════
#  Policy
# ═══════════════════════════════════════════════════════════════════


class TestPolicy:
    def test_skipped_object(self, configmap, simulator):
        source = StaticManifestSource([])
        verifier = StaticSignatureVerifier()
        registry = CollaboratorRegistry(simulator=simulator, manifest_source=source, signature_verifier=verifier)
        option = _option(skip_objects=ObjectReferenceList([ObjectReference(kind="ConfigMap")]))

        result = verify_resource(configmap, option, registry)
        assert result == VerifyResourceResult(in_scope=False)
        assert source.call_count == 0
        assert verifier.call_count == 0
        assert simulator.call_count == 0

    def test_skip_list_not_matching(self, configmap, make_registry):
        option = _option(skip_objects=ObjectReferenceList([ObjectReference(kind="Secret")]))
        assert verify_resource(configmap, option, make_registry(configmap)).in_scope is True

    def test_ignore_fields_applied(self, configmap, make_registry):
        live = copy.deepcopy(configmap)
        live["data"]["b"] = "controller-added"
        option = _option(ignore_fields=ObjectFieldBindingList([
            ObjectFieldBinding(fields=["data.b"], objects=ObjectReferenceList([ObjectReference(kind="ConfigMap")])),
        ]))
        assert verify_resource(live, option, make_registry(configmap)).verified is True

    def test_ignore_fields_for_other_kind_not_applied(self, configmap, make_registry):
        live = copy.deepcopy(configmap)
        live["data"]["b"] = "controller-added"
        option = _option(ignore_fields=ObjectFieldBindingList([
            ObjectFieldBinding(fields=["data.b"], objects=ObjectReferenceList([ObjectReference(kind="Secret")])),
        ]))
        assert verify_resource(live, option, make_registry(configmap)).verified is False

    def test_signature_annotations_always_ignored(self, configmap, make_registry):
        live = copy.deepcopy(configmap)
        live["metadata"]["annotations"] = {
            "cosign.sigstore.dev/message": "H4sIAAAA",
            "cosign.sigstore.dev/signature": "MEUCIQ==",
        }
        assert verify_resource(live, _option(), make_registry(configmap)).verified is True

    def test_option_not_mutated(self, configmap, make_registry):
        option = _option()
        verify_resource(configmap, option, make_registry(configmap))
        verify_resource(configmap, option, make_registry(configmap))
        assert len(option.ignore_fields) == 0

    def test_image_ref_annotation_used(self, configmap, simulator):
        seen = {}

        class _Registry(CollaboratorRegistry):
            def manifest_source(self, image_ref, *args):
                seen["image_ref"] = image_ref
                return StaticManifestSource([b"kind: ConfigMap\n"])

        live = copy.deepcopy(configmap)
        live["metadata"]["annotations"] = {"cosign.sigstore.dev/imageRef": "ghcr.io/acme/m:v1"}
        verify_resource(live, _option(), _Registry(simulator=simulator, signature_verifier=StaticSignatureVerifier()))
        assert seen["image_ref"] == "ghcr.io/acme/m:v1"

    def test_explicit_image_ref_wins(self, configmap, simulator):
        seen = {}

        class _Registry(CollaboratorRegistry):
            def manifest_source(self, image_ref, *args):
                seen["image_ref"] = image_ref
                return StaticManifestSource([b"kind: ConfigMap\n"])

        live = copy.deepcopy(configmap)
        live["metadata"]["annotations"] = {"cosign.sigstore.dev/imageRef": "ghcr.io/acme/m:v1"}
        option = _option(image_ref="ghcr.io/acme/m:v2")
        verify_resource(live, option, _Registry(simulator=simulator, signature_verifier=StaticSignatureVerifier()))
        assert seen["image_ref"] == "ghcr.io/acme/m:v2"


# ═══════════════════════════════════════════════════════════════════
#  Enrichment
# ═══════════════════════════════════════════════════════════════════


class TestEnrichment:
    def test_container_images(self, deployment, make_registry):
        result = verify_resource(deployment, _option(), make_registry(deployment))
        assert [i.image for i in result.container_images] == ["nginx:1.25", "envoy:1.29", "busybox:1.36"]

    def test_provenance_not_requested(self, configmap, make_registry):
        provenance = StaticProvenanceSource([Provenance(artifact="x")])
        result = verify_resource(configmap, _option(), make_registry(configmap, provenance=provenance))
        assert result.provenances == []
        assert provenance.call_count == 0

    def test_provenance_requested(self, configmap, make_registry):
        provenance = StaticProvenanceSource([Provenance(artifact="registry.example.com/manifests:v1")])
        result = verify_resource(configmap, _option(provenance=True), make_registry(configmap, provenance=provenance))
        assert [p.artifact for p in result.provenances] == ["registry.example.com/manifests:v1"]


# ═══════════════════════════════════════════════════════════════════
#  Stage errors
# ═══════════════════════════════════════════════════════════════════


class TestStageErrors:
    def test_fetch_error(self, configmap, simulator):
        registry = CollaboratorRegistry(simulator=simulator, manifest_source=_FailingManifestSource())
        with pytest.raises(FetchError, match="manifest not found") as exc:
            verify_resource(configmap, _option(), registry)
        assert isinstance(exc.value.__cause__, ManifestNotFoundError)

    def test_match_error(self, configmap, make_registry, simulator):
        live = copy.deepcopy(configmap)
        live["data"]["a"] = "changed"
        simulator.set_failure("connection refused")
        with pytest.raises(MatchError):
            verify_resource(live, _option(), make_registry(configmap))

    def test_signature_error(self, configmap, simulator):
        registry = CollaboratorRegistry(
            simulator=simulator,
            manifest_source=StaticManifestSource([b"apiVersion: v1\nkind: ConfigMap\n"]),
            signature_verifier=_FailingVerifier(),
        )
        with pytest.raises(SignatureError, match="failed to verify signature"):
            verify_resource(configmap, _option(), registry)

    def test_image_extraction_error(self, make_registry):
        pod = {
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": {"name": "p", "namespace": "ns"},
            "spec": {"containers": "not-a-list"},
        }
        with pytest.raises(ImageExtractionError) as exc:
            verify_resource(pod, _option(), make_registry(pod))
        assert isinstance(exc.value, EnrichmentError)

    def test_provenance_error(self, configmap, make_registry):
        registry = make_registry(configmap, provenance=_FailingProvenance())
        with pytest.raises(ProvenanceError):
            verify_resource(configmap, _option(provenance=True), registry)

    def test_all_stage_errors_share_base(self):
        for cls in (FetchError, MatchError, SignatureError, ImageExtractionError, ProvenanceError):
            assert issubclass(cls, VerifyResourceError)


class TestGetTime:
    def test_none(self):
        assert get_time(None) is None

    def test_epoch(self):
        assert get_time(0) == datetime(1970, 1, 1, tzinfo=UTC)
