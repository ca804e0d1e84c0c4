"""
Verify resource — compose the verdict for one live object.

Flow:
    image ref → skip check → ignore fields → fetch candidates
      → match each candidate (first match wins) → verify signature
      → signer policy → container images → provenance → verdict

``verified`` is the conjunction of manifest match, valid signature and
allowed signer. Stage failures raise a ``VerifyResourceError`` subclass
and produce no verdict.

The call holds no state between invocations; concurrent calls for
different objects need no coordination beyond what the collaborators
themselves require.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from kubeverify.adapters.base import CollaboratorError
from kubeverify.adapters.registry import CollaboratorRegistry
from kubeverify.core.models.diff import DiffResult
from kubeverify.core.models.option import VerifyResourceOption
from kubeverify.core.models.result import Provenance, VerifyResourceResult
from kubeverify.core.services.k8s_common import annotations, describe, to_json_bytes, to_yaml_bytes
from kubeverify.core.services.k8s_images import get_all_images_from_object
from kubeverify.core.services.manifest_match import match_resource_with_manifest
from kubeverify.core.services.verify_errors import (
    FetchError,
    ImageExtractionError,
    ProvenanceError,
    SignatureError,
)

logger = logging.getLogger(__name__)

# Failures a collaborator may surface: its own errors, undecodable
# material (ValueError) and unreadable local files (OSError).
_COLLABORATOR_ERRORS = (CollaboratorError, ValueError, OSError)


def verify_resource(
    obj: dict[str, Any],
    option: VerifyResourceOption | None = None,
    registry: CollaboratorRegistry | None = None,
) -> VerifyResourceResult:
    """Verify a live object against its signed manifest.

    Args:
        obj: The live object as a decoded dict. Not modified.
        option: Verification settings; defaults apply when None.
        registry: Collaborator resolver; defaults to the kubectl /
            crane / cosign backed registry.

    Returns:
        The verdict. A skipped object yields ``in_scope=False`` and
        zero values everywhere else.

    Raises:
        FetchError, MatchError, SignatureError, ImageExtractionError,
        ProvenanceError: The named stage failed.
    """
    option = option or VerifyResourceOption()
    registry = registry or CollaboratorRegistry()
    obj_bytes = to_yaml_bytes(obj)

    # explicit image ref wins over the annotation
    image_ref = option.image_ref
    if not image_ref:
        image_ref = annotations(obj).get(option.annotation_config.image_ref_annotation_key(), "")

    if len(option.skip_objects) > 0 and option.skip_objects.match(obj):
        logger.debug("Skipping %s", describe(obj))
        return VerifyResourceResult(in_scope=False)

    ignore_fields: list[str] = []
    matched, fields = option.effective_ignore_fields().match(obj)
    if matched:
        ignore_fields = fields

    # ── Fetch ───────────────────────────────────────────────────
    logger.debug("Fetching manifest for %s", describe(obj))
    try:
        source = registry.manifest_source(
            image_ref,
            option.signature_resource_ref,
            option.annotation_config,
            ignore_fields,
            option.max_resource_manifest_num,
        )
        candidates, sig_ref = source.fetch(obj_bytes)
    except _COLLABORATOR_ERRORS as e:
        raise FetchError(f"YAML manifest not found for this resource: {e}") from e

    # ── Match ───────────────────────────────────────────────────
    manifest_matched, diff = _match_candidates(obj, candidates, ignore_fields, option, registry)

    # ── Signature ───────────────────────────────────────────────
    logger.debug("Verifying signature %s", sig_ref)
    try:
        verifier = registry.signature_verifier(
            obj_bytes,
            sig_ref,
            option.key_path or None,
            option.annotation_config,
        )
        signature = verifier.verify()
    except _COLLABORATOR_ERRORS as e:
        raise SignatureError(f"failed to verify signature: {e}") from e

    signer_allowed = option.signers.match(signature.signer)
    verified = manifest_matched and signature.valid and signer_allowed
    logger.debug(
        "%s: matched=%s signature_valid=%s signer_allowed=%s",
        describe(obj), manifest_matched, signature.valid, signer_allowed,
    )

    # ── Enrichment ──────────────────────────────────────────────
    try:
        container_images = get_all_images_from_object(obj)
    except ValueError as e:
        raise ImageExtractionError(f"failed to get container images: {e}") from e

    provenances: list[Provenance] = []
    if option.provenance:
        try:
            provenances = registry.provenance_source(obj, sig_ref).get()
        except _COLLABORATOR_ERRORS as e:
            raise ProvenanceError(f"failed to get provenance: {e}") from e

    return VerifyResourceResult(
        verified=verified,
        in_scope=True,
        signer=signature.signer,
        signed_time=get_time(signature.signed_at),
        sig_ref=sig_ref,
        diff=diff,
        container_images=container_images,
        provenances=provenances,
    )


def _match_candidates(
    obj: dict[str, Any],
    candidates: list[bytes],
    ignore_fields: list[str],
    option: VerifyResourceOption,
    registry: CollaboratorRegistry,
) -> tuple[bool, DiffResult | None]:
    """Try candidates in order until one matches.

    When none matches, the first candidate's diff is the one reported,
    however many candidates were tried.
    """
    obj_json = to_json_bytes(obj)
    diffs: list[DiffResult | None] = []
    for i, candidate in enumerate(candidates):
        logger.debug("Trying candidate %d of %d", i + 1, len(candidates))
        outcome = match_resource_with_manifest(
            obj_json,
            candidate,
            ignore_fields,
            option.dry_run_namespace,
            option.check_dry_run_for_apply,
            registry.simulator,
        )
        diffs.append(outcome.diff)
        if outcome.matched:
            return True, None
    return False, diffs[0] if diffs else None


def get_time(timestamp: int | None) -> datetime | None:
    """Epoch seconds to an aware UTC datetime; None stays None."""
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=UTC)
