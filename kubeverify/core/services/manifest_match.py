"""
Manifest matching — decide whether a live object is its signed manifest.

Tiers, tried in order until one matches:

    1. direct        live object vs manifest, no normalization
    2. dryrun-create live object vs the manifest as the cluster would
                     create it (defaulting, mutating webhooks)
    3. dryrun-apply  live object vs the manifest applied onto the live
                     object and then dry-run created (optional)

Each tier yields a ``MatchOutcome``. The engine returns the first
matching outcome, otherwise the outcome of the last tier it attempted.

Two separate suppression mechanisms apply:
    - the simulation mask is fixed, applied to both sides before a
      dry-run diff, and only hides fields the simulation itself rewrites;
    - ignore fields come from policy and filter every tier's diff.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from kubeverify.adapters.base import AdmissionSimulator, CollaboratorError
from kubeverify.core.models.diff import DiffResult
from kubeverify.core.models.result import MatchOutcome
from kubeverify.core.services.k8s_common import CRD_KIND
from kubeverify.core.services.mapnode import Node, NodeError
from kubeverify.core.services.verify_errors import MatchError

logger = logging.getLogger(__name__)

DEFAULT_DRY_RUN_NAMESPACE = "default"

TIER_DIRECT = "direct"
TIER_DRYRUN_CREATE = "dryrun-create"
TIER_DRYRUN_APPLY = "dryrun-apply"

_NAMESPACE_FIELD = "metadata.namespace"
_CRD_NAME_FIELDS = (
    "spec.names.kind",
    "spec.names.listKind",
    "spec.names.singular",
    "spec.names.plural",
)


@dataclass(frozen=True)
class MatchScope:
    """Per-call scope, resolved once from the live object."""

    cluster_scope: bool
    is_crd: bool
    dry_run_namespace: str  # empty when cluster-scoped

    @classmethod
    def resolve(cls, obj_node: Node, dry_run_namespace: str = "") -> MatchScope:
        cluster_scope = obj_node.get_string(_NAMESPACE_FIELD) == ""
        if cluster_scope:
            dry_run_namespace = ""
        elif not dry_run_namespace:
            dry_run_namespace = DEFAULT_DRY_RUN_NAMESPACE
        return cls(
            cluster_scope=cluster_scope,
            is_crd=obj_node.get_string("kind") == CRD_KIND,
            dry_run_namespace=dry_run_namespace,
        )

    def simulation_mask(self) -> list[str]:
        """Fields a dry-run create rewrites on its own."""
        mask = ["metadata.name"]  # e.g. sample-configmap -> sample-configmap-dryrun
        if not self.cluster_scope:
            mask.append(_NAMESPACE_FIELD)
        if self.is_crd:
            mask.extend(_CRD_NAME_FIELDS)
        return mask


# ═══════════════════════════════════════════════════════════════════
#  Tiers
# ═══════════════════════════════════════════════════════════════════


def direct_match(obj_node: Node, manifest_bytes: bytes) -> DiffResult | None:
    mnf_node = Node.from_yaml_bytes(manifest_bytes)
    return obj_node.diff(mnf_node)


def dryrun_create_match(
    obj_node: Node,
    manifest_bytes: bytes,
    scope: MatchScope,
    simulator: AdmissionSimulator,
) -> DiffResult | None:
    mnf_node = Node.from_yaml_bytes(manifest_bytes)
    ns_masked = mnf_node.mask([_NAMESPACE_FIELD]).to_yaml().encode("utf-8")
    sim_bytes = simulator.dry_run_create(ns_masked, scope.dry_run_namespace)
    sim_node = Node.from_yaml_bytes(sim_bytes)
    return _masked_diff(obj_node, sim_node, scope)


def dryrun_apply_match(
    obj_node: Node,
    manifest_bytes: bytes,
    scope: MatchScope,
    simulator: AdmissionSimulator,
) -> DiffResult | None:
    obj_namespace = obj_node.get_string(_NAMESPACE_FIELD)
    _, patched_bytes = simulator.get_apply_patch_bytes(manifest_bytes, obj_namespace)
    patched_node = Node.from_yaml_bytes(patched_bytes)
    ns_masked = patched_node.mask([_NAMESPACE_FIELD]).to_yaml().encode("utf-8")
    sim_bytes = simulator.dry_run_create(ns_masked, scope.dry_run_namespace)
    sim_node = Node.from_yaml_bytes(sim_bytes)
    return _masked_diff(obj_node, sim_node, scope)


def _masked_diff(obj_node: Node, sim_node: Node, scope: MatchScope) -> DiffResult | None:
    mask = scope.simulation_mask()
    return obj_node.mask(mask).diff(sim_node.mask(mask))


def _outcome(tier: str, diff: DiffResult | None, ignore_fields: list[str]) -> MatchOutcome:
    if diff is not None and ignore_fields:
        _, diff, _ = diff.filter(ignore_fields)
    if diff is None or diff.size() == 0:
        return MatchOutcome(tier=tier, matched=True)
    return MatchOutcome(tier=tier, matched=False, diff=diff)


# ═══════════════════════════════════════════════════════════════════
#  Engine
# ═══════════════════════════════════════════════════════════════════


def match_resource_with_manifest(
    obj_bytes: bytes,
    manifest_bytes: bytes,
    ignore_fields: list[str],
    dry_run_namespace: str,
    check_dry_run_for_apply: bool,
    simulator: AdmissionSimulator,
) -> MatchOutcome:
    """Match a live object (JSON bytes) against one candidate manifest.

    Raises:
        MatchError: A document could not be parsed or a simulation failed.
    """
    try:
        obj_node = Node.from_bytes(obj_bytes)
    except NodeError as e:
        raise MatchError(f"failed to initialize object node: {e}") from e

    scope = MatchScope.resolve(obj_node, dry_run_namespace)
    logger.debug(
        "Matching %s %s (cluster_scope=%s, dry_run_namespace=%r)",
        obj_node.get_string("kind"),
        obj_node.get_string("metadata.name"),
        scope.cluster_scope,
        scope.dry_run_namespace,
    )

    tiers: list[tuple[str, Callable[[], DiffResult | None]]] = [
        (TIER_DIRECT, lambda: direct_match(obj_node, manifest_bytes)),
        (TIER_DRYRUN_CREATE, lambda: dryrun_create_match(obj_node, manifest_bytes, scope, simulator)),
    ]
    if check_dry_run_for_apply:
        tiers.append(
            (TIER_DRYRUN_APPLY, lambda: dryrun_apply_match(obj_node, manifest_bytes, scope, simulator)),
        )

    outcome: MatchOutcome | None = None
    for tier, attempt in tiers:
        logger.debug("Trying %s match", tier)
        try:
            diff = attempt()
        except (NodeError, CollaboratorError) as e:
            raise MatchError(f"error occurred during {tier} match: {e}") from e
        outcome = _outcome(tier, diff, ignore_fields)
        if outcome.matched:
            logger.debug("Matched at %s", tier)
            return outcome
        logger.debug("No %s match (%d differences)", tier, outcome.diff.size() if outcome.diff else 0)

    assert outcome is not None  # tier list is never empty
    return outcome
