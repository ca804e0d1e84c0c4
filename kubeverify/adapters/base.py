"""
Adapter base — the contracts between the verifier and its collaborators.

The matching engine and the orchestrator only talk to these abstract
classes, never directly to kubectl, crane or cosign. Concrete
implementations live in ``kubeverify.adapters.kubectl`` and the
``kubeverify.core.services`` modules; in-memory doubles live in
``kubeverify.adapters.mock``.

Unlike a "never raise" adapter, a collaborator raises a
``CollaboratorError`` when it cannot do its job. The orchestrator wraps
that into a stage error. A negative answer (signature invalid) is a
value, not an exception.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from kubeverify.core.models.result import Provenance


class CollaboratorError(Exception):
    """Raised when an external collaborator fails."""


class SimulationError(CollaboratorError):
    """The admission simulator could not produce a simulated object."""


class ManifestNotFoundError(CollaboratorError):
    """No reference manifest could be found for the object."""


class SignatureMaterialError(CollaboratorError):
    """Signature material exists but cannot be used (bad key, bad encoding)."""


# ═══════════════════════════════════════════════════════════════════
#  Admission simulation
# ═══════════════════════════════════════════════════════════════════


class AdmissionSimulator(ABC):
    """Server-side dry-run: run admission without persisting anything."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Identifier used in logs."""

    @abstractmethod
    def dry_run_create(self, manifest: bytes, namespace: str = "") -> bytes:
        """Dry-run create ``manifest`` and return the simulated object.

        An empty ``namespace`` means the object is cluster-scoped.
        """

    @abstractmethod
    def get_apply_patch_bytes(self, manifest: bytes, namespace: str) -> tuple[bytes, bytes]:
        """Apply ``manifest`` onto the live object it identifies.

        Returns:
            (intermediate, patched). ``patched`` is the merged object.
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


# ═══════════════════════════════════════════════════════════════════
#  Manifest, signature, provenance
# ═══════════════════════════════════════════════════════════════════


class ManifestSource(ABC):
    """Finds the candidate reference manifests for an object."""

    @abstractmethod
    def fetch(self, obj_bytes: bytes) -> tuple[list[bytes], str]:
        """Return (ordered candidate manifests, signature reference)."""


@dataclass(frozen=True)
class SignatureVerdict:
    """Outcome of a signature check.

    ``signed_at`` is seconds since the epoch (UTC), or None if the
    material carries no signing time.
    """

    valid: bool
    signer: str = ""
    signed_at: int | None = None


class SignatureVerifier(ABC):
    """Checks one signature reference."""

    @abstractmethod
    def verify(self) -> SignatureVerdict:
        """Verify and report; raise only if verification could not run."""


class ProvenanceSource(ABC):
    """Retrieves attestations keyed by a signature reference."""

    @abstractmethod
    def get(self) -> list[Provenance]:
        """Return every provenance record found (possibly none)."""
