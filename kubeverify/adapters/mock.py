"""
Mock collaborators — in-memory test doubles for every adapter contract.

Used to exercise the matching engine and the orchestrator without a
cluster, a registry or cosign. Each double records its calls so tests
can assert what was (or was not) invoked.
"""

from __future__ import annotations

from collections.abc import Callable

from kubeverify.adapters.base import (
    AdmissionSimulator,
    ManifestSource,
    ProvenanceSource,
    SignatureVerdict,
    SignatureVerifier,
    SimulationError,
)
from kubeverify.core.models.result import Provenance


class MockSimulator(AdmissionSimulator):
    """Admission simulator returning canned or computed bytes.

    By default a dry-run create echoes its input. ``create_hook`` and
    ``apply_hook`` replace that behaviour; ``set_failure`` makes every
    call raise ``SimulationError``.
    """

    def __init__(
        self,
        create_hook: Callable[[bytes, str], bytes] | None = None,
        apply_hook: Callable[[bytes, str], bytes] | None = None,
        simulator_name: str = "mock",
    ):
        self._name = simulator_name
        self._create_hook = create_hook
        self._apply_hook = apply_hook
        self._failure: str | None = None
        self._call_log: list[tuple[str, bytes, str]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[tuple[str, bytes, str]]:
        """(operation, input bytes, namespace) for every call."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    def calls(self, operation: str) -> list[tuple[str, bytes, str]]:
        return [c for c in self._call_log if c[0] == operation]

    def set_failure(self, error: str = "Mock simulation failure") -> None:
        self._failure = error

    def dry_run_create(self, manifest: bytes, namespace: str = "") -> bytes:
        self._call_log.append(("create", manifest, namespace))
        if self._failure:
            raise SimulationError(self._failure)
        if self._create_hook:
            return self._create_hook(manifest, namespace)
        return manifest

    def get_apply_patch_bytes(self, manifest: bytes, namespace: str) -> tuple[bytes, bytes]:
        self._call_log.append(("apply", manifest, namespace))
        if self._failure:
            raise SimulationError(self._failure)
        if self._apply_hook:
            return manifest, self._apply_hook(manifest, namespace)
        return manifest, manifest

    def reset(self) -> None:
        self._call_log.clear()
        self._failure = None


class StaticManifestSource(ManifestSource):
    """Returns a fixed candidate list and signature reference."""

    def __init__(self, candidates: list[bytes], sig_ref: str = "mock://signature"):
        self.candidates = candidates
        self.sig_ref = sig_ref
        self.call_count = 0

    def fetch(self, obj_bytes: bytes) -> tuple[list[bytes], str]:
        self.call_count += 1
        return list(self.candidates), self.sig_ref


class StaticSignatureVerifier(SignatureVerifier):
    """Returns a fixed verdict."""

    def __init__(self, verdict: SignatureVerdict | None = None):
        self.verdict = verdict or SignatureVerdict(valid=True, signer="signer@example.com")
        self.call_count = 0

    def verify(self) -> SignatureVerdict:
        self.call_count += 1
        return self.verdict


class StaticProvenanceSource(ProvenanceSource):
    """Returns a fixed list of provenance records."""

    def __init__(self, records: list[Provenance] | None = None):
        self.records = records or []
        self.call_count = 0

    def get(self) -> list[Provenance]:
        self.call_count += 1
        return list(self.records)
