"""Adapters — bindings for the verifier's external collaborators.

Public re-exports for convenient access. The registry is imported from
``kubeverify.adapters.registry`` directly; it depends on the service
modules, which depend on this package.
"""

from kubeverify.adapters.base import (
    AdmissionSimulator,
    CollaboratorError,
    ManifestSource,
    ProvenanceSource,
    SignatureVerdict,
    SignatureVerifier,
    SimulationError,
)
from kubeverify.adapters.mock import MockSimulator

__all__ = [
    "AdmissionSimulator",
    "CollaboratorError",
    "ManifestSource",
    "MockSimulator",
    "ProvenanceSource",
    "SignatureVerdict",
    "SignatureVerifier",
    "SimulationError",
]
