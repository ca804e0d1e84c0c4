"""
Shared test fixtures and configuration.
"""

from __future__ import annotations

import copy
from typing import Any

import pytest

from kubeverify.adapters.mock import (
    MockSimulator,
    StaticManifestSource,
    StaticProvenanceSource,
    StaticSignatureVerifier,
)
from kubeverify.adapters.registry import CollaboratorRegistry
from kubeverify.core.services.k8s_common import to_yaml_bytes

_CONFIGMAP: dict[str, Any] = {
    "apiVersion": "v1",
    "kind": "ConfigMap",
    "metadata": {"name": "sample-configmap", "namespace": "sample-ns"},
    "data": {"a": "1"},
}

_DEPLOYMENT: dict[str, Any] = {
    "apiVersion": "apps/v1",
    "kind": "Deployment",
    "metadata": {"name": "web", "namespace": "sample-ns"},
    "spec": {
        "replicas": 2,
        "template": {
            "metadata": {"labels": {"app": "web"}},
            "spec": {
                "initContainers": [{"name": "init", "image": "busybox:1.36"}],
                "containers": [
                    {"name": "web", "image": "nginx:1.25"},
                    {"name": "sidecar", "image": "envoy:1.29"},
                ],
            },
        },
    },
}

_CRD: dict[str, Any] = {
    "apiVersion": "apiextensions.k8s.io/v1",
    "kind": "CustomResourceDefinition",
    "metadata": {"name": "foos.example.com"},
    "spec": {
        "group": "example.com",
        "names": {"kind": "Foo", "listKind": "FooList", "singular": "foo", "plural": "foos"},
        "scope": "Namespaced",
    },
}


@pytest.fixture
def configmap() -> dict[str, Any]:
    """A namespaced ConfigMap as the API server returns it."""
    return copy.deepcopy(_CONFIGMAP)


@pytest.fixture
def deployment() -> dict[str, Any]:
    return copy.deepcopy(_DEPLOYMENT)


@pytest.fixture
def crd() -> dict[str, Any]:
    """A cluster-scoped CustomResourceDefinition."""
    return copy.deepcopy(_CRD)


@pytest.fixture
def simulator() -> MockSimulator:
    return MockSimulator()


@pytest.fixture
def make_registry(simulator: MockSimulator):
    """Build a registry of doubles around a list of candidate manifests."""

    def _make(
        *candidates: dict[str, Any],
        verifier: StaticSignatureVerifier | None = None,
        provenance: StaticProvenanceSource | None = None,
        sig_ref: str = "registry.example.com/manifests:v1",
    ) -> CollaboratorRegistry:
        return CollaboratorRegistry(
            simulator=simulator,
            manifest_source=StaticManifestSource([to_yaml_bytes(c) for c in candidates], sig_ref=sig_ref),
            signature_verifier=verifier or StaticSignatureVerifier(),
            provenance_source=provenance or StaticProvenanceSource(),
        )

    return _make
