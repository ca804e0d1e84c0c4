"""
Stage errors raised by ``verify_resource``.

Each names the stage that failed and chains the collaborator error
that caused it. None of these is raised for a negative verdict: a
mismatch, an invalid signature or a disallowed signer are values in
the returned result.
"""

from __future__ import annotations


class VerifyResourceError(Exception):
    """Base class; the call produced no verdict."""


class FetchError(VerifyResourceError):
    """Candidate manifests or the signature reference were unobtainable."""


class MatchError(VerifyResourceError):
    """A tree could not be parsed or a simulation failed."""


class SignatureError(VerifyResourceError):
    """The signature verifier could not run."""


class EnrichmentError(VerifyResourceError):
    """Post-verdict enrichment failed."""


class ImageExtractionError(EnrichmentError):
    pass


class ProvenanceError(EnrichmentError):
    pass
