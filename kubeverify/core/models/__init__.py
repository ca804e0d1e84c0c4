"""
Domain models — Pydantic types for resource verification.

All models are re-exported here for convenient access:

    from kubeverify.core.models import VerifyResourceOption, VerifyResourceResult
"""

from kubeverify.core.models.diff import DiffResult, Difference
from kubeverify.core.models.option import (
    AnnotationConfig,
    ObjectFieldBinding,
    ObjectFieldBindingList,
    ObjectReference,
    ObjectReferenceList,
    SignerList,
    VerifyResourceOption,
)
from kubeverify.core.models.result import (
    ImageObject,
    MatchOutcome,
    Provenance,
    VerifyResourceResult,
)

__all__ = [
    # option.py
    "AnnotationConfig",
    # diff.py
    "DiffResult",
    "Difference",
    # result.py
    "ImageObject",
    "MatchOutcome",
    "ObjectFieldBinding",
    "ObjectFieldBindingList",
    "ObjectReference",
    "ObjectReferenceList",
    "Provenance",
    "SignerList",
    "VerifyResourceOption",
    "VerifyResourceResult",
]
