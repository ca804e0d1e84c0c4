"""
Verification verdict models.

``VerifyResourceResult`` is the one document a caller (admission
webhook, CLI) consumes. It is frozen once built; ``to_json()`` is its
canonical textual form.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from kubeverify.core.models.diff import DiffResult


class ImageObject(BaseModel):
    """A container image referenced by a pod-spec-bearing resource."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    resource_kind: str = ""
    resource_name: str = ""
    resource_namespace: str = ""
    container_name: str = ""
    image: str = ""


class Provenance(BaseModel):
    """An attestation retrieved for one artifact."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    artifact: str
    hash: str = ""
    sig_ref: str = ""
    attestation: dict[str, Any] = Field(default_factory=dict)  # decoded in-toto statement
    raw_attestation: str = ""


@dataclass(frozen=True)
class MatchOutcome:
    """Result of one matching attempt.

    ``diff`` is None whenever ``matched`` is True.
    """

    tier: str
    matched: bool
    diff: DiffResult | None = None

    def __post_init__(self) -> None:
        if self.matched and self.diff is not None:
            raise ValueError("a matched outcome cannot carry a diff")


class VerifyResourceResult(BaseModel):
    """Final verdict for one live resource.

    All fields default to their zero value; a skipped resource is
    exactly ``VerifyResourceResult(in_scope=False)``.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    verified: bool = False
    in_scope: bool = False
    signer: str = ""
    signed_time: datetime | None = None
    sig_ref: str = ""
    diff: DiffResult | None = None
    container_images: list[ImageObject] = Field(default_factory=list)
    provenances: list[Provenance] = Field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        exclude = None if self.provenances else {"provenances"}
        return self.model_dump(mode="json", by_alias=True, exclude=exclude)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    def __str__(self) -> str:
        return self.to_json()
