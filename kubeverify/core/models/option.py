"""
Verify option — the configuration bundle handed to ``verify_resource``.

Loaded from YAML (see ``kubeverify.core.config.loader``) or built in
code. Keys are camelCase in YAML and snake_case in Python; both are
accepted on input.

The selector types here are pure lookups: they never touch the cluster.
"""

from __future__ import annotations

from collections.abc import Iterator
from fnmatch import fnmatchcase
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, RootModel
from pydantic.alias_generators import to_camel

from kubeverify.core.models.diff import join_path

DEFAULT_ANNOTATION_KEY_DOMAIN = "cosign.sigstore.dev"
DEFAULT_MAX_RESOURCE_MANIFEST_NUM = 3

MESSAGE_ANNOTATION_BASE_NAME = "message"
SIGNATURE_ANNOTATION_BASE_NAME = "signature"
CERTIFICATE_ANNOTATION_BASE_NAME = "certificate"
BUNDLE_ANNOTATION_BASE_NAME = "bundle"
IMAGE_REF_ANNOTATION_BASE_NAME = "imageRef"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _glob(pattern: str, value: str) -> bool:
    """Empty pattern matches anything."""
    return pattern == "" or fnmatchcase(value, pattern)


# ═══════════════════════════════════════════════════════════════════
#  Object selectors
# ═══════════════════════════════════════════════════════════════════


class ObjectReference(_CamelModel):
    """Selects objects by group / version / kind / namespace / name globs."""

    group: str = ""
    version: str = ""
    kind: str = ""
    namespace: str = ""
    name: str = ""

    def match(self, obj: dict[str, Any]) -> bool:
        api_version = str(obj.get("apiVersion", ""))
        group, _, version = api_version.rpartition("/")
        metadata = obj.get("metadata") or {}
        return (
            _glob(self.group, group)
            and _glob(self.version, version)
            and _glob(self.kind, str(obj.get("kind", "")))
            and _glob(self.namespace, str(metadata.get("namespace", "") or ""))
            and _glob(self.name, str(metadata.get("name", "") or ""))
        )


class ObjectReferenceList(RootModel[list[ObjectReference]]):
    root: list[ObjectReference] = Field(default_factory=list)

    def __iter__(self) -> Iterator[ObjectReference]:  # type: ignore[override]
        return iter(self.root)

    def __len__(self) -> int:
        return len(self.root)

    def match(self, obj: dict[str, Any]) -> bool:
        return any(ref.match(obj) for ref in self.root)


class ObjectFieldBinding(_CamelModel):
    """A set of ignore-field paths bound to the objects they apply to."""

    fields: list[str] = Field(default_factory=list)
    objects: ObjectReferenceList = Field(default_factory=ObjectReferenceList)


class ObjectFieldBindingList(RootModel[list[ObjectFieldBinding]]):
    root: list[ObjectFieldBinding] = Field(default_factory=list)

    def __iter__(self) -> Iterator[ObjectFieldBinding]:  # type: ignore[override]
        return iter(self.root)

    def __len__(self) -> int:
        return len(self.root)

    def match(self, obj: dict[str, Any]) -> tuple[bool, list[str]]:
        """Collect the fields of every binding that selects ``obj``.

        Fields are de-duplicated, first occurrence wins.
        """
        matched = False
        fields: list[str] = []
        for binding in self.root:
            if binding.objects.match(obj):
                matched = True
                for f in binding.fields:
                    if f not in fields:
                        fields.append(f)
        return matched, fields

    def extend(self, bindings: list[ObjectFieldBinding]) -> ObjectFieldBindingList:
        """Return a new list with ``bindings`` appended."""
        return ObjectFieldBindingList([*self.root, *bindings])


class SignerList(RootModel[list[str]]):
    """Allowed signer identities (globs). Empty allows any signer."""

    root: list[str] = Field(default_factory=list)

    def __iter__(self) -> Iterator[str]:  # type: ignore[override]
        return iter(self.root)

    def __len__(self) -> int:
        return len(self.root)

    def match(self, signer: str) -> bool:
        if not self.root:
            return True
        return any(fnmatchcase(signer, pattern) for pattern in self.root)


# ═══════════════════════════════════════════════════════════════════
#  Annotation naming
# ═══════════════════════════════════════════════════════════════════


class AnnotationConfig(_CamelModel):
    """Names the annotations that carry message / signature material."""

    annotation_key_domain: str = DEFAULT_ANNOTATION_KEY_DOMAIN

    def _key(self, base: str) -> str:
        return f"{self.annotation_key_domain}/{base}"

    def message_annotation_key(self) -> str:
        return self._key(MESSAGE_ANNOTATION_BASE_NAME)

    def signature_annotation_key(self) -> str:
        return self._key(SIGNATURE_ANNOTATION_BASE_NAME)

    def certificate_annotation_key(self) -> str:
        return self._key(CERTIFICATE_ANNOTATION_BASE_NAME)

    def bundle_annotation_key(self) -> str:
        return self._key(BUNDLE_ANNOTATION_BASE_NAME)

    def image_ref_annotation_key(self) -> str:
        return self._key(IMAGE_REF_ANNOTATION_BASE_NAME)

    def annotation_keys(self) -> list[str]:
        return [
            self.message_annotation_key(),
            self.signature_annotation_key(),
            self.certificate_annotation_key(),
            self.bundle_annotation_key(),
            self.image_ref_annotation_key(),
        ]

    def ignore_field_paths(self) -> list[str]:
        """The annotation keys as field paths under metadata.annotations."""
        return [join_path(["metadata", "annotations", k]) for k in self.annotation_keys()]


# ═══════════════════════════════════════════════════════════════════
#  Option
# ═══════════════════════════════════════════════════════════════════


class VerifyResourceOption(_CamelModel):
    """Everything ``verify_resource`` reads. Never mutated by it."""

    image_ref: str = ""
    signature_resource_ref: str = ""
    key_path: str = ""

    dry_run_namespace: str = ""
    check_dry_run_for_apply: bool = False

    signers: SignerList = Field(default_factory=SignerList)
    skip_objects: ObjectReferenceList = Field(default_factory=ObjectReferenceList)
    ignore_fields: ObjectFieldBindingList = Field(default_factory=ObjectFieldBindingList)

    provenance: bool = False
    max_resource_manifest_num: int = DEFAULT_MAX_RESOURCE_MANIFEST_NUM
    annotation_config: AnnotationConfig = Field(default_factory=AnnotationConfig)

    def effective_ignore_fields(self) -> ObjectFieldBindingList:
        """Configured ignore fields plus the signature annotations.

        The signing material is attached to the object after signing,
        so it can never be part of the reference manifest.
        """
        annotation_binding = ObjectFieldBinding(
            fields=self.annotation_config.ignore_field_paths(),
            objects=ObjectReferenceList([ObjectReference(kind="*")]),
        )
        return self.ignore_fields.extend([annotation_binding])
