"""
Manifest fetch — locate the signed reference manifests for an object.

Three sources, chosen by ``kubeverify.adapters.registry``:

    AnnotationManifestSource  manifest carried on the object itself in
                              the ``<domain>/message`` annotation
    ResourceManifestSource    manifest stored in a ConfigMap
                              (``data.message``)
    ImageManifestSource       manifest files inside an OCI image,
                              exported with ``crane export``

A message is base64 of gzip-compressed YAML (plain base64 YAML is also
accepted). The YAML may hold many documents; ``find_candidate_manifests``
picks the ones that plausibly describe the object.
"""

from __future__ import annotations

import base64
import binascii
import gzip
import io
import logging
import tarfile
from typing import Any

import yaml

from kubeverify.adapters.base import CollaboratorError, ManifestNotFoundError, ManifestSource
from kubeverify.adapters.shell.command import run_command, stderr_text
from kubeverify.core.models.option import AnnotationConfig
from kubeverify.core.services.k8s_common import (
    annotations,
    get_resource,
    kind,
    load_yaml,
    load_yaml_all,
    name,
    namespace,
    to_yaml_bytes,
)
from kubeverify.core.services.mapnode import Node

logger = logging.getLogger(__name__)

SIG_REF_EMBEDDED_IN_ANNOTATION = "__embedded_in_annotation__"
SIG_REF_RESOURCE_PREFIX = "k8s://ConfigMap/"

_GZIP_MAGIC = b"\x1f\x8b"
_MANIFEST_SUFFIXES = (".yaml", ".yml")


# ═══════════════════════════════════════════════════════════════════
#  Message encoding
# ═══════════════════════════════════════════════════════════════════


def encode_message(manifest: bytes) -> str:
    """Encode manifest YAML the way signers attach it."""
    return base64.b64encode(gzip.compress(manifest)).decode("ascii")


def decode_message(message: str) -> bytes:
    """Decode a message annotation / data value into manifest YAML.

    Raises:
        ManifestNotFoundError: The message is not valid base64 / gzip.
    """
    try:
        raw = base64.b64decode(message, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ManifestNotFoundError(f"message is not valid base64: {e}") from e
    if raw.startswith(_GZIP_MAGIC):
        try:
            raw = gzip.decompress(raw)
        except (OSError, EOFError) as e:
            raise ManifestNotFoundError(f"message is not valid gzip: {e}") from e
    return raw


# ═══════════════════════════════════════════════════════════════════
#  Candidate search
# ═══════════════════════════════════════════════════════════════════


def find_candidate_manifests(
    concat_yaml: bytes,
    obj: dict[str, Any],
    max_count: int,
    ignore_fields: list[str],
) -> list[bytes]:
    """Pick the documents that may be the signed source of ``obj``.

    Documents with the object's kind and name come first, in document
    order. Without any, documents of the same kind are ranked by the
    size of their ignore-field-filtered diff against the object.
    ``max_count <= 0`` means no limit.

    Raises:
        ManifestNotFoundError: The YAML is invalid or nothing fits.
    """
    try:
        docs = [d for d in load_yaml_all(concat_yaml) if isinstance(d, dict)]
    except yaml.YAMLError as e:
        raise ManifestNotFoundError(f"reference YAML is invalid: {e}") from e

    same_kind = [d for d in docs if kind(d) == kind(obj)]
    found = [d for d in same_kind if name(d) == name(obj)]
    if not found and same_kind:
        obj_node = Node.from_value(obj)
        found = sorted(same_kind, key=lambda d: _filtered_diff_size(obj_node, d, ignore_fields))

    if not found:
        raise ManifestNotFoundError(
            f"no manifest for {kind(obj)} {name(obj)} among {len(docs)} documents"
        )
    if max_count > 0:
        found = found[:max_count]
    logger.debug("Found %d candidate manifests for %s %s", len(found), kind(obj), name(obj))
    return [to_yaml_bytes(d) for d in found]


def _filtered_diff_size(obj_node: Node, doc: dict[str, Any], ignore_fields: list[str]) -> int:
    diff = obj_node.diff(Node.from_value(doc))
    if diff is None:
        return 0
    if ignore_fields:
        _, diff, _ = diff.filter(ignore_fields)
    return diff.size()


# ═══════════════════════════════════════════════════════════════════
#  Sources
# ═══════════════════════════════════════════════════════════════════


class _BaseManifestSource(ManifestSource):
    def __init__(
        self,
        annotation_config: AnnotationConfig | None = None,
        ignore_fields: list[str] | None = None,
        max_count: int = 3,
    ):
        self.annotation_config = annotation_config or AnnotationConfig()
        self.ignore_fields = ignore_fields or []
        self.max_count = max_count

    @staticmethod
    def _load_object(obj_bytes: bytes) -> dict[str, Any]:
        try:
            obj = load_yaml(obj_bytes)
        except yaml.YAMLError as e:
            raise ManifestNotFoundError(f"object is not valid YAML: {e}") from e
        if not isinstance(obj, dict):
            raise ManifestNotFoundError("object is not a mapping")
        return obj


class AnnotationManifestSource(_BaseManifestSource):
    """Manifest embedded in the object's own message annotation."""

    def fetch(self, obj_bytes: bytes) -> tuple[list[bytes], str]:
        obj = self._load_object(obj_bytes)
        key = self.annotation_config.message_annotation_key()
        message = annotations(obj).get(key)
        if not message:
            raise ManifestNotFoundError(f"annotation {key} not found on {kind(obj)} {name(obj)}")
        concat_yaml = decode_message(message)
        candidates = find_candidate_manifests(concat_yaml, obj, self.max_count, self.ignore_fields)
        return candidates, SIG_REF_EMBEDDED_IN_ANNOTATION


def parse_resource_ref(ref: str, default_namespace: str = "") -> tuple[str, str]:
    """Split ``namespace/name`` (or bare ``name``) into its parts."""
    ref = ref.removeprefix(SIG_REF_RESOURCE_PREFIX)
    ns, _, ref_name = ref.rpartition("/")
    return ns or default_namespace or "default", ref_name


def resource_sig_ref(ns: str, ref_name: str) -> str:
    return f"{SIG_REF_RESOURCE_PREFIX}{ns}/{ref_name}"


def load_signature_resource(ns: str, ref_name: str) -> dict[str, str]:
    """Read the ``data`` of the ConfigMap holding message and signature."""
    cm = get_resource("configmap", ref_name, ns)
    data = cm.get("data")
    if not isinstance(data, dict):
        raise ManifestNotFoundError(f"ConfigMap {ns}/{ref_name} has no data")
    return {str(k): str(v) for k, v in data.items()}


class ResourceManifestSource(_BaseManifestSource):
    """Manifest stored in a ConfigMap named by ``namespace/name``."""

    def __init__(self, resource_ref: str, **kwargs: Any):
        super().__init__(**kwargs)
        self.resource_ref = resource_ref

    def fetch(self, obj_bytes: bytes) -> tuple[list[bytes], str]:
        obj = self._load_object(obj_bytes)
        ns, ref_name = parse_resource_ref(self.resource_ref, namespace(obj))
        data = load_signature_resource(ns, ref_name)
        message = data.get("message")
        if not message:
            raise ManifestNotFoundError(f"ConfigMap {ns}/{ref_name} has no message")
        concat_yaml = decode_message(message)
        candidates = find_candidate_manifests(concat_yaml, obj, self.max_count, self.ignore_fields)
        return candidates, resource_sig_ref(ns, ref_name)


def export_image_manifests(image_ref: str, timeout: int = 120) -> bytes:
    """Concatenate every YAML file in the image filesystem.

    Raises:
        CollaboratorError: crane failed or its output is not a tarball.
    """
    result = run_command(["crane", "export", image_ref, "-"], timeout=timeout)
    if result.returncode != 0:
        raise CollaboratorError(f"crane export {image_ref} failed: {stderr_text(result)}")

    docs: list[bytes] = []
    try:
        with tarfile.open(fileobj=io.BytesIO(result.stdout), mode="r:*") as tar:
            members = sorted(
                (m for m in tar.getmembers() if m.isfile() and m.name.endswith(_MANIFEST_SUFFIXES)),
                key=lambda m: m.name,
            )
            for member in members:
                extracted = tar.extractfile(member)
                if extracted is not None:
                    docs.append(extracted.read())
    except tarfile.TarError as e:
        raise CollaboratorError(f"cannot read exported image {image_ref}: {e}") from e

    if not docs:
        raise ManifestNotFoundError(f"no YAML manifests in image {image_ref}")
    return b"\n---\n".join(docs)


class ImageManifestSource(_BaseManifestSource):
    """Manifest files packaged in an OCI image."""

    def __init__(self, image_ref: str, **kwargs: Any):
        super().__init__(**kwargs)
        self.image_ref = image_ref

    def fetch(self, obj_bytes: bytes) -> tuple[list[bytes], str]:
        obj = self._load_object(obj_bytes)
        concat_yaml = export_image_manifests(self.image_ref)
        candidates = find_candidate_manifests(concat_yaml, obj, self.max_count, self.ignore_fields)
        return candidates, self.image_ref
