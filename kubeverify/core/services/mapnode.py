"""
Map node — a tagged-variant tree over decoded YAML/JSON documents.

Every node is a MAP, a SEQ or a SCALAR. Masking and diffing work purely
on this tree, so they are independent of the resource schema:

    live = Node.from_bytes(obj_json)
    ref = Node.from_yaml_bytes(manifest_yaml)
    diff = live.mask(["metadata.name"]).diff(ref.mask(["metadata.name"]))

Nodes are never modified in place; ``mask`` returns a new tree.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import date, datetime
from enum import StrEnum
from fnmatch import fnmatchcase
from typing import Any

import yaml

from kubeverify.core.models.diff import DiffResult, Difference, join_path, split_path
from kubeverify.core.services.k8s_common import load_yaml


class NodeError(ValueError):
    """Raised when a document cannot be turned into a tree."""


class NodeKind(StrEnum):
    MAP = "map"
    SEQ = "seq"
    SCALAR = "scalar"


_SCALAR_TYPES = (str, int, float, bool, type(None))


@dataclass(frozen=True)
class Node:
    """One tree node.

    ``value`` is a ``dict[str, Node]`` for MAP, a ``list[Node]`` for SEQ
    and a plain Python scalar for SCALAR.
    """

    kind: NodeKind
    value: Any

    # ── Construction ────────────────────────────────────────────

    @classmethod
    def from_value(cls, value: Any) -> Node:
        if isinstance(value, dict):
            return cls(NodeKind.MAP, {str(k): cls.from_value(v) for k, v in value.items()})
        if isinstance(value, (list, tuple)):
            return cls(NodeKind.SEQ, [cls.from_value(v) for v in value])
        if isinstance(value, (datetime, date)):
            return cls(NodeKind.SCALAR, value.isoformat())
        if isinstance(value, _SCALAR_TYPES):
            return cls(NodeKind.SCALAR, value)
        raise NodeError(f"unsupported value type: {type(value).__name__}")

    @classmethod
    def from_bytes(cls, data: bytes | str) -> Node:
        """Build a tree from a JSON object."""
        try:
            value = json.loads(data)
        except ValueError as e:
            raise NodeError(f"invalid JSON document: {e}") from e
        return cls._from_document(value)

    @classmethod
    def from_yaml_bytes(cls, data: bytes | str) -> Node:
        """Build a tree from a YAML (or JSON) mapping."""
        try:
            value = load_yaml(data)
        except yaml.YAMLError as e:
            raise NodeError(f"invalid YAML document: {e}") from e
        return cls._from_document(value)

    @classmethod
    def _from_document(cls, value: Any) -> Node:
        if not isinstance(value, dict):
            raise NodeError(f"expected a mapping, got {type(value).__name__}")
        return cls.from_value(value)

    # ── Access ──────────────────────────────────────────────────

    def to_value(self) -> Any:
        if self.kind == NodeKind.MAP:
            return {k: v.to_value() for k, v in self.value.items()}
        if self.kind == NodeKind.SEQ:
            return [v.to_value() for v in self.value]
        return self.value

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_value(), default_flow_style=False, sort_keys=False)

    def to_json(self) -> str:
        return json.dumps(self.to_value())

    def get(self, path: str) -> Node | None:
        node: Node | None = self
        for seg in split_path(path):
            node = node._child(seg) if node is not None else None
        return node

    def get_string(self, path: str) -> str:
        """Scalar string at ``path``, or empty string."""
        node = self.get(path)
        if node is None or node.kind != NodeKind.SCALAR or not isinstance(node.value, str):
            return ""
        return node.value

    def _child(self, seg: str) -> Node | None:
        if self.kind == NodeKind.MAP:
            return self.value.get(seg)
        if self.kind == NodeKind.SEQ and seg.isdigit() and int(seg) < len(self.value):
            return self.value[int(seg)]
        return None

    # ── Mask ────────────────────────────────────────────────────

    def mask(self, paths: Iterable[str]) -> Node:
        """Return a copy with every field matching ``paths`` removed."""
        node = self
        for path in paths:
            segs = split_path(path)
            if segs:
                node = node._without(segs)
        return node

    def _without(self, segs: list[str]) -> Node:
        head, rest = segs[0], segs[1:]
        if self.kind == NodeKind.MAP:
            children: dict[str, Node] = {}
            for key, child in self.value.items():
                if fnmatchcase(key, head):
                    if not rest:
                        continue
                    child = child._without(rest)
                children[key] = child
            return Node(NodeKind.MAP, children)
        if self.kind == NodeKind.SEQ:
            items: list[Node] = []
            for i, child in enumerate(self.value):
                if fnmatchcase(str(i), head):
                    if not rest:
                        continue
                    child = child._without(rest)
                items.append(child)
            return Node(NodeKind.SEQ, items)
        return self

    # ── Diff ────────────────────────────────────────────────────

    def diff(self, other: Node) -> DiffResult | None:
        """Structural diff; ``self`` is "before", ``other`` is "after".

        Returns None when the trees are equivalent.
        """
        items: list[Difference] = []
        _diff_into(self, other, [], items)
        if not items:
            return None
        return DiffResult(items=items)


def _scalar_equal(a: Any, b: Any) -> bool:
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    return a == b


def _record(out: list[Difference], segs: list[str], before: Any, after: Any) -> None:
    out.append(Difference(key=join_path(segs), values={"before": before, "after": after}))


def _leaves(node: Node, segs: list[str]) -> Iterator[tuple[list[str], Any]]:
    """Scalars and empty containers under ``node``, with their paths."""
    if node.kind == NodeKind.MAP and node.value:
        for key, child in node.value.items():
            yield from _leaves(child, [*segs, key])
    elif node.kind == NodeKind.SEQ and node.value:
        for i, child in enumerate(node.value):
            yield from _leaves(child, [*segs, str(i)])
    else:
        yield segs, node.to_value()


def _record_missing(out: list[Difference], segs: list[str], present: Node, left_missing: bool) -> None:
    # one difference per leaf, so ignore paths can address nested keys
    for leaf_segs, value in _leaves(present, segs):
        if left_missing:
            _record(out, leaf_segs, None, value)
        else:
            _record(out, leaf_segs, value, None)


def _diff_into(a: Node, b: Node, segs: list[str], out: list[Difference]) -> None:
    if a.kind != b.kind:
        _record(out, segs, a.to_value(), b.to_value())
        return

    if a.kind == NodeKind.MAP:
        for key in sorted(set(a.value) | set(b.value)):
            left, right = a.value.get(key), b.value.get(key)
            if left is None:
                _record_missing(out, [*segs, key], right, left_missing=True)
            elif right is None:
                _record_missing(out, [*segs, key], left, left_missing=False)
            else:
                _diff_into(left, right, [*segs, key], out)
        return

    if a.kind == NodeKind.SEQ:
        for i in range(max(len(a.value), len(b.value))):
            key = str(i)
            if i >= len(a.value):
                _record_missing(out, [*segs, key], b.value[i], left_missing=True)
            elif i >= len(b.value):
                _record_missing(out, [*segs, key], a.value[i], left_missing=False)
            else:
                _diff_into(a.value[i], b.value[i], [*segs, key], out)
        return

    if not _scalar_equal(a.value, b.value):
        _record(out, segs, a.value, b.value)
