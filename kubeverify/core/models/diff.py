"""
Diff model — the structural delta between two document trees.

Field paths are dot-separated segments. A segment that itself contains
a dot is double-quoted, so an annotation key reads as:

    metadata.annotations."cosign.sigstore.dev/message"

Sequence elements are addressed by their decimal index
(``spec.containers.0.image``). ``*`` inside a segment is a glob, and a
path always covers everything nested beneath it.
"""

from __future__ import annotations

from collections.abc import Iterable
from fnmatch import fnmatchcase
from typing import Any

from pydantic import BaseModel, Field


# ── Field paths ─────────────────────────────────────────────────


def split_path(path: str) -> list[str]:
    """Split a dotted field path into its segments, honouring quotes."""
    segments: list[str] = []
    current: list[str] = []
    quoted = False
    for ch in path:
        if ch == '"':
            quoted = not quoted
        elif ch == "." and not quoted:
            segments.append("".join(current))
            current = []
        else:
            current.append(ch)
    segments.append("".join(current))
    return [s for s in segments if s != ""]


def join_path(segments: Iterable[str]) -> str:
    """Inverse of :func:`split_path`."""
    return ".".join(f'"{s}"' if "." in s else s for s in segments)


def path_matches(pattern: str, key: str) -> bool:
    """Whether ``pattern`` covers the field ``key``.

    The pattern covers the key itself and everything beneath it.
    A trailing ``*`` segment (``metadata.managedFields.*``) also covers
    its parent, which is where an empty container is reported.
    """
    pat = split_path(pattern)
    segs = split_path(key)
    if pat and pat[-1] == "*" and len(segs) == len(pat) - 1:
        pat = pat[:-1]
    if not pat or len(pat) > len(segs):
        return False
    return all(fnmatchcase(s, p) for p, s in zip(pat, segs))


# ── Models ──────────────────────────────────────────────────────


class Difference(BaseModel):
    """One differing field.

    ``values`` holds ``before`` (left / live side) and ``after``
    (right / reference side). A side that lacks the field is ``None``.
    """

    key: str
    values: dict[str, Any] = Field(default_factory=dict)

    @property
    def before(self) -> Any:
        return self.values.get("before")

    @property
    def after(self) -> Any:
        return self.values.get("after")


class DiffResult(BaseModel):
    """An ordered list of differences. Empty means equivalent."""

    items: list[Difference] = Field(default_factory=list)

    def size(self) -> int:
        return len(self.items)

    def keys(self) -> list[str]:
        return [d.key for d in self.items]

    def filter(self, paths: Iterable[str]) -> tuple[bool, DiffResult, DiffResult]:
        """Drop every difference covered by one of ``paths``.

        Returns:
            (filtered, kept, dropped). ``filtered`` is True when at
            least one difference was dropped.
        """
        patterns = list(paths)
        kept: list[Difference] = []
        dropped: list[Difference] = []
        for d in self.items:
            if any(path_matches(p, d.key) for p in patterns):
                dropped.append(d)
            else:
                kept.append(d)
        return bool(dropped), DiffResult(items=kept), DiffResult(items=dropped)

    def __str__(self) -> str:
        lines = [f"{d.key}: {d.before!r} -> {d.after!r}" for d in self.items]
        return "\n".join(lines)
