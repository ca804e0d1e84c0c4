"""Container image extraction — walk the pod spec of workload resources."""

from __future__ import annotations

import logging
from typing import Any

from kubeverify.core.models.result import ImageObject
from kubeverify.core.services.k8s_common import POD_TEMPLATE_KINDS, kind, name, namespace

logger = logging.getLogger(__name__)

_CONTAINER_FIELDS = ("containers", "initContainers", "ephemeralContainers")


def _pod_spec(obj: dict[str, Any]) -> Any:
    """Locate the pod spec for known workload kinds, or None."""
    obj_kind = kind(obj)
    spec = obj.get("spec")
    if obj_kind == "Pod":
        return spec
    if obj_kind in POD_TEMPLATE_KINDS:
        return _dig(spec, "template", "spec")
    if obj_kind == "CronJob":
        return _dig(spec, "jobTemplate", "spec", "template", "spec")
    return None


def _dig(value: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def get_all_images_from_object(obj: dict[str, Any]) -> list[ImageObject]:
    """List every container image referenced by ``obj``.

    Kinds without a pod spec yield an empty list.

    Raises:
        ValueError: A pod spec or container list is present but malformed.
    """
    pod_spec = _pod_spec(obj)
    if pod_spec is None:
        return []
    if not isinstance(pod_spec, dict):
        raise ValueError(f"pod spec of {kind(obj)} {name(obj)} is not a mapping")

    images: list[ImageObject] = []
    for field in _CONTAINER_FIELDS:
        containers = pod_spec.get(field)
        if containers is None:
            continue
        if not isinstance(containers, list):
            raise ValueError(f"{field} of {kind(obj)} {name(obj)} is not a list")
        for container in containers:
            if not isinstance(container, dict):
                raise ValueError(f"malformed entry in {field} of {kind(obj)} {name(obj)}")
            image = container.get("image")
            if not image:
                continue
            images.append(ImageObject(
                resource_kind=kind(obj),
                resource_name=name(obj),
                resource_namespace=namespace(obj),
                container_name=str(container.get("name", "")),
                image=str(image),
            ))

    logger.debug("Found %d container images in %s %s", len(images), kind(obj), name(obj))
    return images
