"""Tag-set reconciliation.

Tags are compared as sets of (key, value) pairs. A value change for an
existing key shows up as one removal plus one addition, so the key is
untagged and then re-tagged with the new value.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from .models import ResourceModel, Tag


def to_tag_set(tags: Mapping[str, str | None] | Iterable[Tag] | None) -> set[Tag]:
    """Normalize a tag map or tag list into a set, dropping null values."""
    if tags is None:
        return set()
    if isinstance(tags, Mapping):
        return {Tag(key=k, value=v) for k, v in tags.items() if v is not None}
    return set(tags)


def tags_to_remove(existing: set[Tag], desired: set[Tag]) -> set[Tag]:
    return existing - desired


def tags_to_add(existing: set[Tag], desired: set[Tag]) -> set[Tag]:
    return desired - existing


def desired_resource_tags(
    model: ResourceModel, stack_tags: Mapping[str, str] | None = None
) -> dict[str, str]:
    """Merge stack-level tags with the model's own tags.

    Resource-defined tags win over stack-level tags with the same key.
    """
    merged = dict(stack_tags or {})
    for tag in model.tags or []:
        merged[tag.key] = tag.value
    return merged


def sorted_tags(tags: Iterable[Tag]) -> list[Tag]:
    return sorted(tags, key=lambda t: (t.key, t.value))
