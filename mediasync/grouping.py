"""Aggregate parsed descriptors into per-artwork, per-base-name groups."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable

from .config import MediaExtensions
from .keys import DEFAULT_EXTENSIONS, AssetClass, AssetDescriptor, parse_key

BaseGroup = Dict[AssetClass, AssetDescriptor]
GroupingIndex = Dict[int, Dict[str, BaseGroup]]


@dataclass(slots=True)
class ListingStats:
    scanned: int = 0
    accepted: int = 0
    rejected: int = 0


def accumulate(descriptors: Iterable[AssetDescriptor]) -> GroupingIndex:
    """Group descriptors by artwork id, then base name, then asset class.

    A later descriptor for the same ``(artwork_id, base_name, asset_class)``
    replaces an earlier one.
    """

    index: GroupingIndex = {}
    for descriptor in descriptors:
        groups = index.setdefault(descriptor.artwork_id, {})
        groups.setdefault(descriptor.base_name, {})[descriptor.asset_class] = descriptor
    return index


def index_listing(
    keys: Iterable[str],
    extensions: MediaExtensions = DEFAULT_EXTENSIONS,
) -> tuple[GroupingIndex, ListingStats]:
    stats = ListingStats()

    def _descriptors() -> Iterable[AssetDescriptor]:
        for key in keys:
            stats.scanned += 1
            descriptor = parse_key(key, extensions)
            if descriptor is None:
                stats.rejected += 1
                continue
            stats.accepted += 1
            yield descriptor

    return accumulate(_descriptors()), stats
