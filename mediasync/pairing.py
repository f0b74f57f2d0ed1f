"""Turn base-name groups into media records ready for persistence."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Mapping
from urllib.parse import quote

from .keys import AssetClass, AssetDescriptor

LOGGER = logging.getLogger(__name__)

_LEADING_DIGITS = re.compile(r"[0-9]+")
# sort_order is a signed 32-bit INTEGER column on every supported backend.
SORT_ORDER_MAX = 2**31 - 1


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


@dataclass(slots=True, frozen=True)
class MediaRecord:
    artwork_id: int
    kind: MediaKind
    image_url: str
    video_url: str | None
    sort_order: int
    valid: bool = True


@dataclass(slots=True, frozen=True)
class SkippedInput:
    """A recognised asset that could not be turned into a record."""

    key: str
    artwork_id: int
    base_name: str
    reason: str


def derive_sort_order(base_name: str) -> int:
    """Return the integer value of the leading digit run of ``base_name`` (0 when absent)."""

    match = _LEADING_DIGITS.match(base_name)
    if match is None:
        return 0
    return int(match.group(0))


def build_public_url(key: str, base_url: str) -> str:
    """Public URL for ``key`` with each path segment percent-encoded on its own."""

    encoded = "/".join(quote(segment, safe="") for segment in key.split("/"))
    return f"{base_url}{encoded}"


class PairingResolver:
    """Apply the still/motion pairing policy to a single base-name group."""

    def __init__(self, public_base_url: str) -> None:
        self._public_base_url = public_base_url

    def resolve(
        self,
        artwork_id: int,
        base_name: str,
        group: Mapping[AssetClass, AssetDescriptor],
        skipped: list[SkippedInput] | None = None,
    ) -> MediaRecord | None:
        still = group.get(AssetClass.STILL)
        motion = group.get(AssetClass.MOTION)
        if still is None and motion is None:
            return None
        sort_order = derive_sort_order(base_name)

        if sort_order > SORT_ORDER_MAX:
            key = motion.key if motion is not None else still.key
            LOGGER.warning(
                "Sort order %d for base=%s (artwork_id=%d) exceeds %d; skipping %s",
                sort_order,
                base_name,
                artwork_id,
                SORT_ORDER_MAX,
                key,
            )
            _note_skip(skipped, key, artwork_id, base_name, "sort_order_out_of_range")
            return None

        if motion is not None:
            if still is None:
                LOGGER.warning(
                    "Poster still not found for base=%s (artwork_id=%d); skipping %s",
                    base_name,
                    artwork_id,
                    motion.key,
                )
                _note_skip(skipped, motion.key, artwork_id, base_name, "missing_poster")
                return None
            return MediaRecord(
                artwork_id=artwork_id,
                kind=MediaKind.VIDEO,
                image_url=build_public_url(still.key, self._public_base_url),
                video_url=build_public_url(motion.key, self._public_base_url),
                sort_order=sort_order,
            )

        return MediaRecord(
            artwork_id=artwork_id,
            kind=MediaKind.IMAGE,
            image_url=build_public_url(still.key, self._public_base_url),
            video_url=None,
            sort_order=sort_order,
        )


def _note_skip(
    skipped: list[SkippedInput] | None,
    key: str,
    artwork_id: int,
    base_name: str,
    reason: str,
) -> None:
    if skipped is not None:
        skipped.append(SkippedInput(key=key, artwork_id=artwork_id, base_name=base_name, reason=reason))
