"""Object key parsing into asset descriptors."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum

from .config import MediaExtensions

LOGGER = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = MediaExtensions()

_ARTWORK_FOLDER_PATTERN = re.compile(r"[0-9]{3}")


class AssetClass(str, Enum):
    STILL = "still"
    MOTION = "motion"


@dataclass(slots=True, frozen=True)
class AssetDescriptor:
    key: str
    artwork_id: int
    base_name: str
    extension: str
    asset_class: AssetClass


def classify_extension(extension: str, extensions: MediaExtensions = DEFAULT_EXTENSIONS) -> AssetClass | None:
    if extension in extensions.still:
        return AssetClass.STILL
    if extension in extensions.motion:
        return AssetClass.MOTION
    return None


def parse_key(key: str, extensions: MediaExtensions = DEFAULT_EXTENSIONS) -> AssetDescriptor | None:
    """Return the descriptor for ``key`` or ``None`` when the key is not an artwork asset.

    Expected shape is ``NNN/<base>.<ext>`` where ``NNN`` is the zero-padded
    artwork id. Everything else is skipped without raising.
    """

    if "/" not in key:
        LOGGER.debug("Skipping %r: no folder separator", key)
        return None

    folder, filename = key.split("/", 1)
    if not _ARTWORK_FOLDER_PATTERN.fullmatch(folder):
        LOGGER.debug("Skipping %r: folder %r is not a three-digit artwork id", key, folder)
        return None

    base_name, dot, extension = filename.rpartition(".")
    if not dot:
        LOGGER.debug("Skipping %r: filename has no extension", key)
        return None

    extension = extension.lower()
    asset_class = classify_extension(extension, extensions)
    if asset_class is None:
        LOGGER.debug("Skipping %r: unsupported extension %r", key, extension)
        return None

    return AssetDescriptor(
        key=key,
        artwork_id=int(folder),
        base_name=base_name,
        extension=extension,
        asset_class=asset_class,
    )
