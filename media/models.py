"""
media/models.py -- Read-only views over the media tree.

Nothing here is persisted. Entries are computed per request from directory
listings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp"})
VIDEO_EXTENSIONS = frozenset({".mp4", ".webm", ".mov", ".avi", ".mkv"})
MEDIA_EXTENSIONS = IMAGE_EXTENSIONS | VIDEO_EXTENSIONS


class MediaKind(str, Enum):
    folder = "folder"
    image = "image"
    video = "video"


@dataclass
class MediaEntry:
    name: str
    type: MediaKind
    relative_path: str  # always "/"-separated, relative to the media root


@dataclass
class Listing:
    current_path: str
    folders: list[MediaEntry] = field(default_factory=list)
    files: list[MediaEntry] = field(default_factory=list)


def classify(filename: str) -> MediaKind | None:
    """Return image/video for allow-listed extensions (case-insensitive), else None."""
    dot = filename.rfind(".")
    if dot <= 0:
        return None
    ext = filename[dot:].lower()
    if ext in IMAGE_EXTENSIONS:
        return MediaKind.image
    if ext in VIDEO_EXTENSIONS:
        return MediaKind.video
    return None
