"""
media/library.py -- Safe path resolver and directory browser.

Every filesystem access in the application goes through MediaLibrary, and
every MediaLibrary method starts with resolve().

resolve() in two stages:
  1. Lexical, before touching the disk: reject non-strings, NUL bytes,
     absolute paths, backslashes, and anything containing "..".
  2. Canonical: join onto the root, realpath() the result (collapsing "."
     and following symlinks) and require it to be the root or inside it.

Any failure is PathError("access_denied"). The reason goes to the log;
the caller never learns whether a path exists, is outside the root, or is
merely the wrong kind of file.

Blocking I/O: the *_async variants run the same code in a worker thread via
asyncio.to_thread so request handlers stay off the event loop.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from pathlib import Path
from typing import BinaryIO

from core.errors import PathError, ValidationError
from media.models import Listing, MediaEntry, MediaKind, classify

logger = logging.getLogger("gallery.media")

_CHUNK = 1024 * 1024
_NAME_MAX = 100
# Characters that never belong in a single path component we create.
_BAD_NAME_CHARS = re.compile(r'[\x00-\x1f/\\:*?"<>|]')


class MediaLibrary:
    """Confines reads and writes to one root directory.

    Usage:
        library = MediaLibrary("/srv/gallery/images")
        listing = library.browse("holidays/2024")
        path = library.resolve_media_file("holidays/2024/beach.jpg")
    """

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self.root = Path(os.path.realpath(root))

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, relative: str) -> Path:
        """Map a client-supplied relative path to a canonical path under root."""
        clean = self._lexical_check(relative)
        candidate = self.root.joinpath(clean) if clean else self.root
        canonical = Path(os.path.realpath(candidate))
        if canonical != self.root and self.root not in canonical.parents:
            raise self._deny(relative, f"escapes root via {canonical}")
        return canonical

    def resolve_media_file(self, relative: str) -> Path:
        """resolve() plus: must be an existing regular file with a media extension."""
        path = self.resolve(relative)
        if classify(path.name) is None:
            raise self._deny(relative, "not a media extension")
        if not path.is_file():
            raise self._deny(relative, "not a regular file")
        return path

    def resolve_upload_target(self, relative: str) -> Path:
        """resolve() plus: must be an existing directory."""
        path = self.resolve(relative)
        if not path.is_dir():
            raise self._deny(relative, "upload target is not a directory")
        return path

    # ------------------------------------------------------------------
    # Browsing
    # ------------------------------------------------------------------

    def browse(self, relative: str = "") -> Listing:
        """List folders then media files at relative, each group alphabetical.

        Dot entries and non-media files are dropped. Symlinks pointing outside
        the root are dropped. An empty directory yields empty lists.
        """
        directory = self.resolve(relative)
        if not directory.is_dir():
            raise self._deny(relative, "not a directory")

        prefix = self._normalized(relative)
        listing = Listing(current_path=prefix)
        try:
            with os.scandir(directory) as entries:
                for entry in entries:
                    if entry.name.startswith("."):
                        continue
                    try:
                        entry.name.encode("utf-8")
                    except UnicodeEncodeError:
                        logger.warning("Skipping undecodable name in %s: %r", directory, entry.name)
                        continue
                    if entry.is_symlink() and not self._inside_root(entry.path):
                        continue
                    rel = f"{prefix}/{entry.name}" if prefix else entry.name
                    if entry.is_dir():
                        listing.folders.append(MediaEntry(entry.name, MediaKind.folder, rel))
                    elif entry.is_file():
                        kind = classify(entry.name)
                        if kind is not None:
                            listing.files.append(MediaEntry(entry.name, kind, rel))
        except OSError as exc:
            raise self._deny(relative, f"scandir failed: {exc}") from exc

        listing.folders.sort(key=_sort_key)
        listing.files.sort(key=_sort_key)
        return listing

    async def browse_async(self, relative: str = "") -> Listing:
        return await asyncio.to_thread(self.browse, relative)

    async def resolve_media_file_async(self, relative: str) -> Path:
        return await asyncio.to_thread(self.resolve_media_file, relative)

    # ------------------------------------------------------------------
    # Writes (uploader operations)
    # ------------------------------------------------------------------

    def create_folder(self, parent: str, name: str) -> MediaEntry:
        folder_name = validate_entry_name(name, "Folder name")
        target = self.resolve_upload_target(parent) / folder_name
        try:
            target.mkdir()
        except FileExistsError as exc:
            raise ValidationError("A folder or file with that name already exists.") from exc
        prefix = self._normalized(parent)
        logger.info("Created folder %s", f"{prefix}/{folder_name}" if prefix else folder_name)
        return MediaEntry(folder_name, MediaKind.folder, f"{prefix}/{folder_name}" if prefix else folder_name)

    def save_upload(self, directory: str, filename: str, stream: BinaryIO, max_bytes: int) -> MediaEntry:
        """Write stream into directory under a sanitized, non-colliding name.

        Only the base name of filename is used. Files over max_bytes are
        removed and rejected with ValidationError.
        """
        base = validate_entry_name(os.path.basename((filename or "").replace("\\", "/")), "File name")
        kind = classify(base)
        if kind is None:
            raise ValidationError("Only image and video files can be uploaded.")
        target_dir = self.resolve_upload_target(directory)
        target = _unique_path(target_dir / base)

        written = 0
        # "x" mode: never overwrite a file that appeared after _unique_path.
        out = open(target, "xb")
        try:
            with out:
                while chunk := stream.read(_CHUNK):
                    written += len(chunk)
                    if written > max_bytes:
                        raise ValidationError(f"File exceeds the upload limit of {max_bytes} bytes.")
                    out.write(chunk)
        except Exception:
            target.unlink(missing_ok=True)
            raise

        prefix = self._normalized(directory)
        rel = f"{prefix}/{target.name}" if prefix else target.name
        logger.info("Stored upload %s (%d bytes)", rel, written)
        return MediaEntry(target.name, kind, rel)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lexical_check(self, relative: str) -> str:
        if not isinstance(relative, str):
            raise self._deny(relative, "not a string")
        if "\x00" in relative:
            raise self._deny(relative, "NUL byte")
        if ".." in relative:
            raise self._deny(relative, "parent-directory segment")
        if "\\" in relative:
            raise self._deny(relative, "backslash separator")
        if relative.startswith("/"):
            raise self._deny(relative, "absolute path")
        return relative.strip("/")

    def _normalized(self, relative: str) -> str:
        parts = [p for p in relative.split("/") if p and p != "."]
        return "/".join(parts)

    def _inside_root(self, path: str) -> bool:
        canonical = Path(os.path.realpath(path))
        return canonical == self.root or self.root in canonical.parents

    def _deny(self, relative: object, reason: str) -> PathError:
        logger.warning("Rejected media path %r: %s", relative, reason)
        return PathError(detail=reason)


def validate_entry_name(name: str, label: str) -> str:
    """Validate a single new path component (folder or file name)."""
    if not isinstance(name, str):
        raise ValidationError(f"{label} is required.")
    name = name.strip()
    if not name or len(name) > _NAME_MAX:
        raise ValidationError(f"{label} must be between 1 and {_NAME_MAX} characters.")
    if name.startswith(".") or ".." in name or _BAD_NAME_CHARS.search(name):
        raise ValidationError(f"{label} contains characters that are not allowed.")
    return name


def _unique_path(path: Path) -> Path:
    if not path.exists():
        return path
    stem, suffix = path.stem, path.suffix
    counter = 1
    while True:
        candidate = path.with_name(f"{stem}_{counter}{suffix}")
        if not candidate.exists():
            return candidate
        counter += 1


def _sort_key(entry: MediaEntry) -> tuple[str, str]:
    return entry.name.casefold(), entry.name
