"""
media/service.py -- Session-gated entry points to the media library.

Callers pass the Session they just got from SessionManager.current_session()
(None when anonymous). The gate runs first; only then does MediaLibrary
touch the filesystem.

  browse / resolve_media_file                         -> any live account
  resolve_upload_target / create_folder / save_upload -> admin or uploader
"""

from __future__ import annotations

from pathlib import Path
from typing import BinaryIO

from auth.models import Session
from auth.rbac import Capability, ensure_capability, ensure_uploader
from media.library import MediaLibrary
from media.models import Listing, MediaEntry


class MediaService:
    def __init__(self, library: MediaLibrary, max_upload_bytes: int) -> None:
        self.library = library
        self.max_upload_bytes = max_upload_bytes

    def browse(self, session: Session | None, relative: str = "") -> Listing:
        ensure_capability(session, Capability.browse)
        return self.library.browse(relative)

    async def browse_async(self, session: Session | None, relative: str = "") -> Listing:
        ensure_capability(session, Capability.browse)
        return await self.library.browse_async(relative)

    def resolve_media_file(self, session: Session | None, relative: str) -> Path:
        ensure_capability(session, Capability.view_media)
        return self.library.resolve_media_file(relative)

    async def resolve_media_file_async(self, session: Session | None, relative: str) -> Path:
        ensure_capability(session, Capability.view_media)
        return await self.library.resolve_media_file_async(relative)

    def resolve_upload_target(self, session: Session | None, relative: str) -> Path:
        ensure_uploader(session)
        return self.library.resolve_upload_target(relative)

    def create_folder(self, session: Session | None, parent: str, name: str) -> MediaEntry:
        ensure_uploader(session)
        return self.library.create_folder(parent, name)

    def save_upload(self, session: Session | None, directory: str, filename: str, stream: BinaryIO) -> MediaEntry:
        ensure_uploader(session)
        return self.library.save_upload(directory, filename, stream, self.max_upload_bytes)
