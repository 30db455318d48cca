"""
api/routes/v1/media.py -- Browsing, streaming, and uploading media.

Routes:
  GET  /api/v1/browse?path=       -- folders then files at path (auth required)
  GET  /api/v1/media/{path}       -- stream one media file (auth required)
  POST /api/v1/upload/folders     -- create a folder (admin/uploader)
  POST /api/v1/upload?path=       -- upload media files into path (admin/uploader)

Every path goes through MediaLibrary. A rejected path is always a generic
403 access_denied, whether it is outside the root, missing, or the wrong
kind of entry.

browse and media are async and push the directory scan / stat into a worker
thread. Uploads are sync def so FastAPI runs them in its threadpool.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile
from fastapi.responses import FileResponse

from api.models import BrowseResponse, FolderCreate, MediaEntryResponse, UploadResponse
from auth.dependencies import get_current_session, require_uploader
from auth.models import Session
from media.service import MediaService

router = APIRouter()


def _media(request: Request) -> MediaService:
    return request.app.state.media


@router.get("/browse", response_model=BrowseResponse)
async def browse(
    request: Request,
    path: str = Query(default="", max_length=1024),
    session: Session = Depends(get_current_session),
) -> BrowseResponse:
    listing = await _media(request).browse_async(session, path)
    return BrowseResponse.from_listing(listing)


@router.get("/media/{media_path:path}")
async def media_file(
    request: Request,
    media_path: str,
    session: Session = Depends(get_current_session),
) -> FileResponse:
    path = await _media(request).resolve_media_file_async(session, media_path)
    return FileResponse(path)


@router.post("/upload/folders", response_model=MediaEntryResponse, status_code=201)
def create_folder(
    request: Request,
    body: FolderCreate,
    session: Session = Depends(require_uploader),
) -> MediaEntryResponse:
    entry = _media(request).create_folder(session, body.parent_path, body.folder_name)
    return MediaEntryResponse.from_entry(entry)


@router.post("/upload", response_model=UploadResponse, status_code=201)
def upload(
    request: Request,
    files: list[UploadFile] = File(...),
    path: str = Query(default="", max_length=1024),
    session: Session = Depends(require_uploader),
) -> UploadResponse:
    media = _media(request)
    stored = [media.save_upload(session, path, f.filename or "", f.file) for f in files]
    return UploadResponse(uploaded=[MediaEntryResponse.from_entry(e) for e in stored])
