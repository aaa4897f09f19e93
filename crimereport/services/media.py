"""Evidence file handling.

Incoming multipart files are first staged to disk (``StagedFile``), then handed to
a media uploader which returns a durable URL.  Two uploaders exist: one backed by
Cloudinary and one that copies files into a local directory served under
``/uploads``.  The staged copies are always removed by the caller afterwards.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import cloudinary
import cloudinary.uploader
from fastapi import UploadFile

from ..config import Config

logger = logging.getLogger(__name__)


@dataclass
class StagedFile:
    path: Path
    filename: str
    content_type: Optional[str] = None

    def discard(self):
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove staged file %s: %s", self.path, exc)


def stage_upload(upload: UploadFile, directory: Path) -> StagedFile:
    """Copy an incoming upload to a temp file in ``directory``."""
    directory.mkdir(parents=True, exist_ok=True)
    suffix = Path(upload.filename or "").suffix
    with tempfile.NamedTemporaryFile(dir=directory, suffix=suffix, delete=False) as out:
        upload.file.seek(0)
        shutil.copyfileobj(upload.file, out)
    return StagedFile(
        path=Path(out.name),
        filename=upload.filename or Path(out.name).name,
        content_type=upload.content_type,
    )


class CloudinaryUploader:
    def __init__(self, cloud_name: str, api_key: str, api_secret: str, folder: str = "ReportEvidence"):
        cloudinary.config(
            cloud_name=cloud_name,
            api_key=api_key,
            api_secret=api_secret,
            secure=True,
        )
        self.folder = folder

    def upload(self, staged: StagedFile) -> str:
        result = cloudinary.uploader.upload(
            str(staged.path),
            folder=self.folder,
            resource_type="auto",
        )
        return result["secure_url"]


class LocalUploader:
    def __init__(self, directory: Path, base_url: str = "/uploads"):
        self.directory = directory
        self.base_url = base_url.rstrip("/")

    def upload(self, staged: StagedFile) -> str:
        self.directory.mkdir(parents=True, exist_ok=True)
        ext = Path(staged.filename).suffix or staged.path.suffix
        name = f"{uuid.uuid4().hex}{ext}"
        shutil.copyfile(staged.path, self.directory / name)
        return f"{self.base_url}/{name}"


def uploader_from_config():
    if Config.MEDIA_BACKEND == "cloudinary":
        return CloudinaryUploader(
            Config.CLOUDINARY_CLOUD_NAME,
            Config.CLOUDINARY_API_KEY,
            Config.CLOUDINARY_API_SECRET,
            folder=Config.CLOUDINARY_FOLDER,
        )
    return LocalUploader(Config.UPLOAD_DIR, base_url="/uploads")


def stage_uploads(uploads, directory: Path):
    """Stage every upload; if one fails the ones already written are removed."""
    staged = []
    try:
        for upload in uploads:
            staged.append(stage_upload(upload, directory))
    except Exception:
        for item in staged:
            item.discard()
        raise
    return staged
