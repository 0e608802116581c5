"""
services/media_storage.py — Media uploader used for avatars and cover images.

The uploader takes a file already on local disk, moves it to durable storage
and returns the public URL. The local file is removed whether or not the
upload succeeds. Any filesystem failure becomes DependencyError(UPLOAD_FAILED).

The app keeps one uploader in app.extensions["media_uploader"]. Anything with
`upload(local_path) -> str` and `delete(url)` methods can replace it, e.g. in
tests.
"""

from __future__ import annotations

import logging
import os
import shutil
import uuid
from pathlib import Path

from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from vidtube.app.errors import DependencyError, ErrorCode

logger = logging.getLogger(__name__)


class LocalMediaUploader:

    def __init__(self, media_root: str | os.PathLike, base_url: str) -> None:
        self.media_root = Path(media_root)
        self.base_url = base_url.rstrip("/")

    def upload(self, local_path: str | os.PathLike) -> str:
        source = Path(local_path)
        target_name = f"{uuid.uuid4().hex}{source.suffix.lower()}"
        try:
            self.media_root.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, self.media_root / target_name)
        except OSError as exc:
            logger.error("Media upload of %s failed: %s", source.name, exc)
            raise DependencyError(
                ErrorCode.UPLOAD_FAILED,
                "The file could not be uploaded.",
            ) from exc
        finally:
            _discard(source)

        logger.debug("Stored media %s", target_name)
        return f"{self.base_url}/{target_name}"

    def delete(self, url: str) -> None:
        """Removes a file previously returned by upload(). Unknown URLs are ignored."""
        prefix = f"{self.base_url}/"
        if not url.startswith(prefix):
            return
        name = url[len(prefix):]
        # Only plain names produced by upload(); never a path.
        if not name or "/" in name or name != Path(name).name:
            return
        _discard(self.media_root / name)


def stage_upload(file: FileStorage, staging_dir: str | os.PathLike) -> str:
    """
    Saves an incoming multipart file to a unique path under `staging_dir` and
    returns that path, ready to hand to an uploader.
    """
    staging = Path(staging_dir)
    staging.mkdir(parents=True, exist_ok=True)
    name = secure_filename(file.filename or "") or "upload"
    path = staging / f"{uuid.uuid4().hex}-{name}"
    file.save(path)
    return str(path)


def discard_staged(*paths: str | os.PathLike | None) -> None:
    """Removes staged files that are still on disk. None entries are skipped."""
    for path in paths:
        if path is not None:
            _discard(Path(path))


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not remove %s: %s", path.name, exc)
