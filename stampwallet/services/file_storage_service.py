# Overview: Service-layer operations for file blobs; metadata rows in the database, bytes on the local filesystem.

"""
File Storage Service

LIFECYCLE:
1. create_stub: metadata row with no content (uploaded_at NULL). Business
   banners/icons, item images and menu images are all created as stubs so
   the public id can be handed out before the client uploads.
2. upload: bytes written to <FILE_STORAGE_PATH>/<public_id>; content type
   sniffed from the data and must match the declared one.
3. remove: blob deleted, metadata reset to a stub.

create_stub only adds to the current session; it joins the caller's Store
transaction instead of committing on its own.
"""

from __future__ import annotations

import logging
import os

from ..errors import InvalidRequest, NotFound
from ..extensions import db
from ..models import FileMetadata
from ..time_utils import utcnow


logger = logging.getLogger(__name__)


ALLOWED_CONTENT_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp")

# (offset, magic bytes, content type)
_SIGNATURES = (
    (0, b"\xff\xd8\xff", "image/jpeg"),
    (0, b"\x89PNG\r\n\x1a\n", "image/png"),
    (0, b"GIF87a", "image/gif"),
    (0, b"GIF89a", "image/gif"),
    (8, b"WEBP", "image/webp"),
)


class FileNotUploaded(NotFound):
    """Metadata exists but no blob has been uploaded yet."""
    kind = "FileNotUploaded"


def detect_content_type(data: bytes) -> str | None:
    for offset, magic, content_type in _SIGNATURES:
        if data[offset:offset + len(magic)] == magic:
            if content_type == "image/webp" and not data.startswith(b"RIFF"):
                continue
            return content_type
    return None


class FileStorage:
    def __init__(self, base_path: str, upload_limit: int):
        self.base_path = base_path
        self.upload_limit = upload_limit

    @classmethod
    def from_config(cls, config) -> "FileStorage":
        return cls(config["FILE_STORAGE_PATH"], int(config["FILE_UPLOAD_LIMIT_BYTES"]))

    def _path(self, meta: FileMetadata) -> str:
        return os.path.join(self.base_path, meta.public_id)

    def create_stub(self, owner_id: int) -> FileMetadata:
        meta = FileMetadata(owner_id=owner_id)
        db.session.add(meta)
        db.session.flush()
        return meta

    def upload(self, meta: FileMetadata, stream, content_type: str) -> FileMetadata:
        """
        Store the blob for a stub (or replace an existing one).

        Raises:
            InvalidRequest: upload too large, or content type not allowed /
                not matching the data
        """
        data = stream.read(self.upload_limit + 1)
        if len(data) > self.upload_limit:
            raise InvalidRequest("upload size exceeded")

        actual = detect_content_type(data)
        if actual is None or actual != content_type or actual not in ALLOWED_CONTENT_TYPES:
            raise InvalidRequest("invalid content type")

        os.makedirs(self.base_path, exist_ok=True)
        with open(self._path(meta), "wb") as fh:
            fh.write(data)

        meta.content_type = actual
        meta.uploaded_at = utcnow()
        db.session.commit()
        logger.info("File %s uploaded (%s, %d bytes)", meta.public_id, actual, len(data))
        return meta

    def get_path(self, meta: FileMetadata) -> str:
        """Absolute path of an uploaded blob."""
        path = self._path(meta)
        if meta.uploaded_at is None or not os.path.exists(path):
            raise FileNotUploaded("File not uploaded")
        return os.path.abspath(path)

    def remove(self, meta: FileMetadata) -> FileMetadata:
        path = self._path(meta)
        if meta.uploaded_at is None or not os.path.exists(path):
            raise FileNotUploaded("File not uploaded")
        os.remove(path)
        meta.content_type = None
        meta.uploaded_at = None
        db.session.commit()
        logger.info("File %s removed", meta.public_id)
        return meta
