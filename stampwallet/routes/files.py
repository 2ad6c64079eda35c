# Overview: Flask API routes for file blobs; download, upload and removal by public id.

"""
File API Routes

- GET    /file/<file_id>  any authenticated user (business banners, menus and
                          item images are shown to card holders)
- POST   /file/<file_id>  owner only; raw body with Content-Type, or a
                          multipart form with a "file" part
- DELETE /file/<file_id>  owner only; the metadata goes back to a stub
"""

from flask import Blueprint, current_app, g, request, send_file
from werkzeug.exceptions import RequestEntityTooLarge

from ..decorators import require_auth, wallet
from ..errors import InvalidRequest, LedgerError, NotFound
from ..models import FileMetadata
from ..responses import error_response, internal_error, ok
from ..services.store import find_live


files_bp = Blueprint("files", __name__)


@files_bp.get("/file/<file_id>")
@require_auth
def download_file_route(file_id: str):
    try:
        meta = find_live(FileMetadata, public_id=file_id)
        if meta is None:
            raise NotFound("File not found")
        path = wallet().file_storage.get_path(meta)
        return send_file(path, mimetype=meta.content_type)
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to send file")
        return internal_error()


@files_bp.post("/file/<file_id>")
@require_auth
def upload_file_route(file_id: str):
    """
    Returns:
        200: blob stored
        400: upload size exceeded, or invalid content type
        403: file owned by another user
        404: unknown file id
    """
    try:
        w = wallet()
        meta = w.user_accessor.get_file(g.current_user, file_id)

        upload = request.files.get("file")
        if upload is not None:
            stream, content_type = upload.stream, upload.mimetype
        else:
            stream, content_type = request.stream, request.mimetype
        if not content_type:
            raise InvalidRequest("invalid content type")

        meta = w.file_storage.upload(meta, stream, content_type)
        return ok({"file": meta.to_dict()})
    except RequestEntityTooLarge:
        return error_response(InvalidRequest("upload size exceeded"))
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to upload file")
        return internal_error()


@files_bp.delete("/file/<file_id>")
@require_auth
def remove_file_route(file_id: str):
    try:
        w = wallet()
        meta = w.user_accessor.get_file(g.current_user, file_id)
        w.file_storage.remove(meta)
        return ok()
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove file")
        return internal_error()
