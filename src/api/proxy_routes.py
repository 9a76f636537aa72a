"""
Reverse proxy routes - forward client requests to the edge with the highest battery
"""

import os
import tempfile
import logging
from http import HTTPStatus
from pathlib import Path
from typing import Dict, Optional

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse, Response
from starlette.datastructures import UploadFile

from .forwarder import EdgeForwarder, EdgeResponse

logger = logging.getLogger(__name__)

IMAGE_FIELD = "imageFile"
UPLOAD_CHUNK_SIZE = 64 * 1024

def relay_response(edge_response: EdgeResponse) -> Response:
    """Copy the edge's status, content type and raw body; unknown status codes become 200"""
    try:
        status_code = HTTPStatus(edge_response.status).value
    except ValueError:
        status_code = HTTPStatus.OK.value

    return Response(
        content=edge_response.body,
        status_code=status_code,
        headers={"Content-Type": edge_response.content_type}
    )

def _unavailable(message: str = "No edge servers available") -> Response:
    return PlainTextResponse(message, status_code=503)

def _proxy_error(path: str, error: Exception) -> Response:
    logger.error(f"[PROXY] Error forwarding {path}: {error!r}")
    return PlainTextResponse(f"Proxy Error: {error}", status_code=500)

def _create_temp_file(upload_dir: Path, filename: Optional[str]) -> Path:
    upload_dir.mkdir(parents=True, exist_ok=True)
    suffix = Path(filename).suffix if filename else ""
    fd, name = tempfile.mkstemp(prefix="upload_", suffix=suffix, dir=upload_dir)
    os.close(fd)
    return Path(name)

async def _copy_upload(upload: UploadFile, target: Path):
    with open(target, 'wb') as out:
        while True:
            chunk = await upload.read(UPLOAD_CHUNK_SIZE)
            if not chunk:
                break
            out.write(chunk)

def _delete_temp_file(path: Path):
    try:
        path.unlink()
        logger.info(f"Successfully deleted temp file: {path}")
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to delete temp file {path}: {e}")

def create_proxy_routes(registry, forwarder: EdgeForwarder, decision_log=None,
                        upload_dir: str = "tmp/uploads") -> APIRouter:
    """Create the forwarding routes; include this router last, it ends with a catch-all 404"""
    router = APIRouter(tags=["proxy"])
    upload_path = Path(upload_dir)

    def record_decision(path: str, edge):
        if decision_log is not None:
            decision_log.record(path, edge)

    @router.get("/")
    async def proxy_index():
        """HTML passthrough"""
        edge = registry.choose_highest_battery()
        if edge is None:
            return _unavailable()

        logger.info(f"[PROXY] Fetching HTML from edge: {forwarder.edge_url(edge, '/')}")
        record_decision("/", edge)
        try:
            edge_response = await forwarder.get(edge, "/", default_content_type="text/html")
        except Exception as e:
            return _proxy_error("/", e)
        return relay_response(edge_response)

    @router.post("/login")
    async def proxy_login(request: Request):
        """Re-encode the submitted form fields and forward them"""
        edge = registry.choose_highest_battery()
        if edge is None:
            return _unavailable()

        try:
            form = await request.form()
        except Exception as e:
            logger.warning(f"[PROXY] Malformed form body on /login: {e}")
            return PlainTextResponse(f"Malformed form body: {e}", status_code=400)

        # Body fields first, then query parameters; first value per key wins
        fields: Dict[str, str] = {}
        try:
            for key, value in [*form.multi_items(), *request.query_params.multi_items()]:
                if isinstance(value, str) and key not in fields:
                    fields[key] = value
        finally:
            await form.close()

        logger.info(f"[PROXY] Forwarding login to {forwarder.edge_url(edge, '/login')}")
        record_decision("/login", edge)
        try:
            edge_response = await forwarder.post_form(edge, "/login", fields)
        except Exception as e:
            return _proxy_error("/login", e)
        return relay_response(edge_response)

    @router.post("/recognize")
    async def proxy_recognize(request: Request):
        """Spool the uploaded image to a temp file, re-wrap it as multipart and forward it"""
        edge = registry.choose_highest_battery()
        if edge is None:
            return _unavailable("No edge servers available for recognition")

        content_type = request.headers.get("content-type")
        if not content_type:
            return PlainTextResponse("Content-Type header is missing for recognition request", status_code=400)

        if not content_type.lower().startswith("multipart/form-data"):
            return PlainTextResponse(
                f"Unsupported content type for /recognize: was '{content_type}', expected 'multipart/form-data'.",
                status_code=400
            )

        authorization = request.headers.get("authorization")
        form = None
        temp_file = None

        try:
            try:
                form = await request.form()
            except Exception as e:
                logger.warning(f"[PROXY] Malformed multipart body on /recognize: {e}")
                return PlainTextResponse(f"Malformed multipart body: {e}", status_code=400)

            upload = form.get(IMAGE_FIELD)
            if not isinstance(upload, UploadFile):
                logger.warning(f"[PROXY] File '{IMAGE_FIELD}' not found in multipart request")
                return PlainTextResponse(f"File '{IMAGE_FIELD}' not found in multipart request.", status_code=400)

            temp_file = _create_temp_file(upload_path, upload.filename)
            await _copy_upload(upload, temp_file)
            logger.info(f"Successfully received file from client at: {temp_file}")

            headers = {"Authorization": authorization} if authorization is not None else None
            logger.info(f"[PROXY] Forwarding image request to edge: {forwarder.edge_url(edge, '/recognize')}")
            record_decision("/recognize", edge)

            edge_response = await forwarder.post_file(
                edge, "/recognize",
                field_name=IMAGE_FIELD,
                file_path=temp_file,
                filename=upload.filename or temp_file.name,
                file_content_type=upload.content_type or "application/octet-stream",
                headers=headers
            )
            return relay_response(edge_response)

        except Exception as e:
            return _proxy_error("/recognize", e)
        finally:
            if form is not None:
                await form.close()
            if temp_file is not None:
                _delete_temp_file(temp_file)

    @router.get("/battery")
    async def proxy_battery(request: Request):
        """Forward with the client's Authorization header untouched"""
        edge = registry.choose_highest_battery()
        if edge is None:
            return _unavailable("No edge servers available for battery status")

        logger.info(f"[PROXY] Forwarding battery request to edge: {forwarder.edge_url(edge, '/battery')}")
        authorization = request.headers.get("authorization")
        headers = {"Authorization": authorization} if authorization is not None else None

        record_decision("/battery", edge)
        try:
            edge_response = await forwarder.get(edge, "/battery", headers=headers)
        except Exception as e:
            return _proxy_error("/battery", e)
        return relay_response(edge_response)

    @router.api_route("/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD"],
                      include_in_schema=False)
    async def not_found(path: str):
        return PlainTextResponse("404 Not Found", status_code=404)

    return router
