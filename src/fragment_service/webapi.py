import asyncio
import base64
import binascii
import logging
import os
import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse, Response

from fragment_service import __version__
from fragment_service.fragments import (
    ConversionError,
    DeleteFailed,
    FragmentService,
    IOFailure,
    NotFound,
    SecurityGateway,
    Unsupported,
    UnsupportedType,
    is_supported_type,
)
from fragment_service.fragments.adapters import (
    Argon2BasicAuth,
    LocalByteStore,
    MemoryByteStore,
    MemoryMetadataStore,
    S3ByteStore,
)
from fragment_service.fragments.interfaces import ByteStore
from fragment_service.logging_config import setup_logging

logger = logging.getLogger(__name__)

# Global configuration defaults
MAX_UPLOAD_MB = int(os.getenv("MAX_UPLOAD_MB", "5"))
DATA_DIR = Path(os.getenv("DATA_DIR", "./data")).resolve()
BYTE_STORE = os.getenv("BYTE_STORE", "local").lower()
AWS_S3_BUCKET_NAME = os.getenv("AWS_S3_BUCKET_NAME", "")
AWS_S3_ENDPOINT_URL = os.getenv("AWS_S3_ENDPOINT_URL") or None
AWS_REGION = os.getenv("AWS_REGION", "us-east-1")
USERS_FILE = os.getenv("USERS_FILE", "./users.txt")
API_URL = os.getenv("API_URL", "").rstrip("/")

SERVICE: FragmentService | None = None
SECURITY: SecurityGateway | None = None

_ID_WITH_EXT = re.compile(r"^(?P<id>.+)\.(?P<ext>[A-Za-z0-9]+)$")


def _error(status_code: int, code: str, message: str, headers: dict[str, str] | None = None) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message}, headers=headers)


def _build_byte_store() -> ByteStore:
    if BYTE_STORE == "memory":
        return MemoryByteStore()
    if BYTE_STORE == "s3":
        if not AWS_S3_BUCKET_NAME:
            raise RuntimeError("AWS_S3_BUCKET_NAME must be set when BYTE_STORE=s3")
        return S3ByteStore(AWS_S3_BUCKET_NAME, endpoint_url=AWS_S3_ENDPOINT_URL, region_name=AWS_REGION)
    if BYTE_STORE == "local":
        return LocalByteStore(str(DATA_DIR))
    raise RuntimeError(f"unknown BYTE_STORE {BYTE_STORE!r}; expected memory, local or s3")


def _service() -> FragmentService:
    assert SERVICE is not None
    return SERVICE


def _parse_basic_credentials(auth_header: str | None) -> tuple[str, str]:
    unauthorized = _error(401, "unauthorized", "missing or invalid credentials", {"WWW-Authenticate": "Basic"})
    if not auth_header:
        raise unauthorized
    scheme, _, rest = auth_header.partition(" ")
    if scheme.lower() != "basic" or not rest:
        raise unauthorized
    try:
        decoded = base64.b64decode(rest.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        raise unauthorized from None
    username, sep, password = decoded.partition(":")
    if not sep or not username:
        raise unauthorized
    return username, password


async def _read_body(request: Request) -> bytes:
    """Read the request body, aborting once it exceeds MAX_UPLOAD_MB."""
    max_bytes = MAX_UPLOAD_MB * 1024 * 1024
    too_large = _error(413, "payload_too_large", f"upload exceeds {MAX_UPLOAD_MB} MB")
    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > max_bytes:
        raise too_large
    body = bytearray()
    async for chunk in request.stream():
        body += chunk
        if len(body) > max_bytes:
            raise too_large
    return bytes(body)


async def authenticated_owner(authorization: str | None = Header(None)) -> str:
    username, password = _parse_basic_credentials(authorization)
    assert SECURITY is not None
    owner_id = await asyncio.to_thread(SECURITY.authenticate, username, password)
    if owner_id is None:
        raise _error(401, "unauthorized", "missing or invalid credentials", {"WWW-Authenticate": "Basic"})
    return owner_id


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Tests inject their own service and security before the app starts
    global SERVICE, SECURITY
    if SERVICE is None:
        SERVICE = FragmentService(metadata=MemoryMetadataStore(), data=_build_byte_store())
    if SECURITY is None:
        SECURITY = Argon2BasicAuth.from_file(USERS_FILE)
    logger.info("fragments service started with %s byte store", BYTE_STORE)
    yield


app = FastAPI(
    title="Fragments Service",
    version=os.getenv("FRAGMENTS_SERVICE_VERSION", __version__),
    description=(
        "RESTful API for storing text, data and image fragments and "
        "retrieving them raw or converted to related formats."
    ),
    lifespan=_lifespan,
)


@app.get("/health")
def health() -> dict[str, str]:
    """Basic health check endpoint."""
    return {"status": "ok", "version": app.version}


@app.get("/v1/fragments")
async def list_fragments(expand: str | None = None, owner_id: str = Depends(authenticated_owner)) -> JSONResponse:
    expanded = (expand or "").lower() in {"1", "true"}
    fragments = await asyncio.to_thread(_service().by_user, owner_id, expanded)
    body = [f.to_dict() for f in fragments] if expanded else fragments  # type: ignore[union-attr]
    logger.debug("listed %d fragments for %s", len(body), owner_id)
    return JSONResponse(content={"status": "ok", "fragments": body})


@app.post("/v1/fragments", status_code=status.HTTP_201_CREATED)
async def create_fragment(
    request: Request,
    content_type: str | None = Header(None),
    owner_id: str = Depends(authenticated_owner),
) -> JSONResponse:
    """Create a fragment from the raw request body.

    The Content-Type header becomes the fragment's type and must be one of
    the supported media types. Returns 201 with a Location header.
    """
    if not content_type:
        raise _error(400, "bad_request", "Content-Type header is required")
    if not is_supported_type(content_type):
        raise _error(415, "unsupported_media_type", f"unsupported Content-Type: {content_type}")
    body = await _read_body(request)

    svc = _service()
    try:
        fragment = svc.create(owner_id, content_type)
        await asyncio.to_thread(fragment.save)
        await asyncio.to_thread(fragment.set_data, body)
    except UnsupportedType as e:
        raise _error(415, "unsupported_media_type", str(e))
    except IOFailure as e:
        raise _error(503, "storage_unavailable", str(e))
    logger.info("fragment %s created for %s", fragment.id, owner_id)

    base = API_URL or str(request.base_url).rstrip("/")
    headers = {"Location": f"{base}/v1/fragments/{fragment.id}"}
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content={"status": "ok", "fragment": fragment.to_dict()},
        headers=headers,
    )


@app.get("/v1/fragments/{fragment_id}/info")
async def get_fragment_info(fragment_id: str, owner_id: str = Depends(authenticated_owner)) -> JSONResponse:
    try:
        fragment = await asyncio.to_thread(_service().by_id, owner_id, fragment_id)
    except NotFound:
        raise _error(404, "not_found", "fragment not found")
    return JSONResponse(content={"status": "ok", "fragment": fragment.to_dict()})


@app.get("/v1/fragments/{fragment_id}")
async def get_fragment(fragment_id: str, owner_id: str = Depends(authenticated_owner)) -> Response:
    """Return a fragment's data, converted when the id carries an extension."""
    ext = None
    m = _ID_WITH_EXT.match(fragment_id)
    if m:
        fragment_id, ext = m.group("id"), m.group("ext")
    try:
        fragment = await asyncio.to_thread(_service().by_id, owner_id, fragment_id)
        result = await asyncio.to_thread(fragment.convert, ext)
    except NotFound:
        raise _error(404, "not_found", "fragment not found")
    except Unsupported as e:
        raise _error(415, "unsupported_conversion", str(e))
    except ConversionError as e:
        raise _error(400, "conversion_failed", str(e))
    except IOFailure as e:
        raise _error(503, "storage_unavailable", str(e))
    return Response(content=result.data, media_type=result.content_type)


@app.put("/v1/fragments/{fragment_id}")
async def update_fragment(
    fragment_id: str,
    request: Request,
    content_type: str | None = Header(None),
    owner_id: str = Depends(authenticated_owner),
) -> JSONResponse:
    try:
        fragment = await asyncio.to_thread(_service().by_id, owner_id, fragment_id)
    except NotFound:
        raise _error(404, "not_found", "fragment not found")
    if content_type != fragment.type:
        logger.warning("Content-Type mismatch on PUT %s: expected %s, got %s", fragment_id, fragment.type, content_type)
        raise _error(400, "type_mismatch", "Content-Type does not match the fragment type")
    body = await _read_body(request)
    try:
        await asyncio.to_thread(fragment.set_data, body)
    except IOFailure as e:
        raise _error(503, "storage_unavailable", str(e))
    logger.info("fragment %s updated for %s", fragment_id, owner_id)
    return JSONResponse(content={"status": "ok", "fragment": fragment.to_dict(), "formats": fragment.formats})


@app.delete("/v1/fragments/{fragment_id}")
async def delete_fragment(fragment_id: str, owner_id: str = Depends(authenticated_owner)) -> JSONResponse:
    try:
        await asyncio.to_thread(_service().delete, owner_id, fragment_id)
    except NotFound:
        raise _error(404, "not_found", "fragment not found")
    except DeleteFailed as e:
        raise _error(500, "delete_failed", str(e))
    return JSONResponse(content={"status": "ok"})


def run() -> None:
    """Run a development ASGI server using uvicorn.

    Exposes the app at host:port (default 0.0.0.0:8080). Set PORT env var to override.
    """
    import uvicorn

    setup_logging()
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8080"))
    # Enable reload in dev unless explicitly disabled
    reload = os.getenv("RELOAD", "true").lower() in {"1", "true", "yes", "on"}

    uvicorn.run("fragment_service.webapi:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    run()
