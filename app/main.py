"""
Drive backend: folder tree, file storage and session auth over HTTP.

Configures logging, CORS, the upload size gate, optional DB init, and is the
one place where domain errors become HTTP responses. Every error body has
the shape {"error": <kind>, "message": <text>}; stack traces and storage
details never reach the client.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import (
    FRONTEND_URL,
    LOG_LEVEL,
    MAX_UPLOAD_SIZE_BYTES,
    MULTIPART_OVERHEAD_BYTES,
    SKIP_DB_INIT,
)
from errors import (
    Conflict,
    DriveError,
    FileTooLarge,
    Forbidden,
    ForeignParent,
    LengthRequired,
    NotFound,
    StorageFailure,
    TooManyUploads,
    Unauthenticated,
    ValidationError,
)

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

from database import Base, engine
from auth import router as auth_router
from files import router as files_router
from folders import router as folders_router

# Create DB tables if not skipping (production uses migrations)
if not SKIP_DB_INIT:
    Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Drive Backend",
    description="Per-user folder tree, file upload/download and session authentication.",
)

# Most specific class wins; lookup walks the raised error's MRO
STATUS_BY_ERROR: dict[type[DriveError], int] = {
    Unauthenticated: 401,
    ForeignParent: 403,
    Forbidden: 403,
    NotFound: 404,
    ValidationError: 400,
    Conflict: 409,
    LengthRequired: 411,
    FileTooLarge: 413,
    TooManyUploads: 429,
    StorageFailure: 502,
    DriveError: 500,
}

_KIND_BY_STATUS = {
    400: "validation_error",
    401: "unauthenticated",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    411: "length_required",
    413: "file_too_large",
}


def status_for(exc: DriveError) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_BY_ERROR:
            return STATUS_BY_ERROR[cls]
    return 500


def error_response(exc: DriveError) -> JSONResponse:
    status_code = status_for(exc)
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.kind, "message": exc.msg},
        headers=headers,
    )


@app.exception_handler(DriveError)
async def drive_error_handler(request: Request, exc: DriveError):
    if isinstance(exc, StorageFailure):
        logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc.msg)
    else:
        logger.info("%s on %s %s: %s", exc.kind, request.method, request.url.path, exc.msg)
    return error_response(exc)


@app.exception_handler(OperationalError)
async def database_error_handler(request: Request, exc: OperationalError):
    """Metadata store unreachable or locked; surface as a retryable storage failure."""
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return error_response(StorageFailure())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies are 400 with the first problem spelled out."""
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    return JSONResponse(
        status_code=400,
        content={"error": "validation_error", "message": message},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": _KIND_BY_STATUS.get(exc.status_code, "error"),
            "message": str(exc.detail),
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch unhandled exceptions; log and return generic 500. Never leak stack traces."""
    logging.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "message": "Internal server error"},
    )


@app.middleware("http")
async def reject_oversized_uploads(request: Request, call_next):
    """
    Refuse uploads over the limit before the body is read. The server frames
    the body by Content-Length, so a declared length bounds what can arrive;
    chunked uploads without one are refused with 411.
    """
    if request.method == "POST" and request.url.path.endswith("/files/upload"):
        declared = request.headers.get("content-length")
        if declared is None:
            logger.warning("Rejected upload without Content-Length")
            return error_response(LengthRequired())
        try:
            length = int(declared)
        except ValueError:
            return error_response(ValidationError("Invalid Content-Length header"))
        if length > MAX_UPLOAD_SIZE_BYTES + MULTIPART_OVERHEAD_BYTES:
            logger.warning("Rejected upload with Content-Length %d", length)
            return error_response(
                FileTooLarge(f"File exceeds max size ({MAX_UPLOAD_SIZE_BYTES} bytes)")
            )
    return await call_next(request)


# CORS: explicit origin, allow credentials (cookies). Never use "*" with cookies.
# Added last so it wraps the upload gate and its early responses carry CORS headers.
app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL] if FRONTEND_URL else [],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(auth_router)
app.include_router(folders_router)
app.include_router(files_router)
