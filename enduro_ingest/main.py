import uuid
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from enduro_ingest.api.dependencies.ingest import get_blob_store
from enduro_ingest.api.headers import apply_security_headers
from enduro_ingest.api.ingest import router as ingest_router
from enduro_ingest.config.settings import settings
from enduro_ingest.core.errors import IngestError
from enduro_ingest.core.logger import setup_logger
from enduro_ingest.db.models import Base
from enduro_ingest.db.session import check_database_connection, get_engine
from enduro_ingest.ingestion.storage import BlobStore

setup_logger(level=settings.log_level, log_file=settings.log_file)

# Error categories for failures raised outside the ingest core
HTTP_ERROR_CODES = {
    400: "BadRequest",
    401: "Unauthenticated",
    403: "Forbidden",
    404: "NotFound",
    405: "MethodNotAllowed",
}


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Verify the database and create tables on startup."""
    check_database_connection()
    logger.info("Ensuring database tables exist")
    Base.metadata.create_all(bind=get_engine())
    logger.info("Database tables verified")
    yield


app = FastAPI(title="Enduro Ingest", lifespan=lifespan)

app.include_router(ingest_router)

logger.info("FastAPI application initialized")


def _error_response(status_code: int, code: str, detail, headers: dict | None = None) -> JSONResponse:
    response = JSONResponse(status_code=status_code, content={"error": code, "detail": detail}, headers=headers)
    return apply_security_headers(response, no_store=True)


@app.exception_handler(IngestError)
async def ingest_error_handler(request: Request, exc: IngestError):
    if exc.http_status >= 500:
        logger.error(f"[API] {request.method} {request.url.path} failed: {exc.code}: {exc.detail}")
    else:
        logger.info(f"[API] {request.method} {request.url.path} rejected: {exc.code}: {exc.detail}")
    return _error_response(exc.http_status, exc.code, exc.detail)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(_request: Request, exc: StarletteHTTPException):
    code = HTTP_ERROR_CODES.get(exc.status_code, "HTTPError")
    return _error_response(exc.status_code, code, exc.detail, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_request: Request, exc: RequestValidationError):
    return _error_response(422, "InvalidRequest", jsonable_errors(exc))


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [{"loc": list(err.get("loc", ())), "msg": err.get("msg", "")} for err in exc.errors()]


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests and tag them with a request id."""
    request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
    with logger.contextualize(request_id=request_id):
        logger.debug(f"Request: {request.method} {request.url.path}")
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        logger.debug(f"Response: {response.status_code} for {request.method} {request.url.path}")
    return response


@app.get("/health")
def health(blob_store: BlobStore = Depends(get_blob_store)):
    storage_ok = blob_store.check_health()
    return {"status": "ok" if storage_ok else "degraded", "storage": storage_ok}
