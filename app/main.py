from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from app.api.uploads.uploads import router as uploads_router
from app.config.settings import settings
from app.core.errors import (
    FileTooLargeError,
    IntakeError,
    NotFoundError,
    ParseError,
    PersistenceError,
    ValidationError,
)
from app.core.logger import setup_logger
from app.db.models import Base
from app.db.session import check_database_connection, get_engine

setup_logger(level=settings.log_level, log_file=settings.log_file or None)

# Most specific first; the first isinstance hit wins.
_ERROR_STATUS: tuple[tuple[type[IntakeError], int], ...] = (
    (FileTooLargeError, 413),
    (ValidationError, 400),
    (ParseError, 422),
    (NotFoundError, 404),
    (PersistenceError, 500),
)


def status_for_error(exc: IntakeError) -> int:
    for error_type, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Check connectivity and ensure tables exist before serving requests."""
    check_database_connection()
    logger.info("Ensuring database tables exist")
    Base.metadata.create_all(bind=get_engine())
    logger.info("Database tables verified")
    yield


app = FastAPI(title="Activity Intake API", lifespan=lifespan)
app.include_router(uploads_router)


@app.exception_handler(IntakeError)
async def intake_error_handler(request: Request, exc: IntakeError) -> JSONResponse:
    code = status_for_error(exc)
    if code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code}: {exc.message}")
    return JSONResponse(status_code=code, content={"error": exc.message, "code": exc.code})


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
