import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rhyme_studio.api import images, projects, scenes, storyboard, video_generation
from rhyme_studio.config import get_settings
from rhyme_studio.constants.error_codes import get_error_spec
from rhyme_studio.exceptions import StudioError
from rhyme_studio.models.database import engine, init_db
from rhyme_studio.schemas.envelope import ErrorInfo, ErrorResponse

settings = get_settings()
logger = logging.getLogger(__name__)

# Error codes for HTTPExceptions raised by FastAPI/Starlette itself
HTTP_STATUS_CODES = {
    400: "BAD_REQUEST",
    404: "NOT_FOUND",
    405: "BAD_REQUEST",
    409: "JOB_ALREADY_RUNNING",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    await init_db()
    logger.info(f"{settings.app_name} {settings.app_version} started ({settings.environment})")
    yield
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_info(code: str, message: str) -> ErrorInfo:
    spec = get_error_spec(code)
    return ErrorInfo(
        code=code,
        message=message,
        retryable=spec.get("retryable", False),
        suggested_fix=spec.get("suggested_fix"),
    )


def _error_response(status_code: int, error: ErrorInfo) -> JSONResponse:
    body = ErrorResponse(error=error).model_dump(exclude_none=True)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


@app.exception_handler(StudioError)
async def studio_error_handler(request: Request, exc: StudioError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return _error_response(exc.status_code, exc.to_error_info())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """422 in the same payload shape as every other error; the message
    names the first offending field."""
    message = "Request validation failed"
    for error in exc.errors()[:1]:
        where = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        detail = error.get("msg", "invalid value")
        message = f"{where}: {detail}" if where else detail
    return _error_response(422, _error_info("VALIDATION_ERROR", message))


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code = HTTP_STATUS_CODES.get(exc.status_code, "HTTP_ERROR")
    return _error_response(exc.status_code, _error_info(code, str(exc.detail)))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return _error_response(500, _error_info("INTERNAL_ERROR", "Internal server error"))


app.include_router(projects.router, prefix="/api/projects", tags=["projects"])
app.include_router(scenes.router, prefix="/api", tags=["scenes"])
app.include_router(video_generation.router, prefix="/api", tags=["video"])
app.include_router(images.router, prefix="/api", tags=["images"])
app.include_router(storyboard.router, prefix="/api", tags=["storyboard"])


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy", "version": settings.app_version, "git_hash": settings.git_hash}
