"""Checklist relay entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .database import init_db
from .dependencies import build_pipeline
from .middleware import RequestIdMiddleware
from .observability import RequestMetricsMiddleware
from .routers import api_router
from .utils.errors import RelayError
from .utils.logging import configure_logging

settings = get_settings()
logger = configure_logging(settings.log_level)

cors_allow_origins = list(settings.cors_allow_origins)
allow_credentials = True
if "*" in cors_allow_origins or not cors_allow_origins:
    cors_allow_origins = ["*"]
    allow_credentials = False


def _mask_secret(value: str | None) -> str:
    """Return a masked representation of a credential."""

    if not value:
        return "<missing>"

    stripped = value.strip()
    if not stripped:
        return "<missing>"

    if len(stripped) <= 8:
        middle = "…" * max(len(stripped) - 2, 1)
        return f"{stripped[0]}{middle}{stripped[-1]}"

    return f"{stripped[:4]}…{stripped[-4:]}"


def _announce_integrations() -> None:
    """Log which external collaborators are configured."""

    if settings.storage_configured:
        logger.info(
            "Object storage: bucket %s in %s (access key %s)",
            settings.s3_bucket,
            settings.aws_region,
            _mask_secret(settings.aws_access_key_id),
        )
    else:
        logger.warning("Object storage not configured (AWS_S3_BUCKET); uploads will fail")

    if settings.registrar_configured:
        logger.info(
            "Attachment registrar: %s (token %s, %s mode)",
            settings.registrar_url,
            _mask_secret(settings.registrar_token),
            settings.registrar_mode,
        )
    else:
        logger.info("Attachment registrar not configured; registration is skipped")

    if settings.email_configured:
        logger.info("Upload notifications will be emailed to %s", settings.notify_email_to)
    else:
        logger.info("Email notifications disabled")


_announce_integrations()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise the database and the process-wide clients."""

    init_db()
    settings.upload_dir.mkdir(parents=True, exist_ok=True)
    app.state.pipeline = build_pipeline(settings)
    yield


app = FastAPI(title="Checklist Relay", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_allow_origins,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIdMiddleware)
app.add_middleware(RequestMetricsMiddleware)

app.include_router(api_router)


def _cors_headers(request: Request) -> dict[str, str]:
    origin = request.headers.get("origin")
    if not origin:
        return {}
    if cors_allow_origins == ["*"]:
        return {"Access-Control-Allow-Origin": "*"}
    if origin in cors_allow_origins:
        return {
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Credentials": "true",
            "Vary": "Origin",
        }
    return {}


@app.exception_handler(RelayError)
async def handle_relay_error(request: Request, exc: RelayError) -> JSONResponse:
    """Convert service-level failures into JSON error bodies."""

    log = logger.warning if exc.status_code < 500 else logger.error
    log("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def handle_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report malformed request bodies as ``400`` with the offending fields."""

    fields = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": {"fields": fields}},
    )


@app.exception_handler(Exception)
async def handle_unexpected_exception(
    request: Request, exc: Exception
) -> JSONResponse:
    """Ensure unexpected exceptions return a JSON payload."""

    logger.exception(
        "Unhandled exception while processing %s %s", request.method, request.url.path
    )
    return JSONResponse(
        status_code=500,
        content={"error": "Internal Server Error"},
        headers=_cors_headers(request) or None,
    )


__all__ = ["app"]
