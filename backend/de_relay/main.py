"""
Data Extension Save Relay API
FastAPI application relaying translation field batches from the content
block to an SFMC Data Extension.
"""

import logging
import os
import traceback

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from de_relay.clients import close_clients, get_settings
from de_relay.config import RelaySettings
from de_relay.errors import RelayError
from de_relay.routers import save

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

VERSION = "0.1.0"

INVALID_BODY_MESSAGE = "Invalid request body. Expected: { emailName, fields }"

app = FastAPI(
    title="Data Extension Save Relay",
    description="Authenticated relay from the translation content block to an SFMC Data Extension",
    version=VERSION,
)

# The content block is served from another origin inside the authoring tool's
# iframe, so any origin may call the relay. No credentials are involved.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)

app.include_router(save.router, prefix="/api/save-to-de", tags=["save"])


def _is_development(request: Request) -> bool:
    """True when the relay that served this request runs with RELAY_ENV=development."""
    settings = getattr(request.state, "settings", None)
    return settings is not None and settings.is_development


# ---------------------------------------------------------------------------
# Error rendering
# ---------------------------------------------------------------------------

@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    """Render any RelayError as {success: false, error, kind, details}."""
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", exc.kind, request.url.path, exc.message)
    else:
        logger.warning("%s on %s: %s", exc.kind, request.url.path, exc.message)

    details = dict(exc.details)
    if _is_development(request):
        details["traceback"] = "".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": exc.message,
            "kind": exc.kind,
            "details": details,
        },
        headers=save.CORS_HEADERS,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed JSON or a body of the wrong shape is a 400, not a 422."""
    logger.warning("Rejected malformed body on %s", request.url.path)
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": INVALID_BODY_MESSAGE,
            "kind": "validation_error",
            "details": {
                "rule": "invalid_body",
                "errors": jsonable_encoder(exc.errors()),
            },
        },
        headers=save.CORS_HEADERS,
    )


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

@app.on_event("startup")
async def log_startup() -> None:
    """
    Log where the relay is listening and warn early about missing config.

    The port shown is taken from ``HOST_PORT`` so Docker-mapped ports are
    reported correctly. Defaults to 8000.
    """
    host_port = os.getenv("HOST_PORT", "8000")
    settings = RelaySettings.from_env()
    logger.info(
        "Data Extension Save Relay running at:\n"
        "  Local:   http://localhost:%s/api/save-to-de\n"
        "  Target:  DE %s",
        host_port,
        settings.de_external_key,
    )
    missing = settings.missing_required()
    if missing:
        logger.warning(
            "SFMC configuration incomplete (%s); every save will fail until it is set",
            ", ".join(missing),
        )


@app.on_event("shutdown")
async def shutdown_clients() -> None:
    await close_clients()


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@app.get("/")
async def root():
    return {"message": "Data Extension Save Relay", "version": VERSION}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/config")
async def health_config(settings: RelaySettings = Depends(get_settings)):
    """
    Report whether the SFMC configuration is complete.

    Only variable names are reported, never their values. Returns 503 when
    any required variable is missing.
    """
    missing = settings.missing_required()
    if missing:
        return JSONResponse(
            status_code=503,
            content={"status": "error", "missing": missing},
        )

    return {
        "status": "ok",
        "table": settings.de_external_key,
        "account_id_configured": bool(settings.account_id),
    }
