import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.core.redis import is_redis_available
from app.core.logging_config import configure_logging
from app.api.v1.router import api_router
from app.services.exceptions import Deny, RBACError

settings = get_settings()

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Clinic RBAC Service",
)


@app.exception_handler(RBACError)
async def rbac_error_handler(request: Request, exc: RBACError) -> JSONResponse:
    """
    Surface structural errors to administrative callers as
    {"error_code", "detail"}.
    """
    if isinstance(exc, Deny):
        logger.debug("Denied %s %s", request.method, request.url.path)
    else:
        logger.warning(
            "%s on %s %s: %s",
            exc.error_code,
            request.method,
            request.url.path,
            exc.message,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error_code": exc.error_code, "detail": exc.message},
    )


@app.get("/health", tags=["health"])
async def root_health() -> dict:
    """
    Global health check endpoint. Reports whether the authorization cache
    is in use; the service is healthy either way.
    """
    return {"status": "ok", "cache": "redis" if is_redis_available() else "disabled"}


# Mount versioned API router
app.include_router(api_router, prefix=settings.api_v1_prefix)
