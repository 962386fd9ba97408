"""
CineShelf API — FastAPI application entry point.

Routers are registered here. Each service lives in cineshelf/api/.
Process-wide collaborators (push client, inbox broker) are built in the
lifespan and kept on app.state.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from cineshelf.api import notifications, reviews, social, watchlist
from cineshelf.core.config import settings
from cineshelf.core.logging import configure_logging
from cineshelf.services.fcm_client import FCMClient
from cineshelf.services.inbox_broker import InboxBroker

configure_logging()
logger = logging.getLogger(__name__)

APP_VERSION = "0.3.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.broker = InboxBroker()
    if settings.push_enabled:
        app.state.push_client = FCMClient(
            settings.FIREBASE_PROJECT_ID,
            settings.FIREBASE_CLIENT_EMAIL,
            settings.FIREBASE_PRIVATE_KEY,
            timeout=settings.FCM_TIMEOUT_SECONDS,
        )
        logger.info("FCM push enabled for project %s", settings.FIREBASE_PROJECT_ID)
    else:
        app.state.push_client = None
        logger.warning("FCM credentials not configured; notifications go to the in-app inbox only")
    try:
        yield
    finally:
        if app.state.push_client is not None:
            await app.state.push_client.aclose()


app = FastAPI(
    title="CineShelf API",
    description="Backend for the CineShelf social movie app.",
    version=APP_VERSION,
    docs_url="/docs" if settings.ENABLE_DOCS else None,
    redoc_url="/redoc" if settings.ENABLE_DOCS else None,
    lifespan=lifespan,
)


# ── Error rendering ───────────────────────────────────────────────────────────
# Every error body is {"error": "<message>"}.

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


def validation_message(errors: list[dict]) -> str:
    """One human-readable message for the first validation error."""
    if not errors:
        return "Invalid request"
    err = errors[0]
    loc = [str(part) for part in err.get("loc", ()) if part != "body"]
    kind = err.get("type", "")

    if kind == "missing":
        if not loc:
            return "Missing request body"
        return f"Missing required field: {loc[-1]}"
    if kind == "json_invalid":
        return "Invalid JSON"
    if kind == "value_error":
        ctx_error = (err.get("ctx") or {}).get("error")
        if ctx_error is not None:
            return str(ctx_error)
    msg = err.get("msg", "Invalid request")
    return f"{loc[-1]}: {msg}" if loc else msg


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": validation_message(exc.errors())},
    )


# ── CORS ──────────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ───────────────────────────────────────────────────────────────────
app.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
app.include_router(social.router,        prefix="/social",        tags=["social"])
app.include_router(watchlist.router,     prefix="/watchlist",     tags=["watchlist"])
app.include_router(reviews.router,       prefix="/reviews",       tags=["reviews"])


# ── Health check ──────────────────────────────────────────────────────────────
@app.get("/health", tags=["system"])
def health_check() -> dict:
    """Liveness probe. Returns 200 when the server is up."""
    return {"status": "ok", "version": APP_VERSION, "env": settings.APP_ENV}
