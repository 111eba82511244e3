# backend/gatekeeper/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from gatekeeper.api.routers.admin import admin_router
from gatekeeper.api.routers.auth import router as auth_router
from gatekeeper.api.routers.mfa import router as mfa_router
from gatekeeper.api.routers.webauthn import router as webauthn_router
from gatekeeper.core.config import settings
from gatekeeper.core.rate_limit import get_client_ip, limiter
from gatekeeper.core.security_logger import security_log

# Import all models to ensure they are registered in the registry
from gatekeeper.db import base  # noqa: F401
from gatekeeper.db.session import lifespan_db_manager
from gatekeeper.exceptions import AuthError

# Configure basic logging (ensure this is done early)
logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


# --- Lifespan Management ---
@asynccontextmanager
async def lifespan(_app_instance: FastAPI):
    logger.info("Starting up %s v%s...", settings.APP_NAME, settings.APP_VERSION)
    logger.info("Environment: %s", settings.ENVIRONMENT)

    try:
        await lifespan_db_manager("startup")
    except Exception as e:
        logger.critical("LIFESPAN_HOOK: failed to initialize database resources: %s", e, exc_info=True)
        raise

    yield  # Application runs here

    logger.info("Shutting down %s...", settings.APP_NAME)
    await lifespan_db_manager("shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url=f"{settings.API_V1_STR}/docs",
    redoc_url=f"{settings.API_V1_STR}/redoc",
)

# --- Rate Limiting Setup ---
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)


# --- Middleware ---
if settings.BACKEND_CORS_ORIGINS:
    origins = [
        str(origin).strip("/") for origin in settings.BACKEND_CORS_ORIGINS if str(origin).strip("/")
    ]
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        logger.info("CORS enabled for origins: %s", origins)
else:
    logger.info("CORS disabled (BACKEND_CORS_ORIGINS not configured).")


# --- Exception Handlers ---
@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    logger.info(
        "AuthError %s for %s %s", exc.code, request.method, request.url.path
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.code})


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    security_log.rate_limited(get_client_ip(request), request.url.path)
    return _rate_limit_exceeded_handler(request, exc)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    error_details = exc.errors()
    logger.warning(
        "Request validation error: %s %s - %d error(s)",
        request.method,
        request.url.path,
        len(error_details),
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": jsonable_errors(error_details)},
    )


def jsonable_errors(errors: list[dict]) -> list[dict]:
    # Never echo submitted passwords or codes back
    return [{k: v for k, v in error.items() if k not in ("input", "ctx")} for error in errors]


@app.exception_handler(HTTPException)
async def http_exception_handler_custom(request: Request, exc: HTTPException):
    log_message = "HTTPException: Status=%s, Detail='%s' for %s %s"
    if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error(log_message, exc.status_code, exc.detail, request.method, request.url.path)
    else:
        logger.warning(log_message, exc.status_code, exc.detail, request.method, request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler_custom(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception during request: %s %s", request.method, request.url.path, exc_info=exc
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "An unexpected internal server error occurred."},
    )


# --- API v1 Router Definition and Inclusions ---
api_v1_router = APIRouter()

api_v1_router.include_router(auth_router)  # prefix is already "/auth" in router
api_v1_router.include_router(mfa_router)  # prefix is already "/auth/mfa" in router
api_v1_router.include_router(webauthn_router)  # prefix is already "/auth/webauthn" in router
api_v1_router.include_router(admin_router)  # prefix is already "/admin" in router


@api_v1_router.get("/health", tags=["Health Checks"], summary="Liveness check")
async def health_check():
    return {"status": "ok", "version": settings.APP_VERSION}


app.include_router(api_v1_router, prefix=settings.API_V1_STR)
