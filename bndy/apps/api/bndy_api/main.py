"""bndy API - FastAPI Application Entry Point."""

import logging
import os
import time
import uuid
from http import HTTPStatus
from typing import Optional, Union

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from bndy_api import __version__
from bndy_api.auth.errors import AuthError
from bndy_api.config.env import get_app_base_url
from bndy_api.context import auth_channel_var, request_id_var, user_id_var
from bndy_api.memberships.errors import MembershipError
from bndy_api.routers import auth, health, me, memberships
from bndy_api.schemas import ProblemDetail
from bndy_api.utils import configure_json_logging

app = FastAPI(
    title="bndy API",
    description="Identity and membership core: phone OTP, email magic link and OAuth sign-in, cookie sessions, band memberships.",
    version=__version__,
    docs_url="/api-docs",
    redoc_url="/redoc",
)

# Set BNDY_JSON_LOGS=false to disable (defaults to true)
if os.getenv("BNDY_JSON_LOGS", "true").lower() != "false":
    configure_json_logging(log_level=os.getenv("LOG_LEVEL", "INFO"))
    logger = logging.getLogger(__name__)
    logger.info("Structured JSON logging enabled")

# Cookies need credentials mode, which CANNOT use wildcard origins
cors_origins_env = os.getenv("CORS_ALLOWED_ORIGINS", "")
if cors_origins_env:
    allowed_origins = [origin.strip() for origin in cors_origins_env.split(",") if origin.strip()]
else:
    allowed_origins = [get_app_base_url()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-Request-ID"],
    expose_headers=["Retry-After", "X-Request-ID"],
)


def _trace_instance() -> str:
    """Opaque problem instance built from the request id."""
    request_id = request_id_var.get()
    return f"urn:bndy:trace:{request_id}" if request_id else f"urn:bndy:trace:{uuid.uuid4()}"


def _status_phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return f"HTTP {status_code}"


def _problem_response(
    problem: ProblemDetail,
    retry_after: Optional[int] = None,
) -> JSONResponse:
    headers = {}
    if retry_after is not None:
        headers["Retry-After"] = str(retry_after)
    return JSONResponse(
        status_code=problem.status,
        content=problem.model_dump(exclude_none=True),
        media_type="application/problem+json",
        headers=headers,
    )


# ============================================================================
# HTTP Request Completion Logging Middleware
# ============================================================================


@app.middleware("http")
async def http_completion_logging_middleware(request: Request, call_next):
    """Log every HTTP request completion.

    - Every HTTP request emits "http.request.completed"
    - Fields: request_id, method, path, status_code, duration_ms (+ user_id,
      auth_channel from context when set)
    - Logs even on exceptions (status_code=500)
    - Clears per-request contextvars at start and end
    """
    user_id_var.set("")
    auth_channel_var.set("")

    start_time = time.perf_counter()
    status_code = 500

    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000

        logging.getLogger(__name__).info(
            "http.request.completed",
            extra={
                "event": "http.request.completed",
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )

        user_id_var.set("")
        auth_channel_var.set("")


# ============================================================================
# Request ID Middleware (MUST BE OUTERMOST)
# ============================================================================


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Generate and propagate request_id.

    Registered last so it wraps every other middleware and the request_id is
    set before anything logs.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request_id_var.set(request_id)

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ============================================================================
# RFC 9457 Global Exception Handlers
# ============================================================================


@app.exception_handler(AuthError)
@app.exception_handler(MembershipError)
async def domain_error_handler(request: Request, exc: Union[AuthError, MembershipError]) -> JSONResponse:
    """Render auth and membership failures as problem details with ``error_code``.

    Adds Retry-After when the error carries one (rate limit, delivery failure).
    """
    problem = ProblemDetail(
        type=exc.error_type,
        title=exc.title,
        status=exc.status_code,
        detail=exc.detail,
        instance=_trace_instance(),
        error_code=exc.error_code,
    )
    return _problem_response(problem, retry_after=exc.retry_after)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Framework HTTP errors (404 route, 405, explicit HTTPException) as problem details.

    Dict details are passed through as-is.
    """
    title = _status_phrase(exc.status_code)

    problem = ProblemDetail(
        type=f"https://api.bndy.co.uk/problems/http-{exc.status_code}",
        title=title,
        status=exc.status_code,
        detail=exc.detail if exc.detail is not None else title,
        instance=_trace_instance(),
    )
    return _problem_response(problem, retry_after=60 if exc.status_code == 429 else None)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Body/query validation failures: 422, error_code invalid_input, first error only."""
    errors = exc.errors()
    first_error = errors[0] if errors else {}
    # ("body", "requestToken") -> "requestToken"
    location = [str(part) for part in first_error.get("loc", ()) if part not in ("body", "query", "path")]
    field = ".".join(location) or "request"

    problem = ProblemDetail(
        type="https://api.bndy.co.uk/problems/validation-error",
        title="Request Validation Failed",
        status=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=f"Invalid field '{field}': {first_error.get('msg', 'Validation error')}",
        instance=_trace_instance(),
        error_code="invalid_input",
    )
    return _problem_response(problem)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions: generic 500 body, traceback in the logs."""
    problem = ProblemDetail(
        type="https://api.bndy.co.uk/problems/internal-error",
        title="Internal Server Error",
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="An unexpected error occurred. Please try again later.",
        instance=_trace_instance(),
    )

    logging.getLogger(__name__).error(
        f"Unhandled exception: {type(exc).__name__}",
        extra={"event": "http.unhandled_exception"},
        exc_info=True,
    )
    return _problem_response(problem)


# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(auth.router)
app.include_router(me.router)
app.include_router(memberships.router)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": "bndy API",
        "version": __version__,
        "status": "running",
    }
