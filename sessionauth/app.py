from __future__ import annotations

import asyncio
import hmac
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sessionauth.api.error_handling import _error_response, register_exception_handlers
from sessionauth.api.routes import router
from sessionauth.config import get_settings
from sessionauth.logging import get_logger, set_correlation_id
from sessionauth.service.sessions import (
    SessionCarrier,
    new_session_id,
    sign_session_id,
    unsign_session_id,
)
from sessionauth.storage.models import SessionData

logger = get_logger(__name__)

__version__ = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    from sessionauth.service.runtime import get_runtime

    get_runtime()
    yield
    try:
        await get_runtime().close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="Session Auth", version=__version__, lifespan=lifespan)


_CSRF_SAFE_METHODS = {"GET", "HEAD", "OPTIONS", "TRACE"}


@app.middleware("http")
async def enforce_csrf_token(request: Request, call_next):
    if request.method.upper() in _CSRF_SAFE_METHODS:
        return await call_next(request)
    carrier: SessionCarrier | None = getattr(request.state, "session", None)
    # Requests without an established session have nothing to forge
    if carrier is None or carrier.is_new:
        return await call_next(request)
    header_token = request.headers.get("X-CSRF-Token")
    expected = carrier.csrf_secret
    if not header_token or not expected or not hmac.compare_digest(
        header_token.encode(), expected.encode()
    ):
        logger.warning("csrf_validation_failed", path=request.url.path, method=request.method)
        return _error_response(403, "missing or invalid CSRF token", code="forbidden")
    return await call_next(request)


@app.middleware("http")
async def load_session(request: Request, call_next):
    """Attach a SessionCarrier to the request and write it back afterwards.

    A session is only persisted (and the cookie only set) once something
    modified it; destroyed sessions get their cookie cleared.
    """
    from sessionauth.service.runtime import get_runtime

    runtime = get_runtime()
    settings = runtime.settings
    session_id = unsign_session_id(
        request.cookies.get(settings.session_cookie_name), settings.session_secret
    )
    data = await runtime.sessions.get(session_id) if session_id else None
    if session_id and data is not None:
        carrier = SessionCarrier(runtime.sessions, session_id, data, is_new=False)
        await runtime.renewal.apply(carrier)
    else:
        carrier = SessionCarrier(
            runtime.sessions,
            new_session_id(),
            SessionData.new(settings.session_max_age_seconds, secure=settings.is_production),
            is_new=True,
        )
    request.state.session = carrier
    issued_id = carrier.session_id

    response = await call_next(request)

    if carrier.destroyed:
        response.delete_cookie(settings.session_cookie_name, path="/")
    elif carrier.modified or carrier.session_id != issued_id:
        if carrier.modified:
            await carrier.save()
        response.set_cookie(
            settings.session_cookie_name,
            sign_session_id(carrier.session_id, settings.session_secret),
            max_age=settings.session_max_age_seconds,
            path="/",
            httponly=True,
            secure=settings.is_production,
            samesite="lax",
        )
    return response


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate, private")
    if get_settings().is_production:
        response.headers.setdefault(
            "Strict-Transport-Security", "max-age=63072000; includeSubDomains"
        )
    return response


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag logs and the response with the request's X-Request-ID, generating one if absent."""
    correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_allow_origins or ["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-CSRF-Token", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
    max_age=3600,
)

register_exception_handlers(app)
app.include_router(router)


HEALTH_CHECK_TIMEOUT_SECONDS = 3


@app.get("/healthz")
async def health() -> JSONResponse:
    """Report database and key-value store reachability."""
    from sessionauth.service.runtime import get_runtime

    runtime = get_runtime()

    async def _run_bounded(label: str, func) -> bool:
        try:
            await asyncio.wait_for(asyncio.to_thread(func), HEALTH_CHECK_TIMEOUT_SECONDS)
            return True
        except asyncio.TimeoutError:
            logger.error(
                "health_check_timeout", component=label, timeout=HEALTH_CHECK_TIMEOUT_SECONDS
            )
        except Exception as exc:
            logger.error("health_check_failed", component=label, error=str(exc))
        return False

    db_ok = await _run_bounded("database", runtime.store.verify_connection)
    kv_ok = await _run_bounded("redis", runtime.cache.verify_connection)
    checks: Dict[str, Any] = {
        "database": {"status": "healthy" if db_ok else "unhealthy"},
        "redis": {"status": "healthy" if kv_ok else "unhealthy"},
    }
    healthy = db_ok and kv_ok
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "version": __version__,
            "checks": checks,
        },
    )
