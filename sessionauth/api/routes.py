from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import RedirectResponse

from sessionauth.api.schemas import (
    CsrfTokenResponse,
    Envelope,
    LoginRequest,
    LogoutAllResponse,
    MessageResponse,
    RegisterRequest,
    ResendVerificationRequest,
    UpdateUserRequest,
    UserResponse,
)
from sessionauth.service.runtime import get_runtime
from sessionauth.service.sessions import SessionCarrier
from sessionauth.storage.models import PublicUser

router = APIRouter()


def _http_error(
    code: str, message: str, status_code: int, details: Optional[dict | str] = None
) -> HTTPException:
    payload: dict[str, object] = {
        "status": "error",
        "error": {"code": code, "message": message},
    }
    if details is not None:
        payload["error"]["details"] = details  # type: ignore[index]
    return HTTPException(status_code=status_code, detail=payload)


def _user_response(user: PublicUser) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        username=user.username,
        created_at=user.created_at,
    )


def get_session(request: Request) -> SessionCarrier:
    carrier = getattr(request.state, "session", None)
    if carrier is None:
        raise _http_error("server_error", "session middleware not installed", status_code=500)
    return carrier


def get_session_user_id(carrier: SessionCarrier = Depends(get_session)) -> str:
    if not carrier.user_id:
        raise _http_error("unauthorized", "Unauthorised", status_code=401)
    return carrier.user_id


@router.get("/auth/csrf-token", response_model=Envelope)
async def csrf_token(carrier: SessionCarrier = Depends(get_session)):
    return Envelope(status="ok", data=CsrfTokenResponse(csrfToken=carrier.ensure_csrf_secret()))


@router.post("/auth", response_model=Envelope)
async def login(body: LoginRequest, carrier: SessionCarrier = Depends(get_session)):
    runtime = get_runtime()
    user = await runtime.auth.login(carrier, body.identifier, body.password)
    return Envelope(status="ok", data=_user_response(user))


@router.post("/auth/logout", response_model=Envelope)
async def logout(carrier: SessionCarrier = Depends(get_session)):
    runtime = get_runtime()
    await runtime.auth.logout(carrier)
    return Envelope(status="ok", data=MessageResponse(message="logged out"))


@router.post("/auth/logout-all", response_model=Envelope)
async def logout_all(
    user_id: str = Depends(get_session_user_id),
    carrier: SessionCarrier = Depends(get_session),
):
    runtime = get_runtime()
    revoked = await runtime.auth.logout_all(user_id)
    await carrier.destroy()
    return Envelope(status="ok", data=LogoutAllResponse(revoked=revoked))


@router.get("/auth/profile", response_model=Envelope)
async def profile(user_id: str = Depends(get_session_user_id)):
    runtime = get_runtime()
    return Envelope(status="ok", data=_user_response(runtime.auth.get_user(user_id)))


@router.get("/auth/google")
async def google_start():
    runtime = get_runtime()
    return RedirectResponse(await runtime.oauth.authorization_url(), status_code=302)


@router.get("/auth/google/redirect", response_model=Envelope)
async def google_redirect(
    code: Optional[str] = Query(None, max_length=2048),
    state: Optional[str] = Query(None, max_length=256),
    carrier: SessionCarrier = Depends(get_session),
):
    runtime = get_runtime()
    identity = await runtime.oauth.complete(state, code)
    user = runtime.auth.create_user_from_provider(identity.email, identity.name, identity.provider)
    await runtime.auth.start_session(carrier, runtime.auth.establish_session(user.id))
    return Envelope(status="ok", data=_user_response(user))


@router.post("/users", response_model=Envelope, status_code=201)
async def register(body: RegisterRequest):
    runtime = get_runtime()
    await runtime.users.register(
        email=body.email,
        name=body.name,
        password=body.password,
        username=body.username,
    )
    return Envelope(status="ok", data=MessageResponse(message="please check your mail"))


@router.patch("/users", response_model=Envelope)
async def update_user(body: UpdateUserRequest, user_id: str = Depends(get_session_user_id)):
    runtime = get_runtime()
    if not body.model_fields_set:
        raise _http_error("validation_error", "no fields to update", status_code=400)
    user = runtime.users.update_user(
        user_id, name=body.name, username=body.username, password=body.password
    )
    return Envelope(status="ok", data=_user_response(user))


@router.delete("/users", response_model=Envelope)
async def delete_user(
    user_id: str = Depends(get_session_user_id),
    carrier: SessionCarrier = Depends(get_session),
):
    runtime = get_runtime()
    await runtime.users.delete_user(user_id)
    await carrier.destroy()
    return Envelope(status="ok", data=MessageResponse(message="account deleted"))


@router.get("/users/verify-user", response_model=Envelope)
async def verify_user(token: str = Query(..., min_length=3, max_length=100)):
    runtime = get_runtime()
    user = await runtime.users.verify_user(token)
    return Envelope(status="ok", data=_user_response(user))


@router.post("/users/resend-verification", response_model=Envelope)
async def resend_verification(body: ResendVerificationRequest):
    runtime = get_runtime()
    await runtime.users.resend_verification(body.identifier)
    return Envelope(status="ok", data=MessageResponse(message="please check your mail"))
