from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from ._deps import client_meta, current_user, services

router = APIRouter(tags=["auth"])


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=64)
    password: str = Field(..., min_length=1)


class RecoveryRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=320)


class RecoveryConsume(BaseModel):
    token: str = Field(..., min_length=1)
    newPassword: str = ""


class ChangePasswordRequest(BaseModel):
    currentPassword: str = ""
    newPassword: str = ""


@router.post("/login")
def login(body: LoginRequest, request: Request):
    user_agent, ip = client_meta(request)
    return services(request).auth.authenticate(
        body.username.strip(), body.password, user_agent=user_agent, ip=ip
    )


@router.post("/logout")
def logout(request: Request):
    claims = current_user(request)
    return services(request).auth.logout(claims.session_id)


@router.get("/me")
def me(request: Request):
    claims = current_user(request)
    user = services(request).users.find_user(claims.user_id)
    return {"user": user, "sessionId": claims.session_id}


@router.get("/sessions")
def list_sessions(request: Request):
    claims = current_user(request)
    sessions = services(request).auth.list_sessions(claims.user_id)
    return {
        "data": [
            {
                "sid": s.get("sid"),
                "createdAt": s.get("createdAt"),
                "expiresAt": s.get("expiresAt"),
                "userAgent": s.get("userAgent"),
                "ipPrefix": s.get("ipPrefix"),
                "current": s.get("sid") == claims.session_id,
            }
            for s in sessions
        ]
    }


@router.post("/recovery/request")
def request_recovery(body: RecoveryRequest, request: Request):
    return services(request).recovery.request_recovery(body.email)


@router.post("/recovery/consume")
def consume_recovery(body: RecoveryConsume, request: Request):
    user_agent, ip = client_meta(request)
    return services(request).recovery.consume_recovery(
        body.token, body.newPassword, user_agent=user_agent, ip=ip
    )


@router.post("/password")
def change_password(body: ChangePasswordRequest, request: Request):
    claims = current_user(request)
    return services(request).users.change_password(
        claims.user_id, body.currentPassword, body.newPassword, action_by=claims.user_id
    )
