from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, File, HTTPException, Query, Request, UploadFile
from pydantic import BaseModel

from ..services.user_service import AvatarUpload
from ._deps import current_user, is_admin, require_admin, require_self_or_admin, services

router = APIRouter(tags=["users"])

# Only admins may change these on a user record.
_ADMIN_FIELDS = ("role", "active", "groups")


class AdminPasswordRequest(BaseModel):
    password: str = ""
    passwordVerify: str = ""


@router.get("")
@router.get("/")
def list_users(request: Request, roles: list[str] | None = Query(default=None)):
    current_user(request)
    return {"data": services(request).users.find_users(roles=roles)}


@router.post("", status_code=201)
@router.post("/", status_code=201)
def create_user(request: Request, body: dict[str, Any] = Body(...)):
    claims = require_admin(request)
    return services(request).users.create_user(body, action_by=claims.user_id)


@router.get("/paginate")
def paginate_users(
    request: Request,
    limit: int = Query(default=10, ge=1, le=100),
    page: int = Query(default=1, ge=1),
    search: str | None = Query(default=None, max_length=200),
    orderBy: str | None = Query(default=None, max_length=64),
    orderDesc: bool = False,
    roles: list[str] | None = Query(default=None),
):
    current_user(request)
    return services(request).users.paginate_users(
        limit,
        page=page,
        search=search,
        order_by=orderBy,
        order_desc=orderDesc,
        roles=roles,
    )


@router.post("/me/avatar")
def upload_avatar(request: Request, file: UploadFile = File(...)):
    claims = current_user(request)
    upload = AvatarUpload(
        filename=str(file.filename or ""),
        mimetype=file.content_type,
        encoding=(file.headers.get("content-transfer-encoding") if file.headers else None) or "7bit",
        stream=file.file,
    )
    try:
        return services(request).users.avatar_upload(claims.user_id, upload)
    finally:
        file.file.close()


@router.get("/{user_id}")
def get_user(user_id: str, request: Request):
    current_user(request)
    user = services(request).users.find_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="user.notFound")
    return user


@router.put("/{user_id}")
def update_user(user_id: str, request: Request, body: dict[str, Any] = Body(...)):
    claims = require_self_or_admin(request, user_id)
    data = dict(body or {})
    if not is_admin(request, claims):
        for k in _ADMIN_FIELDS:
            data.pop(k, None)
    return services(request).users.update_user(user_id, data, action_by=claims.user_id)


@router.delete("/{user_id}")
def delete_user(user_id: str, request: Request):
    claims = require_admin(request)
    return services(request).users.delete_user(user_id, action_by=claims.user_id)


@router.post("/{user_id}/password")
def admin_change_password(user_id: str, body: AdminPasswordRequest, request: Request):
    claims = require_self_or_admin(request, user_id)
    return services(request).users.admin_change_password(
        user_id, body.password, body.passwordVerify, action_by=claims.user_id
    )


@router.get("/{user_id}/audit")
def user_audit(user_id: str, request: Request, limit: int = Query(default=50, ge=1, le=200)):
    require_admin(request)
    return {"data": services(request).audit.list_for_subject(user_id, limit=limit)}
