from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, HTTPException, Request
from pydantic import BaseModel, Field

from ._deps import current_user, require_admin, services

router = APIRouter(tags=["groups"])


class GroupMembersRequest(BaseModel):
    userIds: list[str] = Field(default_factory=list)


@router.get("")
@router.get("/")
def list_groups(request: Request, name: str | None = None):
    current_user(request)
    return {"data": services(request).groups.find_groups(name=name)}


@router.post("", status_code=201)
@router.post("/", status_code=201)
def create_group(request: Request, body: dict[str, Any] = Body(...)):
    claims = require_admin(request)
    return services(request).groups.create_group(body, action_by=claims.user_id)


@router.get("/{group_id}")
def get_group(group_id: str, request: Request):
    current_user(request)
    group = services(request).groups.find_group(group_id)
    if not group:
        raise HTTPException(status_code=404, detail="group.notFound")
    return group


@router.put("/{group_id}")
def update_group(group_id: str, request: Request, body: dict[str, Any] = Body(...)):
    claims = require_admin(request)
    return services(request).groups.update_group(group_id, body, action_by=claims.user_id)


@router.get("/{group_id}/members")
def list_members(group_id: str, request: Request):
    current_user(request)
    return {"data": services(request).groups.find_group_members(group_id)}


@router.put("/{group_id}/members")
def set_members(group_id: str, body: GroupMembersRequest, request: Request):
    claims = require_admin(request)
    result = services(request).groups.set_group_members(group_id, body.userIds, action_by=claims.user_id)
    return result.to_dict()
