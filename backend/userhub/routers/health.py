from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/", tags=["health"])
def health(request: Request):
    settings = request.app.state.settings
    return {
        "message": "User account service API",
        "version": "1.0.0",
        "status": "running",
        "port": settings.port,
        "environment": settings.normalized_environment,
        "dynamodb": "configured" if settings.ddb_table_name else "missing",
        "endpoints": [
            "POST /api/auth/login",
            "POST /api/auth/recovery/request",
            "POST /api/auth/recovery/consume",
            "GET /api/users",
            "POST /api/users",
            "GET /api/groups",
            "PUT /api/groups/{id}/members",
        ],
    }
