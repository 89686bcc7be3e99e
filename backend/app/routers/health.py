from __future__ import annotations

from fastapi import APIRouter

from ..settings import settings

router = APIRouter()


@router.get("/", tags=["health"])
def health():
    return {
        "message": "Proposal Lifecycle API",
        "version": "1.0.0",
        "status": "running",
        "port": settings.port,
        "environment": settings.environment,
        "dynamodb": "configured" if settings.ddb_table_name else "missing",
        "endpoints": [
            "GET /api/proposals",
            "POST /api/proposals",
            "PATCH /api/proposals/{id}/status",
            "GET /api/proposals/{id}/status-history",
            "POST /api/proposals/{id}/convert-to-project",
            "GET /api/proposals/{id}/conversion-status",
            "GET /api/projects",
        ],
    }
