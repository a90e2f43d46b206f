from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from chatdesk.apps.api.deps import get_db
from chatdesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from chatdesk.apps.api.response import SuccessEnvelope, success_response
from chatdesk.core.errors import DatabaseError

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    status: str
    database: str


@router.get("/health", response_model=SuccessEnvelope[HealthResponse])
async def health(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        raise DatabaseError("Database unavailable", code="DATABASE_UNAVAILABLE") from exc
    return success_response(request=request, data=HealthResponse(status="ok", database="ok"))
