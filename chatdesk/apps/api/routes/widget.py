from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from chatdesk.apps.api.deps import get_db
from chatdesk.apps.api.openapi import WIDGET_ERROR_RESPONSES
from chatdesk.apps.api.response import SuccessEnvelope, success_response
from chatdesk.apps.api.schemas import ChatbotConfigResponse
from chatdesk.services.origin import request_origin, validate_origin

router = APIRouter(prefix="/widget", tags=["widget"], responses=WIDGET_ERROR_RESPONSES)


class WidgetConfigResponse(BaseModel):
    enabled: bool
    client_id: str
    client_name: str | None = None
    config: ChatbotConfigResponse | None = None


@router.get("/config", response_model=SuccessEnvelope[WidgetConfigResponse])
async def widget_config(
    request: Request,
    client_id: str | None = Query(default=None, alias="clientId"),
    db: AsyncSession = Depends(get_db),
) -> dict:
    # Anonymous path: the origin check is the only gate in front of tenant configuration.
    result = await validate_origin(db, client_id, request_origin(request), request=request)
    if not result.enabled:
        payload = WidgetConfigResponse(enabled=False, client_id=result.tenant.id)
    else:
        payload = WidgetConfigResponse(
            enabled=True,
            client_id=result.tenant.id,
            client_name=result.tenant.name,
            config=ChatbotConfigResponse(**result.config),
        )
    return success_response(request=request, data=payload)
