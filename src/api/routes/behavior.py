"""Behavior monitoring endpoints."""

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from src.api.dependencies import Services, get_services
from src.domains.behavior.models import UserAction
from src.domains.behavior.monitor import alert_if_suspicious

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/behavior", tags=["behavior"])


class MonitorRequest(BaseModel):
    actions: list[UserAction] = Field(default_factory=list, max_length=1000)


@router.post("/users/{user_id}/monitor")
async def monitor_user(
    user_id: str,
    request: MonitorRequest,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    """Score a batch of recent actions and alert if the pattern looks suspicious."""
    report = services.monitor.monitor(user_id, request.actions)
    alerted = alert_if_suspicious(services.alerts, user_id, report)
    return {
        "user_id": user_id,
        **report.model_dump(mode="json", by_alias=True),
        "alert_raised": alerted,
    }
