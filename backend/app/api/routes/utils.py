"""
Utility routes

Health check for load balancers and monitoring.
"""
from fastapi import APIRouter

from app import crud
from app.api.deps import SessionDep
from app.api.schemas import ApiEnvelope, HealthData

router = APIRouter(prefix="/utils", tags=["utils"])


@router.get("/health-check/", response_model=ApiEnvelope)
def health_check(session: SessionDep) -> ApiEnvelope:
    """
    Health check

    GET /api/v1/utils/health-check/

    Returns:
        webhook queue depth per status; a growing `failed` count needs attention
    """
    return ApiEnvelope(
        data=HealthData(webhook_queue=crud.count_webhook_events_by_status(session=session))
    )
