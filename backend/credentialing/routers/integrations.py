"""
Integration API Routes

Read-only view of the external providers the aggregator is wired to.
"""
from fastapi import APIRouter, Depends

from ..auth import get_current_user
from ..models.identity import AuthUser
from ..services.verification import VerificationAggregator, get_aggregator


router = APIRouter(prefix="/integrations", tags=["integrations"])


@router.get("/providers", response_model=list)
def get_providers_status(
    current_user: AuthUser = Depends(get_current_user),
    aggregator: VerificationAggregator = Depends(get_aggregator),
):
    """Name, family and availability of every registry, credit and notification provider."""
    return aggregator.get_providers_status()
