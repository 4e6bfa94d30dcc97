"""
Compliance API Routes

Risk analysis of a credential and the manual-review override path.
"""
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..database import get_db
from ..models.db_models import ComplianceAnalysisDB
from ..models.identity import AuthUser
from ..services.compliance import ComplianceService, serialize_pending_review
from ..services.verification import VerificationAggregator, get_aggregator
from .errors import unwrap_or_raise


router = APIRouter(prefix="/credentials", tags=["compliance"])


class ApproveComplianceRequest(BaseModel):
    notes: str = Field(..., min_length=1, description="Justification for the approval")


class RejectComplianceRequest(BaseModel):
    reason: str = Field(..., min_length=1, description="Reason for the rejection")
    notes: Optional[str] = Field(None, description="Additional reviewer notes")


def serialize_analysis(analysis: ComplianceAnalysisDB) -> dict:
    return {
        "id": analysis.id,
        "credential_id": analysis.credential_id,
        "scores": {
            "credit": analysis.credit_score,
            "tax": analysis.tax_score,
            "legal": analysis.legal_score,
            "overall": analysis.overall_score,
        },
        "risk_level": analysis.risk_level.value,
        "flags": {
            "has_active_registry": analysis.has_active_registry,
            "has_regular_tax_status": analysis.has_regular_tax_status,
            "has_negative_credit": analysis.has_negative_credit,
            "has_legal_issues": analysis.has_legal_issues,
            "has_related_restrictions": analysis.has_related_restrictions,
        },
        "risk_factors": analysis.risk_factors,
        "credit_source": analysis.credit_source,
        "recommendation": analysis.recommendation.value,
        "recommendation_reason": analysis.recommendation_reason,
        "requires_manual_review": analysis.requires_manual_review,
        "manual_review": {
            "status": analysis.manual_review_status.value if analysis.manual_review_status else None,
            "reviewed_by_id": analysis.reviewed_by_id,
            "notes": analysis.manual_review_notes,
            "reviewed_at": analysis.reviewed_at.isoformat() if analysis.reviewed_at else None,
        },
        "created_at": analysis.created_at.isoformat(),
        "updated_at": analysis.updated_at.isoformat() if analysis.updated_at else None,
    }


@router.get("/compliance/pending-reviews", response_model=list)
def get_pending_reviews(
    db: Session = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
    aggregator: VerificationAggregator = Depends(get_aggregator),
):
    """Triage queue: CRITICAL first, then oldest first."""
    service = ComplianceService(db, aggregator)
    analyses = service.get_pending_reviews(current_user.scope_brand_id)
    return [serialize_pending_review(a) for a in analyses]


@router.post("/{credential_id}/compliance", response_model=dict)
def analyze_compliance(
    credential_id: str,
    db: Session = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
    aggregator: VerificationAggregator = Depends(get_aggregator),
):
    """Score the credential and apply the automatic decision."""
    service = ComplianceService(db, aggregator)
    outcome = unwrap_or_raise(service.analyze_compliance(credential_id, current_user))
    recommendation = outcome["recommendation"]
    return {
        "analysis": serialize_analysis(outcome["analysis"]),
        "scores": asdict(outcome["scores"]),
        "risk_level": outcome["risk_level"].value,
        "flags": asdict(outcome["flags"]),
        "recommendation": {
            "action": recommendation.action.value,
            "reason": recommendation.reason,
            "requires_manual_review": recommendation.requires_manual_review,
        },
        "next_step": outcome["next_step"],
    }


@router.get("/{credential_id}/compliance", response_model=dict)
def get_compliance(
    credential_id: str,
    db: Session = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
    aggregator: VerificationAggregator = Depends(get_aggregator),
):
    service = ComplianceService(db, aggregator)
    analysis = unwrap_or_raise(service.get_compliance(credential_id, current_user.scope_brand_id))
    return serialize_analysis(analysis)


@router.patch("/{credential_id}/compliance/approve", response_model=dict)
def approve_compliance(
    credential_id: str,
    request: ApproveComplianceRequest,
    db: Session = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
    aggregator: VerificationAggregator = Depends(get_aggregator),
):
    service = ComplianceService(db, aggregator)
    outcome = unwrap_or_raise(service.approve_compliance(credential_id, request.notes, current_user))
    return {**outcome, "analysis": serialize_analysis(outcome["analysis"])}


@router.patch("/{credential_id}/compliance/reject", response_model=dict)
def reject_compliance(
    credential_id: str,
    request: RejectComplianceRequest,
    db: Session = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
    aggregator: VerificationAggregator = Depends(get_aggregator),
):
    service = ComplianceService(db, aggregator)
    outcome = unwrap_or_raise(
        service.reject_compliance(credential_id, request.reason, request.notes or "", current_user)
    )
    return {**outcome, "analysis": serialize_analysis(outcome["analysis"])}
