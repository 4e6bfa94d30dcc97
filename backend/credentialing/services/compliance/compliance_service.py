"""
Compliance Service

Risk engine orchestration: loads the registry snapshot, fetches credit data,
scores it, persists the analysis and requests the resulting status transition.

Key responsibilities:
- Automatic analysis (analyze_compliance)
- Manual override in both directions (approve_compliance / reject_compliance)
- Triage queue for human review (get_pending_reviews)
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ...models.db_models import (
    ComplianceAnalysisDB, CredentialDB, CredentialStatus, CredentialValidationDB,
    ManualReviewStatus, RecommendationAction, RISK_LEVEL_RANK, SYSTEM_ACTOR,
)
from ...models.identity import AuthUser
from ..credentials.credential_service import CredentialService
from ..credentials.state_machine import CredentialOperation
from ..result import Ok, Result, invalid_state, not_found
from ..taxid import mask_tax_id
from .scoring import assess, resulting_status

logger = logging.getLogger(__name__)


def next_step_for(recommendation) -> str:
    if recommendation.requires_manual_review:
        return "MANUAL_REVIEW"
    if recommendation.action == RecommendationAction.APPROVE:
        return "SEND_INVITATION"
    return "REVIEW_AND_FIX"


class ComplianceService:
    """
    Turns verification signals into a bounded, explainable decision.

    Status changes go through CredentialService.change_status so the
    transition table is checked before anything is persisted.
    """

    def __init__(self, db: Session, aggregator, lifecycle: Optional[CredentialService] = None):
        self.db = db
        self.aggregator = aggregator
        self.lifecycle = lifecycle or CredentialService(db)

    # =========================================================================
    # AUTOMATIC ANALYSIS
    # =========================================================================

    def analyze_compliance(self, credential_id: str, user: Optional[AuthUser] = None) -> Result:
        """
        Score a credential and move it according to the recommendation.

        Allowed in PENDING_COMPLIANCE and COMPLIANCE_REJECTED. Re-analysis
        overwrites the previous analysis and clears any manual decision.

        Returns Ok({"analysis", "scores", "risk_level", "flags",
        "recommendation", "risk_factors", "next_step"}).
        """
        if user is not None:
            found = self.lifecycle.find_one(credential_id, user.scope_brand_id)
        else:
            credential = self.db.query(CredentialDB).filter(CredentialDB.id == credential_id).first()
            found = Ok(credential) if credential else not_found(f"Credential {credential_id} not found")
        if found.is_err:
            return found
        credential = found.value

        state_machine = self.lifecycle.state_machine
        if not state_machine.is_permitted(credential.status, CredentialOperation.COMPLIANCE_ANALYSIS):
            allowed = ", ".join(
                s.value for s in state_machine.allowed_statuses(CredentialOperation.COMPLIANCE_ANALYSIS)
            )
            return invalid_state(
                f'Credential with status "{credential.status.value}" cannot be analyzed. '
                f"Allowed statuses: {allowed}"
            )

        logger.info(f"Starting compliance analysis for {credential.id}")

        validation = (
            self.db.query(CredentialValidationDB)
            .filter(
                CredentialValidationDB.credential_id == credential.id,
                CredentialValidationDB.is_valid.is_(True),
            )
            .order_by(CredentialValidationDB.created_at.desc())
            .first()
        )
        if validation is None:
            logger.warning(f"No usable registry snapshot for {credential.id}; scoring without one")

        credit = self.aggregator.analyze_credit(credential.tax_id)
        assessment = assess(validation, credit)
        scores = assessment.scores
        flags = assessment.flags
        recommendation = assessment.recommendation

        analysis = (
            self.db.query(ComplianceAnalysisDB)
            .filter(ComplianceAnalysisDB.credential_id == credential.id)
            .first()
        )
        now = datetime.utcnow()
        if analysis is None:
            analysis = ComplianceAnalysisDB(id=str(uuid4()), credential_id=credential.id, created_at=now)
            self.db.add(analysis)

        analysis.credit_score = scores.credit_score
        analysis.tax_score = scores.tax_score
        analysis.legal_score = scores.legal_score
        analysis.overall_score = scores.overall_score
        analysis.risk_level = assessment.risk_level
        analysis.risk_factors = assessment.risk_factors
        analysis.has_active_registry = flags.has_active_registry
        analysis.has_regular_tax_status = flags.has_regular_tax_status
        analysis.has_negative_credit = flags.has_negative_credit
        analysis.has_legal_issues = flags.has_legal_issues
        analysis.has_related_restrictions = flags.has_related_restrictions
        analysis.credit_source = credit.source if credit else None
        analysis.recommendation = recommendation.action
        analysis.recommendation_reason = recommendation.reason
        analysis.requires_manual_review = recommendation.requires_manual_review
        analysis.manual_review_status = (
            ManualReviewStatus.PENDING if recommendation.requires_manual_review else None
        )
        # Re-analysis discards any earlier human decision
        analysis.reviewed_by_id = None
        analysis.reviewed_at = None
        analysis.manual_review_notes = None
        analysis.updated_at = now

        new_status = resulting_status(recommendation)
        moved = self.lifecycle.change_status(
            credential.id,
            new_status,
            user.id if user else SYSTEM_ACTOR,
            CredentialOperation.COMPLIANCE_ANALYSIS,
            recommendation.reason,
            commit=False,
        )
        if moved.is_err:
            self.db.rollback()
            return moved

        self.db.commit()
        self.db.refresh(analysis)

        logger.info(
            f"Compliance analysis for {credential.id} ({mask_tax_id(credential.tax_id)}): "
            f"risk={assessment.risk_level.value}, score={scores.overall_score}, "
            f"action={recommendation.action.value}, credit_source={analysis.credit_source}"
        )

        return Ok({
            "analysis": analysis,
            "scores": scores,
            "risk_level": assessment.risk_level,
            "flags": flags,
            "recommendation": recommendation,
            "risk_factors": assessment.risk_factors,
            "next_step": next_step_for(recommendation),
        })

    # =========================================================================
    # MANUAL OVERRIDE
    # =========================================================================

    def approve_compliance(self, credential_id: str, notes: str, user: AuthUser) -> Result:
        """Manual approval of an analysis awaiting review. Also re-approves a rejection."""
        loaded = self._load_for_review(credential_id, user, CredentialOperation.COMPLIANCE_APPROVE, "approved")
        if loaded.is_err:
            return loaded
        credential, analysis = loaded.value

        logger.info(f"Approving compliance manually for {credential.id} by {user.id}")

        analysis.manual_review_status = ManualReviewStatus.APPROVED
        analysis.manual_review_notes = notes
        analysis.reviewed_by_id = user.id
        analysis.reviewed_at = datetime.utcnow()
        analysis.recommendation = RecommendationAction.APPROVE
        analysis.recommendation_reason = f"Approved manually by {user.id}: {notes}"

        moved = self.lifecycle.change_status(
            credential.id,
            CredentialStatus.COMPLIANCE_APPROVED,
            user.id,
            CredentialOperation.COMPLIANCE_APPROVE,
            f"Compliance approved manually: {notes}",
            commit=False,
        )
        if moved.is_err:
            self.db.rollback()
            return moved

        self.db.commit()
        self.db.refresh(analysis)

        return Ok({
            "success": True,
            "analysis": analysis,
            "message": "Compliance approved. The credential may proceed to invitation.",
            "next_step": "SEND_INVITATION",
        })

    def reject_compliance(self, credential_id: str, reason: str, notes: str, user: AuthUser) -> Result:
        """Manual rejection. Also reverses an approval still under review."""
        loaded = self._load_for_review(credential_id, user, CredentialOperation.COMPLIANCE_REJECT, "rejected")
        if loaded.is_err:
            return loaded
        credential, analysis = loaded.value

        logger.info(f"Rejecting compliance manually for {credential.id} by {user.id}. Reason: {reason}")

        analysis.manual_review_status = ManualReviewStatus.REJECTED
        analysis.manual_review_notes = f"{reason}\n\n{notes}" if notes else reason
        analysis.reviewed_by_id = user.id
        analysis.reviewed_at = datetime.utcnow()
        analysis.recommendation = RecommendationAction.REJECT
        analysis.recommendation_reason = f"Rejected manually by {user.id}: {reason}"

        moved = self.lifecycle.change_status(
            credential.id,
            CredentialStatus.COMPLIANCE_REJECTED,
            user.id,
            CredentialOperation.COMPLIANCE_REJECT,
            f"Compliance rejected: {reason}",
            commit=False,
        )
        if moved.is_err:
            self.db.rollback()
            return moved

        self.db.commit()
        self.db.refresh(analysis)

        return Ok({
            "success": True,
            "analysis": analysis,
            "message": "Compliance rejected.",
            "next_step": "ARCHIVED",
        })

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_compliance(self, credential_id: str, brand_id: str) -> Result:
        found = self.lifecycle.find_one(credential_id, brand_id)
        if found.is_err:
            return found

        analysis = (
            self.db.query(ComplianceAnalysisDB)
            .filter(ComplianceAnalysisDB.credential_id == credential_id)
            .first()
        )
        if not analysis:
            return not_found(f"Credential {credential_id} has no compliance analysis")
        return Ok(analysis)

    def get_pending_reviews(self, brand_id: Optional[str] = None) -> List[ComplianceAnalysisDB]:
        """
        Analyses awaiting a human decision.

        Most severe risk first, then oldest first. Severity is ranked
        explicitly; the enum's storage order is not relied on.
        """
        query = self.db.query(ComplianceAnalysisDB).filter(
            ComplianceAnalysisDB.requires_manual_review.is_(True),
            ComplianceAnalysisDB.manual_review_status == ManualReviewStatus.PENDING,
        )
        if brand_id:
            query = query.join(CredentialDB).filter(CredentialDB.brand_id == brand_id)

        analyses = query.all()
        return sorted(
            analyses,
            key=lambda a: (-RISK_LEVEL_RANK[a.risk_level], a.created_at),
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _load_for_review(
        self,
        credential_id: str,
        user: AuthUser,
        operation: CredentialOperation,
        verb: str,
    ) -> Result:
        found = self.lifecycle.find_one(credential_id, user.scope_brand_id)
        if found.is_err:
            return found
        credential = found.value

        analysis = (
            self.db.query(ComplianceAnalysisDB)
            .filter(ComplianceAnalysisDB.credential_id == credential.id)
            .first()
        )
        if not analysis:
            return invalid_state("Credential has no compliance analysis. Run the analysis first.")

        if not analysis.requires_manual_review or analysis.manual_review_status != ManualReviewStatus.PENDING:
            current = analysis.manual_review_status.value if analysis.manual_review_status else "None"
            return invalid_state(
                f"Credential is not pending manual review. Current review status: {current}"
            )

        state_machine = self.lifecycle.state_machine
        if not state_machine.is_permitted(credential.status, operation):
            allowed = ", ".join(s.value for s in state_machine.allowed_statuses(operation))
            return invalid_state(
                f'Credential with status "{credential.status.value}" cannot be {verb}. '
                f"Allowed statuses: {allowed}"
            )

        return Ok((credential, analysis))


def serialize_pending_review(analysis: ComplianceAnalysisDB) -> Dict[str, Any]:
    """Triage row: the analysis plus the credential fields a reviewer needs."""
    credential = analysis.credential
    return {
        "id": analysis.id,
        "credential_id": analysis.credential_id,
        "risk_level": analysis.risk_level.value,
        "overall_score": analysis.overall_score,
        "recommendation": analysis.recommendation.value,
        "recommendation_reason": analysis.recommendation_reason,
        "created_at": analysis.created_at,
        "credential": {
            "id": credential.id,
            "tax_id": credential.tax_id,
            "trade_name": credential.trade_name,
            "legal_name": credential.legal_name,
            "contact_name": credential.contact_name,
            "contact_email": credential.contact_email,
            "status": credential.status.value,
            "created_at": credential.created_at,
        },
    }
