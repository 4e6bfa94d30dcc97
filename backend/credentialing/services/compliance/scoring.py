"""
Compliance Scoring

Pure functions from {registry snapshot, credit result} to scores, risk tier,
flags, risk factors and recommendation. No I/O, no session.

Weights:
    overall = credit * 0.40 + tax * 0.35 + legal * 0.25

Critical caps on overall:
    BAIXADA / CANCELADA -> 20
    INAPTA              -> 40
    negatives with debt > 100,000 -> 45
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from dateutil.relativedelta import relativedelta

from ...models.db_models import CredentialStatus, RecommendationAction, RiskLevel
from ...models.verification import CreditAnalysisResult

SCORE_WEIGHTS = {
    "credit": 0.40,
    "tax": 0.35,
    "legal": 0.25,
}

ACTIVE_REGISTRY_STATUSES = ("ATIVA", "REGULAR")

TAX_SCORE_BY_STATUS = {
    "ATIVA": 100,
    "REGULAR": 100,
    "SUSPENSA": 30,
    "INAPTA": 10,
    "BAIXADA": 0,
    "CANCELADA": 0,
}

NO_RISK_FACTOR = "No risk factor identified - profile adequate"
CREDIT_UNAVAILABLE_FACTOR = "Credit data unavailable - bureau could not be reached"


@dataclass
class RegistrySnapshot:
    """The registry fields the engine scores. CredentialValidationDB rows fit this shape too."""
    company_status: Optional[str] = None
    capital_stock: Optional[float] = None
    founded_at: Optional[datetime] = None


@dataclass
class ComplianceScores:
    credit_score: int
    tax_score: int
    legal_score: int
    overall_score: int


@dataclass
class ComplianceFlags:
    has_active_registry: bool = False
    has_regular_tax_status: bool = False
    has_negative_credit: bool = False
    has_legal_issues: bool = False  # No litigation source integrated yet
    has_related_restrictions: bool = False  # No partner-restriction source integrated yet


@dataclass
class Recommendation:
    action: RecommendationAction
    reason: str
    requires_manual_review: bool


@dataclass
class ComplianceAssessment:
    """Everything computed for one analysis run."""
    scores: ComplianceScores
    risk_level: RiskLevel
    flags: ComplianceFlags
    recommendation: Recommendation
    risk_factors: List[str] = field(default_factory=list)


def _status_of(validation) -> str:
    status = getattr(validation, "company_status", None) if validation else None
    return (status or "").upper()


def _years_active(validation, now: datetime) -> Optional[int]:
    founded_at = getattr(validation, "founded_at", None) if validation else None
    if not founded_at:
        return None
    return relativedelta(now, founded_at).years


# =============================================================================
# SCORES
# =============================================================================

def calculate_scores(
    validation: Optional[RegistrySnapshot],
    credit: Optional[CreditAnalysisResult],
    now: Optional[datetime] = None,
) -> ComplianceScores:
    """Credit, tax, legal and overall scores, each in [0, 100]."""
    now = now or datetime.utcnow()
    status = _status_of(validation)
    capital_stock = getattr(validation, "capital_stock", None) if validation else None
    has_negatives = bool(credit and credit.has_negatives)
    debt_amount = (credit.debt_amount or 0) if credit else 0

    # ===== CREDIT SCORE =====
    credit_score = 50
    if credit and credit.score:
        # Bureau scale is 0-1000
        credit_score = round(credit.score / 10)
        if has_negatives:
            credit_score -= 20
        if debt_amount > 50000:
            credit_score -= min(15, int(debt_amount // 10000))
        credit_score = max(0, credit_score)
    elif has_negatives:
        credit_score = 30

    # ===== TAX SCORE =====
    tax_score = TAX_SCORE_BY_STATUS.get(status, 50)
    if capital_stock and capital_stock > 100000:
        tax_score = min(100, tax_score + 5)

    # ===== LEGAL SCORE =====
    legal_score = 100
    if has_negatives:
        legal_score -= 30
    if credit and credit.legal_issues:
        legal_score -= 25

    years = _years_active(validation, now)
    if years is not None:
        if years < 1:
            legal_score = max(0, legal_score - 20)
        elif years < 2:
            legal_score = max(0, legal_score - 10)
        elif years >= 5:
            legal_score = min(100, legal_score + 10)
    legal_score = max(0, legal_score)

    # ===== OVERALL =====
    overall_score = round(
        credit_score * SCORE_WEIGHTS["credit"]
        + tax_score * SCORE_WEIGHTS["tax"]
        + legal_score * SCORE_WEIGHTS["legal"]
    )

    if status in ("BAIXADA", "CANCELADA"):
        overall_score = min(overall_score, 20)
    elif status == "INAPTA":
        overall_score = min(overall_score, 40)

    if has_negatives and debt_amount > 100000:
        overall_score = min(overall_score, 45)

    return ComplianceScores(
        credit_score=int(credit_score),
        tax_score=int(tax_score),
        legal_score=int(legal_score),
        overall_score=int(overall_score),
    )


def determine_risk_level(overall_score: int) -> RiskLevel:
    if overall_score >= 70:
        return RiskLevel.LOW
    if overall_score >= 50:
        return RiskLevel.MEDIUM
    if overall_score >= 30:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


def determine_flags(
    validation: Optional[RegistrySnapshot],
    credit: Optional[CreditAnalysisResult],
) -> ComplianceFlags:
    active = _status_of(validation) in ACTIVE_REGISTRY_STATUSES
    return ComplianceFlags(
        has_active_registry=active,
        has_regular_tax_status=active,
        has_negative_credit=bool(credit and credit.has_negatives),
    )


# =============================================================================
# RISK FACTORS
# =============================================================================

def identify_risk_factors(
    validation: Optional[RegistrySnapshot],
    credit: Optional[CreditAnalysisResult],
    flags: ComplianceFlags,
    now: Optional[datetime] = None,
) -> List[str]:
    """Human-readable reasons, most severe first. Never empty."""
    now = now or datetime.utcnow()
    status = _status_of(validation)
    raw_status = getattr(validation, "company_status", None) if validation else None
    factors: List[str] = []

    # Registry
    if not flags.has_active_registry:
        factors.append(f"Registry status is not active - Status: {raw_status or 'Unknown'}")
    if status == "BAIXADA":
        factors.append("Company written off (BAIXADA) at the federal registry")
    if status == "CANCELADA":
        factors.append("Company registration cancelled")

    # Tax
    if not flags.has_regular_tax_status:
        factors.append("Irregular tax status")
    if status == "INAPTA":
        factors.append("Company declared inapt (INAPTA) by the federal registry")
    if status == "SUSPENSA":
        factors.append("Company activities suspended")

    # Credit
    if credit is not None and credit.is_unavailable:
        factors.append(CREDIT_UNAVAILABLE_FACTOR)

    if flags.has_negative_credit:
        if credit and credit.debt_amount:
            factors.append(f"Negative credit records (Total: R$ {credit.debt_amount:,.2f})")
        else:
            factors.append("Active negative credit records")

    if credit and credit.score and credit.score < 300:
        factors.append("Critical credit score (below 300)")
    elif credit and credit.score and credit.score < 500:
        factors.append("Low credit score (below 500)")

    if credit and credit.debt_amount and credit.debt_amount > 100000 and not flags.has_negative_credit:
        factors.append("High registered debt amount")

    # Legal
    if flags.has_legal_issues:
        factors.append("Active lawsuits")
    if flags.has_related_restrictions:
        factors.append("Restrictions on partners or related companies")
    if credit and credit.legal_issues:
        factors.append("Legal issues reported by the credit bureau")

    # Experience
    years = _years_active(validation, now)
    if years is not None:
        if years < 1:
            factors.append("Company active for less than 1 year (inexperience risk)")
        elif years < 2:
            factors.append("Company active for less than 2 years")

    capital_stock = getattr(validation, "capital_stock", None) if validation else None
    if capital_stock and capital_stock < 10000:
        factors.append("Very low capital stock (below R$ 10,000)")

    # Bureau recommendations
    if credit and credit.recommendations:
        factors.extend(credit.recommendations)

    if not factors:
        factors.append(NO_RISK_FACTOR)

    return factors


# =============================================================================
# RECOMMENDATION
# =============================================================================

def generate_recommendation(
    risk_level: RiskLevel,
    flags: ComplianceFlags,
    credit_unavailable: bool = False,
) -> Recommendation:
    """
    Inactive registry always rejects without review. Otherwise by tier:
    LOW/MEDIUM approve, HIGH goes to review, CRITICAL rejects but stays
    open to manual override. Missing credit data never auto-approves.
    """
    if not flags.has_active_registry:
        return Recommendation(
            RecommendationAction.REJECT,
            "Company registry inactive at the federal registry",
            False,
        )

    if risk_level in (RiskLevel.LOW, RiskLevel.MEDIUM) and credit_unavailable:
        return Recommendation(
            RecommendationAction.MANUAL_REVIEW,
            "Credit data unavailable. Manual review required before approval.",
            True,
        )

    if risk_level == RiskLevel.LOW:
        return Recommendation(
            RecommendationAction.APPROVE,
            "Compliance approved automatically. Low risk.",
            False,
        )
    if risk_level == RiskLevel.MEDIUM:
        return Recommendation(
            RecommendationAction.APPROVE,
            "Compliance approved. Medium risk - monitor.",
            False,
        )
    if risk_level == RiskLevel.HIGH:
        return Recommendation(
            RecommendationAction.MANUAL_REVIEW,
            "High risk identified. Manual approval required.",
            True,
        )
    return Recommendation(
        RecommendationAction.REJECT,
        "Critical risk identified. Rejection recommended.",
        True,
    )


def resulting_status(recommendation: Recommendation) -> CredentialStatus:
    """Credential status an automatic decision leads to."""
    if recommendation.requires_manual_review:
        return CredentialStatus.PENDING_COMPLIANCE
    if recommendation.action == RecommendationAction.APPROVE:
        return CredentialStatus.INVITATION_PENDING
    if recommendation.action == RecommendationAction.REJECT:
        return CredentialStatus.COMPLIANCE_REJECTED
    return CredentialStatus.PENDING_COMPLIANCE


def assess(
    validation: Optional[RegistrySnapshot],
    credit: Optional[CreditAnalysisResult],
    now: Optional[datetime] = None,
) -> ComplianceAssessment:
    """Run the whole scoring pipeline."""
    now = now or datetime.utcnow()
    scores = calculate_scores(validation, credit, now)
    risk_level = determine_risk_level(scores.overall_score)
    flags = determine_flags(validation, credit)
    credit_unavailable = credit is None or credit.is_unavailable
    return ComplianceAssessment(
        scores=scores,
        risk_level=risk_level,
        flags=flags,
        recommendation=generate_recommendation(risk_level, flags, credit_unavailable),
        risk_factors=identify_risk_factors(validation, credit, flags, now),
    )
