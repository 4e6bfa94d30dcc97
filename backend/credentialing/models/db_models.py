"""
Supplier Credentialing - SQLAlchemy ORM Models
Credential store: credentials, status history, registry validations, compliance analyses
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, Float, DateTime, Text, JSON, ForeignKey,
    Enum as SQLEnum, Boolean, Index, text,
)
from sqlalchemy.orm import relationship
from ..database import Base


# =============================================================================
# ENUMS
# =============================================================================

class CredentialStatus(str, Enum):
    """Lifecycle status of a supplier credential."""
    DRAFT = "DRAFT"
    PENDING_VALIDATION = "PENDING_VALIDATION"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    PENDING_COMPLIANCE = "PENDING_COMPLIANCE"
    COMPLIANCE_APPROVED = "COMPLIANCE_APPROVED"
    COMPLIANCE_REJECTED = "COMPLIANCE_REJECTED"
    INVITATION_PENDING = "INVITATION_PENDING"
    INVITATION_SENT = "INVITATION_SENT"
    INVITATION_OPENED = "INVITATION_OPENED"
    INVITATION_EXPIRED = "INVITATION_EXPIRED"
    ONBOARDING_STARTED = "ONBOARDING_STARTED"
    ONBOARDING_IN_PROGRESS = "ONBOARDING_IN_PROGRESS"
    CONTRACT_PENDING = "CONTRACT_PENDING"
    CONTRACT_SIGNED = "CONTRACT_SIGNED"
    ACTIVE = "ACTIVE"
    BLOCKED = "BLOCKED"


class RiskLevel(str, Enum):
    """Risk tier of a compliance analysis."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# Higher rank = more severe. Used for triage ordering.
RISK_LEVEL_RANK = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


class ManualReviewStatus(str, Enum):
    """Human review decision on a compliance analysis."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class RecommendationAction(str, Enum):
    """Automatic recommendation produced by the risk engine."""
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    MANUAL_REVIEW = "MANUAL_REVIEW"


# Sentinel actor for transitions without a human author
SYSTEM_ACTOR = "SYSTEM"


# =============================================================================
# CREDENTIAL
# =============================================================================

class CredentialDB(Base):
    """One supplier application per (brand, tax ID)."""
    __tablename__ = "supplier_credentials"
    __table_args__ = (
        Index("ix_supplier_credentials_brand_tax_id", "brand_id", "tax_id"),
        # At most one non-blocked credential per (brand, tax ID)
        Index(
            "uq_supplier_credentials_open_brand_tax_id",
            "brand_id",
            "tax_id",
            unique=True,
            postgresql_where=text("status != 'BLOCKED'"),
            sqlite_where=text("status != 'BLOCKED'"),
        ),
    )

    id = Column(String(36), primary_key=True)  # UUID
    tax_id = Column(String(14), nullable=False, index=True)  # 14 digits, normalized
    status = Column(SQLEnum(CredentialStatus), nullable=False, default=CredentialStatus.DRAFT, index=True)
    brand_id = Column(String(36), nullable=False, index=True)
    supplier_id = Column(String(36), nullable=True)  # Set once onboarding converts the application
    created_by_id = Column(String(36), nullable=False)

    # Registry data (filled by validation)
    legal_name = Column(String(255), nullable=True)
    trade_name = Column(String(255), nullable=True)

    # Contact
    contact_name = Column(String(255), nullable=False)
    contact_email = Column(String(255), nullable=False)
    contact_phone = Column(String(20), nullable=False)
    contact_whatsapp = Column(String(20), nullable=True)

    # Brand-side bookkeeping
    internal_code = Column(String(100), nullable=True)
    category = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    priority = Column(Integer, default=0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)  # Only set on reaching ACTIVE

    # Relationships
    status_history = relationship(
        "CredentialStatusHistoryDB",
        back_populates="credential",
        order_by="CredentialStatusHistoryDB.sequence",
    )
    validations = relationship(
        "CredentialValidationDB",
        back_populates="credential",
        order_by="CredentialValidationDB.created_at.desc()",
    )
    compliance = relationship("ComplianceAnalysisDB", back_populates="credential", uselist=False)


class CredentialStatusHistoryDB(Base):
    """Immutable audit log of status transitions."""
    __tablename__ = "credential_status_history"

    id = Column(String(36), primary_key=True)  # UUID
    credential_id = Column(String(36), ForeignKey("supplier_credentials.id"), nullable=False, index=True)
    # Monotonic per credential; orders entries written within the same clock tick
    sequence = Column(Integer, nullable=False)

    from_status = Column(SQLEnum(CredentialStatus), nullable=True)  # NULL for the creation event
    to_status = Column(SQLEnum(CredentialStatus), nullable=False)
    operation = Column(String(50), nullable=False)
    performed_by = Column(String(36), nullable=False)  # User ID or SYSTEM
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    credential = relationship("CredentialDB", back_populates="status_history")


# =============================================================================
# REGISTRY VALIDATION SNAPSHOTS
# =============================================================================

class CredentialValidationDB(Base):
    """Company-registry lookup result recorded for a credential."""
    __tablename__ = "credential_validations"

    id = Column(String(36), primary_key=True)  # UUID
    credential_id = Column(String(36), ForeignKey("supplier_credentials.id"), nullable=False, index=True)

    source = Column(String(50), nullable=False)
    # Usable snapshot for the current tax ID: company found and not superseded by a tax ID change
    is_valid = Column(Boolean, nullable=False, default=False)
    company_status = Column(String(50), nullable=True)  # ATIVA, SUSPENSA, INAPTA, BAIXADA, ...
    legal_name = Column(String(255), nullable=True)
    trade_name = Column(String(255), nullable=True)
    capital_stock = Column(Float, nullable=True)
    founded_at = Column(DateTime, nullable=True)
    raw_data = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    credential = relationship("CredentialDB", back_populates="validations")


# =============================================================================
# COMPLIANCE ANALYSIS
# =============================================================================

class ComplianceAnalysisDB(Base):
    """Risk engine output. At most one per credential, overwritten on re-analysis."""
    __tablename__ = "compliance_analyses"

    id = Column(String(36), primary_key=True)  # UUID
    credential_id = Column(
        String(36), ForeignKey("supplier_credentials.id"), nullable=False, unique=True, index=True
    )

    # Scores (0-100)
    credit_score = Column(Integer, nullable=False)
    tax_score = Column(Integer, nullable=False)
    legal_score = Column(Integer, nullable=False)
    overall_score = Column(Integer, nullable=False)
    risk_level = Column(SQLEnum(RiskLevel), nullable=False)

    # Flags
    has_active_registry = Column(Boolean, default=False)
    has_regular_tax_status = Column(Boolean, default=False)
    has_negative_credit = Column(Boolean, default=False)
    has_legal_issues = Column(Boolean, default=False)
    has_related_restrictions = Column(Boolean, default=False)

    risk_factors = Column(JSON, nullable=False, default=list)
    credit_source = Column(String(50), nullable=True)

    # Recommendation
    recommendation = Column(SQLEnum(RecommendationAction), nullable=False)
    recommendation_reason = Column(Text, nullable=True)
    requires_manual_review = Column(Boolean, default=False)

    # Manual review
    manual_review_status = Column(SQLEnum(ManualReviewStatus), nullable=True)
    reviewed_by_id = Column(String(36), nullable=True)
    manual_review_notes = Column(Text, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    credential = relationship("CredentialDB", back_populates="compliance")
