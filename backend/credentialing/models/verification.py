"""
Supplier Credentialing - Verification Value Objects

Provider-sourced results. These are never persisted as-is: registry results are
copied into CredentialValidationDB snapshots; credit, legal and restrictions
results live in the TTL cache.
Provider failures are carried in the `error` field instead of being raised.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .db_models import RiskLevel


class NotificationChannel(str, Enum):
    EMAIL = "EMAIL"
    WHATSAPP = "WHATSAPP"


# =============================================================================
# COMPANY REGISTRY
# =============================================================================

@dataclass
class RegistryData:
    """Company data as reported by the registry."""
    tax_id: str
    legal_name: str
    status: str  # ATIVA, SUSPENSA, INAPTA, BAIXADA, NULA, ...
    trade_name: Optional[str] = None
    capital_stock: Optional[float] = None
    founded_at: Optional[datetime] = None
    main_activity: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None


@dataclass
class RegistryValidationResult:
    """Outcome of a registry lookup. `data` is set only when the company was found."""
    is_valid: bool
    source: str
    timestamp: datetime = field(default_factory=datetime.utcnow)
    data: Optional[RegistryData] = None
    error: Optional[str] = None
    not_found: bool = False
    raw_response: Optional[Dict[str, Any]] = None


# =============================================================================
# CREDIT
# =============================================================================

@dataclass
class CreditAnalysisResult:
    """Credit bureau result. `score` ranges 0-1000 and is None when unknown."""
    score: Optional[int]
    risk_level: Optional[RiskLevel]
    has_negatives: bool
    source: str
    timestamp: datetime = field(default_factory=datetime.utcnow)
    debt_amount: Optional[float] = None
    legal_issues: bool = False
    recommendations: List[str] = field(default_factory=list)
    error: Optional[str] = None
    raw_response: Optional[Dict[str, Any]] = None

    @property
    def is_unavailable(self) -> bool:
        """True for the explicit no-data result returned on provider exhaustion."""
        return self.score is None and self.error is not None

    def with_source(self, source: str) -> "CreditAnalysisResult":
        return replace(self, source=source)


def risk_level_from_credit_score(score: int) -> RiskLevel:
    """Bureau-side tier used by credit providers (0-1000 scale)."""
    if score >= 700:
        return RiskLevel.LOW
    if score >= 500:
        return RiskLevel.MEDIUM
    if score >= 300:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


# =============================================================================
# LEGAL ISSUES
# =============================================================================

@dataclass
class Lawsuit:
    number: str
    court: str
    type: str  # TRABALHISTA, CÍVEL, TRIBUTÁRIO, ...
    status: str  # EM ANDAMENTO, JULGADO, ARQUIVADO, ...
    filed_at: Optional[datetime] = None
    value: Optional[float] = None
    description: Optional[str] = None
    plaintiff: Optional[str] = None
    defendant: Optional[str] = None


@dataclass
class LegalAnalysisResult:
    """Lawsuits naming the company. Archived lawsuits are listed but not counted as active."""
    has_legal_issues: bool
    active_lawsuits_count: int
    risk_level: RiskLevel
    source: str
    timestamp: datetime = field(default_factory=datetime.utcnow)
    total_lawsuit_value: Optional[float] = None
    lawsuits: List[Lawsuit] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    error: Optional[str] = None
    raw_response: Optional[Dict[str, Any]] = None

    def with_source(self, source: str) -> "LegalAnalysisResult":
        return replace(self, source=source)


# =============================================================================
# RESTRICTIONS (public sanction registers)
# =============================================================================

class RestrictionType(str, Enum):
    CADIN = "CADIN"  # unpaid federal public-sector debts
    CEIS = "CEIS"  # companies declared unfit or suspended
    CNEP = "CNEP"  # companies punished under the anti-corruption law
    CEPIM = "CEPIM"  # non-profits barred from federal agreements
    TCU = "TCU"
    BNDES = "BNDES"
    PGFN = "PGFN"
    OTHER = "OTHER"


class RestrictionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    EXPIRED = "EXPIRED"


@dataclass
class Restriction:
    type: RestrictionType
    description: str
    origin: str
    status: RestrictionStatus
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    value: Optional[float] = None
    details: Optional[str] = None


@dataclass
class RestrictionsAnalysisResult:
    """Sanction-register entries. total_restrictions counts ACTIVE ones only."""
    has_restrictions: bool
    total_restrictions: int
    risk_level: RiskLevel
    source: str
    timestamp: datetime = field(default_factory=datetime.utcnow)
    restrictions: List[Restriction] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    error: Optional[str] = None
    raw_response: Optional[Dict[str, Any]] = None

    def with_source(self, source: str) -> "RestrictionsAnalysisResult":
        return replace(self, source=source)


# =============================================================================
# NOTIFICATIONS
# =============================================================================

@dataclass
class NotificationPayload:
    to: str
    content: str
    subject: Optional[str] = None
    html_content: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class NotificationResult:
    success: bool
    provider: str
    channel: NotificationChannel
    timestamp: datetime = field(default_factory=datetime.utcnow)
    message_id: Optional[str] = None
    error: Optional[str] = None
