"""Supplier Credentialing - Data Models"""
from .db_models import (
    # Enums
    CredentialStatus, RiskLevel, ManualReviewStatus, RecommendationAction,
    RISK_LEVEL_RANK, SYSTEM_ACTOR,
    # ORM
    CredentialDB, CredentialStatusHistoryDB, CredentialValidationDB, ComplianceAnalysisDB,
)
from .identity import AuthUser
from .verification import (
    NotificationChannel,
    RegistryData, RegistryValidationResult,
    CreditAnalysisResult, risk_level_from_credit_score,
    NotificationPayload, NotificationResult,
)

__all__ = [
    "CredentialStatus", "RiskLevel", "ManualReviewStatus", "RecommendationAction",
    "RISK_LEVEL_RANK", "SYSTEM_ACTOR",
    "CredentialDB", "CredentialStatusHistoryDB", "CredentialValidationDB", "ComplianceAnalysisDB",
    "AuthUser",
    "NotificationChannel",
    "RegistryData", "RegistryValidationResult",
    "CreditAnalysisResult", "risk_level_from_credit_score",
    "NotificationPayload", "NotificationResult",
]
