"""
Compliance risk engine: pure scoring plus the orchestrating service.
"""
from .scoring import (
    ComplianceAssessment, ComplianceFlags, ComplianceScores, Recommendation, RegistrySnapshot,
    assess, calculate_scores, determine_flags, determine_risk_level, generate_recommendation,
    identify_risk_factors, resulting_status,
)
from .compliance_service import ComplianceService, serialize_pending_review

__all__ = [
    "ComplianceAssessment",
    "ComplianceFlags",
    "ComplianceScores",
    "Recommendation",
    "RegistrySnapshot",
    "assess",
    "calculate_scores",
    "determine_flags",
    "determine_risk_level",
    "generate_recommendation",
    "identify_risk_factors",
    "resulting_status",
    "ComplianceService",
    "serialize_pending_review",
]
