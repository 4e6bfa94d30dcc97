"""
Tests for ComplianceService (risk engine orchestration and manual review).
"""
from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from credentialing.models.db_models import (
    ComplianceAnalysisDB, CredentialStatus, CredentialStatusHistoryDB, CredentialValidationDB,
    ManualReviewStatus, RecommendationAction, RiskLevel,
)
from credentialing.services.compliance import ComplianceService
from credentialing.services.credentials import CredentialService
from credentialing.services.result import ErrorKind

from factories import StubAggregator, credential_input, credit_result


def _add_snapshot(db, credential_id, status="ATIVA", is_valid=True, created_at=None):
    validation = CredentialValidationDB(
        id=str(uuid4()),
        credential_id=credential_id,
        source="BRASIL_API",
        is_valid=is_valid,
        company_status=status,
        legal_name="Malharia Exemplo LTDA",
        capital_stock=500000.0,
        founded_at=datetime(2010, 1, 1),
        created_at=created_at or datetime.utcnow(),
    )
    db.add(validation)
    db.commit()
    return validation


@pytest.fixture
def pending_credential(db_session, brand_user):
    """A credential that passed registry validation with an active company."""
    credential = CredentialService(db_session).create(credential_input(), brand_user).value
    credential.status = CredentialStatus.PENDING_COMPLIANCE
    db_session.commit()
    _add_snapshot(db_session, credential.id)
    return credential


def _review_case(db_session, brand_user, credential):
    """Run an analysis that lands in manual review (high risk)."""
    aggregator = StubAggregator(credit=credit_result(score=650, has_negatives=True, debt_amount=150000))
    service = ComplianceService(db_session, aggregator)
    outcome = service.analyze_compliance(credential.id, brand_user).value
    assert outcome["recommendation"].requires_manual_review is True
    return service


def _last_history(db, credential_id):
    return (
        db.query(CredentialStatusHistoryDB)
        .filter(CredentialStatusHistoryDB.credential_id == credential_id)
        .order_by(CredentialStatusHistoryDB.sequence.desc())
        .first()
    )


# =============================================================================
# ANALYZE
# =============================================================================

class TestAnalyzeCompliance:

    def test_low_risk_is_approved_automatically(self, db_session, brand_user, pending_credential):
        aggregator = StubAggregator(credit=credit_result(score=850))
        service = ComplianceService(db_session, aggregator)

        result = service.analyze_compliance(pending_credential.id, brand_user)

        assert result.is_ok
        outcome = result.value
        assert outcome["risk_level"] == RiskLevel.LOW
        assert outcome["recommendation"].action == RecommendationAction.APPROVE
        assert outcome["next_step"] == "SEND_INVITATION"

        db_session.refresh(pending_credential)
        assert pending_credential.status == CredentialStatus.INVITATION_PENDING

        analysis = outcome["analysis"]
        assert analysis.requires_manual_review is False
        assert analysis.manual_review_status is None
        assert analysis.credit_source == "MOCK"
        assert aggregator.credit_calls == [pending_credential.tax_id]

        entry = _last_history(db_session, pending_credential.id)
        assert entry.operation == "COMPLIANCE_ANALYSIS"
        assert entry.performed_by == brand_user.id

    def test_written_off_company_is_rejected_without_review(self, db_session, brand_user):
        credential = CredentialService(db_session).create(credential_input(), brand_user).value
        credential.status = CredentialStatus.PENDING_COMPLIANCE
        db_session.commit()
        _add_snapshot(db_session, credential.id, status="BAIXADA")

        service = ComplianceService(db_session, StubAggregator(credit=credit_result(score=900)))
        outcome = service.analyze_compliance(credential.id, brand_user).value

        assert outcome["recommendation"].action == RecommendationAction.REJECT
        assert outcome["recommendation"].requires_manual_review is False
        assert "inactive" in outcome["recommendation"].reason
        assert outcome["next_step"] == "REVIEW_AND_FIX"
        assert outcome["scores"].overall_score <= 20
        db_session.refresh(credential)
        assert credential.status == CredentialStatus.COMPLIANCE_REJECTED

    def test_high_risk_waits_for_review(self, db_session, brand_user, pending_credential):
        _review_case(db_session, brand_user, pending_credential)

        db_session.refresh(pending_credential)
        assert pending_credential.status == CredentialStatus.PENDING_COMPLIANCE
        analysis = db_session.query(ComplianceAnalysisDB).one()
        assert analysis.manual_review_status == ManualReviewStatus.PENDING
        assert analysis.recommendation == RecommendationAction.MANUAL_REVIEW

    def test_unavailable_credit_goes_to_review(self, db_session, brand_user, pending_credential):
        from credentialing.models.verification import CreditAnalysisResult

        unavailable = CreditAnalysisResult(
            score=None, risk_level=None, has_negatives=False, source="UNAVAILABLE", error="down",
        )
        service = ComplianceService(db_session, StubAggregator(credit=unavailable))

        outcome = service.analyze_compliance(pending_credential.id, brand_user).value

        assert outcome["next_step"] == "MANUAL_REVIEW"
        assert outcome["analysis"].credit_source == "UNAVAILABLE"

    def test_system_actor_when_no_user(self, db_session, pending_credential):
        service = ComplianceService(db_session, StubAggregator())

        assert service.analyze_compliance(pending_credential.id).is_ok
        assert _last_history(db_session, pending_credential.id).performed_by == "SYSTEM"

    def test_wrong_status_is_invalid_state(self, db_session, brand_user):
        credential = CredentialService(db_session).create(credential_input(), brand_user).value
        aggregator = StubAggregator()

        result = ComplianceService(db_session, aggregator).analyze_compliance(credential.id, brand_user)

        assert result.error.kind == ErrorKind.INVALID_STATE
        assert aggregator.credit_calls == []
        assert db_session.query(ComplianceAnalysisDB).count() == 0

    def test_other_brand_is_forbidden(self, db_session, other_brand_user, pending_credential):
        result = ComplianceService(db_session, StubAggregator()).analyze_compliance(
            pending_credential.id, other_brand_user,
        )
        assert result.error.kind == ErrorKind.FORBIDDEN

    def test_uses_newest_valid_snapshot(self, db_session, brand_user, pending_credential):
        # Newer, but superseded by a tax ID change
        _add_snapshot(
            db_session, pending_credential.id, status="BAIXADA", is_valid=False,
            created_at=datetime.utcnow() + timedelta(minutes=5),
        )

        outcome = ComplianceService(db_session, StubAggregator()).analyze_compliance(
            pending_credential.id, brand_user,
        ).value

        assert outcome["flags"].has_active_registry is True

    def test_reanalysis_overwrites_and_clears_review(self, db_session, brand_user):
        credential = CredentialService(db_session).create(credential_input(), brand_user).value
        credential.status = CredentialStatus.PENDING_COMPLIANCE
        db_session.commit()
        _add_snapshot(db_session, credential.id, status="BAIXADA")

        service = ComplianceService(db_session, StubAggregator())
        service.analyze_compliance(credential.id, brand_user)
        db_session.refresh(credential)
        assert credential.status == CredentialStatus.COMPLIANCE_REJECTED

        # Registry reports the company active again
        _add_snapshot(
            db_session, credential.id, status="ATIVA", created_at=datetime.utcnow() + timedelta(minutes=5),
        )
        outcome = service.analyze_compliance(credential.id, brand_user).value

        assert db_session.query(ComplianceAnalysisDB).count() == 1
        assert outcome["recommendation"].action == RecommendationAction.APPROVE
        assert outcome["analysis"].reviewed_by_id is None
        db_session.refresh(credential)
        assert credential.status == CredentialStatus.INVITATION_PENDING


# =============================================================================
# MANUAL REVIEW
# =============================================================================

class TestManualReview:

    def test_approve_pending_review(self, db_session, brand_user, pending_credential):
        service = _review_case(db_session, brand_user, pending_credential)

        result = service.approve_compliance(pending_credential.id, "Guarantees provided", brand_user)

        assert result.is_ok
        assert result.value["next_step"] == "SEND_INVITATION"
        analysis = result.value["analysis"]
        assert analysis.manual_review_status == ManualReviewStatus.APPROVED
        assert analysis.recommendation == RecommendationAction.APPROVE
        assert analysis.reviewed_by_id == brand_user.id
        assert analysis.reviewed_at is not None
        assert analysis.recommendation_reason == f"Approved manually by {brand_user.id}: Guarantees provided"

        db_session.refresh(pending_credential)
        assert pending_credential.status == CredentialStatus.COMPLIANCE_APPROVED
        entry = _last_history(db_session, pending_credential.id)
        assert entry.reason == "Compliance approved manually: Guarantees provided"

    def test_reject_pending_review(self, db_session, brand_user, pending_credential):
        service = _review_case(db_session, brand_user, pending_credential)

        result = service.reject_compliance(
            pending_credential.id, "Missing documents", "Call the supplier", brand_user,
        )

        assert result.is_ok
        assert result.value["next_step"] == "ARCHIVED"
        analysis = result.value["analysis"]
        assert analysis.manual_review_status == ManualReviewStatus.REJECTED
        assert analysis.manual_review_notes == "Missing documents\n\nCall the supplier"
        assert analysis.recommendation == RecommendationAction.REJECT

        db_session.refresh(pending_credential)
        assert pending_credential.status == CredentialStatus.COMPLIANCE_REJECTED
        assert _last_history(db_session, pending_credential.id).reason == "Compliance rejected: Missing documents"

    def test_reject_without_notes(self, db_session, brand_user, pending_credential):
        service = _review_case(db_session, brand_user, pending_credential)

        analysis = service.reject_compliance(pending_credential.id, "Fraud suspicion", "", brand_user).value["analysis"]

        assert analysis.manual_review_notes == "Fraud suspicion"

    def test_approve_auto_decided_analysis_is_invalid_state(self, db_session, brand_user, pending_credential):
        service = ComplianceService(db_session, StubAggregator())
        service.analyze_compliance(pending_credential.id, brand_user)

        result = service.approve_compliance(pending_credential.id, "ok", brand_user)

        assert result.error.kind == ErrorKind.INVALID_STATE
        db_session.refresh(pending_credential)
        assert pending_credential.status == CredentialStatus.INVITATION_PENDING

    def test_approve_without_analysis_is_invalid_state(self, db_session, brand_user, pending_credential):
        result = ComplianceService(db_session, StubAggregator()).approve_compliance(
            pending_credential.id, "ok", brand_user,
        )
        assert result.error.kind == ErrorKind.INVALID_STATE

    def test_second_decision_is_refused(self, db_session, brand_user, pending_credential):
        service = _review_case(db_session, brand_user, pending_credential)
        service.approve_compliance(pending_credential.id, "ok", brand_user)

        result = service.reject_compliance(pending_credential.id, "changed my mind", "", brand_user)

        assert result.error.kind == ErrorKind.INVALID_STATE


# =============================================================================
# QUERIES
# =============================================================================

class TestQueries:

    def test_get_compliance_without_analysis_is_not_found(self, db_session, brand_user, pending_credential):
        result = ComplianceService(db_session, StubAggregator()).get_compliance(pending_credential.id, "brand-1")
        assert result.error.kind == ErrorKind.NOT_FOUND

    def test_get_compliance(self, db_session, brand_user, pending_credential):
        service = ComplianceService(db_session, StubAggregator())
        service.analyze_compliance(pending_credential.id, brand_user)

        analysis = service.get_compliance(pending_credential.id, "brand-1").value

        assert analysis.credential_id == pending_credential.id

    def test_pending_reviews_most_severe_then_oldest(self, db_session, brand_user, other_brand_user):
        lifecycle = CredentialService(db_session)
        cnpjs = ["11222333000181", "11444777000161", "00000000000191"]
        credentials = [lifecycle.create(credential_input(tax_id=c), brand_user).value for c in cnpjs]
        foreign = lifecycle.create(credential_input(), other_brand_user).value

        base = datetime(2024, 1, 1)
        rows = [
            (credentials[0], RiskLevel.HIGH, base),
            (credentials[1], RiskLevel.CRITICAL, base + timedelta(days=2)),
            (credentials[2], RiskLevel.HIGH, base - timedelta(days=1)),
            (foreign, RiskLevel.CRITICAL, base - timedelta(days=9)),
        ]
        for credential, level, created_at in rows:
            db_session.add(ComplianceAnalysisDB(
                id=str(uuid4()),
                credential_id=credential.id,
                credit_score=30, tax_score=100, legal_score=70, overall_score=40,
                risk_level=level,
                risk_factors=["x"],
                recommendation=RecommendationAction.MANUAL_REVIEW,
                requires_manual_review=True,
                manual_review_status=ManualReviewStatus.PENDING,
                created_at=created_at,
            ))
        db_session.commit()

        service = ComplianceService(db_session, StubAggregator())
        queue = service.get_pending_reviews("brand-1")

        assert [a.credential_id for a in queue] == [
            credentials[1].id, credentials[2].id, credentials[0].id,
        ]
        assert len(service.get_pending_reviews()) == 4
