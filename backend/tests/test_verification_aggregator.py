"""
Tests for VerificationAggregator: registry fallback, credit cache and
fallback modes, notification routing.
"""
import random
import threading
from datetime import timedelta

import pytest

from credentialing.models.db_models import RiskLevel
from credentialing.models.verification import (
    LegalAnalysisResult, NotificationChannel, NotificationPayload, NotificationResult,
    RegistryValidationResult, RestrictionsAnalysisResult,
)
from credentialing.services.taxid import InvalidTaxIdError
from credentialing.services.verification import VerificationAggregator
from credentialing.services.verification.aggregator import (
    CACHED_SUFFIX, FALLBACK, FALLBACK_SIMULATED, UNAVAILABLE,
)
from credentialing.services.verification.cache import InMemoryTTLCache

from factories import VALID_CNPJ, credit_result, registry_result


class FakeRegistryProvider:
    def __init__(self, name, priority, result=None, available=True, raises=None):
        self.name = name
        self.priority = priority
        self.result = result
        self.available = available
        self.raises = raises
        self.calls = []

    def is_available(self):
        return self.available

    def validate(self, tax_id):
        self.calls.append(tax_id)
        if self.raises:
            raise self.raises
        return self.result


class FakeCreditProvider:
    def __init__(self, name, result=None, available=True, gate=None):
        self.name = name
        self.result = result if result is not None else credit_result(source=name)
        self.available = available
        self.gate = gate
        self.calls = []

    def is_available(self):
        return self.available

    def analyze(self, tax_id):
        self.calls.append(tax_id)
        if self.gate:
            self.gate.wait(timeout=5)
        return self.result


class FakeNotifier:
    def __init__(self, name, channel, available=True):
        self.name = name
        self.channel = channel
        self.available = available
        self.sent = []

    def is_available(self):
        return self.available

    def send(self, payload):
        self.sent.append(payload)
        return NotificationResult(success=True, provider=self.name, channel=self.channel, message_id="m-1")


def failing_credit(name):
    return FakeCreditProvider(name, result=credit_result(score=0, source=name, error="HTTP 500"))


class FakeAnalyzer:
    """Legal or restrictions provider returning a canned result."""

    def __init__(self, name, result, available=True):
        self.name = name
        self.result = result
        self.available = available
        self.calls = []

    def is_available(self):
        return self.available

    def analyze(self, tax_id):
        self.calls.append(tax_id)
        return self.result


def legal_result(source, error=None, lawsuits=0):
    return LegalAnalysisResult(
        has_legal_issues=lawsuits > 0,
        active_lawsuits_count=lawsuits,
        risk_level=RiskLevel.MEDIUM if lawsuits else RiskLevel.LOW,
        source=source,
        error=error,
    )


def restrictions_result(source, error=None, restrictions=0):
    return RestrictionsAnalysisResult(
        has_restrictions=restrictions > 0,
        total_restrictions=restrictions,
        risk_level=RiskLevel.HIGH if restrictions else RiskLevel.LOW,
        source=source,
        error=error,
    )


class RacingCache(InMemoryTTLCache):
    """The first read misses, and another caller stores the value right after it."""

    def __init__(self, value):
        super().__init__()
        self.value = value
        self.reads = 0

    def get(self, key):
        self.reads += 1
        if self.reads == 1:
            super().set(key, self.value, timedelta(days=30))
            return None
        return super().get(key)


# =============================================================================
# REGISTRY
# =============================================================================

class TestValidateRegistry:

    def test_first_provider_with_data_wins(self):
        first = FakeRegistryProvider("BRASIL_API", 1, registry_result())
        second = FakeRegistryProvider("RECEITAWS", 2, registry_result(source="RECEITAWS"))
        aggregator = VerificationAggregator(registry_providers=[second, first])

        result = aggregator.validate_registry("11.222.333/0001-81")

        assert result.source == "BRASIL_API"
        assert first.calls == [VALID_CNPJ]
        assert second.calls == []

    def test_error_falls_through_to_next_provider(self):
        first = FakeRegistryProvider(
            "BRASIL_API", 1, RegistryValidationResult(is_valid=False, source="BRASIL_API", error="timeout"),
        )
        second = FakeRegistryProvider("RECEITAWS", 2, registry_result(source="RECEITAWS"))

        result = VerificationAggregator(registry_providers=[first, second]).validate_registry(VALID_CNPJ)

        assert result.source == "RECEITAWS"

    def test_exception_falls_through_to_next_provider(self):
        first = FakeRegistryProvider("BRASIL_API", 1, raises=RuntimeError("boom"))
        second = FakeRegistryProvider("RECEITAWS", 2, registry_result(source="RECEITAWS"))

        result = VerificationAggregator(registry_providers=[first, second]).validate_registry(VALID_CNPJ)

        assert result.data is not None

    def test_not_found_is_definitive(self):
        first = FakeRegistryProvider(
            "BRASIL_API", 1,
            RegistryValidationResult(is_valid=False, source="BRASIL_API", error="CNPJ not found", not_found=True),
        )
        second = FakeRegistryProvider("RECEITAWS", 2, registry_result(source="RECEITAWS"))

        result = VerificationAggregator(registry_providers=[first, second]).validate_registry(VALID_CNPJ)

        assert result.not_found is True
        assert second.calls == []

    def test_unavailable_providers_are_skipped(self):
        first = FakeRegistryProvider("BRASIL_API", 1, registry_result(), available=False)
        second = FakeRegistryProvider("RECEITAWS", 2, registry_result(source="RECEITAWS"))

        result = VerificationAggregator(registry_providers=[first, second]).validate_registry(VALID_CNPJ)

        assert result.source == "RECEITAWS"
        assert first.calls == []

    def test_no_provider_available(self):
        result = VerificationAggregator(registry_providers=[]).validate_registry(VALID_CNPJ)

        assert result.source == "NONE"
        assert result.is_valid is False
        assert result.error

    def test_every_provider_fails(self):
        failing = RegistryValidationResult(is_valid=False, source="X", error="HTTP 503")
        providers = [
            FakeRegistryProvider("BRASIL_API", 1, failing),
            FakeRegistryProvider("RECEITAWS", 2, failing),
        ]

        result = VerificationAggregator(registry_providers=providers).validate_registry(VALID_CNPJ)

        assert result.source == "FALLBACK"
        assert result.data is None

    def test_malformed_tax_id_raises(self):
        provider = FakeRegistryProvider("BRASIL_API", 1, registry_result())
        aggregator = VerificationAggregator(registry_providers=[provider])

        with pytest.raises(InvalidTaxIdError):
            aggregator.validate_registry("1234")
        assert provider.calls == []


# =============================================================================
# CREDIT
# =============================================================================

class TestAnalyzeCredit:

    def test_cache_hit_is_marked_and_skips_provider(self):
        provider = FakeCreditProvider("SERASA")
        aggregator = VerificationAggregator(credit_providers=[provider])

        first = aggregator.analyze_credit(VALID_CNPJ)
        second = aggregator.analyze_credit("11.222.333/0001-81")

        assert first.source == "SERASA"
        assert second.source == f"SERASA{CACHED_SUFFIX}"
        assert second.score == first.score
        assert len(provider.calls) == 1

    def test_cached_entry_keeps_original_source(self):
        cache = InMemoryTTLCache()
        aggregator = VerificationAggregator(credit_providers=[FakeCreditProvider("SPC")], cache=cache)

        aggregator.analyze_credit(VALID_CNPJ)
        aggregator.analyze_credit(VALID_CNPJ)
        third = aggregator.analyze_credit(VALID_CNPJ)

        assert third.source == "SPC_CACHED"
        assert cache.get(aggregator.credit_cache_key(VALID_CNPJ)).source == "SPC"

    def test_force_refresh_bypasses_cache(self):
        provider = FakeCreditProvider("SERASA")
        aggregator = VerificationAggregator(credit_providers=[provider])

        aggregator.analyze_credit(VALID_CNPJ)
        refreshed = aggregator.analyze_credit(VALID_CNPJ, force_refresh=True)

        assert refreshed.source == "SERASA"
        assert len(provider.calls) == 2

    def test_expired_entry_is_refetched(self):
        now = [0.0]
        cache = InMemoryTTLCache(clock=lambda: now[0])
        provider = FakeCreditProvider("SERASA")
        aggregator = VerificationAggregator(
            credit_providers=[provider], cache=cache, credit_cache_ttl=timedelta(days=30),
        )

        aggregator.analyze_credit(VALID_CNPJ)
        now[0] += timedelta(days=31).total_seconds()
        result = aggregator.analyze_credit(VALID_CNPJ)

        assert result.source == "SERASA"
        assert len(provider.calls) == 2

    def test_preferred_provider_goes_first(self):
        serasa = FakeCreditProvider("SERASA")
        spc = FakeCreditProvider("SPC")
        aggregator = VerificationAggregator(credit_providers=[serasa, spc], preferred_credit_provider="spc")

        result = aggregator.analyze_credit(VALID_CNPJ)

        assert result.source == "SPC"
        assert serasa.calls == []
        assert [p.name for p in aggregator.ordered_credit_providers()] == ["SPC", "SERASA"]

    def test_unknown_preference_keeps_configured_order(self):
        providers = [FakeCreditProvider("SERASA"), FakeCreditProvider("MOCK")]
        aggregator = VerificationAggregator(credit_providers=providers, preferred_credit_provider="quod")

        assert [p.name for p in aggregator.ordered_credit_providers()] == ["SERASA", "MOCK"]

    def test_provider_error_falls_through(self):
        spc = FakeCreditProvider("SPC")
        aggregator = VerificationAggregator(credit_providers=[failing_credit("SERASA"), spc])

        assert aggregator.analyze_credit(VALID_CNPJ).source == "SPC"

    def test_unavailable_mode_returns_explicit_no_data(self):
        aggregator = VerificationAggregator(credit_providers=[failing_credit("SERASA")])

        result = aggregator.analyze_credit(VALID_CNPJ)

        assert result.source == UNAVAILABLE
        assert result.score is None
        assert result.is_unavailable is True

    def test_fallback_results_are_not_cached(self):
        provider = failing_credit("SERASA")
        cache = InMemoryTTLCache()
        aggregator = VerificationAggregator(credit_providers=[provider], cache=cache)

        aggregator.analyze_credit(VALID_CNPJ)
        aggregator.analyze_credit(VALID_CNPJ)

        assert len(provider.calls) == 2
        assert len(cache) == 0

    def test_simulated_mode(self):
        aggregator = VerificationAggregator(
            credit_providers=[], fallback_mode="simulated", rng=random.Random(7),
        )

        result = aggregator.analyze_credit(VALID_CNPJ)

        assert result.source == FALLBACK_SIMULATED
        assert 300 <= result.score <= 900
        assert result.raw_response["_simulated"] is True
        assert result.recommendations
        if result.score < 500:
            assert result.has_negatives is True
        # Not cached either
        assert aggregator.analyze_credit(VALID_CNPJ).source == FALLBACK_SIMULATED

    def test_unknown_fallback_mode_is_rejected(self):
        with pytest.raises(ValueError):
            VerificationAggregator(fallback_mode="random")

    def test_concurrent_misses_share_one_call(self):
        gate = threading.Event()
        provider = FakeCreditProvider("SERASA", gate=gate)
        aggregator = VerificationAggregator(credit_providers=[provider])
        results = []

        threads = [
            threading.Thread(target=lambda: results.append(aggregator.analyze_credit(VALID_CNPJ)))
            for _ in range(5)
        ]
        for t in threads:
            t.start()
        # Let every thread reach the cache miss before the upstream call returns
        threading.Event().wait(0.2)
        gate.set()
        for t in threads:
            t.join(timeout=5)

        assert len(results) == 5
        assert len(provider.calls) == 1

    def test_leader_rechecks_cache_filled_after_the_miss(self):
        provider = FakeCreditProvider("SERASA")
        cache = RacingCache(credit_result(source="SPC"))
        aggregator = VerificationAggregator(credit_providers=[provider], cache=cache)

        result = aggregator.analyze_credit(VALID_CNPJ)

        assert result.source == f"SPC{CACHED_SUFFIX}"
        assert provider.calls == []


# =============================================================================
# LEGAL ISSUES / RESTRICTIONS
# =============================================================================

class TestAnalyzeLegalIssues:

    def test_first_available_answer_is_cached_for_seven_days(self):
        now = [0.0]
        cache = InMemoryTTLCache(clock=lambda: now[0])
        datajud = FakeAnalyzer("DATAJUD_CNJ", legal_result("DATAJUD_CNJ", lawsuits=2))
        aggregator = VerificationAggregator(legal_providers=[datajud], cache=cache)

        first = aggregator.analyze_legal_issues(VALID_CNPJ)
        now[0] += timedelta(days=6).total_seconds()
        second = aggregator.analyze_legal_issues(VALID_CNPJ)
        now[0] += timedelta(days=2).total_seconds()
        third = aggregator.analyze_legal_issues(VALID_CNPJ)

        assert first.source == "DATAJUD_CNJ"
        assert first.active_lawsuits_count == 2
        assert second.source == f"DATAJUD_CNJ{CACHED_SUFFIX}"
        assert third.source == "DATAJUD_CNJ"
        assert len(datajud.calls) == 2

    def test_unavailable_and_failing_providers_fall_through(self):
        datajud = FakeAnalyzer("DATAJUD_CNJ", legal_result("DATAJUD_CNJ"), available=False)
        broken = FakeAnalyzer("OTHER", legal_result("OTHER", error="HTTP 503"))
        mock = FakeAnalyzer("MOCK_LEGAL", legal_result("MOCK_LEGAL"))
        aggregator = VerificationAggregator(legal_providers=[datajud, broken, mock])

        result = aggregator.analyze_legal_issues(VALID_CNPJ)

        assert result.source == "MOCK_LEGAL"
        assert datajud.calls == []
        assert len(broken.calls) == 1

    def test_fallback_is_flagged_and_not_cached(self):
        broken = FakeAnalyzer("DATAJUD_CNJ", legal_result("DATAJUD_CNJ", error="timeout"))
        cache = InMemoryTTLCache()
        aggregator = VerificationAggregator(legal_providers=[broken], cache=cache)

        result = aggregator.analyze_legal_issues(VALID_CNPJ)
        aggregator.analyze_legal_issues(VALID_CNPJ)

        assert result.source == FALLBACK
        assert result.error
        assert result.has_legal_issues is False
        assert len(broken.calls) == 2
        assert len(cache) == 0

    def test_force_refresh(self):
        mock = FakeAnalyzer("MOCK_LEGAL", legal_result("MOCK_LEGAL"))
        aggregator = VerificationAggregator(legal_providers=[mock])

        aggregator.analyze_legal_issues(VALID_CNPJ)
        refreshed = aggregator.analyze_legal_issues(VALID_CNPJ, force_refresh=True)

        assert refreshed.source == "MOCK_LEGAL"
        assert len(mock.calls) == 2

    def test_malformed_tax_id_raises(self):
        with pytest.raises(InvalidTaxIdError):
            VerificationAggregator().analyze_legal_issues("123")


class TestAnalyzeRestrictions:

    def test_cached_for_one_day(self):
        now = [0.0]
        cache = InMemoryTTLCache(clock=lambda: now[0])
        portal = FakeAnalyzer("PORTAL_TRANSPARENCIA", restrictions_result("PORTAL_TRANSPARENCIA", restrictions=1))
        aggregator = VerificationAggregator(restrictions_providers=[portal], cache=cache)

        aggregator.analyze_restrictions(VALID_CNPJ)
        now[0] += timedelta(hours=23).total_seconds()
        cached = aggregator.analyze_restrictions(VALID_CNPJ)
        now[0] += timedelta(hours=2).total_seconds()
        refetched = aggregator.analyze_restrictions(VALID_CNPJ)

        assert cached.source == f"PORTAL_TRANSPARENCIA{CACHED_SUFFIX}"
        assert cached.has_restrictions is True
        assert refetched.source == "PORTAL_TRANSPARENCIA"
        assert len(portal.calls) == 2

    def test_keys_do_not_collide_with_credit_or_legal(self):
        cache = InMemoryTTLCache()
        aggregator = VerificationAggregator(
            credit_providers=[FakeCreditProvider("SERASA")],
            legal_providers=[FakeAnalyzer("MOCK_LEGAL", legal_result("MOCK_LEGAL"))],
            restrictions_providers=[FakeAnalyzer("MOCK_RESTRICTIONS", restrictions_result("MOCK_RESTRICTIONS"))],
            cache=cache,
        )

        aggregator.analyze_credit(VALID_CNPJ)
        aggregator.analyze_legal_issues(VALID_CNPJ)
        restrictions = aggregator.analyze_restrictions(VALID_CNPJ)

        assert restrictions.source == "MOCK_RESTRICTIONS"
        assert len(cache) == 3

    def test_fallback_when_no_provider(self):
        result = VerificationAggregator().analyze_restrictions(VALID_CNPJ)

        assert result.source == FALLBACK
        assert result.total_restrictions == 0
        assert result.error == "All restrictions providers failed"


# =============================================================================
# NOTIFICATIONS / STATUS
# =============================================================================

class TestNotifications:

    PAYLOAD = NotificationPayload(to="maria@example.com", subject="Convite", content="Olá")

    def test_email_not_configured(self):
        result = VerificationAggregator().send_email(self.PAYLOAD)

        assert result.success is False
        assert result.provider == "SENDGRID"
        assert "not configured" in result.error

    def test_whatsapp_not_configured(self):
        email = FakeNotifier("SENDGRID", NotificationChannel.EMAIL)
        whatsapp = FakeNotifier("TWILIO_WHATSAPP", NotificationChannel.WHATSAPP, available=False)
        aggregator = VerificationAggregator(email_provider=email, whatsapp_provider=whatsapp)

        result = aggregator.send_whatsapp(self.PAYLOAD)

        assert result.success is False
        assert result.channel == NotificationChannel.WHATSAPP
        assert whatsapp.sent == []

    def test_routing_by_channel(self):
        email = FakeNotifier("SENDGRID", NotificationChannel.EMAIL)
        whatsapp = FakeNotifier("TWILIO_WHATSAPP", NotificationChannel.WHATSAPP)
        aggregator = VerificationAggregator(email_provider=email, whatsapp_provider=whatsapp)

        assert aggregator.send_notification("EMAIL", self.PAYLOAD).provider == "SENDGRID"
        assert aggregator.send_notification(NotificationChannel.WHATSAPP, self.PAYLOAD).provider == "TWILIO_WHATSAPP"
        assert len(email.sent) == 1
        assert len(whatsapp.sent) == 1

    def test_unknown_channel(self):
        result = VerificationAggregator().send_notification("SMS", self.PAYLOAD)

        assert result.success is False
        assert result.provider == "NONE"


class TestProvidersStatus:

    def test_lists_every_provider(self):
        aggregator = VerificationAggregator(
            registry_providers=[FakeRegistryProvider("BRASIL_API", 1, available=False)],
            credit_providers=[FakeCreditProvider("MOCK")],
            legal_providers=[FakeAnalyzer("DATAJUD_CNJ", legal_result("DATAJUD_CNJ"), available=False)],
            restrictions_providers=[FakeAnalyzer("MOCK_RESTRICTIONS", restrictions_result("MOCK_RESTRICTIONS"))],
            email_provider=FakeNotifier("SENDGRID", NotificationChannel.EMAIL, available=False),
        )

        status = aggregator.get_providers_status()

        assert status == [
            {"name": "BRASIL_API", "type": "REGISTRY", "available": False},
            {"name": "MOCK", "type": "CREDIT", "available": True},
            {"name": "DATAJUD_CNJ", "type": "LEGAL", "available": False},
            {"name": "MOCK_RESTRICTIONS", "type": "RESTRICTIONS", "available": True},
            {"name": "SENDGRID", "type": "EMAIL", "available": False},
        ]
