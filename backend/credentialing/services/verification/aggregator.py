"""
Verification Aggregator

Resolves unreliable external facts for a tax ID:
- is it a real, registered company (validate_registry)
- what is its credit risk (analyze_credit)
- does it face lawsuits (analyze_legal_issues)
- is it listed in federal sanction registers (analyze_restrictions)

Registry flow:
    available providers by priority -> first result with data wins,
    "not found" is definitive, any other error falls through to the next one.

Credit / legal / restrictions flow:
    TTL cache (30 / 7 / 1 days) -> available providers in order
    (credit: preferred provider first) -> first answer without error is cached
    -> otherwise a fallback result that is never cached.
    Credit falls back to UNAVAILABLE (or simulated when configured);
    legal and restrictions fall back to FALLBACK with `error` set.
"""
import logging
import random
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

from ...config import Settings, get_settings
from ...models.verification import (
    CreditAnalysisResult, LegalAnalysisResult, NotificationChannel, NotificationPayload,
    NotificationResult, RegistryValidationResult, RestrictionsAnalysisResult,
)
from ...models.db_models import RiskLevel
from ..taxid import mask_email, mask_phone, mask_tax_id, require_tax_id
from .cache import InMemoryTTLCache, SingleFlight, TTLCache
from .providers.credit import (
    CreditProvider, MockCreditProvider, SerasaCreditProvider, SPCCreditProvider,
    bureau_recommendations,
)
from .providers.legal import DatajudLegalProvider, LegalProvider, MockLegalProvider
from .providers.notification import NotificationProvider, SendGridProvider, TwilioWhatsAppProvider
from .providers.registry import BrasilApiProvider, ReceitaWsProvider, RegistryProvider
from .providers.restrictions import (
    MockRestrictionsProvider, PortalTransparenciaProvider, RestrictionsProvider,
)

logger = logging.getLogger(__name__)

CACHED_SUFFIX = "_CACHED"
FALLBACK = "FALLBACK"
FALLBACK_SIMULATED = "FALLBACK_SIMULATED"
UNAVAILABLE = "UNAVAILABLE"

FALLBACK_MODES = ("unavailable", "simulated")


def simulated_risk_level(score: int) -> RiskLevel:
    """Tiering used only by the simulated fallback."""
    if score >= 700:
        return RiskLevel.LOW
    if score >= 550:
        return RiskLevel.MEDIUM
    if score >= 400:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


class VerificationAggregator:
    """
    Leaf component: no dependency on credentials or compliance.

    Providers are plain objects satisfying the RegistryProvider /
    CreditProvider / LegalProvider / RestrictionsProvider /
    NotificationProvider protocols.
    """

    def __init__(
        self,
        registry_providers: Sequence[RegistryProvider] = (),
        credit_providers: Sequence[CreditProvider] = (),
        email_provider: Optional[NotificationProvider] = None,
        whatsapp_provider: Optional[NotificationProvider] = None,
        cache: Optional[TTLCache] = None,
        preferred_credit_provider: Optional[str] = None,
        credit_cache_ttl: timedelta = timedelta(days=30),
        fallback_mode: str = "unavailable",
        rng: Optional[random.Random] = None,
        legal_providers: Sequence[LegalProvider] = (),
        restrictions_providers: Sequence[RestrictionsProvider] = (),
        legal_cache_ttl: timedelta = timedelta(days=7),
        restrictions_cache_ttl: timedelta = timedelta(days=1),
    ):
        if fallback_mode not in FALLBACK_MODES:
            raise ValueError(f"Unknown credit fallback mode: {fallback_mode}")

        self.registry_providers = sorted(registry_providers, key=lambda p: p.priority)
        self.credit_providers = list(credit_providers)
        self.legal_providers = list(legal_providers)
        self.restrictions_providers = list(restrictions_providers)
        self.email_provider = email_provider
        self.whatsapp_provider = whatsapp_provider
        self.cache = cache if cache is not None else InMemoryTTLCache()
        self.preferred_credit_provider = preferred_credit_provider
        self.credit_cache_ttl = credit_cache_ttl
        self.legal_cache_ttl = legal_cache_ttl
        self.restrictions_cache_ttl = restrictions_cache_ttl
        self.fallback_mode = fallback_mode
        self.rng = rng or random.Random()
        self._single_flight = SingleFlight()

    # =========================================================================
    # REGISTRY
    # =========================================================================

    def validate_registry(self, tax_id: str) -> RegistryValidationResult:
        """
        Look the company up in the registry.

        Raises InvalidTaxIdError for input that is not 14 digits. Upstream
        trouble never raises; it is reported through `error`.
        """
        clean = require_tax_id(tax_id)

        available = []
        for provider in self.registry_providers:
            if provider.is_available():
                available.append(provider)
                logger.debug(f"Registry provider {provider.name} available (priority {provider.priority})")
            else:
                logger.debug(f"Registry provider {provider.name} unavailable, skipping")

        if not available:
            logger.error("No registry provider available")
            return RegistryValidationResult(
                is_valid=False,
                source="NONE",
                error="No registry validation service available. Try again later.",
            )

        for provider in available:
            try:
                logger.info(f"Validating {mask_tax_id(clean)} via {provider.name}")
                result = provider.validate(clean)
            except Exception as e:
                logger.error(f"Unexpected error from registry provider {provider.name}: {e}")
                continue

            if result.data is not None:
                logger.info(f"{mask_tax_id(clean)} found via {provider.name} - status {result.data.status}")
                return result

            if result.not_found or "not found" in (result.error or "").lower():
                logger.warning(f"{mask_tax_id(clean)} not found in the registry ({provider.name})")
                return result

            logger.warning(f"Registry provider {provider.name} returned error: {result.error}")

        logger.error(f"Every registry provider failed for {mask_tax_id(clean)}")
        return RegistryValidationResult(
            is_valid=False,
            source="FALLBACK",
            error="Could not validate the CNPJ. Every registry service returned an error. Try again later.",
        )

    # =========================================================================
    # CREDIT
    # =========================================================================

    @staticmethod
    def credit_cache_key(tax_id: str) -> str:
        return f"credit_analysis:{tax_id}"

    def analyze_credit(self, tax_id: str, force_refresh: bool = False) -> CreditAnalysisResult:
        """
        Credit result for a tax ID. Never raises for provider trouble.

        A cache hit is returned with its source suffixed _CACHED. Concurrent
        misses for the same tax ID share one upstream call.
        """
        clean = require_tax_id(tax_id)
        key = self.credit_cache_key(clean)
        return self._cached_lookup("Credit", clean, key, force_refresh, lambda: self._fetch_credit(clean, key))

    def ordered_credit_providers(self) -> List[CreditProvider]:
        """Configured order, with the preferred provider (case-insensitive) moved to the front."""
        providers = list(self.credit_providers)
        if not self.preferred_credit_provider:
            return providers

        preferred = self.preferred_credit_provider.lower()
        for index, provider in enumerate(providers):
            if provider.name.lower() == preferred:
                if index > 0:
                    providers.insert(0, providers.pop(index))
                break
        return providers

    def _cached_lookup(self, label: str, tax_id: str, key: str, force_refresh: bool, fetch: Callable[[], Any]):
        if not force_refresh:
            cached = self._from_cache(key)
            if cached is not None:
                logger.info(f"{label} analysis for {mask_tax_id(tax_id)} served from cache")
                return cached

        def lead():
            # A leader that finished between our miss and this call has filled the cache
            if not force_refresh:
                cached = self._from_cache(key)
                if cached is not None:
                    logger.info(f"{label} analysis for {mask_tax_id(tax_id)} served from cache")
                    return cached
            return fetch()

        return self._single_flight.do(key, lead)

    def _from_cache(self, key: str):
        cached = self.cache.get(key)
        if cached is None:
            return None
        return cached.with_source(f"{cached.source}{CACHED_SUFFIX}")

    def _first_answer(self, label: str, providers: Sequence[Any], tax_id: str, key: str, ttl: timedelta):
        """First error-free provider answer, cached under key; None when every provider fails."""
        for provider in providers:
            if not provider.is_available():
                logger.debug(f"{label} provider {provider.name} not available")
                continue

            logger.info(f"{label} analysis for {mask_tax_id(tax_id)} via {provider.name}")
            try:
                result = provider.analyze(tax_id)
            except Exception as e:
                logger.error(f"Error from {label.lower()} provider {provider.name}: {e}")
                continue

            if not result.error:
                self.cache.set(key, result, ttl)
                logger.debug(f"Cached {label.lower()} analysis for {mask_tax_id(tax_id)} for {ttl}")
                return result

            logger.warning(f"{label} provider {provider.name} returned error: {result.error}")

        return None

    def _fetch_credit(self, tax_id: str, key: str) -> CreditAnalysisResult:
        result = self._first_answer("Credit", self.ordered_credit_providers(), tax_id, key, self.credit_cache_ttl)
        if result is not None:
            return result

        logger.warning(
            f"All credit providers failed for {mask_tax_id(tax_id)}; fallback mode {self.fallback_mode}"
        )
        if self.fallback_mode == "simulated":
            return self._simulated_credit_result()
        return CreditAnalysisResult(
            score=None,
            risk_level=None,
            has_negatives=False,
            source=UNAVAILABLE,
            error="No credit provider could answer. Credit data unavailable.",
        )

    def _simulated_credit_result(self) -> CreditAnalysisResult:
        score = self.rng.randint(300, 900)
        risk_level = simulated_risk_level(score)
        has_negatives = score < 500 or self.rng.random() < 0.2
        return CreditAnalysisResult(
            score=score,
            risk_level=risk_level,
            has_negatives=has_negatives,
            source=FALLBACK_SIMULATED,
            recommendations=bureau_recommendations(risk_level, has_negatives),
            raw_response={
                "_simulated": True,
                "_message": "Simulated data. No credit provider available.",
            },
        )

    # =========================================================================
    # LEGAL ISSUES
    # =========================================================================

    @staticmethod
    def legal_cache_key(tax_id: str) -> str:
        return f"legal_analysis:{tax_id}"

    def analyze_legal_issues(self, tax_id: str, force_refresh: bool = False) -> LegalAnalysisResult:
        """Lawsuits naming the company. Cached 7 days; never raises for provider trouble."""
        clean = require_tax_id(tax_id)
        key = self.legal_cache_key(clean)
        return self._cached_lookup("Legal", clean, key, force_refresh, lambda: self._fetch_legal(clean, key))

    def _fetch_legal(self, tax_id: str, key: str) -> LegalAnalysisResult:
        result = self._first_answer("Legal", self.legal_providers, tax_id, key, self.legal_cache_ttl)
        if result is not None:
            return result

        logger.warning(f"All legal providers failed for {mask_tax_id(tax_id)}")
        return LegalAnalysisResult(
            has_legal_issues=False,
            active_lawsuits_count=0,
            risk_level=RiskLevel.LOW,
            source=FALLBACK,
            recommendations=["Could not check lawsuits"],
            error="All legal providers failed",
        )

    # =========================================================================
    # RESTRICTIONS
    # =========================================================================

    @staticmethod
    def restrictions_cache_key(tax_id: str) -> str:
        return f"restrictions_analysis:{tax_id}"

    def analyze_restrictions(self, tax_id: str, force_refresh: bool = False) -> RestrictionsAnalysisResult:
        """Federal sanction-register entries. Cached 1 day; never raises for provider trouble."""
        clean = require_tax_id(tax_id)
        key = self.restrictions_cache_key(clean)
        return self._cached_lookup(
            "Restrictions", clean, key, force_refresh, lambda: self._fetch_restrictions(clean, key),
        )

    def _fetch_restrictions(self, tax_id: str, key: str) -> RestrictionsAnalysisResult:
        result = self._first_answer(
            "Restrictions", self.restrictions_providers, tax_id, key, self.restrictions_cache_ttl,
        )
        if result is not None:
            return result

        logger.warning(f"All restrictions providers failed for {mask_tax_id(tax_id)}")
        return RestrictionsAnalysisResult(
            has_restrictions=False,
            total_restrictions=0,
            risk_level=RiskLevel.LOW,
            source=FALLBACK,
            recommendations=["Could not check sanction registers"],
            error="All restrictions providers failed",
        )

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    def send_email(self, payload: NotificationPayload) -> NotificationResult:
        provider = self.email_provider
        if provider is None or not provider.is_available():
            logger.error("Email provider not configured")
            return NotificationResult(
                success=False,
                provider="SENDGRID",
                channel=NotificationChannel.EMAIL,
                error="Email service not configured. Set SENDGRID_API_KEY.",
            )

        logger.info(f"Sending email to {mask_email(payload.to)}")
        return provider.send(payload)

    def send_whatsapp(self, payload: NotificationPayload) -> NotificationResult:
        provider = self.whatsapp_provider
        if provider is None or not provider.is_available():
            logger.error("WhatsApp provider not configured")
            return NotificationResult(
                success=False,
                provider="TWILIO_WHATSAPP",
                channel=NotificationChannel.WHATSAPP,
                error=(
                    "WhatsApp service not configured. Set TWILIO_ACCOUNT_SID, "
                    "TWILIO_AUTH_TOKEN and TWILIO_WHATSAPP_FROM."
                ),
            )

        logger.info(f"Sending WhatsApp to {mask_phone(payload.to)}")
        return provider.send(payload)

    def send_notification(self, channel, payload: NotificationPayload) -> NotificationResult:
        """Route by channel. Accepts the enum or its string value."""
        try:
            channel = NotificationChannel(channel)
        except ValueError:
            logger.error(f"Unsupported notification channel: {channel}")
            return NotificationResult(
                success=False,
                provider="NONE",
                channel=NotificationChannel.EMAIL,
                error=f"Unsupported notification channel: {channel}",
            )

        if channel == NotificationChannel.EMAIL:
            return self.send_email(payload)
        return self.send_whatsapp(payload)

    # =========================================================================
    # STATUS
    # =========================================================================

    def get_providers_status(self) -> List[Dict[str, Any]]:
        status = []
        for provider in self.registry_providers:
            status.append({"name": provider.name, "type": "REGISTRY", "available": provider.is_available()})
        for provider in self.credit_providers:
            status.append({"name": provider.name, "type": "CREDIT", "available": provider.is_available()})
        for provider in self.legal_providers:
            status.append({"name": provider.name, "type": "LEGAL", "available": provider.is_available()})
        for provider in self.restrictions_providers:
            status.append({"name": provider.name, "type": "RESTRICTIONS", "available": provider.is_available()})
        for provider in (self.email_provider, self.whatsapp_provider):
            if provider is not None:
                status.append({
                    "name": provider.name,
                    "type": provider.channel.value,
                    "available": provider.is_available(),
                })
        return status


def build_default_aggregator(settings: Optional[Settings] = None) -> VerificationAggregator:
    """
    Wire every provider from settings.

    Credit order: SERASA, SPC, MOCK. Legal: DATAJUD, MOCK.
    Restrictions: PORTAL_TRANSPARENCIA, MOCK.
    """
    settings = settings or get_settings()
    timeout = settings.provider_timeout_seconds

    return VerificationAggregator(
        registry_providers=[
            BrasilApiProvider(settings.brasilapi_url, settings.brasilapi_enabled, timeout),
            ReceitaWsProvider(
                settings.receitaws_url, settings.receitaws_token, settings.receitaws_enabled, timeout,
            ),
        ],
        credit_providers=[
            SerasaCreditProvider(
                settings.serasa_api_url, settings.serasa_client_id, settings.serasa_client_secret, timeout,
            ),
            SPCCreditProvider(settings.spc_api_url, settings.spc_username, settings.spc_password, timeout),
            MockCreditProvider(settings.mock_credit_enabled),
        ],
        legal_providers=[
            DatajudLegalProvider(settings.datajud_api_key, settings.datajud_api_url),
            MockLegalProvider(settings.mock_legal_enabled),
        ],
        restrictions_providers=[
            PortalTransparenciaProvider(
                settings.portal_transparencia_api_key, settings.portal_transparencia_api_url, timeout,
            ),
            MockRestrictionsProvider(settings.mock_restrictions_enabled),
        ],
        email_provider=SendGridProvider(
            settings.sendgrid_api_key, settings.sendgrid_from_email, settings.sendgrid_from_name, timeout,
        ),
        whatsapp_provider=TwilioWhatsAppProvider(
            settings.twilio_account_sid, settings.twilio_auth_token, settings.twilio_whatsapp_from, timeout,
        ),
        preferred_credit_provider=settings.credit_provider,
        credit_cache_ttl=timedelta(days=settings.credit_cache_ttl_days),
        fallback_mode=settings.credit_fallback_mode,
        legal_cache_ttl=timedelta(days=settings.legal_cache_ttl_days),
        restrictions_cache_ttl=timedelta(days=settings.restrictions_cache_ttl_days),
    )


_default_aggregator: Optional[VerificationAggregator] = None


def get_aggregator() -> VerificationAggregator:
    """Process-wide aggregator (one cache per process). FastAPI dependency."""
    global _default_aggregator
    if _default_aggregator is None:
        _default_aggregator = build_default_aggregator()
    return _default_aggregator
