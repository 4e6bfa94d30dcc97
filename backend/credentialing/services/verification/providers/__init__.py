"""
External provider variants, grouped by family.
"""
from .registry import RegistryProvider, BrasilApiProvider, ReceitaWsProvider, NOT_FOUND_ERROR
from .credit import (
    CreditProvider, SerasaCreditProvider, SPCCreditProvider, MockCreditProvider,
    bureau_recommendations,
)
from .legal import LegalProvider, DatajudLegalProvider, MockLegalProvider
from .restrictions import RestrictionsProvider, PortalTransparenciaProvider, MockRestrictionsProvider
from .notification import NotificationProvider, SendGridProvider, TwilioWhatsAppProvider

__all__ = [
    "RegistryProvider",
    "BrasilApiProvider",
    "ReceitaWsProvider",
    "NOT_FOUND_ERROR",
    "CreditProvider",
    "SerasaCreditProvider",
    "SPCCreditProvider",
    "MockCreditProvider",
    "bureau_recommendations",
    "LegalProvider",
    "DatajudLegalProvider",
    "MockLegalProvider",
    "RestrictionsProvider",
    "PortalTransparenciaProvider",
    "MockRestrictionsProvider",
    "NotificationProvider",
    "SendGridProvider",
    "TwilioWhatsAppProvider",
]
