"""
Restriction providers (federal sanction registers: CEIS, CNEP, CEPIM, CADIN, ...).

Variants:
- PortalTransparenciaProvider  (Portal da Transparência data API, key required)
- MockRestrictionsProvider     (deterministic per tax ID, for development and demos)
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Protocol

import requests
from dateutil import parser as date_parser

from ....models.db_models import RiskLevel
from ....models.verification import (
    Restriction, RestrictionsAnalysisResult, RestrictionStatus, RestrictionType,
)
from ...taxid import mask_tax_id

logger = logging.getLogger(__name__)

# Registers that bar the company from contracting with the public administration
SEVERE_RESTRICTIONS = (RestrictionType.CEIS, RestrictionType.CNEP)


class RestrictionsProvider(Protocol):
    name: str

    def is_available(self) -> bool:
        ...

    def analyze(self, tax_id: str) -> RestrictionsAnalysisResult:
        """tax_id is already normalized to 14 digits"""
        ...


def build_restrictions_result(source: str, restrictions: List[Restriction]) -> RestrictionsAnalysisResult:
    """Summarize register entries. Only ACTIVE entries count toward the risk."""
    active = [r for r in restrictions if r.status == RestrictionStatus.ACTIVE]
    types = {r.type for r in active}

    if not active:
        risk_level = RiskLevel.LOW
        recommendations = [
            "No restriction found in federal registers",
            "Company may contract with public bodies",
        ]
    elif types & set(SEVERE_RESTRICTIONS):
        risk_level = RiskLevel.CRITICAL
        recommendations = [
            "Severe restrictions found",
            "Company is barred from contracting with the federal administration",
            "Commercial partnership not recommended",
        ]
    elif RestrictionType.CADIN in types:
        risk_level = RiskLevel.HIGH
        recommendations = [
            "Company listed in CADIN",
            "Outstanding debts with federal bodies",
            "Request proof of settlement",
        ]
    else:
        risk_level = RiskLevel.HIGH
        recommendations = [
            f"{len(active)} restriction(s) found",
            "Check the situation before proceeding",
            "Request settlement documents",
        ]

    return RestrictionsAnalysisResult(
        has_restrictions=bool(active),
        total_restrictions=len(active),
        risk_level=risk_level,
        source=source,
        restrictions=restrictions,
        recommendations=recommendations,
    )


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        # The data API uses dd/mm/yyyy
        return date_parser.parse(value, dayfirst="/" in value)
    except (ValueError, OverflowError):
        return None


def _sanction_status(ends_at: Optional[datetime], now: datetime) -> RestrictionStatus:
    if ends_at is None or ends_at > now:
        return RestrictionStatus.ACTIVE
    return RestrictionStatus.EXPIRED


# =============================================================================
# PORTAL DA TRANSPARÊNCIA
# =============================================================================

class PortalTransparenciaProvider:
    name = "PORTAL_TRANSPARENCIA"

    def __init__(
        self,
        api_key: Optional[str],
        api_url: str = "https://api.portaldatransparencia.gov.br",
        timeout: int = 30,
    ):
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    def is_available(self) -> bool:
        return bool(self.api_key)

    def analyze(self, tax_id: str) -> RestrictionsAnalysisResult:
        if not self.is_available():
            return RestrictionsAnalysisResult(
                has_restrictions=False,
                total_restrictions=0,
                risk_level=RiskLevel.LOW,
                source=self.name,
                recommendations=["Portal da Transparência not configured"],
                error="Portal da Transparência provider not configured. Set PORTAL_TRANSPARENCIA_API_KEY.",
            )

        logger.info(f"[{self.name}] Checking sanction registers for CNPJ {mask_tax_id(tax_id)}")
        now = datetime.utcnow()
        restrictions = (
            self._query("ceis", tax_id, lambda item: self._sanction(RestrictionType.CEIS, item, now))
            + self._query("cnep", tax_id, lambda item: self._sanction(RestrictionType.CNEP, item, now))
            + self._query("cepim", tax_id, self._cepim)
        )
        return build_restrictions_result(self.name, restrictions)

    def _query(
        self,
        register: str,
        tax_id: str,
        parse: Callable[[Dict[str, Any]], Restriction],
    ) -> List[Restriction]:
        try:
            response = requests.get(
                f"{self.api_url}/api-de-dados/{register}",
                params={"cnpjSancionado": tax_id},
                headers={"chave-api-dados": self.api_key, "Accept": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            items = response.json() or []
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"[{self.name}] {register.upper()} query failed: {e}")
            return []

        return [parse(item) for item in items]

    @staticmethod
    def _sanction(kind: RestrictionType, item: Dict[str, Any], now: datetime) -> Restriction:
        ends_at = _parse_date(item.get("dataFimSancao"))
        if kind == RestrictionType.CEIS:
            description = item.get("textoFundamentacao") or "Company declared unfit or suspended"
        else:
            description = item.get("fundamentacaoLegal") or "Punished for harmful acts against the public administration"
        return Restriction(
            type=kind,
            description=description,
            origin=(item.get("orgaoSancionador") or {}).get("nome") or "Not informed",
            status=_sanction_status(ends_at, now),
            starts_at=_parse_date(item.get("dataInicioSancao")),
            ends_at=ends_at,
            value=item.get("valorMulta"),
            details=f"Process: {item['numeroProcesso']}" if item.get("numeroProcesso") else None,
        )

    @staticmethod
    def _cepim(item: Dict[str, Any]) -> Restriction:
        return Restriction(
            type=RestrictionType.CEPIM,
            description=item.get("motivoImpedimento") or "Entity barred",
            origin=(item.get("orgaoSuperior") or {}).get("nome") or "Not informed",
            status=RestrictionStatus.ACTIVE,
            starts_at=_parse_date(item.get("dataReferencia")),
            details=f"Agreement: {item['convenio']}" if item.get("convenio") else None,
        )


# =============================================================================
# MOCK
# =============================================================================

class MockRestrictionsProvider:
    """
    Deterministic stand-in. Companies whose CNPJ digit sum is a multiple of 10
    have one or two active restrictions.
    """
    name = "MOCK_RESTRICTIONS"

    TYPES = [
        RestrictionType.CADIN, RestrictionType.CEIS, RestrictionType.CNEP,
        RestrictionType.PGFN, RestrictionType.TCU,
    ]
    ORIGINS = [
        "Ministério da Fazenda",
        "Controladoria-Geral da União",
        "Tribunal de Contas da União",
        "Procuradoria da Fazenda Nacional",
    ]

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    def is_available(self) -> bool:
        return self.enabled

    def analyze(self, tax_id: str) -> RestrictionsAnalysisResult:
        digit_sum = sum(int(d) for d in tax_id)
        logger.info(f"[{self.name}] Simulated restrictions for CNPJ {mask_tax_id(tax_id)}")

        if digit_sum % 10 != 0:
            return build_restrictions_result(self.name, [])

        count = digit_sum % 2 + 1
        return build_restrictions_result(
            self.name, [self._restriction(digit_sum, i) for i in range(count)],
        )

    def _restriction(self, seed: int, i: int) -> Restriction:
        kind = self.TYPES[(seed + i) % len(self.TYPES)]
        return Restriction(
            type=kind,
            description=f"Simulated {kind.value} entry",
            origin=self.ORIGINS[(seed + i) % len(self.ORIGINS)],
            status=RestrictionStatus.ACTIVE,
            starts_at=datetime.utcnow() - timedelta(days=180 + seed % 365),
            value=10000.0 + ((seed + i) % 50) * 1000 if kind == RestrictionType.CADIN else None,
            details=f"{kind.value}-{2020 + i % 4}-{100000 + seed}",
        )
