"""
Legal-issue providers (lawsuits naming the company).

Variants:
- DatajudLegalProvider  (CNJ public API; one search per court, key required)
- MockLegalProvider     (deterministic per tax ID, for development and demos)
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Protocol

import requests
from dateutil import parser as date_parser

from ....models.db_models import RiskLevel
from ....models.verification import Lawsuit, LegalAnalysisResult
from ...taxid import format_tax_id, mask_tax_id

logger = logging.getLogger(__name__)

ARCHIVED_STATUSES = ("ARQUIVADO", "BAIXADO")


class LegalProvider(Protocol):
    name: str

    def is_available(self) -> bool:
        ...

    def analyze(self, tax_id: str) -> LegalAnalysisResult:
        """tax_id is already normalized to 14 digits"""
        ...


def legal_risk_level(active_count: int, total_value: float) -> RiskLevel:
    if active_count == 0:
        return RiskLevel.LOW
    if active_count <= 2 and total_value < 100000:
        return RiskLevel.MEDIUM
    if active_count <= 5 or total_value < 500000:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


def legal_recommendations(risk_level: RiskLevel, active_count: int, total_value: float,
                          labor_count: int = 0) -> List[str]:
    if risk_level == RiskLevel.LOW:
        return [
            "No active lawsuit found",
            "Company legal standing is regular",
        ]
    if risk_level == RiskLevel.MEDIUM:
        recommendations = [
            f"{active_count} active lawsuit(s) found",
            "Follow up on the cases",
        ]
        if labor_count:
            recommendations.append(f"{labor_count} labor lawsuit(s) - check liabilities")
        return recommendations

    recommendations = [f"{active_count} active lawsuits"]
    if total_value > 0:
        recommendations.append(f"Total amount in litigation: R$ {total_value:,.2f}")
    if risk_level == RiskLevel.HIGH:
        recommendations += [
            "Detailed analysis recommended before approval",
            "Consider additional guarantees",
        ]
    else:
        recommendations += [
            "High exposure to legal liabilities",
            "Credit not recommended without collateral",
        ]
    return recommendations


def build_legal_result(source: str, lawsuits: List[Lawsuit]) -> LegalAnalysisResult:
    """Summarize lawsuits. Archived ones are kept in the list but do not count."""
    active = [suit for suit in lawsuits if suit.status not in ARCHIVED_STATUSES]
    total_value = sum(suit.value or 0 for suit in active)
    labor_count = len([
        suit for suit in lawsuits if "TRT" in suit.court or "trabalh" in suit.type.lower()
    ])
    risk_level = legal_risk_level(len(active), total_value)

    return LegalAnalysisResult(
        has_legal_issues=bool(active),
        active_lawsuits_count=len(active),
        risk_level=risk_level,
        source=source,
        total_lawsuit_value=total_value or None,
        lawsuits=lawsuits,
        recommendations=legal_recommendations(risk_level, len(active), total_value, labor_count),
    )


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return date_parser.parse(value)
    except (ValueError, OverflowError):
        return None


# =============================================================================
# DATAJUD (CNJ)
# =============================================================================

class DatajudLegalProvider:
    name = "DATAJUD_CNJ"

    # State, federal and labor courts searched for each company
    COURTS = {
        "api_publica_tjsp": "TJSP",
        "api_publica_tjrj": "TJRJ",
        "api_publica_tjmg": "TJMG",
        "api_publica_tjrs": "TJRS",
        "api_publica_tjpr": "TJPR",
        "api_publica_tjsc": "TJSC",
        "api_publica_trf3": "TRF3",
        "api_publica_trf4": "TRF4",
        "api_publica_trt2": "TRT2",
        "api_publica_trt15": "TRT15",
    }

    def __init__(
        self,
        api_key: Optional[str],
        api_url: str = "https://api-publica.datajud.cnj.jus.br",
        timeout: int = 10,
    ):
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    def is_available(self) -> bool:
        return bool(self.api_key)

    def analyze(self, tax_id: str) -> LegalAnalysisResult:
        if not self.is_available():
            return LegalAnalysisResult(
                has_legal_issues=False,
                active_lawsuits_count=0,
                risk_level=RiskLevel.LOW,
                source=self.name,
                recommendations=["Datajud not configured"],
                error="Datajud provider not configured. Set DATAJUD_API_KEY.",
            )

        logger.info(f"[{self.name}] Searching lawsuits for CNPJ {mask_tax_id(tax_id)}")
        lawsuits: List[Lawsuit] = []
        for alias, court in self.COURTS.items():
            lawsuits.extend(self._search_court(alias, court, tax_id))
        return build_legal_result(self.name, lawsuits)

    def _search_court(self, alias: str, court: str, tax_id: str) -> List[Lawsuit]:
        document_field = "dadosBasicos.polo.parte.pessoa.numeroDocumentoPrincipal"
        query = {
            "query": {
                "bool": {
                    "should": [
                        {"match": {document_field: tax_id}},
                        {"match": {document_field: format_tax_id(tax_id)}},
                    ],
                    "minimum_should_match": 1,
                },
            },
            "size": 100,
        }
        try:
            response = requests.post(
                f"{self.api_url}/{alias}/_search",
                json=query,
                headers={"Authorization": f"APIKey {self.api_key}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            # One court being down must not hide the others
            logger.debug(f"[{self.name}] No results from {alias}: {e}")
            return []

        return [self._parse_hit(hit, court) for hit in (data.get("hits") or {}).get("hits") or []]

    def _parse_hit(self, hit: Dict[str, Any], court: str) -> Lawsuit:
        basics = (hit.get("_source") or {}).get("dadosBasicos") or {}
        movements = (hit.get("_source") or {}).get("movimentos") or []
        process_class = (basics.get("classeProcessual") or {}).get("nome")
        subjects = basics.get("assunto") or []
        plaintiff, defendant = _parties(basics.get("polo"))

        return Lawsuit(
            number=basics.get("numero") or hit.get("_id", ""),
            court=court,
            type=process_class or "NOT INFORMED",
            status=_lawsuit_status(movements[0] if movements else None, basics),
            filed_at=_parse_date(basics.get("dataAjuizamento")),
            value=basics.get("valorCausa"),
            description=(subjects[0].get("nome") if subjects else None) or process_class,
            plaintiff=plaintiff,
            defendant=defendant,
        )


def _lawsuit_status(last_movement: Optional[Dict[str, Any]], basics: Dict[str, Any]) -> str:
    if not last_movement:
        return basics.get("situacao") or "EM ANDAMENTO"
    name = (last_movement.get("nome") or "").lower()
    if "arquiv" in name or "baixa" in name or "transit" in name:
        return "ARQUIVADO"
    if "sentença" in name or "julgamento" in name:
        return "JULGADO"
    return "EM ANDAMENTO"


def _parties(poles: Any):
    plaintiff = defendant = None
    if not isinstance(poles, list):
        return plaintiff, defendant

    for pole in poles:
        kind = (pole.get("polo") or "").lower()
        parties = pole.get("parte") or []
        if not parties:
            continue
        person = parties[0].get("pessoa") or {}
        name = person.get("nome") or person.get("nomeFantasia")
        if "ativo" in kind or "autor" in kind or "requerente" in kind:
            plaintiff = name
        elif "passivo" in kind or "réu" in kind or "requerido" in kind:
            defendant = name
    return plaintiff, defendant


# =============================================================================
# MOCK
# =============================================================================

class MockLegalProvider:
    """
    Deterministic stand-in. Companies whose CNPJ digit sum is a multiple of 7
    have one to three active lawsuits.
    """
    name = "MOCK_LEGAL"

    TYPES = ["TRABALHISTA", "CÍVEL", "TRIBUTÁRIO", "CONSUMIDOR"]
    COURTS = ["TRT 2ª Região", "TJSP", "TRF 3ª Região", "Juizado Especial Cível"]
    STATUSES = ["EM ANDAMENTO", "AGUARDANDO JULGAMENTO", "RECURSO"]

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    def is_available(self) -> bool:
        return self.enabled

    def analyze(self, tax_id: str) -> LegalAnalysisResult:
        digit_sum = sum(int(d) for d in tax_id)
        logger.info(f"[{self.name}] Simulated legal analysis for CNPJ {mask_tax_id(tax_id)}")

        if digit_sum % 7 != 0:
            return build_legal_result(self.name, [])

        count = digit_sum % 3 + 1
        lawsuits = [self._lawsuit(digit_sum, i) for i in range(count)]
        return build_legal_result(self.name, lawsuits)

    def _lawsuit(self, seed: int, i: int) -> Lawsuit:
        kind = self.TYPES[(seed + i) % len(self.TYPES)]
        return Lawsuit(
            number=f"{1000000 + seed + i}-{20 + i % 5}.{2020 + i % 4}.8.26.0100",
            court=self.COURTS[(seed + i) % len(self.COURTS)],
            type=kind,
            status=self.STATUSES[(seed + i) % len(self.STATUSES)],
            filed_at=datetime.utcnow() - timedelta(days=365 + seed % 730),
            value=50000.0 + ((seed + i) % 10) * 10000,
            description=f"Ongoing {kind.lower()} lawsuit",
        )
