"""
Credit bureau providers.

Variants:
- SerasaCreditProvider  (OAuth2 client credentials, token cached until expiry)
- SPCCreditProvider     (HTTP basic auth)
- MockCreditProvider    (deterministic per tax ID, for development and demos)

Errors are returned as a CreditAnalysisResult with score 0 and `error` set;
the aggregator skips such results and tries the next provider.
"""
import hashlib
import logging
import time
from typing import Any, Dict, List, Optional, Protocol

import requests

from ....models.db_models import RiskLevel
from ....models.verification import CreditAnalysisResult, risk_level_from_credit_score
from ...taxid import mask_tax_id

logger = logging.getLogger(__name__)


class CreditProvider(Protocol):
    """Structural interface for credit bureaus."""

    name: str

    def is_available(self) -> bool:
        ...

    def analyze(self, tax_id: str) -> CreditAnalysisResult:
        """tax_id is already normalized to 14 digits"""
        ...


def bureau_recommendations(risk_level: RiskLevel, has_negatives: bool) -> List[str]:
    """Standard advice attached to a bureau score tier."""
    if risk_level == RiskLevel.LOW:
        return [
            "Company with excellent credit history",
            "Low risk for a commercial partnership",
            "Standard payment terms recommended",
        ]
    if risk_level == RiskLevel.MEDIUM:
        recommendations = [
            "Company with moderate credit history",
            "Consider requesting additional guarantees",
        ]
        if has_negatives:
            recommendations.append("Check whether outstanding debts were settled")
        return recommendations
    if risk_level == RiskLevel.HIGH:
        recommendations = [
            "High risk - manual analysis recommended",
            "Require guarantees or advance payment",
        ]
        if has_negatives:
            recommendations.append("Wait for outstanding debts to be settled")
        return recommendations
    return [
        "Critical risk - partnership not recommended",
        "Company with multiple active pending issues",
        "Request settlement before proceeding",
    ]


def _error_result(source: str, error: str, hint: str) -> CreditAnalysisResult:
    return CreditAnalysisResult(
        score=0,
        risk_level=RiskLevel.MEDIUM,
        has_negatives=False,
        source=source,
        recommendations=[hint],
        error=error,
    )


def _parse_bureau_payload(
    source: str,
    data: Dict[str, Any],
    negatives_flag: str,
    negatives_list: str,
) -> CreditAnalysisResult:
    score = data.get("score") or data.get("pontuacao") or 500
    has_negatives = bool(data.get(negatives_flag) or data.get(negatives_list))
    summary = data.get("resumo") or {}
    debt_amount = summary.get("totalDividas") or summary.get("valorTotal")
    risk_level = risk_level_from_credit_score(score)

    return CreditAnalysisResult(
        score=int(score),
        risk_level=risk_level,
        has_negatives=has_negatives,
        source=source,
        debt_amount=float(debt_amount) if debt_amount else None,
        legal_issues=bool(data.get("acoesJudiciais")),
        recommendations=bureau_recommendations(risk_level, has_negatives),
        raw_response=data,
    )


# =============================================================================
# SERASA
# =============================================================================

class SerasaCreditProvider:
    name = "SERASA"

    # Refresh the token this many seconds before it expires
    TOKEN_EXPIRY_MARGIN = 300

    def __init__(
        self,
        api_url: Optional[str],
        client_id: Optional[str],
        client_secret: Optional[str],
        timeout: int = 30,
    ):
        self.api_url = api_url.rstrip("/") if api_url else None
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0

    def is_available(self) -> bool:
        return bool(self.api_url and self.client_id and self.client_secret)

    def analyze(self, tax_id: str) -> CreditAnalysisResult:
        if not self.is_available():
            return _error_result(
                self.name,
                "Serasa provider not configured. Set SERASA_* environment variables.",
                "Serasa not configured",
            )

        try:
            self._ensure_access_token()
            logger.info(f"[{self.name}] Analyzing credit for CNPJ {mask_tax_id(tax_id)}")
            response = requests.get(
                f"{self.api_url}/consulta/cnpj/{tax_id}",
                headers={"Authorization": f"Bearer {self._access_token}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError, KeyError) as e:
            logger.error(f"[{self.name}] API error: {e}")
            return _error_result(self.name, str(e), "Serasa query failed, try again later")

        return _parse_bureau_payload(self.name, data, "temPendencias", "negativacoes")

    def _ensure_access_token(self) -> None:
        if self._access_token and self._token_expires_at > time.time() + self.TOKEN_EXPIRY_MARGIN:
            return

        logger.info(f"[{self.name}] Refreshing access token")
        response = requests.post(
            f"{self.api_url}/oauth/token",
            data={
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
            timeout=self.timeout,
        )
        response.raise_for_status()
        token = response.json()
        self._access_token = token["access_token"]
        self._token_expires_at = time.time() + int(token.get("expires_in") or 3600)


# =============================================================================
# SPC
# =============================================================================

class SPCCreditProvider:
    name = "SPC"

    def __init__(
        self,
        api_url: Optional[str],
        username: Optional[str],
        password: Optional[str],
        timeout: int = 30,
    ):
        self.api_url = api_url.rstrip("/") if api_url else None
        self.username = username
        self.password = password
        self.timeout = timeout

    def is_available(self) -> bool:
        return bool(self.api_url and self.username and self.password)

    def analyze(self, tax_id: str) -> CreditAnalysisResult:
        if not self.is_available():
            return _error_result(
                self.name,
                "SPC provider not configured. Set SPC_* environment variables.",
                "SPC not configured",
            )

        try:
            logger.info(f"[{self.name}] Analyzing credit for CNPJ {mask_tax_id(tax_id)}")
            response = requests.post(
                f"{self.api_url}/consultas/pj",
                json={"cnpj": tax_id, "tipoConsulta": "COMPLETA"},
                auth=(self.username, self.password),
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"[{self.name}] API error: {e}")
            return _error_result(self.name, str(e), "SPC query failed, try again later")

        return _parse_bureau_payload(self.name, data, "temRestricoes", "registros")


# =============================================================================
# MOCK
# =============================================================================

class MockCreditProvider:
    """
    Deterministic stand-in bureau.

    The score is derived from a hash of the tax ID, so the same company always
    gets the same answer. Tax IDs ending in 00 are reported with negatives.
    """
    name = "MOCK"

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    def is_available(self) -> bool:
        return self.enabled

    def analyze(self, tax_id: str) -> CreditAnalysisResult:
        digest = int(hashlib.sha256(tax_id.encode()).hexdigest(), 16)
        score = 300 + digest % 601  # 300..900
        has_negatives = score < 450 or tax_id.endswith("00")
        debt_amount = float((digest >> 16) % 200) * 1000 if has_negatives else None
        risk_level = risk_level_from_credit_score(score)

        logger.info(f"[{self.name}] Simulated credit for CNPJ {mask_tax_id(tax_id)}: score={score}")
        return CreditAnalysisResult(
            score=score,
            risk_level=risk_level,
            has_negatives=has_negatives,
            source=self.name,
            debt_amount=debt_amount,
            recommendations=bureau_recommendations(risk_level, has_negatives),
        )
