"""
Company registry providers (CNPJ lookup).

Variants:
- BrasilApiProvider  (priority 1, public, no key)
- ReceitaWsProvider  (priority 2, public tier is rate limited; token optional)

Providers never raise on upstream trouble: network errors, bad statuses and
unparseable payloads come back as a RegistryValidationResult with `error` set.
A company that does not exist is reported with not_found=True so the
aggregator can stop trying other providers.
"""
import logging
from typing import Any, Dict, Optional, Protocol

import requests
from dateutil import parser as date_parser

from ....models.verification import RegistryData, RegistryValidationResult
from ...taxid import mask_tax_id

logger = logging.getLogger(__name__)

NOT_FOUND_ERROR = "CNPJ not found"


class RegistryProvider(Protocol):
    """Structural interface for registry lookups."""

    name: str
    priority: int  # lower runs first

    def is_available(self) -> bool:
        ...

    def validate(self, tax_id: str) -> RegistryValidationResult:
        """tax_id is already normalized to 14 digits"""
        ...


def _parse_date(value: Optional[str]):
    if not value:
        return None
    try:
        # ReceitaWS uses dd/mm/yyyy, BrasilAPI ISO dates
        return date_parser.parse(value, dayfirst="/" in value)
    except (ValueError, OverflowError):
        logger.warning(f"Unparseable registry date: {value!r}")
        return None


def _parse_money(value: Any) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class BrasilApiProvider:
    name = "BRASIL_API"
    priority = 1

    def __init__(
        self,
        base_url: str = "https://brasilapi.com.br/api/cnpj/v1",
        enabled: bool = True,
        timeout: int = 30,
    ):
        self.base_url = base_url.rstrip("/")
        self.enabled = enabled
        self.timeout = timeout

    def is_available(self) -> bool:
        return self.enabled

    def validate(self, tax_id: str) -> RegistryValidationResult:
        logger.info(f"[{self.name}] Looking up CNPJ {mask_tax_id(tax_id)}")
        try:
            response = requests.get(f"{self.base_url}/{tax_id}", timeout=self.timeout)
            if response.status_code == 404:
                return RegistryValidationResult(
                    is_valid=False, source=self.name, error=NOT_FOUND_ERROR, not_found=True,
                )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"[{self.name}] Lookup failed for {mask_tax_id(tax_id)}: {e}")
            return RegistryValidationResult(is_valid=False, source=self.name, error=str(e))

        return self._parse(tax_id, payload)

    def _parse(self, tax_id: str, payload: Dict[str, Any]) -> RegistryValidationResult:
        status = (payload.get("descricao_situacao_cadastral") or "").upper()
        data = RegistryData(
            tax_id=tax_id,
            legal_name=payload.get("razao_social") or "",
            status=status,
            trade_name=payload.get("nome_fantasia") or None,
            capital_stock=_parse_money(payload.get("capital_social")),
            founded_at=_parse_date(payload.get("data_inicio_atividade")),
            main_activity=payload.get("cnae_fiscal_descricao"),
            city=payload.get("municipio"),
            state=payload.get("uf"),
        )
        return RegistryValidationResult(
            is_valid=status in ("ATIVA", "REGULAR"),
            source=self.name,
            data=data,
            raw_response=payload,
        )


class ReceitaWsProvider:
    name = "RECEITAWS"
    priority = 2

    def __init__(
        self,
        base_url: str = "https://receitaws.com.br/v1/cnpj",
        token: Optional[str] = None,
        enabled: bool = True,
        timeout: int = 30,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.enabled = enabled
        self.timeout = timeout

    def is_available(self) -> bool:
        return self.enabled

    def validate(self, tax_id: str) -> RegistryValidationResult:
        logger.info(f"[{self.name}] Looking up CNPJ {mask_tax_id(tax_id)}")
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            response = requests.get(f"{self.base_url}/{tax_id}", headers=headers, timeout=self.timeout)
            if response.status_code == 429:
                return RegistryValidationResult(
                    is_valid=False, source=self.name, error="Rate limit exceeded",
                )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"[{self.name}] Lookup failed for {mask_tax_id(tax_id)}: {e}")
            return RegistryValidationResult(is_valid=False, source=self.name, error=str(e))

        # ReceitaWS answers 200 with status=ERROR for unknown or invalid CNPJs
        if payload.get("status") == "ERROR":
            message = payload.get("message") or "Unknown error"
            not_found = "not found" in message.lower() or "não encontrado" in message.lower() \
                or "inválido" in message.lower()
            return RegistryValidationResult(
                is_valid=False,
                source=self.name,
                error=NOT_FOUND_ERROR if not_found else message,
                not_found=not_found,
                raw_response=payload,
            )

        activities = payload.get("atividade_principal") or []
        status = (payload.get("situacao") or "").upper()
        data = RegistryData(
            tax_id=tax_id,
            legal_name=payload.get("nome") or "",
            status=status,
            trade_name=payload.get("fantasia") or None,
            capital_stock=_parse_money(payload.get("capital_social")),
            founded_at=_parse_date(payload.get("abertura")),
            main_activity=activities[0].get("text") if activities else None,
            city=payload.get("municipio"),
            state=payload.get("uf"),
        )
        return RegistryValidationResult(
            is_valid=status in ("ATIVA", "REGULAR"),
            source=self.name,
            data=data,
            raw_response=payload,
        )
