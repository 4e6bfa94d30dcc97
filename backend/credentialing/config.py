"""
Supplier Credentialing - Runtime Settings

All settings come from environment variables with safe defaults.
Provider credentials left unset simply mark that provider as unavailable.
"""
import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


@dataclass
class Settings:
    """Settings snapshot. Build with Settings.from_env()."""
    # Auth
    jwt_secret_key: str = "credentialing-secret-key-change-in-production"
    jwt_algorithm: str = "HS256"

    # Logging
    log_level: str = "INFO"

    # Outbound calls
    provider_timeout_seconds: int = 30

    # Registry providers
    brasilapi_enabled: bool = True
    brasilapi_url: str = "https://brasilapi.com.br/api/cnpj/v1"
    receitaws_enabled: bool = True
    receitaws_url: str = "https://receitaws.com.br/v1/cnpj"
    receitaws_token: Optional[str] = None

    # Credit providers
    credit_provider: str = "MOCK"
    credit_cache_ttl_days: int = 30
    credit_fallback_mode: str = "unavailable"  # "unavailable" | "simulated"
    serasa_api_url: Optional[str] = None
    serasa_client_id: Optional[str] = None
    serasa_client_secret: Optional[str] = None
    spc_api_url: Optional[str] = None
    spc_username: Optional[str] = None
    spc_password: Optional[str] = None
    mock_credit_enabled: bool = True

    # Legal-issue and restriction providers
    legal_cache_ttl_days: int = 7
    restrictions_cache_ttl_days: int = 1
    datajud_api_key: Optional[str] = None
    datajud_api_url: str = "https://api-publica.datajud.cnj.jus.br"
    mock_legal_enabled: bool = True
    portal_transparencia_api_key: Optional[str] = None
    portal_transparencia_api_url: str = "https://api.portaldatransparencia.gov.br"
    mock_restrictions_enabled: bool = True

    # Notification providers
    sendgrid_api_key: Optional[str] = None
    sendgrid_from_email: str = "noreply@texlink.com.br"
    sendgrid_from_name: str = "Texlink"
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_whatsapp_from: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            jwt_secret_key=os.getenv("JWT_SECRET_KEY", cls.jwt_secret_key),
            jwt_algorithm=os.getenv("JWT_ALGORITHM", cls.jwt_algorithm),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
            provider_timeout_seconds=_env_int("PROVIDER_TIMEOUT_SECONDS", cls.provider_timeout_seconds),
            brasilapi_enabled=_env_bool("BRASILAPI_ENABLED", True),
            brasilapi_url=os.getenv("BRASILAPI_URL", cls.brasilapi_url),
            receitaws_enabled=_env_bool("RECEITAWS_ENABLED", True),
            receitaws_url=os.getenv("RECEITAWS_URL", cls.receitaws_url),
            receitaws_token=os.getenv("RECEITAWS_TOKEN"),
            credit_provider=os.getenv("CREDIT_PROVIDER", cls.credit_provider),
            credit_cache_ttl_days=_env_int("CREDIT_CACHE_TTL_DAYS", cls.credit_cache_ttl_days),
            credit_fallback_mode=os.getenv("CREDIT_FALLBACK_MODE", cls.credit_fallback_mode).lower(),
            serasa_api_url=os.getenv("SERASA_API_URL"),
            serasa_client_id=os.getenv("SERASA_CLIENT_ID"),
            serasa_client_secret=os.getenv("SERASA_CLIENT_SECRET"),
            spc_api_url=os.getenv("SPC_API_URL"),
            spc_username=os.getenv("SPC_USERNAME"),
            spc_password=os.getenv("SPC_PASSWORD"),
            mock_credit_enabled=_env_bool("MOCK_CREDIT_ENABLED", True),
            legal_cache_ttl_days=_env_int("LEGAL_CACHE_TTL_DAYS", cls.legal_cache_ttl_days),
            restrictions_cache_ttl_days=_env_int("RESTRICTIONS_CACHE_TTL_DAYS", cls.restrictions_cache_ttl_days),
            datajud_api_key=os.getenv("DATAJUD_API_KEY"),
            datajud_api_url=os.getenv("DATAJUD_API_URL", cls.datajud_api_url),
            mock_legal_enabled=_env_bool("MOCK_LEGAL_ENABLED", True),
            portal_transparencia_api_key=os.getenv("PORTAL_TRANSPARENCIA_API_KEY"),
            portal_transparencia_api_url=os.getenv("PORTAL_TRANSPARENCIA_API_URL", cls.portal_transparencia_api_url),
            mock_restrictions_enabled=_env_bool("MOCK_RESTRICTIONS_ENABLED", True),
            sendgrid_api_key=os.getenv("SENDGRID_API_KEY"),
            sendgrid_from_email=os.getenv("SENDGRID_FROM_EMAIL", cls.sendgrid_from_email),
            sendgrid_from_name=os.getenv("SENDGRID_FROM_NAME", cls.sendgrid_from_name),
            twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID"),
            twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN"),
            twilio_whatsapp_from=os.getenv("TWILIO_WHATSAPP_FROM"),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Process-wide settings, loaded lazily from the environment."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def override_settings(settings: Optional[Settings]) -> None:
    """Replace (or reset with None) the process-wide settings. Used by tests."""
    global _settings
    _settings = settings
