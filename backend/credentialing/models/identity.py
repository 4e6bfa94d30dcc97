"""
Caller identity handed to the services by the API boundary.
"""
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class AuthUser:
    """Authenticated caller. Brand users carry brand_id."""
    id: str
    company_id: str
    brand_id: Optional[str] = None

    @property
    def scope_brand_id(self) -> str:
        """Brand the caller acts for."""
        return self.brand_id or self.company_id
