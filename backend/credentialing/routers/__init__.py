"""Supplier Credentialing - API Routers"""
from .credentials import router as credentials_router
from .compliance import router as compliance_router
from .integrations import router as integrations_router

__all__ = [
    "credentials_router",
    "compliance_router",
    "integrations_router",
]
