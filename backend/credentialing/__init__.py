"""Supplier Credentialing - supplier vetting backend."""
