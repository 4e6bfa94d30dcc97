"""Supplier Credentialing - Services"""
