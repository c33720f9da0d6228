"""Storefront API - cart checkout and payment reconciliation backend."""

__version__ = "0.1.0"
