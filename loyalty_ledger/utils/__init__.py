"""Shared helpers for the ledger package."""
