"""Petty Cash Gatekeeper: expense claims, approvals and a shared cash ledger."""

__version__ = "1.0.0"
