"""Audit logging package."""

from debtflow.audit.logger import LedgerAuditLogger

__all__ = ["LedgerAuditLogger"]
