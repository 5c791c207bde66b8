"""Audit logging package."""

from expenseowl.audit.logger import AuditLogger

__all__ = ["AuditLogger"]
