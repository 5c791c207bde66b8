"""
Audit Logger

DESIGN DECISION: Every successful storage mutation is logged.
This provides:
1. Traceability of changes per backend
2. Visibility into rule cascades (how many expenses a rule edit touched)
3. Context for substrate failures

The audit logger:
- Is synchronous, like the stores that use it
- Never raises (a logging failure must not fail a storage operation)
- Binds the backend name so events from both stores can be told apart
"""

from typing import Any, Optional

import structlog

from expenseowl.models.audit import AuditEvent, AuditSeverity, StorageEventType


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Audit logging for one store instance.

    Events go to the structured local log only.
    """

    def __init__(self, backend: str):
        """
        Initialize audit logger.

        Args:
            backend: Name of the backend emitting events (json, postgres).
        """
        self._backend = backend
        self._logger = structlog.get_logger("expenseowl.storage").bind(backend=backend)

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns True if the event was written, False if logging failed.
        """
        if not event.backend:
            event.backend = self._backend
        log_dict = event.to_log_dict()
        log_dict.pop("backend", None)

        try:
            if event.severity == AuditSeverity.ERROR:
                self._logger.error("audit_event", **log_dict)
            elif event.severity == AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            elif event.severity == AuditSeverity.DEBUG:
                self._logger.debug("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except Exception:
            return False
        return True

    def record(
        self,
        event_type: StorageEventType,
        description: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        **details: Any,
    ) -> None:
        """Log an informational event for a successful operation."""
        self.log(
            AuditEvent(
                event_type=event_type,
                backend=self._backend,
                entity_type=entity_type,
                entity_id=entity_id,
                description=description,
                details=details,
            )
        )

    def expense_added(self, expense_id: str) -> None:
        self.record(
            StorageEventType.EXPENSE_ADDED,
            f"Added expense with ID {expense_id}",
            entity_type="expense",
            entity_id=expense_id,
        )

    def expense_updated(self, expense_id: str) -> None:
        self.record(
            StorageEventType.EXPENSE_UPDATED,
            f"Edited expense with ID {expense_id}",
            entity_type="expense",
            entity_id=expense_id,
        )

    def expense_removed(self, expense_id: str) -> None:
        self.record(
            StorageEventType.EXPENSE_REMOVED,
            f"Deleted expense with ID {expense_id}",
            entity_type="expense",
            entity_id=expense_id,
        )

    def expenses_added(self, count: int) -> None:
        self.record(
            StorageEventType.EXPENSES_ADDED,
            f"Added {count} expenses",
            entity_type="expense",
            count=count,
        )

    def expenses_removed(self, count: int) -> None:
        self.record(
            StorageEventType.EXPENSES_REMOVED,
            f"Removed {count} expenses",
            entity_type="expense",
            count=count,
        )

    def rule_added(self, rule_id: str, materialized: int) -> None:
        self.record(
            StorageEventType.RULE_ADDED,
            f"Added recurring expense with ID {rule_id}",
            entity_type="rule",
            entity_id=rule_id,
            materialized=materialized,
        )

    def rule_updated(
        self,
        rule_id: str,
        update_all: bool,
        materialized: int,
        removed: Optional[int] = None,
    ) -> None:
        self.record(
            StorageEventType.RULE_UPDATED,
            f"Updated recurring expense with ID {rule_id}",
            entity_type="rule",
            entity_id=rule_id,
            update_all=update_all,
            materialized=materialized,
            removed=removed,
        )

    def rule_removed(
        self,
        rule_id: str,
        remove_all: bool,
        removed: Optional[int] = None,
    ) -> None:
        self.record(
            StorageEventType.RULE_REMOVED,
            f"Removed recurring expense with ID {rule_id}",
            entity_type="rule",
            entity_id=rule_id,
            remove_all=remove_all,
            removed=removed,
        )

    def config_updated(self, field: str, value: Any) -> None:
        self.record(
            StorageEventType.CONFIG_UPDATED,
            f"Updated config field '{field}'",
            entity_type="config",
            entity_id="default",
            field=field,
            value=value,
        )

    def storage_failed(self, operation: str, error_message: str) -> None:
        """Log a substrate failure."""
        self.log(
            AuditEvent(
                event_type=StorageEventType.STORAGE_FAILED,
                severity=AuditSeverity.ERROR,
                backend=self._backend,
                description=f"Storage operation '{operation}' failed",
                details={"operation": operation},
                error_message=error_message,
            )
        )
