"""
Audit Models for ExpenseOwl

Every mutation a store performs is logged as an audit event.
This provides:
1. Traceability of what changed and through which backend
2. Debugging information when a substrate fails
3. A record of cascades (rule edits touching many expenses)

DESIGN DECISION: Audit events are emitted only after a mutation succeeds.
Failures get their own event type so they are never mistaken for changes.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class StorageEventType(str, Enum):
    """
    Types of events we audit.

    One event type per storage mutation, plus lifecycle and failure events.
    """
    # Lifecycle
    STORE_INITIALIZED = "store_initialized"
    STORE_CLOSED = "store_closed"

    # Expenses
    EXPENSE_ADDED = "expense_added"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_REMOVED = "expense_removed"
    EXPENSES_ADDED = "expenses_added"
    EXPENSES_REMOVED = "expenses_removed"

    # Recurring rules
    RULE_ADDED = "rule_added"
    RULE_UPDATED = "rule_updated"
    RULE_REMOVED = "rule_removed"
    EXPANSION_HALTED = "expansion_halted"

    # Configuration
    CONFIG_CREATED = "config_created"
    CONFIG_UPDATED = "config_updated"

    # Failures
    STORAGE_FAILED = "storage_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """
    A single audit event.

    Events are logged locally through structlog; they are not persisted
    to the store they describe.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: StorageEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context
    backend: str = Field(
        default="",
        description="Backend that emitted the event (json, postgres)"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (expense, rule, config)"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    description: str = Field(
        ...,
        description="Human-readable summary"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional structured context"
    )
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict[str, Any]:
        """Flatten the event for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "backend": self.backend,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }
