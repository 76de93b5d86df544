"""Audit event types for financial operations.

Events are immutable and carry enough context (entity, actor, metadata)
for an audit trail. They are emitted only after the triggering
transaction commits.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class AuditAction(str, Enum):
    """Audited actions."""

    CREATE = "CREATE"
    APPROVE = "APPROVE"
    SEND = "SEND"
    DELETE = "DELETE"
    PAYMENT = "PAYMENT"
    ADJUSTMENT = "ADJUSTMENT"
    RATE_CHANGE = "RATE_CHANGE"


@dataclass(frozen=True)
class AuditEvent:
    """A committed change to a financial entity."""

    action: AuditAction
    entity_type: str
    entity_id: UUID
    actor_id: UUID | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    event_id: UUID = field(default_factory=uuid4)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to dictionary."""
        return _serialize(asdict(self))

    def to_json(self) -> str:
        """Serialize event to JSON string."""
        return json.dumps(self.to_dict(), default=str)


def _serialize(obj: Any) -> Any:
    """Recursively serialize objects for JSON compatibility."""
    if isinstance(obj, dict):
        return {k: _serialize(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [_serialize(v) for v in obj]
    elif isinstance(obj, UUID):
        return str(obj)
    elif isinstance(obj, (datetime, date)):
        return obj.isoformat()
    elif isinstance(obj, Decimal):
        return str(obj)
    elif isinstance(obj, Enum):
        return obj.value
    return obj
