"""Fire-and-forget audit emitter.

The emitter provides:
- Handler registration per action or for all actions
- Error isolation (handler failures are logged, never raised)
- Deferred emission bound to a session's commit

``emit_after_commit`` queues an event on the session; the queue is
dispatched from SQLAlchemy's ``after_commit`` event and discarded on
rollback. A failing handler therefore can never fail or roll back the
transaction that produced the event.
"""

from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy import event as sa_event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from billing_engine.events.types import AuditAction, AuditEvent

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("billing_engine.audit")

AuditHandler = Callable[[AuditEvent], None]

_PENDING_KEY = "billing_engine.audit.pending"
_LISTENING_KEY = "billing_engine.audit.listening"


def log_audit_event(event: AuditEvent) -> None:
    """Default handler: one structured line on the audit logger."""
    audit_logger.info(
        "audit action=%s entity=%s id=%s actor=%s metadata=%s",
        event.action.value,
        event.entity_type,
        event.entity_id,
        event.actor_id,
        event.to_dict()["metadata"],
    )


class AuditEmitter:
    """Publishes audit events to registered handlers.

    Usage:
        emitter = AuditEmitter()
        emitter.on(AuditAction.PAYMENT, notify_accounts)

        # Inside a unit of work
        emitter.emit_after_commit(session, event)
        await session.commit()  # handlers run here
    """

    def __init__(self, default_handler: bool = True) -> None:
        self._handlers: list[tuple[AuditHandler, set[AuditAction] | None]] = []
        if default_handler:
            self.on_all(log_audit_event)

    def on(self, action: AuditAction | list[AuditAction], handler: AuditHandler) -> None:
        """Register handler for specific action(s)."""
        actions = set(action) if isinstance(action, list) else {action}
        self._handlers.append((handler, actions))

    def on_all(self, handler: AuditHandler) -> None:
        """Register handler for all actions."""
        self._handlers.append((handler, None))

    def off(self, handler: AuditHandler) -> None:
        """Unregister a handler."""
        self._handlers = [reg for reg in self._handlers if reg[0] is not handler]

    def emit(self, event: AuditEvent) -> list[Exception]:
        """Dispatch an event now.

        Returns list of any exceptions raised by handlers.
        """
        errors: list[Exception] = []
        for handler, actions in self._handlers:
            if actions is not None and event.action not in actions:
                continue
            try:
                handler(event)
            except Exception as e:
                logger.exception(
                    "Audit handler %s failed for %s %s",
                    handler,
                    event.action.value,
                    event.entity_id,
                )
                errors.append(e)
        return errors

    def emit_after_commit(self, session: AsyncSession | Session, event: AuditEvent) -> None:
        """Queue an event until the session's transaction commits."""
        sync_session = session.sync_session if isinstance(session, AsyncSession) else session
        if not sync_session.info.get(_LISTENING_KEY):
            sa_event.listen(sync_session, "after_commit", _dispatch_pending)
            sa_event.listen(sync_session, "after_rollback", _discard_pending)
            sync_session.info[_LISTENING_KEY] = True
        sync_session.info.setdefault(_PENDING_KEY, []).append((self, event))


def _dispatch_pending(session: Session) -> None:
    pending = session.info.pop(_PENDING_KEY, [])
    for emitter, event in pending:
        emitter.emit(event)


def _discard_pending(session: Session) -> None:
    pending = session.info.pop(_PENDING_KEY, [])
    if pending:
        logger.debug("Discarded %d audit event(s) after rollback", len(pending))
