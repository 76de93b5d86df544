"""Audit events emitted after financial transactions commit."""

from billing_engine.events.emitter import AuditEmitter, log_audit_event
from billing_engine.events.types import AuditAction, AuditEvent

__all__ = ["AuditAction", "AuditEmitter", "AuditEvent", "log_audit_event"]
