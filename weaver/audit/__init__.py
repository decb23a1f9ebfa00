from .service import AuditLogger, ConnectionEventType

__all__ = ["AuditLogger", "ConnectionEventType"]
