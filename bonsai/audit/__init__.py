from .log import AuditLog
from .models import Actor, AuditEvent, AuditEventName

__all__ = ["Actor", "AuditEvent", "AuditEventName", "AuditLog"]
