from .audit_log import AuditLog
from .models import AuditEntry

__all__ = ["AuditEntry", "AuditLog"]
