from visitdesk.db.models.audit import AuditEvent
from visitdesk.db.models.operator import Operator, OperatorRole
from visitdesk.db.models.visitor import VisitorRecord, VisitorStatus

__all__ = [
    "AuditEvent",
    "Operator",
    "OperatorRole",
    "VisitorRecord",
    "VisitorStatus",
]
