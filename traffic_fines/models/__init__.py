# models package for SQLModel models
from .user import User, Role  # noqa: F401  (import for metadata registration)
from .violation import TrafficViolation, Currency, SeverityLevel, ViolationCategory  # noqa: F401
from .fine import Fine, FineNote, FineStatus  # noqa: F401
from .admin_audit import AdminAudit  # noqa: F401
