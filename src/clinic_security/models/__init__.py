"""ORM model registry: import all models so Alembic autogenerate discovers them."""

from clinic_security.models.audit_log import AuditLog
from clinic_security.models.behavior_baseline import BehaviorBaseline
from clinic_security.models.behavioral_anomaly import BehavioralAnomaly
from clinic_security.models.breach_incident import BreachIncident
from clinic_security.models.login_history import UserLoginHistory
from clinic_security.models.user import User

__all__ = [
    "AuditLog",
    "BehaviorBaseline",
    "BehavioralAnomaly",
    "BreachIncident",
    "User",
    "UserLoginHistory",
]
