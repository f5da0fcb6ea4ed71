"""SQLAlchemy models for the submission vault."""

from app.models.activity_logs import ActivityAction, ActivityLog, ActivitySeverity
from app.models.appointments import Appointment
from app.models.migration_options import MigrationOption
from app.models.submissions import Submission
from app.models.users import User

__all__ = [
    "ActivityAction",
    "ActivityLog",
    "ActivitySeverity",
    "Appointment",
    "MigrationOption",
    "Submission",
    "User",
]
