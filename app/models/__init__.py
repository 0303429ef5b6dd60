"""Database models package."""

from app.models.examination import Examination, ExaminationStatus
from app.models.marksheet import (
    DispatchRequestStatus,
    HodResponse,
    Marksheet,
    MarksheetStatus,
    SubjectResult,
    WhatsAppStatus,
)
from app.models.notification import Notification, PushSubscription, SubscriptionStatus
from app.models.student import Student
from app.models.user import Department, User, UserRole

__all__ = [
    # User
    "User",
    "UserRole",
    "Department",
    # Student
    "Student",
    # Examination
    "Examination",
    "ExaminationStatus",
    # Marksheet
    "Marksheet",
    "MarksheetStatus",
    "DispatchRequestStatus",
    "HodResponse",
    "WhatsAppStatus",
    "SubjectResult",
    # Notification
    "Notification",
    "PushSubscription",
    "SubscriptionStatus",
]
