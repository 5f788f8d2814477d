from .errors import (
    AIAnalysisError,
    AuthenticationRequiredError,
    CaseNotFoundError,
    CollabError,
    FailedStatusRequirementsError,
    ImportFormatError,
    InvalidRecordError,
    InvalidSessionCodeError,
    NotInSessionError,
    ReadOnlySessionError,
    ReportInputError,
    SessionCreateError,
    SessionExistsError,
    SessionJoinError,
    SessionNotFoundError,
    StoreError,
    UnknownFieldError,
    ValidationRejected,
)
from .models import CaseStats, CaseStatus, Participant, RawTestCase, Role, SessionDocument, TestCase
from .notifier import Notice, NoticeKind, Notifier
from .store import MemorySessionStore, SessionStore, Subscription
from .presence import MemoryPresenceRegistry, PresenceRegistry
from .identity import Identity, IdentityProvider
from .idle import IdleMonitor
from .replication import CaseFilters, CaseReplica
from .lifecycle import LeaveReason, SessionManager, SessionState, SessionView

__all__ = [
    "AIAnalysisError",
    "AuthenticationRequiredError",
    "CaseNotFoundError",
    "CollabError",
    "FailedStatusRequirementsError",
    "ImportFormatError",
    "InvalidRecordError",
    "InvalidSessionCodeError",
    "NotInSessionError",
    "ReadOnlySessionError",
    "ReportInputError",
    "SessionCreateError",
    "SessionExistsError",
    "SessionJoinError",
    "SessionNotFoundError",
    "StoreError",
    "UnknownFieldError",
    "ValidationRejected",
    "CaseStats",
    "CaseStatus",
    "Participant",
    "RawTestCase",
    "Role",
    "SessionDocument",
    "TestCase",
    "Notice",
    "NoticeKind",
    "Notifier",
    "MemorySessionStore",
    "SessionStore",
    "Subscription",
    "MemoryPresenceRegistry",
    "PresenceRegistry",
    "Identity",
    "IdentityProvider",
    "IdleMonitor",
    "CaseFilters",
    "CaseReplica",
    "LeaveReason",
    "SessionManager",
    "SessionState",
    "SessionView",
]
