"""
SQLAlchemy models for the cabinet portal integrations.
"""

from cabinet_portal.models.enums import (
    IntegrationType,
    SyncMode,
    CalendarSyncMode,
    SyncOutcome,
    DocumentLocation,
    UploaderKind,
    EventLink,
    Uploader,
)
from cabinet_portal.models.party import Operator, Client
from cabinet_portal.models.dossier import Dossier
from cabinet_portal.models.document import Document
from cabinet_portal.models.token import OAuthToken
from cabinet_portal.models.calendar import RemoteCalendar
from cabinet_portal.models.event import Event
from cabinet_portal.models.sync_log import SyncLog, ImmutableRecordError

__all__ = [
    "IntegrationType",
    "SyncMode",
    "CalendarSyncMode",
    "SyncOutcome",
    "DocumentLocation",
    "UploaderKind",
    "EventLink",
    "Uploader",
    "Operator",
    "Client",
    "Dossier",
    "Document",
    "OAuthToken",
    "RemoteCalendar",
    "Event",
    "SyncLog",
    "ImmutableRecordError",
]
