"""
Closed sets of values shared by the models, services and API.
"""

import enum
from dataclasses import dataclass
from typing import Optional
import uuid

from sqlalchemy import Enum as SAEnum


class IntegrationType(str, enum.Enum):
    """External services the portal synchronizes with."""

    ONEDRIVE = "onedrive"
    GOOGLE_CALENDAR = "google_calendar"


class SyncMode(str, enum.Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"


class CalendarSyncMode(str, enum.Enum):
    """Whether event mutations push to Google on their own."""

    AUTO = "auto"
    MANUAL = "manual"  # pushed only by an explicit sync


class SyncOutcome(str, enum.Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"

    @classmethod
    def from_counts(cls, errors: int, changed: int) -> "SyncOutcome":
        """Success without errors, partial when something still got through."""
        if errors == 0:
            return cls.SUCCESS
        if changed > 0:
            return cls.PARTIAL
        return cls.ERROR


class DocumentLocation(str, enum.Enum):
    """Case sub-folder a document lives in."""

    CABINET = "cabinet"  # internal, firm only
    CLIENT = "client"  # shared with the end client


class UploaderKind(str, enum.Enum):
    OPERATOR = "operator"
    CLIENT = "client"


class EventLink(str, enum.Enum):
    """What an event is attached to."""

    CASE = "case"
    CALENDAR_IMPORT = "calendar_import"
    UNATTACHED = "unattached"


@dataclass
class Uploader:
    """Who put a document in the portal. A null id means a system import."""

    kind: UploaderKind
    id: Optional[uuid.UUID] = None


def str_enum(enum_cls: type[enum.Enum]) -> SAEnum:
    """Store an enum by value in a VARCHAR column."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
    )
