"""
Core utilities and provider clients.
"""

from cabinet_portal.core.provider_client import ProviderAPIError, ProviderClient
from cabinet_portal.core.onedrive import OneDriveClient, DriveItem, DriveQuota
from cabinet_portal.core.google_calendar import GoogleCalendarClient, CalendarListEntry
from cabinet_portal.core.cache import TTLCache

__all__ = [
    "ProviderAPIError",
    "ProviderClient",
    "OneDriveClient",
    "DriveItem",
    "DriveQuota",
    "GoogleCalendarClient",
    "CalendarListEntry",
    "TTLCache",
]
