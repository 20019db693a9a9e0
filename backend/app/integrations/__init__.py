from app.integrations.google_calendar import (
    GoogleCalendarBusyProvider,
    create_event,
    get_access_token,
    is_google_calendar_connected,
    parse_free_busy,
)

__all__ = [
    "GoogleCalendarBusyProvider",
    "create_event",
    "get_access_token",
    "is_google_calendar_connected",
    "parse_free_busy",
]
