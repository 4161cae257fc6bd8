from .binding import apply_event, bind_transport
from .store import Alert, NotificationStore, StoreChange

__all__ = [
    "Alert",
    "NotificationStore",
    "StoreChange",
    "apply_event",
    "bind_transport",
]
