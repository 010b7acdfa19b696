"""
Storage interfaces.

Abstract contracts implemented by every backend (memory, SQLite, PostgreSQL).
"""

from voyagez.storage.interfaces.bookings import BookingStore
from voyagez.storage.interfaces.drafts import DraftStore
from voyagez.storage.interfaces.signals import SignalInbox

__all__ = ["BookingStore", "DraftStore", "SignalInbox"]
