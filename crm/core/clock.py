"""
Follow-up countdown state machine.

A FollowUpClock is an immutable view of one client's countdown fields
(next follow-up date, paused flag, paused snapshot). It answers "how long is
left" and "is it due", and computes the field changes for each user action.
It never writes anything itself: callers hand the returned fields to the
client store, which merges them into the record.

States:
    UNSET   - no follow-up scheduled
    RUNNING - counting down to next_follow_up_date
    PAUSED  - frozen at paused_time_left milliseconds
    DUE     - next_follow_up_date reached while running
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Optional, Union

from crm.config import settings
from crm.core.business_calendar import add_business_days
from crm.db.models import ClientRecord, ClientStatus, ensure_utc
from crm.utils.logger import get_logger


logger = get_logger(__name__)


DUE_LABEL = 'Due'
NO_FOLLOW_UP_LABEL = 'No follow-up'
PAUSED_LABEL = 'Paused'

FULL_REFRESH_SECONDS = 1
SHORT_REFRESH_SECONDS = 60

ONE_MS = timedelta(milliseconds=1)


class ClockState(str, Enum):
    UNSET = 'unset'
    RUNNING = 'running'
    PAUSED = 'paused'
    DUE = 'due'


def default_follow_up_date(now: datetime, business_days: Optional[int] = None) -> datetime:
    """Default target: N business days from now (settings default is 7)."""
    if business_days is None:
        business_days = settings.default_followup_business_days
    return add_business_days(now, business_days)


def parse_follow_up_date(value: Union[datetime, str, None]) -> Optional[datetime]:
    """
    Parse a user-supplied follow-up date.

    Accepts a datetime or an ISO-8601 string. Returns None for missing or
    malformed input so callers fall back to the default offset.
    """
    if value is None or value == '':
        return None

    if isinstance(value, datetime):
        return ensure_utc(value)

    if isinstance(value, str):
        try:
            # fromisoformat() before 3.11 rejects a trailing 'Z'
            return ensure_utc(datetime.fromisoformat(value.strip().replace('Z', '+00:00')))
        except ValueError:
            logger.warning(f"Ignoring malformed follow-up date: {value!r}")
            return None

    logger.warning(f"Ignoring follow-up date of type {type(value).__name__}")
    return None


def format_remaining(ms: int, short: bool = False) -> str:
    """
    Render a remaining duration as "2d 3h 15m" (short) or with seconds (full).

    Each unit is floored. Zero units are omitted; seconds appear only in the
    full form and only when under a day remains. A non-positive duration
    renders the due label.
    """
    if ms <= 0:
        return DUE_LABEL

    total_seconds = ms // 1000
    days = total_seconds // 86400
    hours = (total_seconds % 86400) // 3600
    minutes = (total_seconds % 3600) // 60
    seconds = total_seconds % 60

    parts = []
    if days > 0:
        parts.append(f"{days}d")
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if not short and seconds > 0 and days == 0:
        parts.append(f"{seconds}s")

    return ' '.join(parts) or ('0m' if short else '0s')


def refresh_interval(short: bool) -> int:
    """Seconds between display recomputations for the given format."""
    return SHORT_REFRESH_SECONDS if short else FULL_REFRESH_SECONDS


class FollowUpClock:
    """Countdown over a single client's follow-up fields."""

    def __init__(
        self,
        next_follow_up_date: Optional[datetime] = None,
        is_paused: bool = False,
        paused_time_left: Optional[int] = None
    ):
        self.next_follow_up_date = ensure_utc(next_follow_up_date)
        self.is_paused = is_paused
        self.paused_time_left = paused_time_left

    @classmethod
    def from_client(cls, client: ClientRecord) -> 'FollowUpClock':
        return cls(
            next_follow_up_date=client.next_follow_up_date,
            is_paused=client.is_paused,
            paused_time_left=client.paused_time_left
        )

    def state(self, now: datetime) -> ClockState:
        if self.is_paused:
            return ClockState.PAUSED
        if self.next_follow_up_date is None:
            return ClockState.UNSET
        if now >= self.next_follow_up_date:
            return ClockState.DUE
        return ClockState.RUNNING

    def is_due(self, now: datetime) -> bool:
        return self.state(now) == ClockState.DUE

    def time_left_ms(self, now: datetime) -> Optional[int]:
        """
        Milliseconds remaining, floored and clamped at zero.

        Returns the frozen snapshot while paused, and None when unset.
        """
        if self.is_paused:
            return self.paused_time_left or 0
        if self.next_follow_up_date is None:
            return None
        return max(0, (self.next_follow_up_date - now) // ONE_MS)

    def display(self, now: datetime, short: bool = False) -> str:
        """Human-readable remaining time for the current state."""
        state = self.state(now)

        if state == ClockState.PAUSED:
            if short:
                return PAUSED_LABEL
            return f"{PAUSED_LABEL}: {format_remaining(self.paused_time_left or 0, short)}"

        if state == ClockState.UNSET:
            return NO_FOLLOW_UP_LABEL

        if state == ClockState.DUE:
            return DUE_LABEL

        return format_remaining(self.time_left_ms(now), short)

    # Transitions. Each returns the client fields to merge, or None for a no-op.

    def register_call(self, now: datetime, business_days: Optional[int] = None) -> Dict:
        """Restart the countdown from now with the default offset and reactivate."""
        return {
            'next_follow_up_date': default_follow_up_date(now, business_days),
            'is_paused': False,
            'paused_time_left': None,
            'status': ClientStatus.ACTIVE
        }

    def reschedule(
        self,
        now: datetime,
        date: Union[datetime, str, None] = None,
        business_days: Optional[int] = None
    ) -> Dict:
        """
        Set a new target. Missing or malformed dates use the default offset.
        """
        target = parse_follow_up_date(date)
        if target is None:
            target = default_follow_up_date(now, business_days)

        return {
            'next_follow_up_date': target,
            'is_paused': False,
            'paused_time_left': None,
            'status': ClientStatus.ACTIVE
        }

    def pause(self, now: datetime) -> Optional[Dict]:
        """
        Freeze the remaining time. No-op when unset or already paused.
        """
        if self.is_paused or self.next_follow_up_date is None:
            return None

        return {
            'is_paused': True,
            'paused_time_left': self.time_left_ms(now)
        }

    def resume(self, now: datetime) -> Optional[Dict]:
        """
        Restart the countdown from the frozen snapshot. No-op without one.
        """
        if not self.is_paused or self.paused_time_left is None:
            return None

        return {
            'next_follow_up_date': now + timedelta(milliseconds=self.paused_time_left),
            'is_paused': False,
            'paused_time_left': None
        }

    def delete(self) -> Dict:
        return {
            'next_follow_up_date': None,
            'is_paused': False,
            'paused_time_left': None
        }
