"""
User-initiated follow-up actions.

Applies FollowUpClock transitions to a client through the ClientStore:
register a call, reschedule, pause, resume, delete the follow-up.
"""

from datetime import datetime
from typing import Callable, Dict, Optional, Tuple, Union

from crm.config import settings
from crm.core.clock import FollowUpClock, parse_follow_up_date
from crm.db.client_store import ClientStore
from crm.db.models import ClientRecord, FollowUpEntry, now_utc
from crm.utils.logger import (
    get_logger,
    log_call_registered,
    log_followup_rescheduled,
    log_followup_paused,
    log_followup_resumed,
    log_followup_deleted
)


logger = get_logger(__name__)


class FollowUpService:
    """
    Follow-up actions for a single client at a time.

    Each action computes its FollowUpClock transition from the client as it
    is stored at write time, inside the store lock, and merges only the
    changed fields. A sweep write or another action that lands first is
    never overwritten with stale values.
    """

    def __init__(
        self,
        store: ClientStore,
        clock: Callable[[], datetime] = now_utc,
        business_days: Optional[int] = None
    ):
        self.store = store
        self.clock = clock
        self.business_days = (
            business_days if business_days is not None
            else settings.default_followup_business_days
        )

    async def _apply(
        self,
        client_id: str,
        transition: Callable[[FollowUpClock], Optional[Dict]]
    ) -> Tuple[ClientRecord, bool]:
        return await self.store.update_with(
            client_id,
            lambda current: transition(FollowUpClock.from_client(current))
        )

    async def register_call(self, client_id: str) -> ClientRecord:
        """
        Log a call and restart the countdown.

        Appends a call entry, sets the next follow-up to the default
        business-day offset from now, clears any pause and reactivates a
        suspended client.

        Args:
            client_id: Client that was called

        Returns:
            The updated client record
        """
        now = self.clock()

        def build(current: ClientRecord) -> Dict:
            fields = FollowUpClock.from_client(current).register_call(now, self.business_days)
            fields['follow_ups'] = current.follow_ups + [FollowUpEntry(timestamp=now)]
            return fields

        updated, _ = await self.store.update_with(client_id, build)
        log_call_registered(client_id, updated.next_follow_up_date.isoformat())
        return updated

    async def reschedule(
        self,
        client_id: str,
        date: Union[datetime, str, None] = None
    ) -> ClientRecord:
        """
        Move the next follow-up to date, or to the default offset if none.

        Malformed dates are treated as missing. Clears any pause and
        reactivates a suspended client.
        """
        now = self.clock()
        target = parse_follow_up_date(date)

        updated, _ = await self._apply(
            client_id,
            lambda clock: clock.reschedule(now, target, self.business_days)
        )
        log_followup_rescheduled(
            client_id,
            updated.next_follow_up_date.isoformat(),
            explicit=target is not None
        )
        return updated

    async def pause(self, client_id: str) -> ClientRecord:
        """Freeze the countdown. No-op if nothing is scheduled or already paused."""
        now = self.clock()
        updated, changed = await self._apply(client_id, lambda clock: clock.pause(now))

        if changed:
            log_followup_paused(client_id, updated.paused_time_left)
        else:
            logger.debug(f"Nothing to pause for client {client_id}")
        return updated

    async def resume(self, client_id: str) -> ClientRecord:
        """Restart a paused countdown. No-op if there is no paused snapshot."""
        now = self.clock()
        updated, changed = await self._apply(client_id, lambda clock: clock.resume(now))

        if changed:
            log_followup_resumed(client_id, updated.next_follow_up_date.isoformat())
        else:
            logger.debug(f"Nothing to resume for client {client_id}")
        return updated

    async def delete_follow_up(self, client_id: str) -> ClientRecord:
        """Clear the follow-up and any pause."""
        updated, _ = await self._apply(client_id, lambda clock: clock.delete())
        log_followup_deleted(client_id)
        return updated

    def describe(self, client_id: str, short: bool = False) -> str:
        """Remaining-time display string for a client."""
        clock = FollowUpClock.from_client(self.store.get(client_id))
        return clock.display(self.clock(), short)
