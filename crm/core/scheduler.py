"""
Periodic follow-up sweep.

Every 60 seconds (plus one warm-up pass shortly after start) the scheduler
walks all clients and:

1. Sends one due notification per due event. Notified client ids (with the
   due timestamp they were notified for) live in a Redis hash, so restarts
   never re-send. Ids are pruned once the client's follow-up moves back into
   the future, which re-arms the notification for the next due crossing.
2. Suspends clients whose unpaused follow-up is more than 24 hours overdue.
   The scheduler never reactivates a suspended client; that happens only
   through a user action (register call / reschedule).

Each client is evaluated independently: a failed notification or write for
one client is logged and the sweep continues with the rest.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set

import redis.asyncio as redis

from crm.config import settings
from crm.db.client_store import ClientStore
from crm.db.models import ClientRecord, ClientStatus, now_utc
from crm.utils.logger import (
    get_logger,
    log_followup_due,
    log_client_suspended,
    log_notification_failed,
    log_storage_error
)


logger = get_logger(__name__)


@dataclass
class SweepResult:
    """Client ids affected by one sweep."""

    notified: List[str] = field(default_factory=list)
    suspended: List[str] = field(default_factory=list)
    pruned: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class NotifiedSet:
    """
    Durable record of client ids notified for their current due event.

    Backed by a Redis hash mapping client id to the ISO due timestamp the
    notification was sent for. A client counts as notified only while its
    follow-up date still matches, so rescheduling starts a new due event.
    The in-memory mirror is authoritative for the life of the process; a
    failed Redis write is logged and not retried.
    """

    def __init__(self, redis_client: redis.Redis, key: Optional[str] = None):
        self.redis_client = redis_client
        self.key = key or settings.notified_storage_key
        self._due: Dict[str, str] = {}

    async def load(self) -> int:
        """Read persisted ids. An unreadable key starts empty."""
        try:
            entries = await self.redis_client.hgetall(self.key)
        except redis.RedisError as e:
            log_storage_error(self.key, str(e), context='load notified set')
            entries = {}

        self._due = dict(entries or {})
        logger.info(f"Loaded {len(self._due)} notified follow-up ids")
        return len(self._due)

    def __contains__(self, client_id: str) -> bool:
        return client_id in self._due

    def __len__(self) -> int:
        return len(self._due)

    def members(self) -> Set[str]:
        return set(self._due)

    def is_notified(self, client_id: str, due_at: datetime) -> bool:
        return self._due.get(client_id) == due_at.isoformat()

    async def add(self, client_id: str, due_at: datetime):
        self._due[client_id] = due_at.isoformat()
        try:
            await self.redis_client.hset(self.key, client_id, due_at.isoformat())
        except redis.RedisError as e:
            log_storage_error(self.key, str(e), context=f'add {client_id}')

    async def discard(self, client_id: str):
        self._due.pop(client_id, None)
        try:
            await self.redis_client.hdel(self.key, client_id)
        except redis.RedisError as e:
            log_storage_error(self.key, str(e), context=f'remove {client_id}')


class FollowUpScheduler:
    """
    Owns the periodic sweep and its timers.

    start() schedules a warm-up pass after warmup_delay seconds and a
    periodic pass every interval seconds; stop() cancels both and waits for
    them, after which no further sweeps run.
    """

    def __init__(
        self,
        store: ClientStore,
        notifier,
        notified: NotifiedSet,
        clock: Callable[[], datetime] = now_utc,
        interval_seconds: Optional[float] = None,
        warmup_delay_seconds: Optional[float] = None,
        grace_hours: Optional[float] = None
    ):
        self.store = store
        self.notifier = notifier
        self.notified = notified
        self.clock = clock
        self.interval_seconds = interval_seconds or settings.sweep_interval_seconds
        self.warmup_delay_seconds = (
            warmup_delay_seconds if warmup_delay_seconds is not None
            else settings.warmup_delay_seconds
        )
        self.grace = timedelta(
            hours=grace_hours if grace_hours is not None
            else settings.suspension_grace_hours
        )
        self._sweep_lock = asyncio.Lock()
        self._warmup_task: Optional[asyncio.Task] = None
        self._periodic_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return any(
            task is not None and not task.done()
            for task in (self._warmup_task, self._periodic_task)
        )

    async def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """
        Evaluate every client once.

        Running the sweep again with no change in time or data has no
        further side effects.

        Args:
            now: Evaluation time (default: clock())

        Returns:
            Ids notified, suspended and pruned, and ids whose evaluation failed
        """
        now = now or self.clock()
        result = SweepResult()

        async with self._sweep_lock:
            clients = self.store.get_all()

            for client in clients:
                await self._check_notification(client, now, result)
                await self._check_suspension(client, now, result)

            await self._prune_notified(clients, now, result)

        if result.notified or result.suspended or result.errors:
            logger.info(
                f"Sweep complete: {len(result.notified)} notified, "
                f"{len(result.suspended)} suspended, "
                f"{len(result.pruned)} re-armed, {len(result.errors)} errors"
            )
        else:
            logger.debug(f"Sweep complete: {len(clients)} clients, no changes")

        return result

    @staticmethod
    def _is_past_due(client: ClientRecord, now: datetime) -> bool:
        return client.next_follow_up_date is not None and now >= client.next_follow_up_date

    async def _check_notification(self, client: ClientRecord, now: datetime, result: SweepResult):
        """
        Notify once for a follow-up date that has passed.

        Pausing keeps the stored date, so a paused client whose date has
        passed is notified too. Only suspension skips paused clients.
        """
        try:
            if not self._is_past_due(client, now):
                return
            if self.notified.is_notified(client.id, client.next_follow_up_date):
                return

            try:
                delivered = await self.notifier.notify_due(client)
            except Exception as e:
                log_notification_failed(client.id, str(e))
                delivered = False

            await self.notified.add(client.id, client.next_follow_up_date)
            result.notified.append(client.id)
            log_followup_due(client.id, client.company_name, delivered)

        except Exception as e:
            logger.error(
                f"Error checking notification for client {client.id}: {e}",
                exc_info=True
            )
            result.errors.append(client.id)

    def _should_suspend(self, client: ClientRecord, now: datetime) -> bool:
        return (
            client.next_follow_up_date is not None
            and not client.is_paused
            and client.status != ClientStatus.SUSPENDED
            and now - client.next_follow_up_date > self.grace
        )

    async def _check_suspension(self, client: ClientRecord, now: datetime, result: SweepResult):
        """Suspend a client more than the grace window overdue and not paused."""
        if not self._should_suspend(client, now):
            return

        try:
            # Re-checked against the stored record in case a user action
            # landed while this sweep was awaiting
            updated = await self.store.update_where(
                client.id,
                lambda current: self._should_suspend(current, now),
                status=ClientStatus.SUSPENDED
            )
        except Exception as e:
            logger.error(
                f"Error suspending client {client.id}: {e}",
                exc_info=True
            )
            result.errors.append(client.id)
            return

        if updated is not None:
            overdue = now - client.next_follow_up_date
            log_client_suspended(client.id, overdue.total_seconds() / 3600)
            result.suspended.append(client.id)

    async def _prune_notified(self, clients: List[ClientRecord], now: datetime, result: SweepResult):
        """
        Drop ids whose follow-up is no longer due.

        An id is pruned when its client has a future follow-up date, has no
        follow-up, or no longer exists.
        """
        by_id = {client.id: client for client in clients}

        for client_id in sorted(self.notified.members()):
            client = by_id.get(client_id)
            if client is not None and self._is_past_due(client, now):
                continue

            try:
                await self.notified.discard(client_id)
            except Exception as e:
                logger.error(
                    f"Error pruning notified id {client_id}: {e}",
                    exc_info=True
                )
                result.errors.append(client_id)
                continue

            result.pruned.append(client_id)

    async def _safe_sweep(self):
        try:
            await self.sweep()
        except Exception as e:
            logger.error(f"Error in follow-up sweep: {e}", exc_info=True)

    async def _run_warmup(self):
        await asyncio.sleep(self.warmup_delay_seconds)
        await self._safe_sweep()

    async def _run_periodic(self):
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self._safe_sweep()

    def start(self):
        """
        Start the warm-up pass and the periodic loop.

        Must be called from a running event loop. Calling start() while
        already running does nothing.
        """
        if self.running:
            return

        logger.info(
            f"Starting follow-up scheduler (warm-up in "
            f"{self.warmup_delay_seconds}s, then every {self.interval_seconds}s)"
        )
        self._warmup_task = asyncio.create_task(self._run_warmup())
        self._periodic_task = asyncio.create_task(self._run_periodic())

    async def stop(self):
        """Cancel the warm-up and periodic tasks and wait for them to finish."""
        tasks = [
            task for task in (self._warmup_task, self._periodic_task)
            if task is not None
        ]
        if not tasks:
            return

        logger.info("Stopping scheduler...")
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._warmup_task = None
        self._periodic_task = None
        logger.info("Scheduler stopped")
