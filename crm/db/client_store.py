"""
Redis-backed client repository.

Stores every client record as one JSON array under a fixed key. The array is
read once at startup and written in full on every mutation. The in-memory
copy is the source of truth: a failed write is reported to the caller but
the mutation stays applied and is persisted by the next successful write.

All mutations run under a single asyncio lock, so the scheduler sweep and
user actions never interleave partial field writes.
"""

import asyncio
import json
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import redis.asyncio as redis
from pydantic import ValidationError

from crm.config import settings
from crm.db.models import Budget, ClientRecord, ClientStatus
from crm.utils.logger import get_logger, log_storage_error
from crm.utils.phone import normalize_phone


logger = get_logger(__name__)


class StorageNotConnectedError(RuntimeError):
    """Raised when the store is used before connect() and load()."""
    pass


class StorageWriteError(RuntimeError):
    """Raised when persisting the client array fails. In-memory state is kept."""
    pass


class ClientNotFoundError(LookupError):
    """Raised when a client id does not exist in the store."""
    pass


class ClientStore:
    """
    Owning repository of client records.

    The only component that writes client state. Reads return copies so
    callers cannot mutate stored records behind the store's back.
    """

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        storage_key: Optional[str] = None
    ):
        self.redis_client = redis_client
        self.storage_key = storage_key or settings.clients_storage_key
        self._clients: Dict[str, ClientRecord] = {}
        self._lock = asyncio.Lock()
        self._loaded = False

    async def connect(self, redis_url: Optional[str] = None):
        """
        Connect to Redis server.

        Args:
            redis_url: Redis connection string. If None, uses settings.redis_url.

        Raises:
            ValueError: If redis_url is not provided and settings.redis_url is not set
        """
        if self.redis_client is not None:
            return

        url = redis_url or settings.redis_url
        if not url:
            raise ValueError("REDIS_URL not configured in settings")

        # redis.from_url() is not awaitable, it returns the client directly
        self.redis_client = redis.from_url(
            url,
            encoding="utf-8",
            decode_responses=True
        )
        await self.redis_client.ping()

        logger.info(f"Client store connected to Redis at {url}")

    async def close(self):
        """Close Redis connection."""
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("Client store closed Redis connection")

    def _ensure_connected(self):
        """Verify Redis client is initialized."""
        if self.redis_client is None:
            raise StorageNotConnectedError(
                "Redis client not initialized. Call await store.connect() first."
            )

    def _ensure_loaded(self):
        if not self._loaded:
            raise StorageNotConnectedError(
                "Clients not loaded. Call await store.load() first."
            )

    async def load(self) -> int:
        """
        Read the client array from storage once.

        Fields missing from older saved data take their defaults. Records
        that cannot be parsed are logged and skipped. An unreadable or
        malformed key starts the store empty.

        Returns:
            Number of clients loaded

        Raises:
            StorageNotConnectedError: If Redis client not connected
        """
        self._ensure_connected()

        self._clients = {}
        self._loaded = True

        try:
            raw = await self.redis_client.get(self.storage_key)
        except redis.RedisError as e:
            log_storage_error(self.storage_key, str(e), context='load')
            return 0

        if not raw:
            logger.info("No saved clients found, starting empty")
            return 0

        try:
            items = json.loads(raw)
        except json.JSONDecodeError as e:
            log_storage_error(self.storage_key, str(e), context='decode')
            return 0

        if not isinstance(items, list):
            log_storage_error(
                self.storage_key,
                f"expected a JSON array, got {type(items).__name__}",
                context='decode'
            )
            return 0

        for item in items:
            try:
                client = ClientRecord.model_validate(item)
            except ValidationError as e:
                logger.warning(f"Skipping invalid saved client record: {e}")
                continue
            self._clients[client.id] = client

        logger.info(f"Loaded {len(self._clients)} clients from storage")
        return len(self._clients)

    async def _persist(self):
        """
        Write the full client array.

        Raises:
            StorageWriteError: If the write fails
        """
        payload = json.dumps(
            [client.to_storage() for client in self._clients.values()]
        )
        try:
            await self.redis_client.set(self.storage_key, payload)
        except redis.RedisError as e:
            log_storage_error(self.storage_key, str(e), context='write')
            raise StorageWriteError(f"Failed to persist clients: {e}") from e

    def get_all(self) -> List[ClientRecord]:
        """Return copies of every client, in insertion order."""
        self._ensure_loaded()
        return [client.model_copy(deep=True) for client in self._clients.values()]

    def _get_stored(self, client_id: str) -> ClientRecord:
        client = self._clients.get(client_id)
        if client is None:
            raise ClientNotFoundError(f"Client not found: {client_id}")
        return client

    def get(self, client_id: str) -> ClientRecord:
        """
        Return a copy of one client.

        Raises:
            ClientNotFoundError: If the id is unknown
        """
        self._ensure_loaded()
        return self._get_stored(client_id).model_copy(deep=True)

    async def create(self, **fields) -> ClientRecord:
        """
        Create and persist a new client with initial follow-up state.

        Returns:
            The created record
        """
        self._ensure_loaded()
        client = ClientRecord.new(**fields)

        async with self._lock:
            self._clients[client.id] = client
            await self._persist()

        logger.info(f"Created client {client.id} ({client.company_name})")
        return client.model_copy(deep=True)

    async def update(self, client_id: str, **fields) -> ClientRecord:
        """
        Merge fields into an existing client and persist.

        Only the given fields change; every other field keeps its current
        value, even if another caller updated it since this caller last read.

        Args:
            client_id: Client to update
            **fields: snake_case field names and their new values

        Returns:
            The updated record

        Raises:
            ClientNotFoundError: If the id is unknown
            ValueError: If 'id' is among the fields
            StorageWriteError: If persisting fails (update stays applied)
        """
        self._ensure_loaded()

        if 'id' in fields:
            raise ValueError("Client id is immutable")

        async with self._lock:
            updated = self._merge(client_id, fields)
            await self._persist()

        return updated.model_copy(deep=True)

    async def update_where(
        self,
        client_id: str,
        condition: Callable[[ClientRecord], bool],
        **fields
    ) -> Optional[ClientRecord]:
        """
        Merge fields only if condition holds for the client's current state.

        The condition is evaluated under the store lock, against the record
        as it is at write time rather than as some earlier read saw it.

        Returns:
            The updated record, or None if the condition did not hold
        """
        self._ensure_loaded()

        async with self._lock:
            if not condition(self._get_stored(client_id)):
                return None
            updated = self._merge(client_id, fields)
            await self._persist()

        return updated.model_copy(deep=True)

    async def update_with(
        self,
        client_id: str,
        build: Callable[[ClientRecord], Optional[Dict]]
    ) -> Tuple[ClientRecord, bool]:
        """
        Merge fields computed from the client's current state.

        build receives the stored record under the store lock and returns
        the fields to merge, or None to leave the client unchanged. Use this
        when the new values depend on the old ones (appending to a list,
        countdown transitions).

        Returns:
            (record, changed): the current record, and whether it was updated

        Raises:
            ClientNotFoundError: If the id is unknown
            ValueError: If build returns 'id' or an unknown field
            StorageWriteError: If persisting fails (update stays applied)
        """
        self._ensure_loaded()

        async with self._lock:
            current = self._get_stored(client_id)
            fields = build(current.model_copy(deep=True))
            if fields is None:
                return current.model_copy(deep=True), False
            if 'id' in fields:
                raise ValueError("Client id is immutable")
            updated = self._merge(client_id, fields)
            await self._persist()

        return updated.model_copy(deep=True), True

    def _merge(self, client_id: str, fields: Dict) -> ClientRecord:
        """Apply fields to the stored record in memory. Caller holds the lock."""
        current = self._get_stored(client_id)

        unknown = set(fields) - set(ClientRecord.model_fields)
        if unknown:
            raise ValueError(f"Unknown client fields: {sorted(unknown)}")

        merged = current.model_dump()
        merged.update(fields)
        updated = ClientRecord.model_validate(merged)

        self._clients[client_id] = updated
        return updated

    async def delete(self, client_id: str):
        """
        Delete a client and persist.

        Raises:
            ClientNotFoundError: If the id is unknown
        """
        self._ensure_loaded()

        async with self._lock:
            if client_id not in self._clients:
                raise ClientNotFoundError(f"Client not found: {client_id}")
            del self._clients[client_id]
            await self._persist()

        logger.info(f"Deleted client {client_id}")

    async def import_clients(self, records: Iterable[Dict]) -> List[ClientRecord]:
        """
        Add clients whose phone number is not already on file.

        Phone identity is country code + number, normalized to E164 where
        possible. Duplicates within the imported batch are skipped too.

        Args:
            records: Client field dicts (snake_case or camelCase keys)

        Returns:
            The created records
        """
        self._ensure_loaded()
        created: List[ClientRecord] = []

        async with self._lock:
            known_phones = {
                normalize_phone(c.country_code, c.phone_number)
                for c in self._clients.values()
            }

            for fields in records:
                client = ClientRecord.new(**fields)
                phone_key = normalize_phone(client.country_code, client.phone_number)
                if phone_key and phone_key in known_phones:
                    logger.debug(f"Skipping import of existing phone {phone_key}")
                    continue

                known_phones.add(phone_key)
                self._clients[client.id] = client
                created.append(client)

            if created:
                await self._persist()

        logger.info(f"Imported {len(created)} new clients")
        return [client.model_copy(deep=True) for client in created]

    async def add_budget(self, client_id: str, budget: Budget) -> ClientRecord:
        """Attach a budget to a client."""
        self._ensure_loaded()

        async with self._lock:
            current = self._get_stored(client_id)
            updated = self._merge(client_id, {'budgets': current.budgets + [budget]})
            await self._persist()

        return updated.model_copy(deep=True)

    async def delete_budget(self, client_id: str, budget_id: str) -> ClientRecord:
        """Remove a budget from a client. Unknown budget ids leave it unchanged."""
        self._ensure_loaded()

        async with self._lock:
            current = self._get_stored(client_id)
            remaining = [b for b in current.budgets if b.id != budget_id]
            updated = self._merge(client_id, {'budgets': remaining})
            await self._persist()

        return updated.model_copy(deep=True)

    def partition_by_status(self) -> Tuple[List[ClientRecord], List[ClientRecord]]:
        """
        Split clients into (active, suspended) lists.
        """
        active, suspended = [], []
        for client in self.get_all():
            if client.status == ClientStatus.SUSPENDED:
                suspended.append(client)
            else:
                active.append(client)
        return active, suspended
