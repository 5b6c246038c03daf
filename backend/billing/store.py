"""
Subscription persistence.

Two backends share one contract:
- InMemorySubscriptionStore: dev/tests, a dict guarded by an asyncio.Lock
- SupabaseSubscriptionStore: PostgREST table keyed by user_id

`conditional_update` is the only way a status changes after the row exists:
it applies `fields` only if the row still has `expected_status` and
`expected_payment_id`, otherwise it raises ConcurrentActivationConflict.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from infrastructure.config import StorageConfig
from infrastructure.errors import ConcurrentActivationConflict, DatabaseError
from infrastructure.supabase_rest import SupabaseREST
from .models import SubscriptionRecord, SubscriptionStatus, serialize_value

logger = logging.getLogger("SubscriptionStore")


class SubscriptionStore(ABC):

    @abstractmethod
    async def read(self, user_id: str) -> Optional[SubscriptionRecord]:
        ...

    @abstractmethod
    async def write(self, record: SubscriptionRecord) -> SubscriptionRecord:
        """Insert or overwrite the user's row."""

    @abstractmethod
    async def conditional_update(
        self,
        user_id: str,
        expected_status: SubscriptionStatus,
        expected_payment_id: Optional[str],
        fields: Dict[str, Any],
    ) -> SubscriptionRecord:
        ...

    @abstractmethod
    async def list_by_status(self, status: SubscriptionStatus) -> List[SubscriptionRecord]:
        ...

    @abstractmethod
    async def consumed_tx_refs(self) -> Set[str]:
        """Transaction refs already credited to some subscription."""


class InMemorySubscriptionStore(SubscriptionStore):

    def __init__(self):
        self._rows: Dict[str, SubscriptionRecord] = {}
        self._lock = asyncio.Lock()

    async def read(self, user_id: str) -> Optional[SubscriptionRecord]:
        row = self._rows.get(user_id)
        return replace(row) if row else None

    async def write(self, record: SubscriptionRecord) -> SubscriptionRecord:
        async with self._lock:
            self._rows[record.user_id] = replace(record)
        return replace(record)

    async def conditional_update(self, user_id, expected_status, expected_payment_id, fields):
        async with self._lock:
            row = self._rows.get(user_id)
            if (
                row is None
                or row.status != expected_status
                or row.linked_payment_id != expected_payment_id
            ):
                raise ConcurrentActivationConflict(user_id, expected_status.value, expected_payment_id)
            updated = replace(row, **fields)
            self._rows[user_id] = updated
        return replace(updated)

    async def list_by_status(self, status):
        return [replace(r) for r in self._rows.values() if r.status == status]

    async def consumed_tx_refs(self) -> Set[str]:
        return {r.payment_tx_ref for r in self._rows.values() if r.payment_tx_ref}


class SupabaseSubscriptionStore(SubscriptionStore):
    """
    Expects a table like:

        create table crypto_subscriptions (
            user_id text primary key,
            status text not null default 'free',
            plan_id text, period_start timestamptz, period_end timestamptz,
            linked_payment_id text, network text, destination_address text,
            expected_amount numeric, months int,
            intent_created_at timestamptz, intent_expires_at timestamptz,
            claimed_tx_ref text, payment_tx_ref text, updated_at timestamptz
        );
    """

    def __init__(self, client: SupabaseREST, table: str = "crypto_subscriptions"):
        if not client.is_available:
            raise DatabaseError("Supabase not configured")
        self.client = client
        self.table = table

    async def read(self, user_id: str) -> Optional[SubscriptionRecord]:
        result = await self.client.table(self.table).select("*").eq("user_id", user_id).single().execute()
        return SubscriptionRecord.from_row(result.data) if result.data else None

    async def write(self, record: SubscriptionRecord) -> SubscriptionRecord:
        result = await self.client.table(self.table).upsert(record.to_row(), on_conflict="user_id").execute()
        if not result.data:
            raise DatabaseError(f"Upsert of subscription for {record.user_id} returned no row")
        return SubscriptionRecord.from_row(result.data[0])

    async def conditional_update(self, user_id, expected_status, expected_payment_id, fields):
        body = {key: serialize_value(value) for key, value in fields.items()}
        query = (
            self.client.table(self.table)
            .update(body)
            .eq("user_id", user_id)
            .eq("status", expected_status.value)
        )
        if expected_payment_id is None:
            query = query.is_null("linked_payment_id")
        else:
            query = query.eq("linked_payment_id", expected_payment_id)

        result = await query.execute()
        if not result.data:
            raise ConcurrentActivationConflict(user_id, expected_status.value, expected_payment_id)
        return SubscriptionRecord.from_row(result.data[0])

    async def list_by_status(self, status):
        result = await self.client.table(self.table).select("*").eq("status", status.value).execute()
        return [SubscriptionRecord.from_row(row) for row in result.data]

    async def consumed_tx_refs(self) -> Set[str]:
        result = await self.client.table(self.table).select("payment_tx_ref").execute()
        return {row["payment_tx_ref"] for row in result.data if row.get("payment_tx_ref")}


def build_store(storage: StorageConfig) -> SubscriptionStore:
    if storage.backend == "supabase":
        logger.info("[SubscriptionStore] Using Supabase backend")
        return SupabaseSubscriptionStore(
            SupabaseREST(storage.supabase_url, storage.supabase_key),
            storage.subscriptions_table,
        )
    logger.info("[SubscriptionStore] Using in-memory backend")
    return InMemorySubscriptionStore()


def touch(fields: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    return {**fields, "updated_at": now}
