"""
Subscription State Machine

Owns status and period fields of every subscription row. Legal moves:

    free            -> pending_payment   intent created
    expired         -> pending_payment   renewal intent created
    pending_payment -> pending_payment   intent superseded by a newer one
    active          -> pending_payment   early renewal (paid time is carried)
    pending_payment -> active            verified payment, exactly once
    pending_payment -> expired           intent window elapsed unpaid
    pending_payment -> active            early renewal abandoned, carried time remains
    active          -> expired           period_end passed (read or sweep)
    active          -> cancelled         explicit cancel; terminal

Every change after the row exists goes through
`store.conditional_update(user_id, expected_status, expected_payment_id, ...)`,
so two workers confirming the same payment can only activate it once.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from infrastructure.errors import (
    ConcurrentActivationConflict,
    InvalidTransition,
    NotActive,
)
from .events import BillingEvent, EventBus, EventType
from .intents import PaymentIntent
from .models import CLEARED_INTENT_FIELDS, SubscriptionRecord, SubscriptionStatus
from .periods import add_months, utcnow
from .store import SubscriptionStore, touch

logger = logging.getLogger("SubscriptionStateMachine")

Status = SubscriptionStatus

OPEN_INTENT_FROM = {Status.FREE, Status.EXPIRED, Status.PENDING_PAYMENT, Status.ACTIVE}
MAX_CONFLICT_RETRIES = 3


class SubscriptionStateMachine:
    def __init__(
        self,
        store: SubscriptionStore,
        events: EventBus = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.events = events or EventBus()
        self.clock = clock

    # ===========================================
    # READS
    # ===========================================

    async def current(self, user_id: str) -> Optional[SubscriptionRecord]:
        """Read the row, applying any expiry that is already due."""
        row = await self.store.read(user_id)
        if row is None:
            return None
        return await self._apply_due_expiry(row)

    async def _apply_due_expiry(self, row: SubscriptionRecord) -> SubscriptionRecord:
        now = self.clock()
        if row.status == Status.ACTIVE and row.period_end and now > row.period_end:
            return await self.expire_period(row)
        if row.status == Status.PENDING_PAYMENT and row.intent_expires_at and now > row.intent_expires_at:
            return await self.expire_intent(row)
        return row

    # ===========================================
    # INTENT CREATION
    # ===========================================

    async def open_intent(self, intent: PaymentIntent) -> SubscriptionRecord:
        """Link a fresh intent to the user's row, superseding any pending one."""
        for _ in range(MAX_CONFLICT_RETRIES):
            row = await self.current(intent.user_id)
            fields = touch({
                "status": Status.PENDING_PAYMENT,
                "plan_id": intent.plan_id,
                "linked_payment_id": intent.payment_id,
                "network": intent.network,
                "destination_address": intent.destination_address,
                "expected_amount": intent.expected_amount,
                "months": intent.months,
                "intent_created_at": intent.created_at,
                "intent_expires_at": intent.expires_at,
                "claimed_tx_ref": None,
            }, self.clock())

            if row is None:
                saved = await self.store.write(SubscriptionRecord(user_id=intent.user_id, **fields))
                await self._emit_intent_events(intent, Status.FREE, saved)
                return saved

            if row.status not in OPEN_INTENT_FROM:
                raise InvalidTransition(row.status.value, Status.PENDING_PAYMENT.value)

            if row.status == Status.PENDING_PAYMENT:
                logger.info(f"[StateMachine] {intent.user_id}: superseding {row.linked_payment_id} with {intent.payment_id}")

            try:
                saved = await self.store.conditional_update(
                    intent.user_id, row.status, row.linked_payment_id, fields
                )
            except ConcurrentActivationConflict:
                logger.warning(f"[StateMachine] {intent.user_id}: row changed while opening intent, retrying")
                continue

            await self._emit_intent_events(intent, row.status, saved)
            return saved

        raise ConcurrentActivationConflict(intent.user_id, "any", intent.payment_id)

    async def _emit_intent_events(self, intent: PaymentIntent, from_status: Status, saved: SubscriptionRecord):
        await self.events.emit(BillingEvent(
            type=EventType.PAYMENT_CREATED,
            user_id=intent.user_id,
            occurred_at=self.clock(),
            payment_id=intent.payment_id,
            data=intent.to_dict(),
        ))
        if from_status != saved.status:
            await self._emit_state_change(saved, from_status)

    async def record_claim(self, user_id: str, payment_id: str, tx_ref: str) -> SubscriptionRecord:
        """Attach a user-submitted transaction ref to the pending intent."""
        return await self.store.conditional_update(
            user_id,
            Status.PENDING_PAYMENT,
            payment_id,
            touch({"claimed_tx_ref": tx_ref}, self.clock()),
        )

    # ===========================================
    # ACTIVATION
    # ===========================================

    async def activate(
        self,
        user_id: str,
        payment_id: str,
        tx_ref: Optional[str] = None,
        amount: Optional[Decimal] = None,
        paid_at: Optional[datetime] = None,
    ) -> bool:
        """
        pending_payment -> active for `payment_id`.

        Returns True only for the call that actually performed the transition.
        A repeat confirmation, a superseded payment id or a lost race returns
        False and changes nothing.
        """
        row = await self.store.read(user_id)
        if row is None or row.status != Status.PENDING_PAYMENT or row.linked_payment_id != payment_id:
            logger.info(f"[StateMachine] {user_id}: activation of {payment_id} is a no-op")
            return False

        now = self.clock()
        if row.intent_expires_at and (paid_at or now) > row.intent_expires_at:
            logger.info(f"[StateMachine] {user_id}: {payment_id} paid after its window, not activating")
            return False

        carried = row.period_end is not None and row.period_end > now
        period_start = row.period_start if carried else now
        period_end = add_months(row.period_end if carried else now, row.months or 1)

        fields = touch({
            **CLEARED_INTENT_FIELDS,
            "status": Status.ACTIVE,
            "period_start": period_start,
            "period_end": period_end,
            "payment_tx_ref": tx_ref,
        }, now)

        try:
            saved = await self.store.conditional_update(user_id, Status.PENDING_PAYMENT, payment_id, fields)
        except ConcurrentActivationConflict:
            logger.info(f"[StateMachine] {user_id}: {payment_id} already applied by another worker")
            return False

        logger.info(f"[StateMachine] ✅ {user_id} active on {saved.plan_id} until {period_end.isoformat()}")

        await self.events.emit(BillingEvent(
            type=EventType.PAYMENT_CONFIRMED,
            user_id=user_id,
            occurred_at=now,
            payment_id=payment_id,
            data={
                "plan_id": saved.plan_id,
                "months": saved.months,
                "network": row.network.value if row.network else None,
                "amount": str(amount) if amount is not None else None,
                "tx_ref": tx_ref,
                "period_start": period_start.isoformat(),
                "period_end": period_end.isoformat(),
            },
        ))
        await self._emit_state_change(saved, Status.PENDING_PAYMENT)
        return True

    # ===========================================
    # EXPIRY & CANCELLATION
    # ===========================================

    async def expire_intent(self, row: SubscriptionRecord) -> SubscriptionRecord:
        """Close an unpaid intent whose window has elapsed."""
        now = self.clock()
        carried = row.period_end is not None and row.period_end > now
        target = Status.ACTIVE if carried else Status.EXPIRED

        fields = touch({**CLEARED_INTENT_FIELDS, "status": target}, now)
        try:
            saved = await self.store.conditional_update(
                row.user_id, Status.PENDING_PAYMENT, row.linked_payment_id, fields
            )
        except ConcurrentActivationConflict:
            return await self.store.read(row.user_id)

        logger.info(f"[StateMachine] {row.user_id}: intent {row.linked_payment_id} lapsed -> {target.value}")
        await self._emit_state_change(saved, Status.PENDING_PAYMENT)
        return saved

    async def expire_period(self, row: SubscriptionRecord) -> SubscriptionRecord:
        fields = touch({"status": Status.EXPIRED}, self.clock())
        try:
            saved = await self.store.conditional_update(row.user_id, Status.ACTIVE, row.linked_payment_id, fields)
        except ConcurrentActivationConflict:
            return await self.store.read(row.user_id)

        logger.info(f"[StateMachine] {row.user_id}: period ended {row.period_end.isoformat()}")
        await self._emit_state_change(saved, Status.ACTIVE)
        return saved

    async def cancel(self, user_id: str) -> SubscriptionRecord:
        row = await self.current(user_id)
        if row is None or row.status != Status.ACTIVE:
            raise NotActive(user_id, row.status.value if row else Status.FREE.value)

        try:
            saved = await self.store.conditional_update(
                user_id, Status.ACTIVE, row.linked_payment_id, touch({"status": Status.CANCELLED}, self.clock())
            )
        except ConcurrentActivationConflict:
            latest = await self.store.read(user_id)
            raise NotActive(user_id, latest.status.value if latest else Status.FREE.value)

        logger.info(f"[StateMachine] {user_id}: cancelled")
        await self._emit_state_change(saved, Status.ACTIVE)
        return saved

    async def _emit_state_change(self, saved: SubscriptionRecord, from_status: Status):
        await self.events.emit(BillingEvent(
            type=EventType.STATE_CHANGED,
            user_id=saved.user_id,
            occurred_at=self.clock(),
            payment_id=saved.linked_payment_id,
            from_status=from_status.value,
            to_status=saved.status.value,
        ))
