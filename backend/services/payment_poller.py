"""
Pending-Payment Poller
Background job that settles outstanding payment intents against the chain.

Each cycle:
1. Sweep: lapsed intents -> expired (or back to active for early renewals),
   lapsed active periods -> expired
2. Verify every remaining pending_payment row, bounded by a semaphore
3. Activate the ones that verify as paid

The poller is the only caller of the chain verifiers. Overlapping cycles are
skipped rather than queued.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from billing.models import SubscriptionRecord, SubscriptionStatus
from billing.networks import Network
from billing.periods import utcnow
from billing.subscriptions import SubscriptionStateMachine
from infrastructure.config import PollerConfig
from verifiers import ChainVerifier, VerificationOutcome, VerificationResult

logger = logging.getLogger("PaymentPoller")

JOB_ID = "payment_poller"


class PaymentPoller:
    def __init__(
        self,
        state: SubscriptionStateMachine,
        verifiers: Dict[Network, ChainVerifier],
        config: PollerConfig = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.state = state
        self.store = state.store
        self.verifiers = verifiers
        self.config = config or PollerConfig()
        self.clock = clock

        self._cycle_lock = asyncio.Lock()
        self._semaphore = asyncio.Semaphore(max(1, self.config.max_concurrency))
        self.scheduler: Optional[AsyncIOScheduler] = None

        self.cycles_run = 0
        self.cycles_skipped = 0
        self.last_cycle: Optional[Dict] = None

    # ===========================================
    # CYCLE
    # ===========================================

    async def run_cycle(self) -> Optional[Dict]:
        """Run one poll cycle. Returns its summary, or None if a cycle was already running."""
        if self._cycle_lock.locked():
            self.cycles_skipped += 1
            logger.warning("[PaymentPoller] Previous cycle still running, skipping")
            return None

        async with self._cycle_lock:
            started = self.clock()
            summary = {
                "started_at": started.isoformat(),
                "checked": 0,
                "activated": 0,
                "unpaid": 0,
                "underpaid": 0,
                "indeterminate": 0,
                "expired_intents": 0,
                "expired_periods": 0,
            }

            await self._sweep(summary)

            pending = await self.store.list_by_status(SubscriptionStatus.PENDING_PAYMENT)
            if pending:
                consumed = await self.store.consumed_tx_refs()
                outcomes = await asyncio.gather(*(self._settle(row, consumed) for row in pending))
                for activated, outcome in outcomes:
                    summary["checked"] += 1
                    if activated:
                        summary["activated"] += 1
                    elif outcome is not None and outcome != VerificationOutcome.PAID:
                        summary[outcome.value] += 1

            finished = self.clock()
            summary["finished_at"] = finished.isoformat()
            summary["duration_seconds"] = round((finished - started).total_seconds(), 3)

            self.cycles_run += 1
            self.last_cycle = summary
            logger.info(
                f"[PaymentPoller] Cycle complete: {summary['checked']} checked, "
                f"{summary['activated']} activated, {summary['indeterminate']} indeterminate, "
                f"{summary['expired_intents']} intents expired, {summary['expired_periods']} periods expired"
            )
            return summary

    async def _sweep(self, summary: Dict):
        now = self.clock()

        for row in await self.store.list_by_status(SubscriptionStatus.PENDING_PAYMENT):
            if row.intent_expires_at and now > row.intent_expires_at:
                await self.state.expire_intent(row)
                summary["expired_intents"] += 1

        for row in await self.store.list_by_status(SubscriptionStatus.ACTIVE):
            if row.period_end and now > row.period_end:
                await self.state.expire_period(row)
                summary["expired_periods"] += 1

    async def _settle(self, row: SubscriptionRecord, consumed) -> tuple:
        """Verify one pending row and activate it if paid. Returns (activated, outcome)."""
        try:
            return await self._settle_row(row, consumed)
        except Exception as e:
            logger.error(f"[PaymentPoller] Error settling {row.linked_payment_id}: {e}", exc_info=True)
            return False, VerificationOutcome.INDETERMINATE

    async def _settle_row(self, row: SubscriptionRecord, consumed) -> tuple:
        verifier = self.verifiers.get(row.network)
        if verifier is None:
            logger.warning(f"[PaymentPoller] No verifier for {row.network} ({row.linked_payment_id})")
            return False, VerificationOutcome.INDETERMINATE

        async with self._semaphore:
            result = await self._verify(verifier, row, consumed)

        if result.indeterminate:
            logger.warning(f"[PaymentPoller] {row.linked_payment_id}: indeterminate, retrying next cycle")
            return False, result.outcome
        if not result.paid:
            if result.outcome == VerificationOutcome.UNDERPAID:
                logger.info(f"[PaymentPoller] {row.linked_payment_id}: {result.reason}")
            return False, result.outcome

        transfer = result.transfer
        tx_ref = transfer.tx_ref if transfer else None
        if tx_ref:
            # One transfer pays at most one intent, including within this cycle
            if tx_ref in consumed:
                return False, VerificationOutcome.UNPAID
            consumed.add(tx_ref)

        activated = await self.state.activate(
            row.user_id,
            row.linked_payment_id,
            tx_ref=tx_ref,
            amount=result.amount,
            paid_at=transfer.block_time if transfer else None,
        )
        return activated, result.outcome

    async def _verify(self, verifier: ChainVerifier, row: SubscriptionRecord, consumed) -> VerificationResult:
        if row.claimed_tx_ref and row.claimed_tx_ref not in consumed:
            result = await verifier.verify_transaction(
                row.claimed_tx_ref,
                row.destination_address,
                row.expected_amount,
                since=row.intent_created_at,
            )
            if result.paid or result.indeterminate:
                return result

        return await verifier.verify(
            row.destination_address,
            row.expected_amount,
            since=row.intent_created_at,
            exclude=consumed,
        )

    # ===========================================
    # SCHEDULING
    # ===========================================

    def start(self):
        """Schedule run_cycle on an interval (call from the app lifespan)."""
        if self.scheduler is not None:
            return

        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self.run_cycle,
            IntervalTrigger(seconds=self.config.interval_seconds),
            id=JOB_ID,
            name="Verify pending payments",
            max_instances=1,
            coalesce=True,
            next_run_time=self.clock() + timedelta(seconds=self.config.initial_delay_seconds),
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(f"[PaymentPoller] Started (interval: {self.config.interval_seconds}s)")

    def stop(self):
        if self.scheduler is None:
            return
        self.scheduler.shutdown(wait=False)
        self.scheduler = None
        logger.info("[PaymentPoller] Stopped")

    async def aclose(self):
        self.stop()
        for verifier in self.verifiers.values():
            await verifier.aclose()

    def get_stats(self) -> Dict:
        next_run = None
        if self.scheduler is not None:
            job = self.scheduler.get_job(JOB_ID)
            if job and job.next_run_time:
                next_run = job.next_run_time.isoformat()

        return {
            "running": self.scheduler is not None,
            "cycle_in_progress": self._cycle_lock.locked(),
            "interval_seconds": self.config.interval_seconds,
            "max_concurrency": self.config.max_concurrency,
            "cycles_run": self.cycles_run,
            "cycles_skipped": self.cycles_skipped,
            "next_run_at": next_run,
            "last_cycle": self.last_cycle,
        }
