"""Payment reconciliation job.

Expires orders stuck in pending_payment past PAYMENT_TIMEOUT_MINUTES and
gives their stock back. Covers shoppers who close the payment page, webhooks
that never arrive and network failures during redirect.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import sessionmaker

from app.config import settings
from app.models import Order
from app.models.order import OrderStatus, PaymentStatus
from app.services.order_payment import expire_order

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    processed: int = 0
    expired: int = 0
    stock_restored: int = 0
    errors: list[str] = field(default_factory=list)


def find_orphaned_order_ids(db, cutoff: datetime) -> list[int]:
    rows = (
        db.query(Order.id)
        .filter(
            Order.payment_status == PaymentStatus.PENDING_PAYMENT,
            Order.status == OrderStatus.PENDING_PAYMENT,
            Order.created_at < cutoff,
        )
        .order_by(Order.id)
        .all()
    )
    return [row.id for row in rows]


def reconcile_orphaned_payments(
    session_factory: sessionmaker,
    timeout_minutes: int | None = None,
    now: datetime | None = None,
) -> ReconciliationResult:
    """Expire abandoned pending_payment orders, one transaction per order."""
    result = ReconciliationResult()
    timeout_minutes = settings.PAYMENT_TIMEOUT_MINUTES if timeout_minutes is None else timeout_minutes
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(minutes=timeout_minutes)

    logger.info("Starting payment reconciliation (cutoff=%s, timeout_minutes=%s)", cutoff.isoformat(), timeout_minutes)

    try:
        db = session_factory()
        try:
            order_ids = find_orphaned_order_ids(db, cutoff)
        finally:
            db.close()
    except Exception as exc:
        result.errors.append(f"Reconciliation job failed: {exc}")
        logger.error("Payment reconciliation query failed: %s", exc, exc_info=True)
        return result

    result.processed = len(order_ids)
    if not order_ids:
        logger.info("No orphaned payments found")
        return result

    logger.info("Found %s orphaned pending_payment order(s)", len(order_ids))

    for order_id in order_ids:
        db = session_factory()
        try:
            transition = expire_order(db, order_id, cutoff=cutoff, now=now)
            if transition.changed:
                result.expired += 1
                result.stock_restored += transition.stock_restored
                logger.info(
                    "Expired orphaned order %s, %s stock line(s) restored",
                    order_id,
                    transition.stock_restored,
                )
        except Exception as exc:
            result.errors.append(f"Failed to expire order #{order_id}: {exc}")
            logger.error("Failed to expire orphaned order %s: %s", order_id, exc, exc_info=True)
        finally:
            db.close()

    logger.info(
        "Payment reconciliation completed: processed=%s expired=%s stock_restored=%s errors=%s",
        result.processed,
        result.expired,
        result.stock_restored,
        len(result.errors),
    )
    return result


class PaymentReconciliationScheduler:
    """Runs reconcile_orphaned_payments on a fixed interval inside the event loop.

    The sweep itself is blocking database work and runs in a worker thread;
    ticks never overlap because the loop awaits each run before sleeping.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        interval_minutes: float = 15,
        initial_delay_seconds: float = 10,
        timeout_minutes: int | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.interval_minutes = interval_minutes
        self.initial_delay_seconds = initial_delay_seconds
        self.timeout_minutes = timeout_minutes
        self.last_result: ReconciliationResult | None = None
        self._task: asyncio.Task | None = None

    @classmethod
    def from_settings(cls, session_factory: sessionmaker) -> "PaymentReconciliationScheduler":
        return cls(
            session_factory=session_factory,
            interval_minutes=settings.RECONCILIATION_INTERVAL_MINUTES,
            initial_delay_seconds=settings.RECONCILIATION_INITIAL_DELAY_SECONDS,
            timeout_minutes=settings.PAYMENT_TIMEOUT_MINUTES,
        )

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run_loop())
            logger.info("Payment reconciliation scheduler started (every %s min)", self.interval_minutes)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Payment reconciliation scheduler stopped")

    async def run_once(self) -> ReconciliationResult:
        self.last_result = await asyncio.to_thread(
            reconcile_orphaned_payments,
            self.session_factory,
            self.timeout_minutes,
        )
        return self.last_result

    async def _run_loop(self) -> None:
        await asyncio.sleep(self.initial_delay_seconds)
        while True:
            try:
                await self.run_once()
            except Exception as exc:
                logger.error("Scheduled payment reconciliation failed: %s", exc, exc_info=True)
            await asyncio.sleep(self.interval_minutes * 60)
