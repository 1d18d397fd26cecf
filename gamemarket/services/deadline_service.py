# gamemarket/services/deadline_service.py
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from ..config import Config
from ..models.refund import RefundStatus
from .lifecycle import seller_deadline_expired

class DeadlineService:
    """Periodic sweep that escalates refunds the seller never answered"""

    def __init__(self, db, refund_service, interval: Optional[float] = None):
        self.db = db
        self.refund_service = refund_service
        self.interval = interval if interval is not None else Config.DEADLINE_SWEEP_INTERVAL
        self.logger = logging.getLogger(__name__)

    async def sweep(self, now: Optional[datetime] = None) -> int:
        """Escalate every overdue pending request; returns how many moved"""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(hours=Config.SELLER_RESPONSE_HOURS)

        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT *
                FROM refund_requests
                WHERE status = $1
                  AND seller_responded_at IS NULL
                  AND created_at < $2
                ORDER BY created_at
            """, RefundStatus.PENDING.value, cutoff)

        escalated = 0
        for row in rows:
            refund = dict(row)
            if not seller_deadline_expired(refund['created_at'], refund['seller_responded_at'], now):
                continue
            if await self.refund_service.escalate_overdue(refund):
                escalated += 1

        if escalated:
            self.logger.info(f"Escalated {escalated} refund request(s) past the seller deadline")
        return escalated

    async def run_forever(self):
        while True:
            try:
                await self.sweep()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error(f"Deadline sweep failed: {e}", exc_info=True)
            await asyncio.sleep(self.interval)
