# gamemarket/services/payment_poller.py
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional
from ..config import Config
from ..models.order import OrderStatus

ApprovedCallback = Callable[[str], Awaitable[None]]

FINAL_STATUSES = {
    OrderStatus.APPROVED.value,
    OrderStatus.DELIVERED.value,
    OrderStatus.CANCELLED.value,
    OrderStatus.REJECTED.value,
    OrderStatus.REFUNDED.value,
    OrderStatus.REFUND_REQUESTED.value,
}

class PaymentStatusPoller:
    """Re-checks pending payments on a fixed interval.

    One task per order; a check finishes before the next one is scheduled,
    so results are never acted on concurrently.
    """

    def __init__(self, payment_service, interval: Optional[float] = None):
        self.payment_service = payment_service
        self.interval = interval if interval is not None else Config.PAYMENT_POLL_INTERVAL
        self._tasks: Dict[str, asyncio.Task] = {}
        self.logger = logging.getLogger(__name__)

    def is_watching(self, order_id) -> bool:
        return str(order_id) in self._tasks

    def watch(self, order_id, on_approved: Optional[ApprovedCallback] = None) -> asyncio.Task:
        key = str(order_id)
        if key in self._tasks:
            return self._tasks[key]

        task = asyncio.create_task(self._poll(key, on_approved))
        self._tasks[key] = task
        task.add_done_callback(lambda _: self._tasks.pop(key, None))
        self.logger.info(f"Polling payment status for order {key}")
        return task

    async def _poll(self, order_id: str, on_approved: Optional[ApprovedCallback]) -> str:
        while True:
            await asyncio.sleep(self.interval)
            try:
                result = await self.payment_service.check_payment_status(order_id)
            except Exception as e:
                self.logger.error(f"Status check crashed for order {order_id}: {e}", exc_info=True)
                continue
            if not result["success"]:
                self.logger.warning(f"Status check failed for order {order_id}: {result['error']}")
                if result.get("code") == "not_found":
                    return OrderStatus.CANCELLED.value
                continue

            status = result["status"]
            if status == OrderStatus.APPROVED.value:
                self.logger.info(f"Payment approved for order {order_id}")
                if on_approved:
                    await on_approved(order_id)
                return status
            if status in FINAL_STATUSES:
                return status

    def stop(self, order_id):
        task = self._tasks.pop(str(order_id), None)
        if task:
            task.cancel()

    async def close(self):
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
