# gamemarket/app.py
import asyncio
import logging
from typing import List, Optional
from aiohttp import web
from .bot import BackOfficeBot
from .config import Config
from .database.database import Database
from .models.order import OrderStatus
from .services.balance_service import BalanceService
from .services.cart_service import CartService
from .services.change_feed import ChangeFeed
from .services.coupon_service import CouponService
from .services.deadline_service import DeadlineService
from .services.notification_service import NotificationService
from .services.order_service import OrderService
from .services.payment_poller import PaymentStatusPoller
from .services.payment_service import MercadoPagoGateway, PaymentService
from .services.refund_service import RefundService
from .services.storage_service import ProofStorage
from .web import create_app

class MarketplaceApp:
    """Wires services together and runs the web server and background tasks"""

    def __init__(self, db: Optional[Database] = None, gateway: Optional[MercadoPagoGateway] = None,
                 storage: Optional[ProofStorage] = None):
        self.db = db or Database()
        self.gateway = gateway or MercadoPagoGateway()
        self.storage = storage or ProofStorage()

        self.notifications = NotificationService(self.db)
        self.carts = CartService(self.db)
        self.coupons = CouponService(self.db)
        self.balances = BalanceService(self.db)
        self.orders = OrderService(
            self.db, self.gateway, self.coupons, self.balances, self.carts, self.notifications
        )
        self.refunds = RefundService(
            self.db, self.orders, self.balances, self.storage, self.notifications
        )
        self.payments = PaymentService(self.orders, self.gateway)
        self.poller = PaymentStatusPoller(self.payments)
        self.deadlines = DeadlineService(self.db, self.refunds)
        self.feed = ChangeFeed(self.db)

        self.bot = None
        self._runner: Optional[web.AppRunner] = None
        self._tasks: List[asyncio.Task] = []
        self.logger = logging.getLogger(__name__)

    def web_app(self) -> web.Application:
        return create_app(self)

    async def start(self):
        await self.db.connect()
        await self.feed.start()

        self._runner = web.AppRunner(self.web_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, Config.WEB_HOST, Config.WEB_PORT)
        await site.start()
        self.logger.info(f"HTTP server listening on {Config.WEB_HOST}:{Config.WEB_PORT}")

        self._tasks.append(asyncio.create_task(self.deadlines.run_forever()))
        await self._resume_polling()

        if Config.TELEGRAM_TOKEN:
            self.bot = BackOfficeBot(self)
            await self.bot.start()

    async def _resume_polling(self):
        """Re-attach pollers to orders left pending by a previous run"""
        pending = await self.orders.search_orders(status=OrderStatus.PENDING, limit=500)
        for order in pending:
            if order['payment_id']:
                self.poller.watch(order['id'])

    async def stop(self):
        if self.bot:
            await self.bot.stop()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.poller.close()
        if self._runner:
            await self._runner.cleanup()
        await self.feed.stop()
        await self.db.close()
        self.logger.info("Marketplace stopped")
