# gamemarket/bot.py
import logging
from telegram import Update
from telegram.ext import Application, CommandHandler, CallbackQueryHandler
from .config import Config
from .handlers import AdminHandler, RefundHandler

class BackOfficeBot:
    def __init__(self, market, token: str = None):
        """Telegram back office bound to the marketplace services"""
        self.application = Application.builder().token(token or Config.TELEGRAM_TOKEN).build()
        self.admin_handler = AdminHandler(market)
        self.refund_handler = RefundHandler(market)
        self.logger = logging.getLogger(__name__)
        self.setup_handlers()

    def setup_handlers(self):
        self.application.add_handler(CommandHandler("start", self.admin_handler.start))
        self.application.add_handler(CommandHandler("help", self.admin_handler.help))
        self.application.add_handler(CommandHandler("order", self.admin_handler.show_order))
        self.application.add_handler(CommandHandler("deliver", self.admin_handler.deliver_order))
        self.application.add_handler(CommandHandler("refunds", self.refund_handler.list_refunds))

        # more-info needs a note, so it runs as a conversation
        self.application.add_handler(self.refund_handler.conversation_handler())

        self.application.add_handler(CallbackQueryHandler(
            self.refund_handler.handle_decision,
            pattern=r'^refund_(approved|rejected|in_review)_'
        ))
        self.application.add_handler(CallbackQueryHandler(
            self.refund_handler.list_refunds, pattern='^list_refunds$'
        ))
        self.application.add_handler(CallbackQueryHandler(
            self.admin_handler.main_menu, pattern='^main_menu$'
        ))

    async def start(self):
        await self.application.initialize()
        await self.application.start()
        await self.application.updater.start_polling(allowed_updates=Update.ALL_TYPES)
        self.logger.info("Back-office bot started")

    async def stop(self):
        await self.application.updater.stop()
        await self.application.stop()
        await self.application.shutdown()
