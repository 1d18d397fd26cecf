# gamemarket/handlers/base_handler.py
import logging
from telegram import Update
from telegram.ext import ContextTypes, ConversationHandler
from ..config import Config
from ..utils.keyboards import Keyboards
from ..utils.messages import Messages

class BaseHandler:
    """Base class for back-office handlers"""
    def __init__(self, market):
        self.market = market
        self.keyboards = Keyboards()
        self.messages = Messages()
        self.logger = logging.getLogger(self.__class__.__module__)

    @staticmethod
    async def cancel_conversation(update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Abort the current conversation"""
        context.user_data.clear()
        if update.callback_query:
            await update.callback_query.answer()
            await update.callback_query.edit_message_text("❌ Operação cancelada.")
        else:
            await update.message.reply_text("❌ Operação cancelada.")
        return ConversationHandler.END

    async def is_admin(self, user_id: int) -> bool:
        return user_id in Config.ADMIN_IDS

    async def deny_if_not_admin(self, update: Update) -> bool:
        """Reply with an access error; True when the user was denied"""
        if await self.is_admin(update.effective_user.id):
            return False
        if update.callback_query:
            await update.callback_query.answer("⛔️ Acesso negado", show_alert=True)
        else:
            await update.effective_message.reply_text("⛔️ Você não tem acesso a esta área.")
        return True
