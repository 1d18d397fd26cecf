# gamemarket/handlers/refund_handlers.py
from datetime import datetime, timezone
from typing import Tuple
from uuid import UUID
from telegram import Update
from telegram.ext import (
    ContextTypes, ConversationHandler, CommandHandler,
    MessageHandler, CallbackQueryHandler, filters
)
from .base_handler import BaseHandler
from ..models.refund import RefundStatus
from ..services.lifecycle import seller_response_deadline
from ..utils.messages import REFUND_STATUS_LABELS

WAITING_ADMIN_NOTE = 1

def parse_refund_callback(data: str) -> Tuple[RefundStatus, UUID]:
    """'refund_<status>_<uuid>' -> (status, uuid)"""
    if not data.startswith("refund_"):
        raise ValueError(f"not a refund callback: {data}")
    status, _, refund_id = data[len("refund_"):].rpartition("_")
    return RefundStatus(status), UUID(refund_id)

class RefundHandler(BaseHandler):
    """Refund review from the back office"""

    async def list_refunds(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Open refunds, oldest first, one card each"""
        if await self.deny_if_not_admin(update):
            return
        if update.callback_query:
            await update.callback_query.answer()

        refunds = await self.market.refunds.list_refunds()
        chat = update.effective_chat
        if not refunds:
            await chat.send_message("✅ Nenhum reembolso aberto.")
            return

        now = datetime.now(timezone.utc)
        for refund in refunds:
            await chat.send_message(
                self.messages.format_refund(refund, now, seller_response_deadline(refund['created_at'])),
                reply_markup=self.keyboards.refund_actions(refund['id'])
            )

    async def _apply_decision(self, update: Update, refund_id: UUID, decision: RefundStatus,
                              notes: str = None) -> str:
        result = await self.market.refunds.decide(
            refund_id, str(update.effective_user.id), decision, admin_notes=notes
        )
        if not result["success"]:
            return f"❌ {result['error']}"
        self.logger.info(f"Admin {update.effective_user.id} set refund {refund_id} to {decision.value}")
        return f"✔️ Reembolso {refund_id}: {REFUND_STATUS_LABELS[decision]}"

    async def handle_decision(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Approve / reject / review buttons"""
        query = update.callback_query
        if await self.deny_if_not_admin(update):
            return
        await query.answer()

        try:
            decision, refund_id = parse_refund_callback(query.data)
        except ValueError:
            await query.edit_message_text("❌ Ação inválida.")
            return

        await query.edit_message_text(await self._apply_decision(update, refund_id, decision))

    async def ask_more_info(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        query = update.callback_query
        if await self.deny_if_not_admin(update):
            return ConversationHandler.END
        await query.answer()

        _, refund_id = parse_refund_callback(query.data)
        context.user_data['refund_id'] = refund_id
        await query.edit_message_text(
            "❓ Quais informações o cliente deve enviar?",
            reply_markup=self.keyboards.cancel_button("cancel_more_info")
        )
        return WAITING_ADMIN_NOTE

    async def receive_admin_note(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        refund_id = context.user_data.pop('refund_id', None)
        if refund_id is None:
            return ConversationHandler.END

        text = await self._apply_decision(
            update, refund_id, RefundStatus.MORE_INFO_REQUESTED, notes=update.message.text
        )
        await update.message.reply_text(text)
        return ConversationHandler.END

    def conversation_handler(self) -> ConversationHandler:
        return ConversationHandler(
            entry_points=[
                CallbackQueryHandler(
                    self.ask_more_info,
                    pattern=r'^refund_more_info_requested_'
                )
            ],
            states={
                WAITING_ADMIN_NOTE: [
                    MessageHandler(
                        filters.TEXT & ~filters.COMMAND,
                        self.receive_admin_note
                    )
                ]
            },
            fallbacks=[
                CommandHandler('cancel', self.cancel_conversation),
                CallbackQueryHandler(self.cancel_conversation, pattern='^cancel_more_info$')
            ]
        )
