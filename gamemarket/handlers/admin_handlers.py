# gamemarket/handlers/admin_handlers.py
from uuid import UUID
from telegram import Update
from telegram.ext import ContextTypes
from .base_handler import BaseHandler

HELP_TEXT = (
    "📖 Comandos:\n\n"
    "/refunds - reembolsos abertos\n"
    "/order <id> - detalhes de um pedido\n"
    "/deliver <id> - marcar pedido como entregue\n"
    "/cancel - cancelar a operação atual"
)

def parse_order_id(args) -> UUID:
    if not args:
        raise ValueError("missing order id")
    return UUID(args[0])

class AdminHandler(BaseHandler):
    """Admin commands"""

    async def start(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if await self.deny_if_not_admin(update):
            return
        await update.message.reply_text(
            "🔧 Painel administrativo\n\nEscolha uma opção:",
            reply_markup=self.keyboards.admin_menu()
        )

    async def help(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if await self.deny_if_not_admin(update):
            return
        await update.message.reply_text(HELP_TEXT)

    async def main_menu(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        query = update.callback_query
        if await self.deny_if_not_admin(update):
            return
        await query.answer()
        await query.edit_message_text(
            "🔧 Painel administrativo\n\nEscolha uma opção:",
            reply_markup=self.keyboards.admin_menu()
        )

    async def show_order(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """/order <id>"""
        if await self.deny_if_not_admin(update):
            return
        try:
            order_id = parse_order_id(context.args)
        except ValueError:
            await update.message.reply_text("Uso: /order <id do pedido>")
            return

        order = await self.market.orders.get_order(order_id)
        if not order:
            await update.message.reply_text("❌ Pedido não encontrado.")
            return
        await update.message.reply_text(self.messages.format_order(order))

    async def deliver_order(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """/deliver <id>"""
        if await self.deny_if_not_admin(update):
            return
        try:
            order_id = parse_order_id(context.args)
        except ValueError:
            await update.message.reply_text("Uso: /deliver <id do pedido>")
            return

        result = await self.market.orders.mark_delivered(
            order_id, str(update.effective_user.id), is_admin=True
        )
        if not result["success"]:
            await update.message.reply_text(f"❌ {result['error']}")
            return

        self.logger.info(f"Admin {update.effective_user.id} marked order {order_id} delivered")
        await update.message.reply_text(
            "📦 Pedido marcado como entregue.\n\n" + self.messages.format_order(result["order"])
        )
