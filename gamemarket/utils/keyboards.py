# gamemarket/utils/keyboards.py
from telegram import InlineKeyboardButton, InlineKeyboardMarkup

class Keyboards:
    @staticmethod
    def admin_menu() -> InlineKeyboardMarkup:
        """Back office main menu"""
        keyboard = [
            [InlineKeyboardButton("🔁 Reembolsos abertos", callback_data="list_refunds")],
            [InlineKeyboardButton("🏠 Menu", callback_data="main_menu")]
        ]
        return InlineKeyboardMarkup(keyboard)

    @staticmethod
    def refund_actions(refund_id) -> InlineKeyboardMarkup:
        """Decision buttons for one refund"""
        keyboard = [
            [InlineKeyboardButton("✅ Aprovar", callback_data=f"refund_approved_{refund_id}"),
             InlineKeyboardButton("❌ Rejeitar", callback_data=f"refund_rejected_{refund_id}")],
            [InlineKeyboardButton("🔍 Em análise", callback_data=f"refund_in_review_{refund_id}"),
             InlineKeyboardButton("❓ Pedir informações", callback_data=f"refund_more_info_requested_{refund_id}")]
        ]
        return InlineKeyboardMarkup(keyboard)

    @staticmethod
    def cancel_button(callback_data: str = "cancel") -> InlineKeyboardMarkup:
        return InlineKeyboardMarkup([[
            InlineKeyboardButton("🔙 Cancelar", callback_data=callback_data)
        ]])
