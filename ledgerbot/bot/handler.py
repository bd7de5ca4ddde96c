from loguru import logger
from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from ledgerbot.agent.callbacks import encode_callback, parse_callback
from ledgerbot.config import get_settings
from ledgerbot.deps import get_orchestrator, get_sessions
from ledgerbot.errors import InvalidArguments
from ledgerbot.models.schemas import CallbackAction, Reply

BUTTON_LABELS = {
    "confirm": "Confirm ✓",
    "edit": "Edit",
    "personal": "Personal",
    "delete": "Delete",
    "delok": "Yes, delete",
    "cancel": "Cancel",
}
FIELD_LABELS = {"amount": "Amount", "merchant": "Merchant", "category": "Category"}
CLARIFY_LABELS = {"record": "Record it", "query": "Show history", "cancel": "No thanks"}


def _button_label(action: CallbackAction) -> str:
    if action.action == "txe":
        return FIELD_LABELS.get(action.field, action.field)
    if action.action == "txc":
        return action.field.capitalize()
    if action.action == "clarify":
        return CLARIFY_LABELS.get(action.field, action.field)
    return BUTTON_LABELS.get(action.action, action.action)


def _keyboard(actions: list[CallbackAction]) -> InlineKeyboardMarkup | None:
    """Two buttons per row."""
    if not actions:
        return None
    buttons = [
        InlineKeyboardButton(_button_label(action), callback_data=encode_callback(action))
        for action in actions
    ]
    return InlineKeyboardMarkup([buttons[i : i + 2] for i in range(0, len(buttons), 2)])


def _display_name(update: Update) -> str:
    user = update.effective_user
    if user is None:
        return "User"
    return user.first_name or user.username or "User"


async def _send(update: Update, reply: Reply) -> None:
    await update.message.reply_text(reply.text, reply_markup=_keyboard(reply.actions))


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /start command."""
    await update.message.reply_text(
        "Hey! I keep track of shared expenses for this chat.\n\n"
        "Examples:\n"
        '• "lunch at Chipotle 18.50"\n'
        '• "actually 16" (fixes the last amount)\n'
        '• "that was grocery" (fixes the last category)\n'
        '• "delete the last one"\n'
        '• "how much did we spend this month?"\n\n'
        "Commands:\n"
        "/cancel: drop whatever I'm waiting for\n"
        "/help: show this message"
    )


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /help command."""
    await start_command(update, context)


async def cancel_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /cancel command."""
    await get_sessions().clear(update.effective_user.id, update.effective_chat.id)
    await update.message.reply_text("Cancelled.")


async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle incoming text messages, the main conversation entry point."""
    user_text = update.message.text.strip()
    logger.info("Telegram message: {}", user_text)

    await update.message.chat.send_action("typing")

    reply = await get_orchestrator().handle_message(
        user_text,
        update.effective_user.id,
        update.effective_chat.id,
        _display_name(update),
    )
    await _send(update, reply)


async def handle_voice(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Voice notes are only usable when the client attached a caption."""
    if not update.message.caption:
        await update.message.reply_text(
            "I received your voice note! Unfortunately I can't transcribe it yet.\n"
            "Could you type out the message instead?"
        )
        return

    reply = await get_orchestrator().handle_message(
        update.message.caption,
        update.effective_user.id,
        update.effective_chat.id,
        _display_name(update),
    )
    await _send(update, reply)


async def handle_callback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle inline button presses."""
    query = update.callback_query
    await query.answer()

    try:
        action = parse_callback(query.data or "")
    except InvalidArguments as e:
        logger.warning("Ignoring callback {!r}: {}", query.data, e)
        await query.edit_message_text("That button is no longer valid.")
        return

    reply = await get_orchestrator().handle_callback(
        action, update.effective_user.id, update.effective_chat.id, _display_name(update)
    )
    await query.edit_message_text(reply.text, reply_markup=_keyboard(reply.actions))


def build_bot_app() -> Application:
    """Build and return the Telegram bot application."""
    app = Application.builder().token(get_settings().telegram_bot_token).build()

    app.add_handler(CommandHandler("start", start_command))
    app.add_handler(CommandHandler("help", help_command))
    app.add_handler(CommandHandler("cancel", cancel_command))

    app.add_handler(CallbackQueryHandler(handle_callback))

    app.add_handler(MessageHandler(filters.VOICE, handle_voice))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_message))

    return app
