"""Per-message pipeline: session flow, decision, tool dispatch, presentation.

Every public entry point returns a Reply. Failures are logged here and turned
into plain text; nothing escapes to the transport.
"""

import dataclasses
import math
from typing import Any

from loguru import logger

from ledgerbot.db.memory import WorkingMemoryStore
from ledgerbot.db.repository import ProjectRepository
from ledgerbot.db.sessions import SessionStore
from ledgerbot.errors import (
    ExternalServiceFailure,
    InvalidArguments,
    InvalidState,
    LedgerError,
    NotFound,
    ToolNotFound,
)
from ledgerbot.llm.engine import DecisionEngine
from ledgerbot.models.conversation import (
    AwaitingCategory,
    AwaitingConfirmation,
    AwaitingEditValue,
    AwaitingIntentClarification,
    EditableField,
    IdleState,
    PendingClarification,
    SessionState,
    TextReply,
    ToolCall,
)
from ledgerbot.models.schemas import (
    CATEGORIES,
    CallbackAction,
    Reply,
    ToolExecutionResult,
    format_amount,
)
from ledgerbot.tools.base import ToolContext
from ledgerbot.tools.registry import ToolRegistry
from ledgerbot.tools.resolver import TransactionResolver

FALLBACK_MESSAGE = "Sorry, I'm having trouble right now. Please try again in a moment."
GENERIC_FAILURE = "Something went wrong. Please try again."
UNKNOWN_TOOL_MESSAGE = "I'm not sure how to do that. Could you rephrase?"
INVALID_ARGUMENTS_MESSAGE = "I couldn't work out the details of that. Could you rephrase?"

CONFIRM_WORDS = ("yes", "y", "ok")
RECORD_WORDS = ("record", "log", "yes", "y")
CANCEL_WORDS = ("no", "cancel")

NEW_VALUE_ARGUMENT = {"amount": "newAmount", "merchant": "newMerchant", "category": "newCategory"}


def transaction_actions(transaction_id: str) -> list[CallbackAction]:
    return [
        CallbackAction(action=action, transaction_id=transaction_id)
        for action in ("confirm", "edit", "personal", "delete")
    ]


def field_actions(transaction_id: str) -> list[CallbackAction]:
    return [
        CallbackAction(action="txe", field=field, transaction_id=transaction_id)
        for field in ("amount", "merchant", "category")
    ]


def category_actions(transaction_id: str) -> list[CallbackAction]:
    return [
        CallbackAction(action="txc", field=category, transaction_id=transaction_id)
        for category in CATEGORIES
    ]


def parse_amount(text: str) -> float:
    amount = float(text.replace("$", "").replace(",", "").strip())
    if not math.isfinite(amount) or amount <= 0:
        raise ValueError(f"Amount must be positive: {amount}")
    return round(amount, 2)


class Orchestrator:
    def __init__(
        self,
        sessions: SessionStore,
        memory: WorkingMemoryStore,
        engine: DecisionEngine,
        registry: ToolRegistry,
        resolver: TransactionResolver,
        projects: ProjectRepository,
    ):
        self.sessions = sessions
        self.memory = memory
        self.engine = engine
        self.registry = registry
        self.resolver = resolver
        self.projects = projects

    async def context_for(
        self, user_id: int, chat_id: int, display_name: str, message: str = ""
    ) -> ToolContext:
        project = await self.projects.get_or_create(str(chat_id), name=f"Chat {chat_id}")
        project = await self.projects.add_member(project.id, display_name)
        return ToolContext(
            user_id=user_id,
            chat_id=chat_id,
            project_id=project.id,
            project_name=project.name,
            payer_name=display_name,
            participants=tuple(project.members),
            default_currency=project.default_currency,
            message=message,
        )

    # -- entry points -------------------------------------------------------

    async def handle_message(
        self, text: str, user_id: int, chat_id: int, display_name: str = "User"
    ) -> Reply:
        text = text.strip()
        logger.info("Message from {}/{}: {}", user_id, chat_id, text)
        try:
            context = await self.context_for(user_id, chat_id, display_name, text)
            reply = await self._continue_session(text, context)
            if reply is not None:
                return reply
            return await self._process(text, context)
        except Exception as e:
            return self._failure_reply(e)

    async def handle_callback(
        self, action: CallbackAction, user_id: int, chat_id: int, display_name: str = "User"
    ) -> Reply:
        logger.info("Callback from {}/{}: {}", user_id, chat_id, action.model_dump(exclude_none=True))
        try:
            context = await self.context_for(user_id, chat_id, display_name)
            return await self._dispatch_callback(action, context)
        except Exception as e:
            return self._failure_reply(e)

    def _failure_reply(self, error: Exception) -> Reply:
        match error:
            case NotFound():
                return Reply(text=str(error))
            case InvalidArguments():
                logger.warning("Rejected input: {}", error)
                return Reply(text=INVALID_ARGUMENTS_MESSAGE)
            case ExternalServiceFailure():
                logger.error("External service failed: {}", error)
                return Reply(text=FALLBACK_MESSAGE)
            case LedgerError():
                logger.opt(exception=error).error("Request failed: {}", error)
                return Reply(text=GENERIC_FAILURE)
            case _:
                logger.opt(exception=error).error("Unexpected error: {}", error)
                return Reply(text=GENERIC_FAILURE)

    # -- session flows ------------------------------------------------------

    async def _continue_session(self, text: str, context: ToolContext) -> Reply | None:
        """Reply if an open session consumes ``text``; None to process it fresh."""
        try:
            session = await self.sessions.get(context.user_id, context.chat_id)
            if session is None:
                return None
            await self.sessions.clear(context.user_id, context.chat_id)
            return await self._apply_session(session.state, text, context)
        except InvalidState as e:
            logger.warning("Dropping session for {}/{}: {}", context.user_id, context.chat_id, e)
            await self.sessions.clear(context.user_id, context.chat_id)
            return None

    async def _apply_session(
        self, state: SessionState, text: str, context: ToolContext
    ) -> Reply | None:
        word = text.lower()
        match state:
            case AwaitingEditValue(field=field, transaction_id=transaction_id):
                return await self._apply_edit(context, field, text, transaction_id)
            case AwaitingCategory(transaction_id=transaction_id):
                return await self._apply_edit(context, "category", text, transaction_id)
            case AwaitingConfirmation(action="delete", target_id=target_id):
                if word in CONFIRM_WORDS:
                    return await self._run_tool(
                        context,
                        "delete_expense",
                        {"target": "specific", "transactionId": target_id, "confirmed": True},
                        user_text=text,
                    )
                return Reply(text="Cancelled.")
            case AwaitingIntentClarification(original_text=original_text):
                if word in RECORD_WORDS:
                    return await self._record(context, original_text)
                if word in CANCEL_WORDS:
                    return Reply(text="Cancelled.")
                return None
            case IdleState():
                return None
            case _:
                raise InvalidState(f"Unexpected session state: {state.type}")

    async def _apply_edit(
        self, context: ToolContext, field: EditableField, text: str, transaction_id: str
    ) -> Reply:
        value: float | str = text
        if field == "amount":
            try:
                value = parse_amount(text)
            except ValueError:
                await self.sessions.set(
                    context.user_id,
                    context.chat_id,
                    AwaitingEditValue(field="amount", transaction_id=transaction_id),
                )
                return Reply(text="Please send the amount as a number, like 12.50.")

        return await self._run_tool(
            context,
            f"modify_{field}",
            {
                "target": "specific",
                "transactionId": transaction_id,
                NEW_VALUE_ARGUMENT[field]: value,
            },
            user_text=text,
        )

    async def _record(self, context: ToolContext, text: str) -> Reply:
        return await self._run_tool(
            dataclasses.replace(context, message=text), "record_expense", {"rawText": text}
        )

    # -- decisions ----------------------------------------------------------

    async def _process(self, text: str, context: ToolContext) -> Reply:
        memory = await self.memory.get(context.user_id, context.chat_id)
        await self.memory.extend_ttl(context.user_id, context.chat_id)

        decision = await self.engine.decide(text, memory, self.registry.definitions())

        match decision:
            case ToolCall(name=name, arguments=arguments):
                if name == "delete_expense":
                    # Only the user's own confirmation may complete a delete.
                    arguments = {k: v for k, v in arguments.items() if k != "confirmed"}
                return await self._run_tool(context, name, arguments, user_text=text)
            case TextReply(message=message):
                await self.memory.append_message(context.user_id, context.chat_id, "user", text)
                await self.memory.append_message(
                    context.user_id, context.chat_id, "assistant", message
                )
                if memory.last_transaction is None and any(ch.isdigit() for ch in text):
                    await self.sessions.set(
                        context.user_id,
                        context.chat_id,
                        AwaitingIntentClarification(original_text=text),
                    )
                    return Reply(
                        text=f'{message}\n\nShould I record "{text}" as an expense?',
                        actions=[
                            CallbackAction(action="clarify", field="record"),
                            CallbackAction(action="clarify", field="query"),
                            CallbackAction(action="clarify", field="cancel"),
                        ],
                    )
                return Reply(text=message)

    async def _run_tool(
        self,
        context: ToolContext,
        name: str,
        arguments: dict[str, Any],
        user_text: str | None = None,
    ) -> Reply:
        try:
            result = await self.registry.execute(name, arguments, context)
        except ToolNotFound as e:
            logger.warning("Decision referenced unknown tool {}", e.name)
            await self._remember(context, user_text, UNKNOWN_TOOL_MESSAGE)
            return Reply(text=UNKNOWN_TOOL_MESSAGE)
        except InvalidArguments as e:
            logger.warning("Invalid arguments for {}: {}", name, e)
            result = ToolExecutionResult(
                success=False, content=INVALID_ARGUMENTS_MESSAGE, error=str(e)
            )

        # A successful record already stored the user's message with the transaction.
        if name == "record_expense" and result.success:
            user_text = None
        await self._remember(context, user_text, result.content)

        return await self._present(context, name, result)

    async def _remember(self, context: ToolContext, user_text: str | None, reply: str) -> None:
        if user_text:
            await self.memory.append_message(context.user_id, context.chat_id, "user", user_text)
        await self.memory.append_message(context.user_id, context.chat_id, "assistant", reply)

    async def _present(
        self, context: ToolContext, name: str, result: ToolExecutionResult
    ) -> Reply:
        if not result.success:
            return Reply(text=result.content)

        details = result.details or {}
        transaction_id = details.get("transactionId")

        if name == "delete_expense":
            if not details.get("needsConfirmation"):
                return Reply(text=result.content)
            await self.sessions.set(
                context.user_id,
                context.chat_id,
                AwaitingConfirmation(action="delete", target_id=transaction_id),
            )
            label = f"{details['merchant']} ({format_amount(details['amount'])})"
            return Reply(
                text=f"Delete {label}? Reply yes to confirm.",
                actions=[
                    CallbackAction(action="delok", transaction_id=transaction_id),
                    CallbackAction(action="cancel", transaction_id=transaction_id),
                ],
            )

        if name == "record_expense":
            low_confidence = details.get("lowConfidenceFields") or []
            if details.get("needsClarification") and low_confidence:
                field = low_confidence[0]
                await self.memory.set_pending_clarification(
                    context.user_id,
                    context.chat_id,
                    PendingClarification(
                        transaction_id=transaction_id,
                        field=field,
                        original_value=details[field],
                    ),
                )
                if "category" in low_confidence:
                    await self.sessions.set(
                        context.user_id,
                        context.chat_id,
                        AwaitingCategory(
                            transaction_id=transaction_id, merchant=details["merchant"]
                        ),
                    )
                    return Reply(
                        text=f"{result.content}\nWhich category fits best?",
                        actions=category_actions(transaction_id),
                    )
            return Reply(text=result.content, actions=transaction_actions(transaction_id))

        if name == "query_expenses":
            return Reply(text=details.get("formattedMessage") or result.content)

        if transaction_id:
            return Reply(text=result.content, actions=transaction_actions(transaction_id))
        return Reply(text=result.content)

    # -- callbacks ----------------------------------------------------------

    async def _dispatch_callback(self, action: CallbackAction, context: ToolContext) -> Reply:
        transaction_id = action.transaction_id

        match action.action:
            case "confirm":
                transaction = await self.resolver.set_status(
                    transaction_id, context.project_id, "confirmed"
                )
                return Reply(
                    text=f"Confirmed: {transaction.merchant} {format_amount(transaction.amount)}"
                )
            case "personal":
                transaction = await self.resolver.set_status(
                    transaction_id, context.project_id, "personal"
                )
                return Reply(
                    text=f"Marked as personal: {transaction.merchant} "
                    f"{format_amount(transaction.amount)}"
                )
            case "edit":
                transaction = await self.resolver.fetch(transaction_id, context.project_id)
                return Reply(
                    text=f"What should change on {transaction.merchant} "
                    f"{format_amount(transaction.amount)}?",
                    actions=field_actions(transaction_id),
                )
            case "txe":
                return await self._start_edit(action, context)
            case "txc":
                await self.sessions.clear(context.user_id, context.chat_id)
                return await self._run_tool(
                    context,
                    "modify_category",
                    {"target": "specific", "transactionId": transaction_id, "newCategory": action.field},
                )
            case "delete":
                return await self._run_tool(
                    context, "delete_expense", {"target": "specific", "transactionId": transaction_id}
                )
            case "delok":
                await self.sessions.clear(context.user_id, context.chat_id)
                return await self._run_tool(
                    context,
                    "delete_expense",
                    {"target": "specific", "transactionId": transaction_id, "confirmed": True},
                )
            case "cancel":
                await self.sessions.clear(context.user_id, context.chat_id)
                return Reply(text="Cancelled.")
            case "clarify":
                return await self._resolve_clarification(action.field, context)
            case _:
                raise InvalidArguments(f"Unknown callback action: {action.action}")

    async def _start_edit(self, action: CallbackAction, context: ToolContext) -> Reply:
        transaction = await self.resolver.fetch(action.transaction_id, context.project_id)
        if action.field == "category":
            await self.sessions.set(
                context.user_id,
                context.chat_id,
                AwaitingCategory(transaction_id=transaction.id, merchant=transaction.merchant),
            )
            return Reply(
                text=f"Pick a category for {transaction.merchant}.",
                actions=category_actions(transaction.id),
            )

        if action.field not in ("amount", "merchant"):
            raise InvalidArguments(f"Field {action.field!r} cannot be edited")
        await self.sessions.set(
            context.user_id,
            context.chat_id,
            AwaitingEditValue(field=action.field, transaction_id=transaction.id),
        )
        return Reply(text=f"Send the new {action.field} for {transaction.merchant}.")

    async def _resolve_clarification(self, choice: str | None, context: ToolContext) -> Reply:
        try:
            session = await self.sessions.get(context.user_id, context.chat_id)
        except InvalidState:
            session = None
        await self.sessions.clear(context.user_id, context.chat_id)

        if choice == "cancel":
            return Reply(text="Cancelled.")
        if choice == "query":
            return await self._run_tool(
                context, "query_expenses", {"queryType": "history", "limit": 10}
            )
        if session is None or not isinstance(session.state, AwaitingIntentClarification):
            return Reply(text="That request has expired. Please send it again.")
        return await self._record(context, session.state.original_text)
