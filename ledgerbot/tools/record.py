import uuid

from loguru import logger
from pydantic import Field

from ledgerbot.db.memory import WorkingMemoryStore
from ledgerbot.db.repository import TransactionRepository
from ledgerbot.llm.parser import ParseContext, TransactionParser
from ledgerbot.models.schemas import Transaction, ToolExecutionResult, format_amount
from ledgerbot.tools.base import Tool, ToolContext, ToolParams
from ledgerbot.tools.resolver import last_transaction_of
from ledgerbot.tools.splits import compute_splits

CONFIDENCE_FIELDS = ("merchant", "amount", "category")


class RecordParams(ToolParams):
    raw_text: str = Field(
        min_length=1, description="The user's original input text describing the expense"
    )


class RecordTool(Tool):
    name = "record_expense"
    description = (
        "Record a new expense transaction. Use when the user mentions spending money, "
        "buying something, or paying for a service."
    )
    parameters = RecordParams

    def __init__(
        self,
        transactions: TransactionRepository,
        memory: WorkingMemoryStore,
        parser: TransactionParser,
        clarification_threshold: float = 0.7,
    ):
        self.transactions = transactions
        self.memory = memory
        self.parser = parser
        self.clarification_threshold = clarification_threshold

    async def execute(self, args: RecordParams, context: ToolContext) -> ToolExecutionResult:
        text = args.raw_text.strip()
        participants = list(context.participants) or [context.payer_name]

        result = await self.parser.parse(
            text,
            ParseContext(participants=participants, default_currency=context.default_currency),
        )
        parsed = result.fields
        amount = round(parsed.amount, 2)

        try:
            splits = compute_splits(
                amount, participants, parsed.excluded_participants, parsed.custom_splits
            )
        except ValueError as e:
            logger.warning("Split failed for '{}': {}", text, e)
            return ToolExecutionResult(
                success=False,
                content=f"Could not split {parsed.merchant} {format_amount(amount)}: {e}",
                error=str(e),
            )

        transaction = Transaction(
            id=str(uuid.uuid4()),
            project_id=context.project_id,
            user_id=context.user_id,
            chat_id=context.chat_id,
            merchant=parsed.merchant,
            amount=amount,
            currency=parsed.currency,
            category=parsed.category.lower(),
            payer=context.payer_name,
            splits=splits,
            raw_input=text,
        )
        await self.transactions.add(transaction)
        await self.memory.update_after_transaction(
            context.user_id,
            context.chat_id,
            last_transaction_of(transaction),
            context.message or text,
        )
        logger.info("Recorded {} {} for project {}", transaction.merchant, transaction.amount, context.project_id)

        low_confidence = [
            field
            for field in CONFIDENCE_FIELDS
            if getattr(result.confidence_factors, field) < self.clarification_threshold
        ]
        split_summary = ", ".join(f"{person}: {format_amount(share)}" for person, share in splits.items())
        note = f" (low confidence on: {', '.join(low_confidence)})" if low_confidence else ""

        return ToolExecutionResult(
            success=True,
            content=(
                f"Recorded: {transaction.merchant} - {format_amount(transaction.amount)} "
                f"{transaction.currency} ({transaction.category}). Split: {split_summary}{note}"
            ),
            details={
                "transactionId": transaction.id,
                "merchant": transaction.merchant,
                "amount": transaction.amount,
                "currency": transaction.currency,
                "category": transaction.category,
                "splits": splits,
                "needsClarification": bool(low_confidence),
                "lowConfidenceFields": low_confidence,
            },
        )
