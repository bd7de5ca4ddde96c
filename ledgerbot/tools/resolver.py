"""Which transaction does an action apply to, and the shared mutation path.

Every ledger mutation goes through fetch -> validate -> mutate -> resync.
There is no concurrency token; the last writer wins.
"""

from typing import Literal

from loguru import logger

from ledgerbot.db.memory import WorkingMemoryStore
from ledgerbot.db.repository import TransactionRepository
from ledgerbot.errors import NotFound, PersistenceFailure
from ledgerbot.models.conversation import EditableField, LastTransaction
from ledgerbot.models.schemas import Transaction, ToolExecutionResult, format_amount
from ledgerbot.tools.base import ToolContext
from ledgerbot.tools.splits import rescale_splits


def last_transaction_of(transaction: Transaction) -> LastTransaction:
    return LastTransaction(
        id=transaction.id,
        merchant=transaction.merchant,
        amount=transaction.amount,
        currency=transaction.currency,
        category=transaction.category,
        created_at=transaction.created_at,
    )


def display_value(field: str, value: float | str) -> str:
    if field == "amount":
        return format_amount(float(value))
    return str(value)


class TransactionResolver:
    def __init__(self, transactions: TransactionRepository, memory: WorkingMemoryStore):
        self.transactions = transactions
        self.memory = memory

    async def resolve(
        self,
        target: Literal["last", "specific"],
        explicit_id: str | None,
        project_id: str,
        user_id: int,
    ) -> str:
        if target == "last":
            last = await self.transactions.find_last(project_id, user_id)
            if last is None:
                raise NotFound("No recent transaction found")
            return last.id

        if not explicit_id:
            raise NotFound("Could not find the transaction. Please specify which one.")
        await self.fetch(explicit_id, project_id)
        return explicit_id

    async def fetch(self, transaction_id: str, project_id: str) -> Transaction:
        """Re-checks ownership and status on every call."""
        transaction = await self.transactions.get_active(transaction_id, project_id)
        if transaction is None:
            raise NotFound("Transaction not found or already deleted")
        return transaction

    async def update_field_and_resync(
        self,
        context: ToolContext,
        field: EditableField,
        new_value: float | str,
        transaction_id: str,
    ) -> ToolExecutionResult:
        transaction = await self.fetch(transaction_id, context.project_id)
        old_display = display_value(field, getattr(transaction, field))

        if field == "amount":
            splits = rescale_splits(transaction.splits, float(new_value))
            await self.transactions.update_amount(transaction_id, float(new_value), splits)
        else:
            await self.transactions.update_field(transaction_id, field, new_value)

        updated = await self.transactions.get(transaction_id)
        if updated is None:
            raise PersistenceFailure(f"Transaction {transaction_id} missing after update")

        # A second correction must anchor to the corrected row.
        await self.memory.set_last_transaction(
            context.user_id, context.chat_id, last_transaction_of(updated)
        )

        new_display = display_value(field, new_value)
        logger.info("Transaction {} {}: {} -> {}", transaction_id, field, old_display, new_display)
        return ToolExecutionResult(
            success=True,
            content=(
                f"Updated {field}: {old_display} → {new_display}. "
                f"Transaction: {updated.merchant} {format_amount(updated.amount)}"
            ),
            details={
                "transactionId": transaction_id,
                "field": field,
                "oldValue": old_display,
                "newValue": new_value,
                "merchant": updated.merchant,
                "amount": updated.amount,
            },
        )

    async def set_status(self, transaction_id: str, project_id: str, status: str) -> Transaction:
        transaction = await self.fetch(transaction_id, project_id)
        await self.transactions.set_status(transaction_id, status)
        logger.info("Transaction {} status {} -> {}", transaction_id, transaction.status, status)
        return transaction

    async def soft_delete(self, transaction_id: str, project_id: str) -> Transaction:
        return await self.set_status(transaction_id, project_id, "deleted")
