"""Soft delete with two-phase confirmation.

The first call only resolves and validates the target. Only a call with
``confirmed=true`` flips the status, and it re-resolves the target itself.
"""

from pydantic import Field

from ledgerbot.errors import NotFound
from ledgerbot.models.schemas import ToolExecutionResult, format_amount
from ledgerbot.tools.base import TargetParams, Tool, ToolContext, ToolDefinition, not_found
from ledgerbot.tools.resolver import TransactionResolver


class DeleteParams(TargetParams):
    confirmed: bool = Field(
        default=False,
        description="Set true only after the user explicitly confirmed the deletion",
    )


class DeleteTool(Tool):
    name = "delete_expense"
    description = (
        "Delete a transaction. Use when the user explicitly wants to remove/delete an expense. "
        "The user is asked to confirm before anything is removed."
    )
    parameters = DeleteParams

    def __init__(self, resolver: TransactionResolver):
        self.resolver = resolver

    def definition(self) -> ToolDefinition:
        """``confirmed`` is set by the user's own answer, so the engine never sees it."""
        definition = super().definition()
        definition.parameters["properties"].pop("confirmed", None)
        if "confirmed" in definition.parameters.get("required", []):
            definition.parameters["required"].remove("confirmed")
        return definition

    async def execute(self, args: DeleteParams, context: ToolContext) -> ToolExecutionResult:
        try:
            transaction_id = await self.resolver.resolve(
                args.target, args.transaction_id, context.project_id, context.user_id
            )
            transaction = await self.resolver.fetch(transaction_id, context.project_id)
        except NotFound as e:
            return not_found(str(e))

        label = f"{transaction.merchant} ({format_amount(transaction.amount)})"
        details = {
            "transactionId": transaction.id,
            "merchant": transaction.merchant,
            "amount": transaction.amount,
        }

        if not args.confirmed:
            return ToolExecutionResult(
                success=True,
                content=f"Delete {label}? Waiting for the user to confirm.",
                details={**details, "needsConfirmation": True, "deleted": False},
            )

        try:
            await self.resolver.soft_delete(transaction.id, context.project_id)
        except NotFound as e:
            return not_found(str(e))

        # Corrections must not anchor to a deleted row.
        memory = await self.resolver.memory.get(context.user_id, context.chat_id)
        if memory.last_transaction and memory.last_transaction.id == transaction.id:
            await self.resolver.memory.clear_last_transaction(context.user_id, context.chat_id)

        return ToolExecutionResult(
            success=True,
            content=f"Deleted: {label}",
            details={**details, "needsConfirmation": False, "deleted": True},
        )
