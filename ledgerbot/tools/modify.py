from typing import Callable

from pydantic import Field

from ledgerbot.errors import NotFound
from ledgerbot.models.conversation import EditableField
from ledgerbot.models.schemas import ToolExecutionResult
from ledgerbot.tools.base import TargetParams, Tool, ToolContext, not_found
from ledgerbot.tools.resolver import TransactionResolver


class ModifyAmountParams(TargetParams):
    new_amount: float = Field(
        gt=0, allow_inf_nan=False, description="The corrected amount (a number)"
    )


class ModifyMerchantParams(TargetParams):
    new_merchant: str = Field(min_length=1, description="The corrected merchant name")


class ModifyCategoryParams(TargetParams):
    new_category: str = Field(min_length=1, description="The corrected category")


class ModifyFieldTool(Tool):
    """Corrects one field of an existing transaction."""

    def __init__(
        self,
        resolver: TransactionResolver,
        *,
        name: str,
        description: str,
        field: EditableField,
        parameters: type[TargetParams],
        extract_value: Callable[[TargetParams], float | str],
    ):
        self.resolver = resolver
        self.name = name
        self.description = description
        self.field = field
        self.parameters = parameters
        self.extract_value = extract_value

    async def execute(self, args: TargetParams, context: ToolContext) -> ToolExecutionResult:
        try:
            transaction_id = await self.resolver.resolve(
                args.target, args.transaction_id, context.project_id, context.user_id
            )
            return await self.resolver.update_field_and_resync(
                context, self.field, self.extract_value(args), transaction_id
            )
        except NotFound as e:
            return not_found(str(e))


def build_modify_tools(resolver: TransactionResolver) -> list[ModifyFieldTool]:
    return [
        ModifyFieldTool(
            resolver,
            name="modify_amount",
            description=(
                "Modify the amount of an existing transaction. Use when the user provides "
                'a NUMBER to correct the amount. Examples: "40.81", "actually 25", "no it was 15".'
            ),
            field="amount",
            parameters=ModifyAmountParams,
            extract_value=lambda args: round(args.new_amount, 2),
        ),
        ModifyFieldTool(
            resolver,
            name="modify_merchant",
            description=(
                "Modify the merchant name of an existing transaction. Use when the user provides "
                'a NAME to correct the merchant. Examples: "H Mart", "no I mean Costco".'
            ),
            field="merchant",
            parameters=ModifyMerchantParams,
            extract_value=lambda args: args.new_merchant.strip(),
        ),
        ModifyFieldTool(
            resolver,
            name="modify_category",
            description=(
                "Modify the category of an existing transaction. Use when the user provides "
                'a CATEGORY to correct. Examples: "grocery", "that was dining".'
            ),
            field="category",
            parameters=ModifyCategoryParams,
            extract_value=lambda args: args.new_category.strip().lower(),
        ),
    ]
