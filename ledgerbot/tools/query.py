from collections import defaultdict
from datetime import date
from typing import Literal

from pydantic import Field

from ledgerbot.db.repository import TransactionRepository
from ledgerbot.models.schemas import QueryFilters, Transaction, ToolExecutionResult, format_amount
from ledgerbot.tools.base import Tool, ToolContext, ToolParams


class QueryParams(ToolParams):
    query_type: Literal["history", "total", "breakdown", "balance"] = Field(
        default="history", description="Type of query to execute"
    )
    start_date: date | None = Field(default=None, description="Start date, YYYY-MM-DD")
    end_date: date | None = Field(default=None, description="End date, YYYY-MM-DD")
    label: str | None = Field(
        default=None, description='Human-readable period label like "this month"'
    )
    category: str | None = Field(default=None, description="Category to filter by")
    payer: str | None = Field(default=None, description="Person who paid, to filter by")
    limit: int = Field(default=50, ge=1, le=200, description="Maximum number of results")


def net_balances(transactions: list[Transaction]) -> dict[str, float]:
    """Positive: others owe this person. Personal expenses are not shared."""
    balances: dict[str, float] = defaultdict(float)
    for transaction in transactions:
        if transaction.status == "personal":
            continue
        balances[transaction.payer] += transaction.amount
        for person, share in transaction.splits.items():
            balances[person] -= share
    return {person: round(amount, 2) for person, amount in balances.items()}


class QueryTool(Tool):
    name = "query_expenses"
    description = (
        "Query and analyze expenses. Use for viewing spending history, totals, "
        "breakdowns by category, or checking who owes whom."
    )
    parameters = QueryParams

    def __init__(self, transactions: TransactionRepository):
        self.transactions = transactions

    async def execute(self, args: QueryParams, context: ToolContext) -> ToolExecutionResult:
        filters = QueryFilters(
            start_date=args.start_date,
            end_date=args.end_date,
            category=args.category,
            payer=args.payer,
            limit=args.limit if args.query_type == "history" else None,
        )
        transactions = await self.transactions.search(context.project_id, filters)
        total = round(sum(t.amount for t in transactions), 2)
        period = args.label or "selected period"

        if args.query_type == "total":
            content = f"Total spending for {period}: {format_amount(total)} ({len(transactions)} transactions)"
            return ToolExecutionResult(
                success=True,
                content=content,
                details={"queryType": "total", "total": total, "count": len(transactions), "formattedMessage": content},
            )

        if args.query_type == "breakdown":
            by_category: dict[str, float] = defaultdict(float)
            for t in transactions:
                by_category[t.category] += t.amount
            ranked = sorted(by_category.items(), key=lambda item: item[1], reverse=True)
            lines = [f"Spending breakdown ({period}): {format_amount(total)}"]
            lines += [f"- {category}: {format_amount(amount)}" for category, amount in ranked]
            breakdown = ", ".join(f"{category}: {format_amount(amount)}" for category, amount in ranked)
            return ToolExecutionResult(
                success=True,
                content=(
                    f"Spending breakdown: Total {format_amount(total)} from "
                    f"{len(transactions)} transactions. {breakdown or 'No data'}"
                ),
                details={
                    "queryType": "breakdown",
                    "total": total,
                    "count": len(transactions),
                    "byCategory": {category: round(amount, 2) for category, amount in ranked},
                    "formattedMessage": "\n".join(lines),
                },
            )

        if args.query_type == "balance":
            balances = net_balances(transactions)
            owed = {person: amount for person, amount in balances.items() if abs(amount) >= 0.01}
            if not owed:
                content = "Everyone is settled up."
            else:
                content = "Balances: " + ", ".join(
                    f"{person} {'+' if amount > 0 else '-'}{format_amount(abs(amount))}"
                    for person, amount in sorted(owed.items(), key=lambda item: -item[1])
                )
            return ToolExecutionResult(
                success=True,
                content=content,
                details={"queryType": "balance", "balances": balances, "formattedMessage": content},
            )

        if not transactions:
            content = "No transactions found."
        else:
            recent = ", ".join(f"{t.merchant}: {format_amount(t.amount)}" for t in transactions[:5])
            more = "..." if len(transactions) > 5 else ""
            content = f"Found {len(transactions)} transactions. Recent: {recent}{more}"
        lines = [
            f"{t.created_at:%b %d} {t.merchant} {format_amount(t.amount)} ({t.category})"
            for t in transactions
        ]
        return ToolExecutionResult(
            success=True,
            content=content,
            details={
                "queryType": "history",
                "count": len(transactions),
                "transactions": [t.model_dump(mode="json") for t in transactions],
                "formattedMessage": "\n".join(lines) or content,
            },
        )
