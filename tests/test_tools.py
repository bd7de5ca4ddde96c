"""Tests for the resolver, the tool registry and the built-in tools."""

import dataclasses
from datetime import datetime, timezone

import pytest

from conftest import CHAT_ID, PROJECT_ID, USER_ID, make_last, make_transaction
from ledgerbot.errors import ExternalServiceFailure, InvalidArguments, NotFound, ToolNotFound
from ledgerbot.models.conversation import PendingClarification
from ledgerbot.models.schemas import ConfidenceFactors

# -- resolver ---------------------------------------------------------------


@pytest.mark.asyncio
async def test_resolve_last_without_transactions(resolver):
    with pytest.raises(NotFound):
        await resolver.resolve("last", None, PROJECT_ID, USER_ID)


@pytest.mark.asyncio
async def test_resolve_specific_requires_an_id(resolver, transactions):
    await transactions.add(make_transaction())

    with pytest.raises(NotFound):
        await resolver.resolve("specific", None, PROJECT_ID, USER_ID)


@pytest.mark.asyncio
async def test_resolve_specific_deleted_transaction_is_not_found(resolver, transactions):
    await transactions.add(make_transaction(status="deleted"))

    with pytest.raises(NotFound):
        await resolver.resolve("specific", "tx-1", PROJECT_ID, USER_ID)


@pytest.mark.asyncio
async def test_resolve_specific_checks_project(resolver, transactions):
    await transactions.add(make_transaction(project_id="another-chat"))

    with pytest.raises(NotFound):
        await resolver.resolve("specific", "tx-1", PROJECT_ID, USER_ID)


@pytest.mark.asyncio
async def test_update_field_resyncs_working_memory(resolver, transactions, memory, context):
    await transactions.add(make_transaction())
    await memory.set_last_transaction(USER_ID, CHAT_ID, make_last())
    await memory.set_pending_clarification(
        USER_ID,
        CHAT_ID,
        PendingClarification(transaction_id="tx-1", field="amount", original_value=50.0),
    )

    result = await resolver.update_field_and_resync(context, "amount", 45.0, "tx-1")

    assert result.success
    assert result.content == "Updated amount: $50.00 → $45.00. Transaction: lunch $45.00"
    state = await memory.get(USER_ID, CHAT_ID)
    assert state.last_transaction.amount == 45.0
    assert state.pending_clarification is None


@pytest.mark.asyncio
async def test_update_same_amount_twice(resolver, transactions, context):
    await transactions.add(make_transaction())

    await resolver.update_field_and_resync(context, "amount", 25.0, "tx-1")
    second = await resolver.update_field_and_resync(context, "amount", 25.0, "tx-1")

    assert "$25.00 → $25.00" in second.content
    assert (await transactions.get("tx-1")).amount == 25.0


@pytest.mark.asyncio
async def test_update_merchant_narrates_verbatim(resolver, transactions, context):
    await transactions.add(make_transaction())

    result = await resolver.update_field_and_resync(context, "merchant", "Chipotle", "tx-1")

    assert result.content.startswith("Updated merchant: lunch → Chipotle.")


@pytest.mark.asyncio
async def test_update_amount_rescales_splits(resolver, transactions, context):
    await transactions.add(make_transaction(splits={"Alex": 25.0, "Sam": 25.0}))

    await resolver.update_field_and_resync(context, "amount", 40.0, "tx-1")

    transaction = await transactions.get("tx-1")
    assert transaction.amount == 40.0
    assert transaction.splits == {"Alex": 20.0, "Sam": 20.0}


# -- registry ---------------------------------------------------------------


def test_registry_exposes_definitions_without_execute(registry):
    definitions = {d.name: d for d in registry.definitions()}

    assert set(definitions) == {
        "record_expense",
        "query_expenses",
        "modify_amount",
        "modify_merchant",
        "modify_category",
        "delete_expense",
    }
    assert registry.names() == [tool.name for tool in registry.get_all()]
    delete_schema = definitions["delete_expense"].parameters
    assert "transactionId" in delete_schema["properties"]
    assert "confirmed" not in delete_schema["properties"]
    assert "confirmed" not in delete_schema.get("required", [])
    assert "rawText" in definitions["record_expense"].parameters["required"]


def test_registry_rejects_duplicate_names(registry):
    with pytest.raises(ValueError):
        registry.register(registry.get("delete_expense"))


@pytest.mark.asyncio
async def test_unknown_tool(registry, context):
    with pytest.raises(ToolNotFound) as excinfo:
        await registry.execute("nonexistent_tool", {}, context)

    assert excinfo.value.name == "nonexistent_tool"


@pytest.mark.asyncio
async def test_invalid_arguments(registry, context):
    with pytest.raises(InvalidArguments) as excinfo:
        await registry.execute("modify_amount", {"target": "last", "newAmount": -3}, context)

    assert "modify_amount" in str(excinfo.value)
    assert "newAmount" in str(excinfo.value)


# -- delete protocol --------------------------------------------------------


@pytest.mark.asyncio
async def test_delete_roundtrip(registry, transactions, context):
    await transactions.add(make_transaction())

    first = await registry.execute("delete_expense", {"target": "last", "confirmed": False}, context)
    assert first.success
    assert first.details["needsConfirmation"] is True
    assert first.details["deleted"] is False
    assert (await transactions.get("tx-1")).status == "pending"

    second = await registry.execute(
        "delete_expense",
        {"target": "specific", "transactionId": "tx-1", "confirmed": True},
        context,
    )
    assert second.details["deleted"] is True
    assert (await transactions.get("tx-1")).status == "deleted"

    third = await registry.execute(
        "delete_expense",
        {"target": "specific", "transactionId": "tx-1", "confirmed": True},
        context,
    )
    assert not third.success
    assert third.error == "Transaction not found"


@pytest.mark.asyncio
async def test_unconfirmed_delete_never_mutates(registry, transactions, context):
    await transactions.add(make_transaction())

    for _ in range(2):
        result = await registry.execute(
            "delete_expense", {"target": "specific", "transactionId": "tx-1"}, context
        )
        assert result.details["needsConfirmation"] is True

    assert (await transactions.get("tx-1")).status == "pending"


@pytest.mark.asyncio
async def test_confirmed_delete_forgets_last_transaction(registry, transactions, memory, context):
    await transactions.add(make_transaction())
    await memory.set_last_transaction(USER_ID, CHAT_ID, make_last())

    await registry.execute(
        "delete_expense", {"target": "specific", "transactionId": "tx-1", "confirmed": True}, context
    )

    assert (await memory.get(USER_ID, CHAT_ID)).last_transaction is None


# -- record -----------------------------------------------------------------


@pytest.mark.asyncio
async def test_record_expense(registry, transactions, memory, context):
    result = await registry.execute("record_expense", {"rawText": "lunch 50"}, context)

    assert result.success
    assert result.content == "Recorded: lunch - $50.00 USD (dining). Split: Alex: $50.00"
    assert result.details["needsClarification"] is False

    transaction = await transactions.get(result.details["transactionId"])
    assert transaction.amount == 50.0
    assert transaction.status == "pending"
    assert transaction.payer == "Alex"

    state = await memory.get(USER_ID, CHAT_ID)
    assert state.last_transaction.id == transaction.id
    assert [m.content for m in state.recent_messages] == ["lunch 50"]


@pytest.mark.asyncio
async def test_record_flags_low_confidence_fields(registry, parser, context):
    parser.factors = ConfidenceFactors(merchant=0.4, amount=1.0, category=0.5)

    result = await registry.execute("record_expense", {"rawText": "thing 12"}, context)

    assert result.details["needsClarification"] is True
    assert result.details["lowConfidenceFields"] == ["merchant", "category"]
    assert "low confidence on: merchant, category" in result.content


@pytest.mark.asyncio
async def test_record_passes_extraction_failure_up(registry, parser, context):
    parser.fail = True

    with pytest.raises(ExternalServiceFailure):
        await registry.execute("record_expense", {"rawText": "lunch 50"}, context)


# -- modify -----------------------------------------------------------------


@pytest.mark.asyncio
async def test_modify_category_lowercases(registry, transactions, context):
    await transactions.add(make_transaction())

    result = await registry.execute(
        "modify_category", {"target": "last", "newCategory": "Grocery"}, context
    )

    assert result.success
    assert (await transactions.get("tx-1")).category == "grocery"


@pytest.mark.asyncio
async def test_modify_without_transaction_is_a_failed_result(registry, context):
    result = await registry.execute("modify_amount", {"target": "last", "newAmount": 10}, context)

    assert not result.success
    assert result.content == "No recent transaction found"


# -- query ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_query_total_and_breakdown(registry, transactions, context):
    await transactions.add(make_transaction(id="a", amount=30.0, category="dining"))
    await transactions.add(make_transaction(id="b", amount=20.0, category="grocery"))
    await transactions.add(make_transaction(id="c", amount=99.0, status="deleted"))

    total = await registry.execute("query_expenses", {"queryType": "total"}, context)
    assert total.details["total"] == 50.0
    assert total.details["count"] == 2

    breakdown = await registry.execute("query_expenses", {"queryType": "breakdown"}, context)
    assert breakdown.details["byCategory"] == {"dining": 30.0, "grocery": 20.0}


@pytest.mark.asyncio
async def test_query_balance_skips_personal(registry, transactions, context):
    created_at = datetime(2026, 3, 1, tzinfo=timezone.utc)
    await transactions.add(
        make_transaction(id="a", amount=40.0, payer="Alex", splits={"Alex": 20.0, "Sam": 20.0}, created_at=created_at)
    )
    await transactions.add(
        make_transaction(id="b", amount=10.0, payer="Sam", splits={"Sam": 10.0}, status="personal")
    )

    result = await registry.execute("query_expenses", {"queryType": "balance"}, context)

    assert result.details["balances"] == {"Alex": 20.0, "Sam": -20.0}
    assert result.content == "Balances: Alex +$20.00, Sam -$20.00"


@pytest.mark.asyncio
async def test_query_history_is_newest_first(registry, transactions, context):
    await transactions.add(make_transaction(id="a", merchant="coffee", created_at=datetime(2026, 3, 1, tzinfo=timezone.utc)))
    await transactions.add(make_transaction(id="b", merchant="dinner", created_at=datetime(2026, 3, 2, tzinfo=timezone.utc)))

    result = await registry.execute("query_expenses", {"limit": 1}, context)

    assert result.details["count"] == 1
    assert result.details["transactions"][0]["merchant"] == "dinner"
    assert result.details["formattedMessage"] == "Mar 02 dinner $50.00 (dining)"


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [float("inf"), float("nan"), "inf"])
async def test_modify_amount_rejects_non_finite(registry, transactions, context, amount):
    await transactions.add(make_transaction())

    with pytest.raises(InvalidArguments):
        await registry.execute("modify_amount", {"target": "last", "newAmount": amount}, context)

    assert (await transactions.get("tx-1")).amount == 50.0


@pytest.mark.asyncio
async def test_record_splits_the_rounded_amount(registry, transactions, context):
    shared = dataclasses.replace(context, participants=("Alex", "Sam", "Kim"))

    result = await registry.execute("record_expense", {"rawText": "taxi 10.006"}, shared)

    transaction = await transactions.get(result.details["transactionId"])
    assert transaction.amount == 10.01
    assert transaction.splits == {"Alex": 3.34, "Sam": 3.34, "Kim": 3.33}
    assert sum(transaction.splits.values()) == pytest.approx(transaction.amount)
