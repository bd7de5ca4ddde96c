"""Shared test fixtures: in-memory database, stores and fake LLM collaborators."""

import re
from datetime import datetime, timezone

import pytest
from tinydb import TinyDB
from tinydb.storages import MemoryStorage

from ledgerbot.agent.orchestrator import Orchestrator
from ledgerbot.db.memory import WorkingMemoryStore
from ledgerbot.db.repository import ProjectRepository, TransactionRepository
from ledgerbot.db.sessions import SessionStore
from ledgerbot.errors import ExternalServiceFailure
from ledgerbot.llm.parser import ParseContext
from ledgerbot.models.conversation import Decision, LastTransaction, TextReply, WorkingMemory
from ledgerbot.models.schemas import ConfidenceFactors, ParsedTransaction, ParseResult, Transaction
from ledgerbot.tools.base import ToolContext, ToolDefinition
from ledgerbot.tools.registry import build_registry
from ledgerbot.tools.resolver import TransactionResolver

USER_ID = 1
CHAT_ID = 100
PROJECT_ID = str(CHAT_ID)

EXPENSE_PATTERN = re.compile(r"^(?P<merchant>.+?)\s+\$?(?P<amount>\d+(?:\.\d+)?)$")
DINING_WORDS = ("lunch", "dinner", "coffee", "brunch")


class FakeParser:
    """Reads "<merchant> <amount>" without calling out to a model."""

    def __init__(self):
        self.factors = ConfidenceFactors()
        self.fail = False
        self.calls: list[tuple[str, ParseContext]] = []

    async def parse(self, text: str, context: ParseContext) -> ParseResult:
        self.calls.append((text, context))
        if self.fail:
            raise ExternalServiceFailure("extraction unavailable")

        match = EXPENSE_PATTERN.match(text.strip())
        if match is None:
            raise ExternalServiceFailure(f"cannot read {text!r}")
        merchant = match["merchant"]
        category = "dining" if merchant.lower() in DINING_WORDS else "other"
        return ParseResult(
            fields=ParsedTransaction(
                merchant=merchant,
                amount=float(match["amount"]),
                currency=context.default_currency,
                category=category,
            ),
            confidence=min(self.factors.merchant, self.factors.amount, self.factors.category),
            confidence_factors=self.factors,
        )


class ScriptedEngine:
    """Returns queued decisions in order; an exception in the queue is raised."""

    def __init__(self):
        self.script: list[Decision | Exception] = []
        self.calls: list[tuple[str, WorkingMemory, list[ToolDefinition]]] = []

    def queue(self, *decisions: Decision | Exception) -> None:
        self.script.extend(decisions)

    async def decide(
        self, text: str, memory: WorkingMemory, tools: list[ToolDefinition]
    ) -> Decision:
        self.calls.append((text, memory, tools))
        if not self.script:
            return TextReply(message="ok")
        decision = self.script.pop(0)
        if isinstance(decision, Exception):
            raise decision
        return decision


def make_transaction(**overrides) -> Transaction:
    values = {
        "id": "tx-1",
        "project_id": PROJECT_ID,
        "user_id": USER_ID,
        "chat_id": CHAT_ID,
        "merchant": "lunch",
        "amount": 50.0,
        "currency": "USD",
        "category": "dining",
        "payer": "Alex",
        "splits": {"Alex": 50.0},
        "created_at": datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc),
    }
    values.update(overrides)
    return Transaction(**values)


def make_last(**overrides) -> LastTransaction:
    values = {
        "id": "tx-1",
        "merchant": "lunch",
        "amount": 50.0,
        "currency": "USD",
        "category": "dining",
        "created_at": datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc),
    }
    values.update(overrides)
    return LastTransaction(**values)


@pytest.fixture
def db():
    database = TinyDB(storage=MemoryStorage)
    yield database
    database.close()


@pytest.fixture
def sessions(db):
    return SessionStore(db)


@pytest.fixture
def memory(db):
    return WorkingMemoryStore(db)


@pytest.fixture
def transactions(db):
    return TransactionRepository(db)


@pytest.fixture
def projects(db):
    return ProjectRepository(db)


@pytest.fixture
def resolver(transactions, memory):
    return TransactionResolver(transactions, memory)


@pytest.fixture
def parser():
    return FakeParser()


@pytest.fixture
def engine():
    return ScriptedEngine()


@pytest.fixture
def registry(resolver, parser):
    return build_registry(resolver, parser)


@pytest.fixture
def orchestrator(sessions, memory, engine, registry, resolver, projects):
    return Orchestrator(
        sessions=sessions,
        memory=memory,
        engine=engine,
        registry=registry,
        resolver=resolver,
        projects=projects,
    )


@pytest.fixture
def context():
    return ToolContext(
        user_id=USER_ID,
        chat_id=CHAT_ID,
        project_id=PROJECT_ID,
        project_name="Test chat",
        payer_name="Alex",
        participants=("Alex",),
    )
